"""
Session key manager for delegated BlogHub calls.

Manages the lifecycle of the owner's session key:
- Local persistence per (environment, owner), with legacy-key migration
- Registration, reauthorization and revocation on the SessionKeyManager
- Readiness checks against the on-chain record before each action
- Gas balance top-ups and withdrawal back to the owner
"""

import logging
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from eth_account import Account

from amberink.config import settings
from amberink.constants import (
    SESSION_KEY_DEFAULT_SPENDING_LIMIT,
    SESSION_KEY_DURATION_SECONDS,
    SESSION_KEY_STORAGE_PREFIX,
    STANDARD_TRANSFER_GAS_LIMIT,
    WITHDRAW_GAS_BUFFER_PCT,
    WITHDRAW_SAFETY_DUST_WEI,
)
from amberink.core.execution.actions import ALLOWED_SELECTORS
from amberink.core.execution.contracts import SessionKeyManagerContract
from amberink.core.recovery.errors import (
    AmberInkError,
    InsufficientFundsError,
    SessionKeyError,
    ValidationError,
    classify_error,
)
from amberink.providers.base import WalletProvider
from amberink.services.funding import BalanceController

from .models import SessionKey, SessionKeyRecord, SessionKeyState, normalize_selector
from .store import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionKeyManager:
    """
    Owns the locally stored session key for the connected owner.

    The chain record is authoritative: a local key is only used after its
    record has been checked against the latest block timestamp.
    """

    def __init__(
        self,
        wallet: WalletProvider,
        chain,
        store: KeyValueStore,
        funding: Optional[BalanceController] = None,
        contract: Optional[SessionKeyManagerContract] = None,
        target: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.wallet = wallet
        self.chain = chain
        self.store = store
        self.funding = funding or BalanceController(chain, wallet)
        self.contract = contract or SessionKeyManagerContract(chain)
        self.target = target or settings.blog_hub_address
        self.environment = environment or settings.environment

    # Local storage

    def storage_key(self, owner: str) -> str:
        return f"{SESSION_KEY_STORAGE_PREFIX}_{self.environment}_{owner.lower()}"

    def _legacy_storage_key(self) -> str:
        return f"{SESSION_KEY_STORAGE_PREFIX}_{self.environment}"

    def _save(self, key: SessionKey) -> None:
        self.store.set(self.storage_key(key.owner), key.to_dict())

    def get_stored(self, owner: str) -> Optional[SessionKey]:
        """
        Stored key for ``owner``, expired or not.

        Expired keys are returned on purpose: they may still hold funds.
        A key found under the legacy storage key is moved to the current one.
        """
        if not owner:
            return None

        primary = self.storage_key(owner)
        for storage_key in (primary, self._legacy_storage_key()):
            data = self.store.get(storage_key)
            if data is None:
                continue
            try:
                key = SessionKey.from_dict(data)
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Discarding unreadable session key entry {storage_key}")
                self.store.delete(storage_key)
                continue
            if not key.belongs_to(owner):
                continue
            if storage_key != primary:
                logger.info("Migrating legacy session key to per-owner storage")
                self._save(key)
                self.store.delete(storage_key)
            return key
        return None

    def clear_local(self, owner: str) -> None:
        """Forget the stored key without touching the chain."""
        if owner:
            self.store.delete(self.storage_key(owner))

    # On-chain state

    async def get_record(self, key: SessionKey) -> SessionKeyRecord:
        return await self.contract.get_record(key.owner, key.address)

    async def inspect(
        self,
        key: SessionKey,
        required_selector: Optional[str] = None,
        pending_value: int = 0,
    ) -> Tuple[SessionKeyRecord, int, Optional[SessionKeyError]]:
        """Record, chain time, and why the record cannot authorize the call (None if it can)."""
        record = await self.get_record(key)
        now = await self.chain.get_block_timestamp()
        problem = record.authorization_error(self.target, required_selector, pending_value, now)
        return record, now, problem

    async def is_valid_on_chain(
        self,
        key: SessionKey,
        required_selector: Optional[str] = None,
        pending_value: int = 0,
    ) -> bool:
        _, _, problem = await self.inspect(key, required_selector, pending_value)
        if problem is not None:
            logger.info(f"Session key {key.address} not usable: {problem.message}")
        return problem is None

    async def get_balance(self, address: str) -> int:
        return await self.chain.get_balance(address)

    async def state(self, owner: str) -> SessionKeyState:
        """Lifecycle state of the stored key for ``owner``."""
        key = self.get_stored(owner)
        if key is None:
            return SessionKeyState.ABSENT
        if await self.is_valid_on_chain(key):
            return SessionKeyState.ACTIVE
        if await self.get_balance(key.address) > 0:
            return SessionKeyState.EXPIRED_WITH_BALANCE
        return SessionKeyState.EXPIRED_EMPTY

    # Registration

    async def _validity_window(self) -> Tuple[int, int]:
        valid_after = await self.chain.get_block_timestamp()
        return valid_after, valid_after + SESSION_KEY_DURATION_SECONDS

    async def _register(self, address: str, valid_after: int, valid_until: int) -> str:
        data = self.contract.encode_register(
            address,
            valid_after,
            valid_until,
            self.target,
            ALLOWED_SELECTORS,
            SESSION_KEY_DEFAULT_SPENDING_LIMIT,
        )
        tx_hash = await self.wallet.send_transaction({"to": self.contract.address, "data": data, "value": 0})
        await self.chain.wait_for_receipt(tx_hash)
        return tx_hash

    async def _revoke_on_chain(self, address: str) -> str:
        data = self.contract.encode_revoke(address)
        tx_hash = await self.wallet.send_transaction({"to": self.contract.address, "data": data, "value": 0})
        await self.chain.wait_for_receipt(tx_hash)
        return tx_hash

    async def create(self) -> SessionKey:
        """
        Generate a keypair and register it for the connected owner.

        The key is stored only after the registration is mined.

        Raises:
            UserRejectedError: Owner declined the registration
            ContractRevertedError: Registration reverted
        """
        owner = await self.wallet.get_account()
        account = Account.create()
        valid_after, valid_until = await self._validity_window()

        tx_hash = await self._register(account.address, valid_after, valid_until)

        key = SessionKey(
            address=account.address,
            private_key="0x" + bytes(account.key).hex(),
            owner=owner,
            valid_until=valid_until,
        )
        self._save(key)
        logger.info(f"Session key {key.address} registered for {owner}. Tx: {tx_hash}")
        return key

    async def reauthorize(self, key: SessionKey) -> SessionKey:
        """Register an expired key again under the same address, keeping its funds in use."""
        owner = await self.wallet.get_account()
        if not key.belongs_to(owner):
            raise SessionKeyError("Session key belongs to a different owner")

        valid_after, valid_until = await self._validity_window()
        tx_hash = await self._register(key.address, valid_after, valid_until)

        renewed = key.with_validity(valid_until)
        self._save(renewed)
        logger.info(f"Session key {key.address} reauthorized until {valid_until}. Tx: {tx_hash}")
        return renewed

    async def extend(self, key: SessionKey) -> SessionKey:
        """Revoke and re-register a still-registered key; this also resets its spend."""
        owner = await self.wallet.get_account()
        if not key.belongs_to(owner):
            raise SessionKeyError("Session key belongs to a different owner")

        await self._revoke_on_chain(key.address)
        valid_after, valid_until = await self._validity_window()
        tx_hash = await self._register(key.address, valid_after, valid_until)

        renewed = key.with_validity(valid_until)
        self._save(renewed)
        logger.info(f"Session key {key.address} re-registered until {valid_until}. Tx: {tx_hash}")
        return renewed

    async def revoke(self) -> Optional[str]:
        """Revoke the owner's key on-chain and forget it locally."""
        owner = await self.wallet.get_account()
        key = self.get_stored(owner)
        if key is None:
            return None

        tx_hash = await self._revoke_on_chain(key.address)
        self.clear_local(owner)
        logger.info(f"Session key {key.address} revoked. Tx: {tx_hash}")
        return tx_hash

    # Readiness

    async def get_or_create_valid(
        self,
        required_selector: Optional[str] = None,
        pending_value: int = 0,
        auto_create: bool = True,
    ) -> Optional[SessionKey]:
        """
        Return a key the chain will accept for the call, repairing or creating one if needed.

        A key that is unusable but still holds funds is re-registered under
        the same address rather than abandoned. An unusable empty key is
        discarded.
        """
        owner = await self.wallet.get_account()
        key = self.get_stored(owner)

        if key is not None:
            record, now, problem = await self.inspect(key, required_selector, pending_value)
            if problem is None:
                return key

            balance = await self.get_balance(key.address)
            if balance > 0:
                if not record.is_registered or key.is_expired(now) or now > record.valid_until:
                    logger.info(f"Session key {key.address} expired with {balance} wei, reauthorizing")
                    return await self.reauthorize(key)
                logger.info(f"Session key {key.address} invalid ({problem.code.value}), re-registering")
                return await self.extend(key)

            logger.info(f"Session key {key.address} unusable and empty, discarding")
            self.clear_local(owner)

        if not auto_create:
            return None
        return await self.create()

    async def ensure_ready(
        self,
        required_selector: Optional[str] = None,
        pending_value: int = 0,
    ) -> Optional[SessionKey]:
        """
        Return a key that is valid on-chain and funded, or None.

        None means the caller must use the owner wallet directly; it is
        returned when the selector can never be granted, when the owner
        declined a prompt, or when funding did not succeed.

        Raises:
            AmberInkError: Failures it is not safe to fall back from
        """
        if required_selector is not None and normalize_selector(required_selector) not in ALLOWED_SELECTORS:
            logger.warning(f"Selector {required_selector} cannot be delegated to a session key")
            return None

        try:
            key = await self.get_or_create_valid(required_selector, pending_value)
            if key is None:
                return None
            if not await self.funding.ensure_session_key_balance(key.address, pending_value):
                return None
            return key
        except AmberInkError as e:
            if e.safe_to_fall_back:
                logger.info(f"Session key not ready ({e.code.value})")
                return None
            raise

    async def call_with_session_key(
        self,
        with_key: Callable[[SessionKey], Awaitable[T]],
        without_key: Callable[[], Awaitable[T]],
        required_selector: Optional[str] = None,
        pending_value: int = 0,
        auto_create: bool = True,
    ) -> T:
        """
        Run ``with_key`` through a ready session key, else ``without_key``.

        Falls back to the owner wallet only for rejected prompts, network
        errors and timeouts. Reverts, funding and gas failures propagate,
        since retrying them through the wallet would fail the same way.
        """
        try:
            key = await self.ensure_ready(required_selector, pending_value) if auto_create else None
            if key is not None:
                return await with_key(key)
        except Exception as e:
            error = e if isinstance(e, AmberInkError) else classify_error(e)
            if not error.safe_to_fall_back:
                if error is e:
                    raise
                raise error from e
            logger.info(f"Session key path failed ({error.code.value}), falling back to wallet")

        return await without_key()

    # Funds

    async def withdraw_all(self, session_key_address: str) -> str:
        """
        Sweep the session key's balance back to its owner.

        Uses a legacy gas price so the cost is fixed up front, and leaves a
        little dust behind for rollup data fees.

        Raises:
            SessionKeyError: No stored key for that address
            InsufficientFundsError: Balance cannot cover the transfer gas
        """
        owner = await self.wallet.get_account()
        key = self.get_stored(owner)
        if key is None or key.address.lower() != session_key_address.lower():
            raise SessionKeyError("Session key not found for this account")

        balance = await self.get_balance(key.address)
        gas_price = await self.chain.gas_price()
        if balance <= gas_price * STANDARD_TRANSFER_GAS_LIMIT:
            raise InsufficientFundsError("Session key balance is too low to cover withdrawal gas")

        estimate = await self.chain.estimate_gas(
            {"from": key.address, "to": owner, "value": 0, "gasPrice": gas_price}
        )
        gas_limit = estimate * WITHDRAW_GAS_BUFFER_PCT // 100
        amount = balance - gas_limit * gas_price - WITHDRAW_SAFETY_DUST_WEI
        if amount <= 0:
            raise InsufficientFundsError("Session key balance is too low to cover withdrawal gas")

        account = Account.from_key(key.private_key)
        tx_hash = await self.chain.send_transaction(
            account,
            {"to": owner, "value": amount, "gas": gas_limit, "gasPrice": gas_price},
        )
        logger.info(f"Withdrew {amount} wei from session key {key.address}. Tx: {tx_hash}")
        return tx_hash

    async def create_new(self, force: bool = False) -> SessionKey:
        """
        Replace the stored key with a freshly registered one.

        Raises:
            ValidationError: Old key still holds funds and ``force`` is False
        """
        owner = await self.wallet.get_account()
        existing = self.get_stored(owner)
        if existing is not None and not force:
            balance = await self.get_balance(existing.address)
            if balance > 0:
                raise ValidationError(
                    f"Existing session key {existing.address} still holds {balance} wei; "
                    f"withdraw it first or force replacement",
                    details={"address": existing.address, "balance": balance},
                )
        return await self.create()
