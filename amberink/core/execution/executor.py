"""
Delegated call execution.

Runs one DelegatedAction through the session key: re-check the on-chain
record, sign against its current nonce, estimate gas, broadcast, and wait
for the receipt so the next call sees the advanced nonce.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from eth_account import Account

from amberink.constants import GAS_ESTIMATE_BUFFER_PCT
from amberink.core.recovery.errors import AmberInkError, classify_error
from amberink.core.wallet.models import SessionKey, SessionKeyRecord

from .actions import DelegatedAction
from .contracts import SessionKeyManagerContract, encode_delegated_call
from .signer import DelegatedAuthorization, DelegatedSigner

logger = logging.getLogger(__name__)


class DelegatedExecutor:
    """
    Executes delegated calls, at most one in flight per session key.

    Two concurrent calls from one key would both read the same nonce and one
    signature would be rejected, so calls on the same key queue on a lock.
    """

    def __init__(
        self,
        chain,
        contract: Optional[SessionKeyManagerContract] = None,
        signer: Optional[DelegatedSigner] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.contract = contract or SessionKeyManagerContract(chain)
        self.signer = signer or DelegatedSigner(chain_id=chain.chain_id, clock=clock)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, session_key_address: str) -> asyncio.Lock:
        key = session_key_address.lower()
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def assert_active(
        self,
        session_key: SessionKey,
        action: DelegatedAction,
    ) -> SessionKeyRecord:
        """
        Fetch the record and fail if it cannot authorize ``action`` right now.

        Returns the record so the caller signs against its nonce.
        """
        record = await self.contract.get_record(session_key.owner, session_key.address)
        now = await self.chain.get_block_timestamp()
        problem = record.authorization_error(self.signer.target, action.selector, action.value, now)
        if problem is not None:
            raise problem
        return record

    async def prepare(self, session_key: SessionKey, action: DelegatedAction) -> DelegatedAuthorization:
        """
        Validate, re-check on-chain authorization and sign with a freshly read nonce.

        Expiry is judged against the chain's block timestamp, not the local clock.
        """
        action.validate()
        record = await self.assert_active(session_key, action)
        return self.signer.sign(session_key, action, record.nonce)

    async def _wait_for_receipt(self, tx_hash: str) -> None:
        """Wait for the receipt; any failure carries ``tx_hash`` since the call is already out."""
        try:
            await self.chain.wait_for_receipt(tx_hash)
        except Exception as e:
            error = classify_error(e)
            if error.context.tx_hash is None:
                error.context.tx_hash = tx_hash
            if error is e:
                raise
            raise error from e

    async def execute(
        self,
        session_key: SessionKey,
        action: DelegatedAction,
        wait: bool = True,
    ) -> str:
        """
        Run ``action`` through the session key and return the tx hash.

        Args:
            session_key: Key already made ready by the lifecycle manager
            action: The BlogHub call to make
            wait: Wait for the receipt before releasing the key's lock

        Raises:
            ValidationError: Bad action arguments (nothing signed)
            SessionKeyError: Record cannot authorize the call (nothing signed)
            AmberInkError: Any other classified failure
        """
        async with self._get_lock(session_key.address):
            try:
                auth = await self.prepare(session_key, action)
                data = encode_delegated_call(
                    action.name,
                    action.inner_types,
                    action.inner_args(),
                    session_key.owner,
                    session_key.address,
                    auth.deadline,
                    auth.signature,
                )
                tx = {
                    "from": session_key.address,
                    "to": self.signer.target,
                    "data": data,
                    "value": action.value,
                }
                estimated = await self.chain.estimate_gas(tx)
                tx["gas"] = estimated * GAS_ESTIMATE_BUFFER_PCT // 100

                account = Account.from_key(session_key.private_key)
                tx_hash = await self.chain.send_transaction(account, tx)
                logger.info(
                    f"{action.name} with session key {session_key.address} "
                    f"(nonce {auth.nonce}). Tx: {tx_hash}"
                )
                if wait:
                    await self._wait_for_receipt(tx_hash)
                return tx_hash
            except AmberInkError as e:
                logger.warning(f"{action.name} with session key failed: {e.code.value}: {e.message}")
                raise
            except Exception as e:
                error = classify_error(e)
                logger.warning(f"{action.name} with session key failed: {error.code.value}")
                raise error from e
