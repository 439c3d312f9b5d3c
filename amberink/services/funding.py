"""
Balance control for session keys and storage uploads.

Session keys pay their own gas, so before a delegated call the key must hold
enough native token for a worst-case transaction plus the call's value.
Uploads above the storage network's free size need a loaded balance.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional

from ..config import settings
from ..constants import ESTIMATED_GAS_UNITS
from ..core.recovery.errors import (
    AmberInkError,
    InsufficientFundsError,
    UserRejectedError,
    classify_error,
)
from ..core.recovery.strategies import poll_until
from ..providers.base import StorageUploader, WalletProvider
from .price import PriceService

logger = logging.getLogger(__name__)

# Seconds to wait before each balance re-read after a top-up
BALANCE_RECHECK_DELAYS = (1.5, 2.0)


class BalanceController:
    """Keeps session key and storage balances above their minimums"""

    def __init__(
        self,
        chain,
        wallet: WalletProvider,
        price: Optional[PriceService] = None,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    ):
        self.chain = chain
        self.wallet = wallet
        self.price = price or PriceService(chain)
        self._sleep = sleep

    async def required_gas_amount(self, multiplier: Optional[int] = None) -> int:
        """Worst-case gas cost: max fee per gas × estimated units × multiplier."""
        multiplier = multiplier if multiplier is not None else settings.min_gas_fee_multiplier
        max_fee = await self.chain.max_fee_per_gas()
        return max_fee * ESTIMATED_GAS_UNITS * multiplier

    async def session_key_balance(self, address: str) -> int:
        return await self.chain.get_balance(address)

    async def has_sufficient_balance(self, address: str, pending_value: int = 0) -> bool:
        required = await self.required_gas_amount() + pending_value
        balance = await self.session_key_balance(address)
        return balance >= required

    async def fund_session_key(self, address: str, amount: Optional[int] = None) -> str:
        """
        Send native token from the owner wallet to the session key.

        Never sends less than the minimum gas amount. Waits for the receipt.

        Returns:
            Transaction hash of the transfer
        """
        minimum = await self.required_gas_amount()
        if amount is None:
            amount = await self.price.usd_to_wei(settings.default_charge_amt_usd)
        fund_amount = max(amount, minimum)

        tx_hash = await self.wallet.send_transaction({"to": address, "value": fund_amount})
        await self.chain.wait_for_receipt(tx_hash)
        logger.info(f"Funded session key {address} with {fund_amount} wei. Tx: {tx_hash}")
        return tx_hash

    async def ensure_session_key_balance(self, address: str, pending_value: int = 0) -> bool:
        """
        Top the session key up if it cannot cover gas plus ``pending_value``.

        Returns:
            True once the balance covers the minimum, False if a funding
            cycle did not get it there

        Raises:
            UserRejectedError: Owner declined the top-up
        """
        minimum = await self.required_gas_amount() + pending_value
        balance = await self.session_key_balance(address)
        if balance >= minimum:
            return True

        logger.info(f"Session key {address} balance {balance} below {minimum} wei, topping up")
        try:
            buffer = await self.price.usd_to_wei(settings.default_charge_amt_usd)
            await self.fund_session_key(address, max(buffer + pending_value, minimum - balance))
        except UserRejectedError:
            raise
        except InsufficientFundsError as e:
            logger.warning(f"Owner wallet cannot fund session key: {e.message}")
            return False

        # Some RPC nodes lag behind the receipt
        balance = await poll_until(
            lambda: self.session_key_balance(address),
            lambda b: b >= minimum,
            BALANCE_RECHECK_DELAYS,
            sleep=self._sleep,
        )
        if balance < minimum:
            logger.warning(f"Session key {address} still below minimum after funding ({balance} < {minimum})")
            return False
        return True

    @staticmethod
    def is_within_free_limit(size: int) -> bool:
        return size <= settings.irys_free_upload_limit

    async def ensure_storage_balance(self, uploader: StorageUploader, size: int) -> bool:
        """
        Make sure the uploader's loaded balance covers an upload of ``size`` bytes.

        Returns:
            True when funded (or free), False when funding failed

        Raises:
            UserRejectedError: Owner declined the funding transaction
        """
        if self.is_within_free_limit(size):
            return True

        try:
            price = await uploader.get_price(size)
            minimum = price * settings.min_gas_fee_multiplier
            balance = await uploader.get_loaded_balance()
            if balance >= minimum:
                return True

            fund_amount = max(price * settings.default_gas_fee_multiplier, minimum)
            logger.info(f"Funding {uploader.token} storage balance with {fund_amount} for {size} bytes")
            await uploader.fund(fund_amount)
            return True
        except UserRejectedError:
            raise
        except AmberInkError as e:
            logger.warning(f"Storage funding failed: {e.code.value}: {e.message}")
            return False
        except Exception as e:
            error = classify_error(e)
            if isinstance(error, UserRejectedError):
                raise error from e
            logger.warning(f"Storage funding failed: {error.code.value}: {error.message}")
            return False
