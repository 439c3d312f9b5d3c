import logging
import time
from decimal import ROUND_DOWN, Decimal
from typing import Callable, Optional

from eth_abi import decode

from ..cache import TTLCache
from ..config import settings
from ..core.execution.contracts import function_selector
from ..core.recovery.errors import AmberInkError, ValidationError

logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal(10) ** 18
MAX_PRICE_AGE_SECONDS = 3600
MAX_SANE_PRICE_USD = Decimal(1_000_000)


class PriceService:
    """Native token USD price from a Chainlink aggregator, with a configured fallback"""

    name = "chainlink"

    def __init__(
        self,
        chain,
        feed_address: Optional[str] = None,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.feed_address = feed_address or settings.chainlink_price_feed_address
        self._cache = cache or TTLCache(default_ttl=settings.price_cache_duration)
        self._clock = clock

    @property
    def fallback_price(self) -> Decimal:
        return Decimal(settings.fallback_eth_price_usd)

    def _has_feed(self) -> bool:
        return int(self.feed_address, 16) != 0

    async def get_native_price_usd(self) -> Decimal:
        """USD price of one native token, cached per chain."""
        return await self._cache.get_or_load(
            f"native_usd:{self.chain.chain_id}",
            self._load_price,
            ttl=settings.price_cache_duration,
        )

    async def _load_price(self) -> Decimal:
        if not self._has_feed():
            return self.fallback_price

        try:
            raw_decimals = await self.chain.call(self.feed_address, function_selector("decimals()"))
            (decimals,) = decode(["uint8"], raw_decimals)
            raw_round = await self.chain.call(self.feed_address, function_selector("latestRoundData()"))
            _, answer, _, updated_at, _ = decode(
                ["uint80", "int256", "uint256", "uint256", "uint80"], raw_round
            )
        except AmberInkError as e:
            logger.warning(f"Price feed read failed ({e.code.value}), using fallback price")
            return self.fallback_price

        age = int(self._clock()) - int(updated_at)
        if age > MAX_PRICE_AGE_SECONDS:
            logger.warning(f"Price feed is stale ({age}s old), using fallback price")
            return self.fallback_price

        price = Decimal(answer) / (Decimal(10) ** decimals)
        if price <= 0 or price > MAX_SANE_PRICE_USD:
            logger.warning(f"Price feed returned out-of-range price {price}, using fallback price")
            return self.fallback_price

        logger.debug(f"Native token price: ${price}")
        return price

    async def usd_to_wei(self, usd) -> int:
        """
        Convert a USD amount to wei at the current native price.

        Raises:
            ValidationError: ``usd`` is negative
        """
        amount = Decimal(str(usd))
        if amount < 0:
            raise ValidationError("USD amount must be non-negative")
        if amount == 0:
            return 0
        price = await self.get_native_price_usd()
        return int((amount / price * WEI_PER_ETH).to_integral_value(rounding=ROUND_DOWN))

    async def wei_to_usd(self, wei: int) -> Decimal:
        if wei < 0:
            raise ValidationError("Wei amount must be non-negative")
        if wei == 0:
            return Decimal(0)
        price = await self.get_native_price_usd()
        return Decimal(wei) / WEI_PER_ETH * price

    async def clear_cache(self) -> None:
        await self._cache.clear()
