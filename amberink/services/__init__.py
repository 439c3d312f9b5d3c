from .funding import BalanceController
from .price import PriceService

__all__ = ["BalanceController", "PriceService"]
