"""
Error Recovery Module

Provides the typed error hierarchy, boundary classification of raw
provider failures, and retry/polling helpers.
"""

from .errors import (
    AmberInkError,
    ContractRevertedError,
    DecryptionError,
    ErrorCode,
    ErrorContext,
    GasEstimationError,
    InsufficientFundsError,
    NetworkError,
    SessionKeyError,
    SessionKeyExpiredError,
    SessionKeyUnauthorizedError,
    SignatureInvalidError,
    SpendingLimitExceededError,
    TimeoutError,
    TransactionRejectedError,
    UserRejectedError,
    ValidationError,
    WalletNotConnectedError,
    WrongNetworkError,
    classify_error,
)
from .strategies import RetryConfig, RetryStrategy, poll_until

__all__ = [
    # Errors
    "AmberInkError",
    "ContractRevertedError",
    "DecryptionError",
    "ErrorCode",
    "ErrorContext",
    "GasEstimationError",
    "InsufficientFundsError",
    "NetworkError",
    "SessionKeyError",
    "SessionKeyExpiredError",
    "SessionKeyUnauthorizedError",
    "SignatureInvalidError",
    "SpendingLimitExceededError",
    "TimeoutError",
    "TransactionRejectedError",
    "UserRejectedError",
    "ValidationError",
    "WalletNotConnectedError",
    "WrongNetworkError",
    "classify_error",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
    "poll_until",
]
