"""
Error Classification

Defines the closed set of error codes surfaced to callers, the typed error
hierarchy behind them, and the one function that turns raw provider/RPC
failures into that hierarchy.

Raw message text is inspected only in ``classify_error``. Everything
downstream decides on ``error.code`` or the error class.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import httpx


class ErrorCode(str, Enum):
    """Codes every public operation fails with."""

    USER_REJECTED = "user_rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NETWORK_ERROR = "network_error"
    CONTRACT_REVERTED = "contract_reverted"
    GAS_ESTIMATION_FAILED = "gas_estimation_failed"
    NONCE_TOO_LOW = "nonce_too_low"
    REPLACEMENT_UNDERPRICED = "replacement_underpriced"
    WALLET_NOT_CONNECTED = "wallet_not_connected"
    WRONG_NETWORK = "wrong_network"
    TIMEOUT = "timeout"
    UNKNOWN_ERROR = "unknown_error"
    # Contract business rules
    CANNOT_SELF_EVALUATE = "cannot_self_evaluate"
    CANNOT_SELF_FOLLOW = "cannot_self_follow"
    CANNOT_SELF_COLLECT = "cannot_self_collect"
    CANNOT_LIKE_OWN_COMMENT = "cannot_like_own_comment"
    ARTICLE_NOT_FOUND = "article_not_found"
    # Session key authorization
    SESSION_KEY_EXPIRED = "session_key_expired"
    SESSION_KEY_UNAUTHORIZED = "session_key_unauthorized"
    SPENDING_LIMIT_EXCEEDED = "spending_limit_exceeded"
    SIGNATURE_INVALID = "signature_invalid"
    # Local
    DECRYPTION_FAILED = "decryption_failed"
    VALIDATION_ERROR = "validation_error"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    recoverable: bool = False
    suggested_action: Optional[str] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class AmberInkError(Exception):
    """
    Base class for every error surfaced by this package.

    Subclasses pin ``code``, a default message and a suggested recovery
    action so the presentation layer never has to read provider strings.
    """

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    default_message: str = "An unknown error occurred."
    suggested_action: Optional[str] = None
    recoverable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[ErrorCode] = None,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original: Optional[BaseException] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        self.original = original
        self.context = ErrorContext(
            code=self.code,
            recoverable=self.recoverable,
            suggested_action=self.suggested_action,
            tx_hash=tx_hash,
            details=details or {},
        )

    @property
    def safe_to_fall_back(self) -> bool:
        """True when nothing can have been broadcast, so another path may be tried."""
        if self.context.tx_hash is not None:
            return False
        return self.code in _FALLBACK_SAFE_CODES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "suggested_action": self.suggested_action,
            "details": self.context.details,
        }


class UserRejectedError(AmberInkError):
    code = ErrorCode.USER_REJECTED
    default_message = "User rejected the request."
    suggested_action = "Approve the wallet prompt or continue without a session key"


class NetworkError(AmberInkError):
    code = ErrorCode.NETWORK_ERROR
    default_message = "Network error occurred."
    suggested_action = "Check connectivity and retry"
    recoverable = True


class TimeoutError(AmberInkError):
    code = ErrorCode.TIMEOUT
    default_message = "The request timed out."
    suggested_action = "Retry"
    recoverable = True


class InsufficientFundsError(AmberInkError):
    code = ErrorCode.INSUFFICIENT_FUNDS
    default_message = "Insufficient funds to complete the transaction."
    suggested_action = "Fund the account and retry"


class ContractRevertedError(AmberInkError):
    code = ErrorCode.CONTRACT_REVERTED
    default_message = "The contract reverted the transaction."
    suggested_action = "Review the action parameters"


class GasEstimationError(AmberInkError):
    code = ErrorCode.GAS_ESTIMATION_FAILED
    default_message = "Failed to estimate gas for the transaction."
    suggested_action = "The call would revert; review the action parameters"


class TransactionRejectedError(AmberInkError):
    """The node refused the transaction (nonce or fee replacement rules)."""

    code = ErrorCode.NONCE_TOO_LOW
    default_message = "The node rejected the transaction."
    suggested_action = "Retry after pending transactions settle"
    recoverable = True


class WalletNotConnectedError(AmberInkError):
    code = ErrorCode.WALLET_NOT_CONNECTED
    default_message = "Wallet is not connected."
    suggested_action = "Connect a wallet"


class WrongNetworkError(AmberInkError):
    code = ErrorCode.WRONG_NETWORK
    default_message = "Wrong network selected."
    suggested_action = "Switch the wallet to the configured chain"


class SessionKeyError(AmberInkError):
    """On-chain authorization of the session key is missing or stale."""

    code = ErrorCode.SESSION_KEY_UNAUTHORIZED
    default_message = "Session key is not authorized."
    suggested_action = "Reauthorize or recreate the session key"


class SessionKeyExpiredError(SessionKeyError):
    code = ErrorCode.SESSION_KEY_EXPIRED
    default_message = "Session key is not active or has expired."


class SessionKeyUnauthorizedError(SessionKeyError):
    code = ErrorCode.SESSION_KEY_UNAUTHORIZED
    default_message = "Session key is not authorized for this operation."


class SpendingLimitExceededError(SessionKeyError):
    code = ErrorCode.SPENDING_LIMIT_EXCEEDED
    default_message = "Session key spending limit exceeded."


class SignatureInvalidError(AmberInkError):
    """Signature rejected or past its deadline. Refetch the nonce and sign again."""

    code = ErrorCode.SIGNATURE_INVALID
    default_message = "Session signature is invalid or expired."
    suggested_action = "Retry; a fresh nonce and deadline will be signed"
    recoverable = True


class DecryptionError(AmberInkError):
    code = ErrorCode.DECRYPTION_FAILED
    default_message = "Wrong key or corrupted content."
    suggested_action = "Sign with the wallet that published the article"


class ValidationError(AmberInkError):
    code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid parameters."
    suggested_action = "Fix the highlighted field"


_FALLBACK_SAFE_CODES = frozenset({
    ErrorCode.USER_REJECTED,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.TIMEOUT,
})


# Ordered: the first matching rule wins. Session key and business errors
# come first because node messages wrap them in generic revert text.
_Rule = Tuple[List[str], Callable[[str, BaseException], AmberInkError]]


def _simple(cls: Type[AmberInkError], code: Optional[ErrorCode] = None, message: Optional[str] = None):
    def build(raw: str, error: BaseException) -> AmberInkError:
        return cls(message, code=code, original=error, details={"raw": raw})
    return build


def _revert(raw: str, error: BaseException) -> AmberInkError:
    match = re.search(r'reason="?([^"]+)"?', raw, re.IGNORECASE) or re.search(r"error=([^,]+)", raw, re.IGNORECASE)
    reason = match.group(1) if match else None
    return ContractRevertedError(reason, original=error, details={"raw": raw})


_RULES: List[_Rule] = [
    (["spendinglimitexceeded", "spending limit exceeded"], _simple(SpendingLimitExceededError)),
    (
        ["sessionkeynotactive", "0x62db3e42", "session key is not", "session key has expired"],
        _simple(SessionKeyExpiredError),
    ),
    (["invalidsignature", "0x8baa579f"], _simple(SignatureInvalidError, message="Invalid signature. Session verification failed.")),
    (["signatureexpired", "0x0819bdcd"], _simple(SignatureInvalidError, message="Signature has expired. Please try again.")),
    (["sessionkeyvalidationfailed"], _simple(SessionKeyUnauthorizedError, message="Session key validation failed.")),
    (["cannotselfevaluate"], _simple(ContractRevertedError, ErrorCode.CANNOT_SELF_EVALUATE, "You cannot like or dislike your own article.")),
    (["cannotselffollow"], _simple(ContractRevertedError, ErrorCode.CANNOT_SELF_FOLLOW, "You cannot follow yourself.")),
    (["cannotselfcollect"], _simple(ContractRevertedError, ErrorCode.CANNOT_SELF_COLLECT, "You cannot collect your own article.")),
    (["cannotlikeowncomment"], _simple(ContractRevertedError, ErrorCode.CANNOT_LIKE_OWN_COMMENT, "You cannot like your own comment.")),
    (["articlenotfound"], _simple(ContractRevertedError, ErrorCode.ARTICLE_NOT_FOUND, "Article not found.")),
    (["spamprotection"], _simple(ContractRevertedError, message="Transaction value too low (anti-spam protection).")),
    (["invalidnonce"], _simple(ContractRevertedError, message="Invalid nonce (possible race condition).")),
    (
        ["user rejected", "user denied", "rejected the request", "user cancelled", "user canceled", "rejected by user"],
        _simple(UserRejectedError),
    ),
    (["insufficient funds", "insufficient balance", "not enough balance"], _simple(InsufficientFundsError)),
    (
        ["gas required exceeds", "gas estimation", "out of gas", "intrinsic gas too low"],
        _simple(GasEstimationError),
    ),
    (["revert", "transaction failed", "execution failed"], _revert),
    (["nonce too low", "nonce has already been used"], _simple(TransactionRejectedError, ErrorCode.NONCE_TOO_LOW, "Nonce is too low or has already been used.")),
    (
        ["replacement transaction underpriced", "transaction underpriced"],
        _simple(TransactionRejectedError, ErrorCode.REPLACEMENT_UNDERPRICED, "Replacement transaction is underpriced."),
    ),
    (["no accounts", "wallet not connected", "not connected"], _simple(WalletNotConnectedError)),
    (["wrong network", "chain mismatch"], _simple(WrongNetworkError)),
    (["timeout", "timed out"], _simple(TimeoutError)),
    (["network", "disconnected", "connection", "econnrefused", "unreachable"], _simple(NetworkError)),
]


def classify_error(error: BaseException) -> AmberInkError:
    """
    Normalise any exception into the typed hierarchy.

    Called once where provider, wallet and RPC failures enter the package.
    Already-classified errors pass through unchanged.
    """
    if isinstance(error, AmberInkError):
        return error

    if isinstance(error, httpx.TimeoutException):
        return TimeoutError(original=error, details={"raw": str(error)})
    if isinstance(error, httpx.TransportError):
        return NetworkError(original=error, details={"raw": str(error)})

    raw = str(error)
    message = raw.lower()

    for patterns, build in _RULES:
        if any(p in message for p in patterns):
            return build(raw, error)

    if "switch" in message and "chain" in message:
        return WrongNetworkError(original=error, details={"raw": raw})

    return AmberInkError(original=error, details={"raw": raw})
