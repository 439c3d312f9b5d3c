"""
Delegated Execution Module

Typed BlogHub actions, EIP-712 signing with the session key, and execution
of the resulting delegated calls.
"""

from .actions import (
    ALL_ACTIONS,
    ALLOWED_SELECTORS,
    Collect,
    DelegatedAction,
    EditArticle,
    Evaluate,
    EvaluationScore,
    Follow,
    LikeComment,
    Publish,
    Visibility,
)
from .contracts import SessionKeyManagerContract, encode_delegated_call, function_selector
from .executor import DelegatedExecutor
from .signer import DelegatedAuthorization, DelegatedSigner

__all__ = [
    "ALL_ACTIONS",
    "ALLOWED_SELECTORS",
    "Collect",
    "DelegatedAction",
    "DelegatedAuthorization",
    "DelegatedExecutor",
    "DelegatedSigner",
    "EditArticle",
    "Evaluate",
    "EvaluationScore",
    "Follow",
    "LikeComment",
    "Publish",
    "SessionKeyManagerContract",
    "Visibility",
    "encode_delegated_call",
    "function_selector",
]
