"""
Session key models.

A session key is a locally generated keypair the owner registers on the
SessionKeyManager contract so it can sign a narrow set of BlogHub calls
without a wallet prompt per action.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Sequence

from amberink.constants import ZERO_ADDRESS
from amberink.core.recovery.errors import (
    SessionKeyError,
    SessionKeyExpiredError,
    SessionKeyUnauthorizedError,
    SpendingLimitExceededError,
)


class SessionKeyState(str, Enum):
    """Lifecycle state of the locally stored key, judged against the chain."""
    ABSENT = "absent"
    ACTIVE = "active"
    EXPIRED_WITH_BALANCE = "expired_with_balance"
    EXPIRED_EMPTY = "expired_empty"


def normalize_selector(selector: str) -> str:
    selector = selector.lower()
    if not selector.startswith("0x"):
        selector = "0x" + selector
    return selector


@dataclass
class SessionKey:
    """A session key as persisted on this device."""
    address: str
    private_key: str = field(repr=False)
    owner: str
    valid_until: int  # unix seconds

    def belongs_to(self, account: str) -> bool:
        return self.owner.lower() == account.lower()

    def is_expired(self, now: int) -> bool:
        """Local pre-check only; the chain record is authoritative."""
        return now > self.valid_until

    def with_validity(self, valid_until: int) -> "SessionKey":
        return SessionKey(
            address=self.address,
            private_key=self.private_key,
            owner=self.owner,
            valid_until=valid_until,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "address": self.address,
            "privateKey": self.private_key,
            "owner": self.owner,
            "validUntil": self.valid_until,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionKey":
        """Create from dictionary (from storage)."""
        return cls(
            address=data["address"],
            private_key=data["privateKey"],
            owner=data["owner"],
            valid_until=int(data["validUntil"]),
        )


@dataclass(frozen=True)
class SessionKeyRecord:
    """
    Mirror of the SessionKeyManager's on-chain record for (owner, key).

    Read-only from this package. ``nonce`` advances by one for each executed
    delegated call and ``spent_amount`` accumulates call values.
    """
    session_key: str
    valid_after: int
    valid_until: int
    allowed_contract: str
    allowed_selectors: FrozenSet[str]
    spending_limit: int
    spent_amount: int
    nonce: int

    @property
    def is_registered(self) -> bool:
        return self.session_key.lower() != ZERO_ADDRESS

    @property
    def remaining_allowance(self) -> int:
        return max(self.spending_limit - self.spent_amount, 0)

    def authorization_error(
        self,
        target: str,
        selector: Optional[str],
        pending_value: int,
        now: int,
    ) -> Optional[SessionKeyError]:
        """
        Return why this record cannot authorize the call, or None if it can.

        Args:
            target: Contract the delegated call goes to
            selector: Required method selector (None skips the allow-list check)
            pending_value: Native value the call will carry
            now: Latest block timestamp
        """
        if not self.is_registered:
            return SessionKeyUnauthorizedError("Session key is not registered on-chain.")
        if self.allowed_contract.lower() != target.lower():
            return SessionKeyUnauthorizedError(
                f"Session key is registered for a different contract "
                f"(expected {target}, got {self.allowed_contract})."
            )
        if selector is not None and normalize_selector(selector) not in self.allowed_selectors:
            return SessionKeyUnauthorizedError(
                f"Session key is not authorized for selector {normalize_selector(selector)}."
            )
        if now < self.valid_after:
            return SessionKeyExpiredError(
                f"Session key is not active yet (validAfter={self.valid_after}, now={now})."
            )
        if now > self.valid_until:
            return SessionKeyExpiredError("Session key has expired.")
        if self.spent_amount + pending_value > self.spending_limit:
            return SpendingLimitExceededError(
                details={
                    "spending_limit": self.spending_limit,
                    "spent_amount": self.spent_amount,
                    "pending_value": pending_value,
                }
            )
        return None

    @classmethod
    def from_abi(cls, values: Sequence[Any]) -> "SessionKeyRecord":
        """Build from the decoded ``getSessionKeyData`` tuple."""
        (
            session_key,
            valid_after,
            valid_until,
            allowed_contract,
            allowed_selectors,
            spending_limit,
            spent_amount,
            nonce,
        ) = values
        return cls(
            session_key=session_key,
            valid_after=int(valid_after),
            valid_until=int(valid_until),
            allowed_contract=allowed_contract,
            allowed_selectors=_selector_set(allowed_selectors),
            spending_limit=int(spending_limit),
            spent_amount=int(spent_amount),
            nonce=int(nonce),
        )


def _selector_set(selectors: Iterable[Any]) -> FrozenSet[str]:
    normalized = set()
    for s in selectors:
        if isinstance(s, (bytes, bytearray)):
            normalized.add("0x" + bytes(s).hex())
        else:
            normalized.add(normalize_selector(str(s)))
    return frozenset(normalized)
