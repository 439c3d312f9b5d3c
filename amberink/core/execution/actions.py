"""
Delegatable BlogHub actions.

Each action carries its typed arguments, the selector the session key must
be allowed to call, the native value it sends, and its own validation.
The signer and executor are generic over ``DelegatedAction``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, ClassVar, List, Tuple

from eth_utils import is_address, to_checksum_address

from amberink.constants import (
    MAX_ORIGINAL_AUTHOR_BYTES,
    MAX_ROYALTY_BPS,
    MAX_SUMMARY_BYTES,
    MAX_TITLE_BYTES,
    ZERO_ADDRESS,
)
from amberink.core.recovery.errors import ValidationError

from .contracts import encode_call


class Visibility(IntEnum):
    PUBLIC = 0
    PRIVATE = 1
    ENCRYPTED = 2


class EvaluationScore(IntEnum):
    NEUTRAL = 0
    LIKE = 1
    DISLIKE = 2


def assert_non_negative(value: int, field_name: str) -> None:
    if value < 0:
        raise ValidationError(f"{field_name} must be non-negative")


def assert_uint(value: int, bits: int, field_name: str) -> None:
    assert_non_negative(value, field_name)
    if value >= 2 ** bits:
        raise ValidationError(f"{field_name} does not fit in uint{bits}")


def assert_bytes_limit(value: str, max_bytes: int, field_name: str) -> None:
    if value and len(value.encode("utf-8")) > max_bytes:
        raise ValidationError(f"{field_name} is too long (max {max_bytes} bytes)")


def assert_valid_address(address: str, field_name: str, allow_zero: bool = False) -> None:
    if not address:
        raise ValidationError(f"{field_name} is required")
    if not is_address(address):
        raise ValidationError(f"Invalid {field_name}")
    if not allow_zero and address.lower() == ZERO_ADDRESS:
        raise ValidationError(f"Invalid {field_name}")


class DelegatedAction(ABC):
    """A BlogHub call a session key can make on the owner's behalf."""

    name: ClassVar[str]
    selector: ClassVar[str]
    inner_types: ClassVar[List[str]]

    @abstractmethod
    def inner_args(self) -> List[Any]:
        """Arguments of the direct entry point, in ABI order."""

    @abstractmethod
    def validate(self) -> None:
        """Raise ValidationError before anything is signed or sent."""

    @property
    def value(self) -> int:
        return 0

    @property
    def abi_signature(self) -> str:
        return f"{self.name}({','.join(self.inner_types)})"

    def encode_call_data(self) -> str:
        """Call data of the direct entry point; this is what the session key signs."""
        return encode_call(self.selector, self.inner_types, self.inner_args())


@dataclass
class Publish(DelegatedAction):
    name: ClassVar[str] = "publish"
    selector: ClassVar[str] = "0x2801f5df"
    inner_types: ClassVar[List[str]] = [
        "(string,uint16,uint96,string,string,string,address,uint96,uint16,uint8,uint8)"
    ]

    arweave_id: str
    category_id: int
    royalty_bps: int
    original_author: str = ""
    title: str = ""
    summary: str = ""
    true_author: str = ZERO_ADDRESS
    collect_price: int = 0
    max_collect_supply: int = 0
    originality: int = 0
    visibility: Visibility = Visibility.PUBLIC

    def validate(self) -> None:
        if not self.arweave_id:
            raise ValidationError("Arweave ID is required")
        assert_uint(self.category_id, 16, "Category ID")
        assert_non_negative(self.royalty_bps, "Royalty")
        if self.royalty_bps > MAX_ROYALTY_BPS:
            raise ValidationError("Royalty percentage cannot exceed 100% (10000 basis points)")
        assert_bytes_limit(self.original_author, MAX_ORIGINAL_AUTHOR_BYTES, "Original author name")
        assert_bytes_limit(self.title, MAX_TITLE_BYTES, "Title")
        assert_bytes_limit(self.summary, MAX_SUMMARY_BYTES, "Summary")
        assert_valid_address(self.true_author, "true author", allow_zero=True)
        assert_uint(self.collect_price, 96, "Collect price")
        assert_uint(self.max_collect_supply, 16, "Max collect supply")
        assert_uint(self.originality, 8, "Originality")
        if int(self.visibility) not in {v.value for v in Visibility}:
            raise ValidationError("Visibility must be 0 (public), 1 (private) or 2 (encrypted)")

    def inner_args(self) -> List[Any]:
        params: Tuple[Any, ...] = (
            self.arweave_id,
            self.category_id,
            self.royalty_bps,
            self.original_author,
            self.title,
            self.summary,
            to_checksum_address(self.true_author),
            self.collect_price,
            self.max_collect_supply,
            self.originality,
            int(self.visibility),
        )
        return [params]


@dataclass
class Evaluate(DelegatedAction):
    name: ClassVar[str] = "evaluate"
    selector: ClassVar[str] = "0xff1f090a"
    inner_types: ClassVar[List[str]] = ["uint256", "uint8", "string", "address", "uint256"]

    article_id: int
    score: EvaluationScore
    comment: str = ""
    referrer: str = ZERO_ADDRESS
    parent_comment_id: int = 0
    tip_amount: int = 0

    @property
    def value(self) -> int:
        return self.tip_amount

    def validate(self) -> None:
        assert_non_negative(self.article_id, "Article ID")
        if int(self.score) not in (0, 1, 2):
            raise ValidationError("Score must be 0 (neutral), 1 (like), or 2 (dislike)")
        assert_valid_address(self.referrer, "referrer", allow_zero=True)
        assert_non_negative(self.parent_comment_id, "Parent comment ID")
        assert_non_negative(self.tip_amount, "Tip amount")

    def inner_args(self) -> List[Any]:
        return [
            self.article_id,
            int(self.score),
            self.comment,
            to_checksum_address(self.referrer),
            self.parent_comment_id,
        ]


@dataclass
class Follow(DelegatedAction):
    name: ClassVar[str] = "follow"
    selector: ClassVar[str] = "0x63c3cc16"
    inner_types: ClassVar[List[str]] = ["address", "bool"]

    target: str
    is_follow: bool = True

    def validate(self) -> None:
        assert_valid_address(self.target, "target address")

    def inner_args(self) -> List[Any]:
        return [to_checksum_address(self.target), self.is_follow]


@dataclass
class LikeComment(DelegatedAction):
    name: ClassVar[str] = "likeComment"
    selector: ClassVar[str] = "0xdffd40f2"
    inner_types: ClassVar[List[str]] = ["uint256", "uint256", "address", "address"]

    article_id: int
    comment_id: int
    commenter: str
    amount: int
    referrer: str = ZERO_ADDRESS

    @property
    def value(self) -> int:
        return self.amount

    def validate(self) -> None:
        assert_non_negative(self.article_id, "Article ID")
        assert_non_negative(self.comment_id, "Comment ID")
        assert_valid_address(self.commenter, "commenter address")
        assert_valid_address(self.referrer, "referrer", allow_zero=True)
        if self.amount <= 0:
            raise ValidationError("Like amount must be greater than 0")

    def inner_args(self) -> List[Any]:
        return [
            self.article_id,
            self.comment_id,
            to_checksum_address(self.commenter),
            to_checksum_address(self.referrer),
        ]


@dataclass
class Collect(DelegatedAction):
    name: ClassVar[str] = "collect"
    selector: ClassVar[str] = "0x8d3c100a"
    inner_types: ClassVar[List[str]] = ["uint256", "address"]

    article_id: int
    amount: int
    referrer: str = ZERO_ADDRESS

    @property
    def value(self) -> int:
        return self.amount

    def validate(self) -> None:
        assert_non_negative(self.article_id, "Article ID")
        assert_non_negative(self.amount, "Collect amount")
        assert_valid_address(self.referrer, "referrer", allow_zero=True)

    def inner_args(self) -> List[Any]:
        return [self.article_id, to_checksum_address(self.referrer)]


@dataclass
class EditArticle(DelegatedAction):
    name: ClassVar[str] = "editArticle"
    selector: ClassVar[str] = "0x461e2378"
    inner_types: ClassVar[List[str]] = ["(uint256,string,string,string,uint16)"]

    article_id: int
    original_author: str
    title: str
    summary: str
    category_id: int

    def validate(self) -> None:
        if self.article_id <= 0:
            raise ValidationError("Article ID must be positive")
        assert_bytes_limit(self.original_author, MAX_ORIGINAL_AUTHOR_BYTES, "Original author name")
        assert_bytes_limit(self.title, MAX_TITLE_BYTES, "Title")
        assert_bytes_limit(self.summary, MAX_SUMMARY_BYTES, "Summary")
        assert_uint(self.category_id, 16, "Category ID")

    def inner_args(self) -> List[Any]:
        return [(self.article_id, self.original_author, self.title, self.summary, self.category_id)]


ALL_ACTIONS = (Publish, Evaluate, Follow, LikeComment, Collect, EditArticle)

# Granted to every session key at registration
ALLOWED_SELECTORS: List[str] = [action.selector for action in ALL_ACTIONS]
