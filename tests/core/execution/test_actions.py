"""
Tests for delegatable actions and their ABI encoding.
"""

import pytest
from eth_abi import decode

from amberink.constants import ZERO_ADDRESS
from amberink.core.execution.actions import (
    ALLOWED_SELECTORS,
    Collect,
    EditArticle,
    Evaluate,
    EvaluationScore,
    Follow,
    LikeComment,
    Publish,
    Visibility,
)
from amberink.core.execution.contracts import (
    SessionKeyManagerContract,
    encode_delegated_call,
    function_selector,
)
from amberink.core.recovery.errors import ValidationError

TARGET = "0x" + "ab" * 20


def publish(**overrides) -> Publish:
    params = dict(arweave_id="manifest-id", category_id=3, royalty_bps=500, title="Hello")
    params.update(overrides)
    return Publish(**params)


class TestValidation:
    def test_valid_publish(self):
        publish().validate()

    @pytest.mark.parametrize(
        "overrides",
        [
            {"arweave_id": ""},
            {"royalty_bps": 10_001},
            {"royalty_bps": -1},
            {"category_id": 2 ** 16},
            {"title": "x" * 129},
            {"summary": "é" * 257},
            {"original_author": "a" * 65},
            {"true_author": "0x1234"},
            {"collect_price": 2 ** 96},
            {"max_collect_supply": -1},
            {"visibility": 3},
        ],
    )
    def test_invalid_publish(self, overrides):
        with pytest.raises(ValidationError):
            publish(**overrides).validate()

    def test_byte_limits_count_utf8_bytes(self):
        """Test that limits are measured in encoded bytes, not characters."""
        publish(title="é" * 64).validate()
        with pytest.raises(ValidationError):
            publish(title="é" * 65).validate()

    def test_evaluate_rejects_unknown_score(self):
        with pytest.raises(ValidationError):
            Evaluate(article_id=1, score=3).validate()

    def test_follow_rejects_zero_target(self):
        with pytest.raises(ValidationError):
            Follow(target=ZERO_ADDRESS).validate()

    def test_like_comment_needs_positive_amount(self):
        with pytest.raises(ValidationError):
            LikeComment(article_id=1, comment_id=2, commenter=TARGET, amount=0).validate()

    def test_edit_article_needs_positive_id(self):
        with pytest.raises(ValidationError):
            EditArticle(article_id=0, original_author="", title="t", summary="", category_id=1).validate()


class TestValues:
    def test_value_carrying_actions(self):
        assert Evaluate(article_id=1, score=EvaluationScore.LIKE, tip_amount=7).value == 7
        assert LikeComment(article_id=1, comment_id=2, commenter=TARGET, amount=9).value == 9
        assert Collect(article_id=1, amount=11).value == 11

    def test_valueless_actions(self):
        assert publish().value == 0
        assert Follow(target=TARGET).value == 0


class TestEncoding:
    def test_function_selector(self):
        assert function_selector("transfer(address,uint256)") == "0xa9059cbb"

    def test_every_action_is_delegatable(self):
        assert ALLOWED_SELECTORS == [
            "0x2801f5df",
            "0xff1f090a",
            "0x63c3cc16",
            "0xdffd40f2",
            "0x8d3c100a",
            "0x461e2378",
        ]

    def test_call_data_starts_with_selector(self):
        data = Follow(target=TARGET, is_follow=False).encode_call_data()

        assert data.startswith(Follow.selector)
        target, is_follow = decode(["address", "bool"], bytes.fromhex(data[10:]))
        assert target.lower() == TARGET
        assert is_follow is False

    def test_publish_params_are_a_tuple(self):
        data = publish(visibility=Visibility.ENCRYPTED).encode_call_data()

        (params,) = decode(Publish.inner_types, bytes.fromhex(data[10:]))
        assert params[0] == "manifest-id"
        assert params[1] == 3
        assert params[-1] == 2

    def test_delegated_call_wraps_inner_arguments(self):
        """Test the <action>WithSessionKey layout: owner, key, inner args, deadline, signature."""
        owner = "0x" + "01" * 20
        session_key = "0x" + "02" * 20
        action = Follow(target=TARGET)
        data = encode_delegated_call(
            action.name,
            action.inner_types,
            action.inner_args(),
            owner,
            session_key,
            1234,
            "0x" + "ee" * 65,
        )

        expected = function_selector("followWithSessionKey(address,address,address,bool,uint256,bytes)")
        assert data.startswith(expected)
        decoded = decode(
            ["address", "address", "address", "bool", "uint256", "bytes"],
            bytes.fromhex(data[10:]),
        )
        assert decoded[0].lower() == owner
        assert decoded[1].lower() == session_key
        assert decoded[4] == 1234
        assert decoded[5] == bytes.fromhex("ee" * 65)


class TestSessionKeyManagerCallData:
    def test_register_grants_selectors(self):
        contract = SessionKeyManagerContract(chain=None)
        data = contract.encode_register(TARGET, 10, 20, TARGET, ALLOWED_SELECTORS, 5)

        assert data.startswith(function_selector(SessionKeyManagerContract.REGISTER_SIGNATURE))
        key, after, until, target, selectors, limit = decode(
            ["address", "uint48", "uint48", "address", "bytes4[]", "uint256"],
            bytes.fromhex(data[10:]),
        )
        assert (after, until, limit) == (10, 20, 5)
        assert ["0x" + s.hex() for s in selectors] == ALLOWED_SELECTORS

    def test_revoke(self):
        contract = SessionKeyManagerContract(chain=None)
        data = contract.encode_revoke(TARGET)
        assert data.startswith(function_selector("revokeSessionKey(address)"))
