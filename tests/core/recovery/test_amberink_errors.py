"""
Tests for error classification and recovery strategies.
"""

import httpx
import pytest
from unittest.mock import AsyncMock

from amberink.core.recovery import (
    AmberInkError,
    ContractRevertedError,
    ErrorCode,
    GasEstimationError,
    InsufficientFundsError,
    NetworkError,
    RetryConfig,
    RetryStrategy,
    SessionKeyExpiredError,
    SignatureInvalidError,
    SpendingLimitExceededError,
    TimeoutError,
    TransactionRejectedError,
    UserRejectedError,
    WalletNotConnectedError,
    WrongNetworkError,
    classify_error,
    poll_until,
)


async def no_sleep(_delay):
    return None


# =============================================================================
# Error Classification Tests
# =============================================================================

class TestClassifyError:
    """Tests for mapping raw failures onto the typed hierarchy."""

    def test_passes_typed_errors_through(self):
        """Test that an already-classified error is returned unchanged."""
        error = InsufficientFundsError()
        assert classify_error(error) is error

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("MetaMask Tx Signature: User denied transaction signature.", UserRejectedError),
            ("insufficient funds for gas * price + value", InsufficientFundsError),
            ("gas required exceeds allowance (30000000)", GasEstimationError),
            ("nonce too low: next nonce 5, tx nonce 4", TransactionRejectedError),
            ("request timed out", TimeoutError),
            ("network connection lost", NetworkError),
            ("Please switch your wallet to the right chain", WrongNetworkError),
            ("Wrong network: please switch", WrongNetworkError),
            ("Wallet not connected to this network", WalletNotConnectedError),
        ],
    )
    def test_provider_messages(self, raw, expected):
        """Test that provider messages map to the right class."""
        assert isinstance(classify_error(RuntimeError(raw)), expected)

    def test_session_key_reverts_win_over_generic_revert(self):
        """Test that custom errors inside revert text are recognised first."""
        error = classify_error(RuntimeError("execution reverted: SpendingLimitExceeded()"))
        assert isinstance(error, SpendingLimitExceededError)

        error = classify_error(RuntimeError("execution reverted: SessionKeyNotActive()"))
        assert isinstance(error, SessionKeyExpiredError)

        error = classify_error(RuntimeError("execution reverted, data=0x8baa579f"))
        assert isinstance(error, SignatureInvalidError)

    def test_business_rule_reverts_carry_their_code(self):
        """Test that BlogHub business errors keep a specific code."""
        error = classify_error(RuntimeError("execution reverted: CannotSelfFollow()"))
        assert isinstance(error, ContractRevertedError)
        assert error.code == ErrorCode.CANNOT_SELF_FOLLOW

    def test_generic_revert_extracts_reason(self):
        """Test that a plain revert reason is surfaced."""
        error = classify_error(RuntimeError('transaction reverted reason="ArticleLocked"'))
        assert isinstance(error, ContractRevertedError)
        assert error.message == "ArticleLocked"

    def test_httpx_transport_errors(self):
        """Test that httpx failures become network and timeout errors."""
        assert isinstance(classify_error(httpx.ConnectError("refused")), NetworkError)
        assert isinstance(classify_error(httpx.ReadTimeout("slow")), TimeoutError)

    def test_unknown_error(self):
        """Test that unmatched errors keep the raw text in details."""
        error = classify_error(ValueError("something odd"))
        assert type(error) is AmberInkError
        assert error.code == ErrorCode.UNKNOWN_ERROR
        assert error.context.details["raw"] == "something odd"

    def test_fallback_safety(self):
        """Test which errors allow trying the owner wallet instead."""
        assert UserRejectedError().safe_to_fall_back
        assert NetworkError().safe_to_fall_back
        assert TimeoutError().safe_to_fall_back
        assert not ContractRevertedError().safe_to_fall_back
        assert not InsufficientFundsError().safe_to_fall_back
        assert not GasEstimationError().safe_to_fall_back
        assert not classify_error(RuntimeError("Wrong network: please switch")).safe_to_fall_back

    def test_no_fallback_once_broadcast(self):
        """Test that an error carrying a tx hash never allows a second attempt."""
        assert not TimeoutError(tx_hash="0xabc").safe_to_fall_back
        assert not NetworkError(tx_hash="0xabc").safe_to_fall_back

    def test_to_dict(self):
        """Test the serialised form used by the presentation layer."""
        error = InsufficientFundsError(details={"required": 5})
        data = error.to_dict()
        assert data["code"] == "insufficient_funds"
        assert data["suggested_action"] == "Fund the account and retry"
        assert data["details"] == {"required": 5}


# =============================================================================
# Retry Strategy Tests
# =============================================================================

class TestRetryStrategy:
    """Tests for read retries."""

    @pytest.mark.asyncio
    async def test_retries_recoverable_errors(self):
        """Test that network errors are retried until success."""
        operation = AsyncMock(side_effect=[httpx.ConnectError("down"), "ok"])
        strategy = RetryStrategy(RetryConfig(max_attempts=3, jitter=False), sleep=no_sleep)

        assert await strategy.execute(operation) == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_reverts(self):
        """Test that a revert fails on the first attempt."""
        operation = AsyncMock(side_effect=RuntimeError("execution reverted"))
        strategy = RetryStrategy(RetryConfig(max_attempts=3), sleep=no_sleep)

        with pytest.raises(ContractRevertedError):
            await strategy.execute(operation)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        """Test that the last error is raised once attempts run out."""
        operation = AsyncMock(side_effect=NetworkError())
        strategy = RetryStrategy(RetryConfig(max_attempts=2), sleep=no_sleep)

        with pytest.raises(NetworkError):
            await strategy.execute(operation)
        assert operation.await_count == 2

    def test_delay_is_capped(self):
        """Test exponential delay growth up to the cap."""
        config = RetryConfig(initial_delay_seconds=1.0, max_delay_seconds=5.0, jitter=False)
        assert config.get_delay(0) == 1.0
        assert config.get_delay(1) == 2.0
        assert config.get_delay(10) == 5.0


class TestPollUntil:
    """Tests for bounded re-reads."""

    @pytest.mark.asyncio
    async def test_stops_when_predicate_holds(self):
        """Test that polling stops at the first satisfying value."""
        read = AsyncMock(side_effect=[1, 5, 9])
        sleeps = []

        async def sleep(delay):
            sleeps.append(delay)

        value = await poll_until(read, lambda v: v >= 5, (1.5, 2.0, 3.0), sleep=sleep)
        assert value == 5
        assert sleeps == [1.5, 2.0]

    @pytest.mark.asyncio
    async def test_returns_last_value_when_unmet(self):
        """Test that the caller gets the last value read when the condition never holds."""
        read = AsyncMock(side_effect=[1, 2])
        value = await poll_until(read, lambda v: v >= 5, (1.5, 2.0), sleep=no_sleep)
        assert value == 2
