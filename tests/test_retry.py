"""Tests for the bounded retry loop."""

from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError

from deep_research.retry import RetryPolicy, RetryStatus, retry_until


class TestRetryPolicy:
    """Tests for RetryPolicy backoff computation."""

    def test__delay_for__grows_exponentially(self) -> None:
        policy = RetryPolicy(max_attempts=5, backoff_seconds=1.0, backoff_multiplier=2.0, max_backoff_seconds=60.0)
        assert [policy.delay_for(a) for a in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test__delay_for__capped_at_max(self) -> None:
        policy = RetryPolicy(backoff_seconds=10.0, backoff_multiplier=3.0, max_backoff_seconds=15.0)
        assert policy.delay_for(3) == 15.0

    def test__cap_below_base__raises_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(backoff_seconds=10.0, max_backoff_seconds=1.0)

    def test__zero_attempts__raises_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=0)


class TestRetryUntil:
    """Tests for retry_until."""

    @pytest.mark.asyncio
    async def test__accepted_first_value__single_attempt(self) -> None:
        operation = AsyncMock(return_value="ok")

        outcome = await retry_until(operation, lambda v: v == "ok", RetryPolicy(backoff_seconds=0, max_backoff_seconds=0))

        assert outcome.succeeded
        assert outcome.attempts == 1
        operation.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test__accepted_after_retries__reports_attempt_count(self) -> None:
        operation = AsyncMock(side_effect=["bad", "bad", "good"])

        outcome = await retry_until(
            operation, lambda v: v == "good", RetryPolicy(max_attempts=5, backoff_seconds=0, max_backoff_seconds=0)
        )

        assert outcome.status is RetryStatus.SUCCESS
        assert outcome.value == "good"
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test__exhausted__returns_last_value(self) -> None:
        operation = AsyncMock(side_effect=["first", "second", "third"])

        outcome = await retry_until(
            operation, lambda v: False, RetryPolicy(max_attempts=3, backoff_seconds=0, max_backoff_seconds=0)
        )

        assert outcome.status is RetryStatus.EXHAUSTED
        assert not outcome.succeeded
        assert outcome.value == "third"
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test__backoff__sleeps_between_attempts(self) -> None:
        operation = AsyncMock(side_effect=[1, 2, 3])
        policy = RetryPolicy(max_attempts=3, backoff_seconds=0.5, backoff_multiplier=2.0, max_backoff_seconds=10.0)

        with patch("deep_research.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry_until(operation, lambda v: False, policy)

        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test__operation_exception__propagates(self) -> None:
        operation = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            await retry_until(operation, lambda v: True, RetryPolicy())
