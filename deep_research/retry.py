"""Bounded retry policy with exponential backoff."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel, Field, model_validator

from deep_research.logging import get_logger

log = get_logger("deep_research.retry")

T = TypeVar("T")


class RetryStatus(str, Enum):
    """How a retried operation ended."""

    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class RetryPolicy(BaseModel):
    """Maximum attempts plus the backoff slept between them."""

    max_attempts: int = Field(default=3, ge=1, description="Total attempts including the first one")
    backoff_seconds: float = Field(default=2.0, ge=0, description="Delay after the first failed attempt")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor applied per attempt")
    max_backoff_seconds: float = Field(default=30.0, ge=0, description="Upper bound for a single delay")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _cap_covers_base(self) -> "RetryPolicy":
        if self.max_backoff_seconds < self.backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= backoff_seconds")
        return self

    def delay_for(self, attempt: int) -> float:
        """Delay to sleep after ``attempt`` (1-based) failed."""
        delay = self.backoff_seconds * self.backoff_multiplier ** (attempt - 1)
        return min(delay, self.max_backoff_seconds)


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Tagged result of ``retry_until``; ``value`` is the last value produced."""

    status: RetryStatus
    value: T
    attempts: int

    @property
    def succeeded(self) -> bool:
        return self.status is RetryStatus.SUCCESS


async def retry_until(
    operation: Callable[[int], Awaitable[T]],
    accept: Callable[[T], bool],
    policy: RetryPolicy,
    *,
    label: str = "operation",
) -> RetryOutcome[T]:
    """Run ``operation(attempt)`` until ``accept`` approves its value.

    Exceptions raised by ``operation`` propagate; callers that must not fail
    convert errors into values before they reach this loop.
    """
    attempt = 1
    while True:
        value = await operation(attempt)
        if accept(value):
            return RetryOutcome(status=RetryStatus.SUCCESS, value=value, attempts=attempt)
        if attempt >= policy.max_attempts:
            log.warning("retry.exhausted", label=label, attempts=attempt)
            return RetryOutcome(status=RetryStatus.EXHAUSTED, value=value, attempts=attempt)

        delay = policy.delay_for(attempt)
        log.info("retry.scheduled", label=label, attempt=attempt, delay_s=delay)
        if delay > 0:
            await asyncio.sleep(delay)
        attempt += 1
