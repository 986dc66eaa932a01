"""Retry policy for catalog fetches, expressed as a small state machine.

Each attempt ends in one of three steps:

- ``Success``: the provider returned a result without error.
- ``Retry``: a transient error (timeout, 429, 5xx, connection failure)
  with attempts left; wait ``delay`` seconds, then try again.
- ``Fatal``: a non-retryable error (other 4xx, malformed payload) or the
  attempt budget is spent.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .models import ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_DELAYS = (0.5, 1.0, 2.0)  # seconds

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Success:
    attempt: int
    result: ProviderResult


@dataclass(frozen=True)
class Retry:
    attempt: int
    delay: float
    result: ProviderResult

    @property
    def next_attempt(self) -> int:
        return self.attempt + 1


@dataclass(frozen=True)
class Fatal:
    attempt: int
    result: ProviderResult


Step = Success | Retry | Fatal


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with fixed base delays."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delays: tuple[float, ...] = DEFAULT_BACKOFF_DELAYS

    def delay_after(self, attempt: int) -> float:
        """Delay to wait after failed attempt ``attempt`` (1-based)."""
        index = attempt - 1
        if index < len(self.delays):
            return self.delays[index]
        # Past the table: keep doubling the last delay
        return self.delays[-1] * (2 ** (index - len(self.delays) + 1))

    def step(self, attempt: int, result: ProviderResult) -> Step:
        """Classify the outcome of one attempt."""
        if result.error is None:
            return Success(attempt, result)
        if not result.error.retryable or attempt >= self.max_attempts:
            return Fatal(attempt, result)
        return Retry(attempt, self.delay_after(attempt), result)

    async def run(
        self,
        fetch: Callable[[int], Awaitable[ProviderResult]],
        sleep: Sleep = asyncio.sleep,
        label: str = "",
    ) -> Success | Fatal:
        """Drive ``fetch(attempt)`` until it succeeds or fails for good."""
        attempt = 1
        while True:
            step = self.step(attempt, await fetch(attempt))
            if not isinstance(step, Retry):
                if isinstance(step, Fatal):
                    logger.warning(
                        f"{label}: giving up after attempt {attempt}/{self.max_attempts}: "
                        f"{step.result.error}"
                    )
                return step
            logger.warning(
                f"{label}: attempt {attempt}/{self.max_attempts} failed: "
                f"{step.result.error}. Retrying in {step.delay:.1f}s..."
            )
            await sleep(step.delay)
            attempt = step.next_attempt
