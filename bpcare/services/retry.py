"""
Retry/backoff controller for inference calls.

Only an explicit throttling signal (``InferenceRateLimited``) is retried.
Every other failure is returned on the first attempt. Each attempt takes a
fresh permit from the rate limiter; backoff sleeps happen after the permit is
released so other callers keep flowing through the limiter meanwhile.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from pydantic import BaseModel, Field

from bpcare.domain.models import (
    InferenceFailed,
    InferenceOutcome,
    InferenceRateLimited,
)
from bpcare.services.rate_limiter import InferenceRateLimiter

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy(BaseModel):
    """Bounded exponential backoff."""

    max_attempts: int = Field(default=3, gt=0, description="Attempts including the first")
    base_delay_seconds: float = Field(default=2.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)

    def delay_before(self, attempt: int) -> float:
        """Backoff to wait before ``attempt`` (2 for the first retry)."""
        return self.base_delay_seconds * self.multiplier ** (attempt - 2)


class RetryController:
    """Runs an inference operation under the limiter with rate-limit retries."""

    def __init__(
        self,
        limiter: InferenceRateLimiter,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.limiter = limiter
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.logger = logger.bind(component="retry_controller")

    async def run(self, operation: Callable[[], Awaitable[InferenceOutcome]]) -> InferenceOutcome:
        """
        Execute ``operation`` until it succeeds, fails hard, or attempts run out.

        Never raises for operation failures: exceptions are classified as
        ``InferenceFailed``. Cancellation is propagated.
        """
        outcome: InferenceOutcome = InferenceFailed(error="no attempt made")

        for attempt in range(1, self.policy.max_attempts + 1):
            if attempt > 1:
                delay = self.policy.delay_before(attempt)
                self.logger.info("inference_backoff", attempt=attempt, delay_seconds=delay)
                await self._sleep(delay)

            async with self.limiter.acquire() as call_number:
                try:
                    outcome = await operation()
                except Exception as e:
                    self.logger.exception("inference_operation_raised", error=str(e))
                    outcome = InferenceFailed.from_exception(e)

            if not isinstance(outcome, InferenceRateLimited):
                if isinstance(outcome, InferenceFailed):
                    self.logger.warning(
                        "inference_failed_not_retried",
                        attempt=attempt,
                        call_number=call_number,
                        error=outcome.error,
                        error_type=outcome.error_type,
                    )
                return outcome

            self.logger.warning(
                "inference_rate_limited",
                attempt=attempt,
                max_attempts=self.policy.max_attempts,
                call_number=call_number,
                detail=outcome.detail,
            )

        self.logger.error("inference_retries_exhausted", attempts=self.policy.max_attempts)
        return outcome
