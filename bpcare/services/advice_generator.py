"""
Advice generation pipeline.

Flow for ``generate_advice(user_id, systolic, diastolic)``:
1. Fingerprint the request and look it up in the advice cache
2. On a miss, join an identical in-flight computation if one exists
3. Otherwise load the user, build the prompt and call the inference client
   through the retry controller (one limiter permit per attempt)
4. Cache successful advice; turn any failure into the fixed fallback text

Fallback text is never cached, so the next request gets a fresh attempt.
Inference failures never escape as exceptions; only an unknown user does.
"""

import asyncio

import structlog

from bpcare.domain.errors import UserNotFoundError
from bpcare.domain.models import (
    InferenceFailed,
    InferenceOutcome,
    InferenceRateLimited,
    InferenceSuccess,
    UserProfile,
)
from bpcare.services.advice_cache import AdviceCache, fingerprint
from bpcare.services.inference import InferenceClient, build_advice_prompt
from bpcare.services.retry import RetryController
from bpcare.services.store import ReadingStore

logger = structlog.get_logger(__name__)

FALLBACK_ADVICE = (
    "AI analysis temporarily unavailable due to rate limiting. Please try again later."
)


class AdviceGenerator:
    """
    Orchestrates cache lookup, request coalescing, rate-limited retrying
    inference and fallback.

    Constructed once per process; the cache and the retry controller's
    limiter are shared by every request it serves.
    """

    def __init__(
        self,
        store: ReadingStore,
        cache: AdviceCache,
        retry_controller: RetryController,
        client: InferenceClient,
    ) -> None:
        self.store = store
        self.cache = cache
        self.retry_controller = retry_controller
        self.client = client
        self.logger = logger.bind(component="advice_generator")
        self._inflight: dict[str, asyncio.Task[InferenceOutcome]] = {}

    async def generate_advice(self, user_id: int, systolic: int, diastolic: int) -> str:
        """
        Return advice for a reading. Always resolves to a string.

        Raises:
            UserNotFoundError: the user is unknown, so no prompt can be built.
        """
        key = fingerprint(user_id, systolic, diastolic)

        cached = await self._cache_get(key)
        if cached is not None:
            self.logger.info("advice_cache_hit", user_id=user_id)
            return cached

        task = self._inflight.get(key)
        if task is None:
            try:
                user = await self._load_user(user_id)
            except UserNotFoundError:
                raise
            except Exception as e:
                self.logger.error("advice_context_unavailable", user_id=user_id, error=str(e))
                return FALLBACK_ADVICE

            # another request may have started the same computation meanwhile
            task = self._inflight.get(key)
            if task is None:
                task = self._start(key, user, systolic, diastolic)
        else:
            self.logger.info("advice_request_coalesced", user_id=user_id)

        try:
            outcome = await asyncio.shield(task)
        except Exception as e:
            self.logger.exception("advice_generation_crashed", user_id=user_id, error=str(e))
            return FALLBACK_ADVICE

        if isinstance(outcome, InferenceSuccess):
            return outcome.text
        return FALLBACK_ADVICE

    async def cached_advice(self, user_id: int, systolic: int, diastolic: int) -> str | None:
        """Cached advice for a reading, or None. Never calls the model."""
        return await self._cache_get(fingerprint(user_id, systolic, diastolic))

    def _start(
        self, key: str, user: UserProfile, systolic: int, diastolic: int
    ) -> "asyncio.Task[InferenceOutcome]":
        task = asyncio.create_task(
            self._compute(key, user, systolic, diastolic),
            name=f"advice-{user.user_id}-{systolic}-{diastolic}",
        )
        self._inflight[key] = task

        def _forget(done: "asyncio.Task[InferenceOutcome]") -> None:
            if self._inflight.get(key) is done:
                del self._inflight[key]

        task.add_done_callback(_forget)
        return task

    async def _compute(
        self, key: str, user: UserProfile, systolic: int, diastolic: int
    ) -> InferenceOutcome:
        prompt = build_advice_prompt(user, systolic, diastolic)
        self.logger.info(
            "advice_inference_started",
            user_id=user.user_id,
            systolic=systolic,
            diastolic=diastolic,
        )

        outcome = await self.retry_controller.run(lambda: self.client.complete(prompt))

        if isinstance(outcome, InferenceSuccess):
            await self._cache_put(key, outcome.text)
            self.logger.info("advice_generated", user_id=user.user_id)
        elif isinstance(outcome, InferenceRateLimited):
            self.logger.warning("advice_fallback_rate_limited", user_id=user.user_id)
        elif isinstance(outcome, InferenceFailed):
            self.logger.warning(
                "advice_fallback_failed", user_id=user.user_id, error_type=outcome.error_type
            )
        return outcome

    async def _load_user(self, user_id: int) -> UserProfile:
        result = await self.store.get_user(user_id)
        if result.is_err():
            self.logger.warning("advice_user_not_found", user_id=user_id)
            raise UserNotFoundError(user_id)
        return result.unwrap()

    async def _cache_get(self, key: str) -> str | None:
        try:
            return await self.cache.get(key)
        except Exception as e:
            self.logger.error("advice_cache_read_failed", error=str(e))
            return None

    async def _cache_put(self, key: str, text: str) -> None:
        try:
            await self.cache.put(key, text)
        except Exception as e:
            self.logger.error("advice_cache_write_failed", error=str(e))
