"""
Blood pressure tracker service combining storage, AI advice and reporting.

This is the application surface the delivery layer talks to:
1. Register a user
2. Check blood pressure: record the visit, then generate advice
3. Show reading history
4. Email a report of the history with the latest advice

Every collaborator is built once per process in ``build_tracker`` and passed
in explicitly; nothing here is a module-level singleton.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime

import structlog

from adapters.email.backends import get_email_backend
from adapters.storage.sqlalchemy_store import SQLAlchemyReadingStore
from bpcare.config import AppConfig, get_config
from bpcare.domain.errors import UserNotFoundError
from bpcare.domain.models import CheckResult, Gender, Reading, UserProfile
from bpcare.services.advice_cache import AdviceCache
from bpcare.services.advice_generator import AdviceGenerator
from bpcare.services.inference import InferenceConfig, PydanticAIInferenceClient
from bpcare.services.rate_limiter import InferenceRateLimiter
from bpcare.services.report import Notifier, build_report
from bpcare.services.retry import RetryController, RetryPolicy
from bpcare.services.store import ReadingStore

logger = structlog.get_logger(__name__)


class BloodPressureTracker:
    """Orchestrates the user-facing operations of the tracker."""

    def __init__(
        self,
        store: ReadingStore,
        advice_generator: AdviceGenerator,
        notifier: Notifier,
    ) -> None:
        self.store = store
        self.advice_generator = advice_generator
        self.notifier = notifier
        self.logger = logger.bind(component="blood_pressure_tracker")

    async def register_user(self, profile: UserProfile) -> UserProfile:
        """Register a new user. Raises UserAlreadyExistsError for a taken id."""
        return await self.store.create_user(profile)

    async def get_user(self, user_id: int) -> UserProfile:
        return (await self.store.get_user(user_id)).unwrap()

    async def check_blood_pressure(
        self,
        user_id: int,
        systolic: int,
        diastolic: int,
        problem: str | None = None,
        language: str | None = None,
    ) -> CheckResult:
        """
        Record a reading (updating problem/language in the same transaction)
        and return it with AI advice.

        Raises UserNotFoundError for an unknown user and ValidationError for
        out-of-range values; advice failures are already folded into
        fallback text by the generator.
        """
        check_start = datetime.now(UTC)

        reading = await self.store.record_visit(
            user_id, systolic, diastolic, problem=problem, language=language
        )
        advice = await self.advice_generator.generate_advice(user_id, systolic, diastolic)

        self.logger.info(
            "blood_pressure_checked",
            user_id=user_id,
            category=reading.category.value,
            duration_seconds=round((datetime.now(UTC) - check_start).total_seconds(), 3),
        )
        return CheckResult(reading=reading, category=reading.category, advice=advice)

    async def get_history(self, user_id: int) -> list[Reading]:
        """Readings of a user, oldest first. Raises UserNotFoundError."""
        (await self.store.get_user(user_id)).unwrap()
        return await self.store.list_readings(user_id)

    async def email_report(
        self,
        user_id: int,
        destination: str,
        advice: str | None = None,
        chart_image: bytes | None = None,
    ) -> bool:
        """
        Send the user's history report. Returns False if delivery failed.

        ``advice`` is the text already shown to the user for the latest
        reading. Without it the cached advice for that reading is used if
        present; a report never triggers a new inference call.
        """
        result = await self.store.get_user(user_id)
        if result.is_err():
            raise UserNotFoundError(user_id)
        user = result.unwrap()

        readings = await self.store.list_readings(user_id)
        if advice is None and readings:
            latest = readings[-1]
            advice = await self.advice_generator.cached_advice(
                user_id, latest.systolic, latest.diastolic
            )

        report = build_report(user, readings, advice=advice, chart_image=chart_image)
        sent = await self.notifier.send(
            destination, report.subject, report.body_text, report.body_html, report.image
        )

        if sent.is_err():
            self.logger.error(
                "report_email_failed", user_id=user_id, error=str(sent.unwrap_err())
            )
            return False

        self.logger.info("report_emailed", user_id=user_id, readings=len(readings))
        return True


def build_tracker(config: AppConfig, store: ReadingStore) -> BloodPressureTracker:
    """Wire the tracker and its advice pipeline around a store."""
    cache = AdviceCache(
        ttl_seconds=config.advice.cache_ttl_seconds,
        max_entries=config.advice.cache_max_entries,
    )
    limiter = InferenceRateLimiter(min_interval_seconds=config.advice.min_call_interval_seconds)
    retry_controller = RetryController(
        limiter,
        RetryPolicy(
            max_attempts=config.advice.max_attempts,
            base_delay_seconds=config.advice.base_delay_seconds,
            multiplier=config.advice.backoff_multiplier,
        ),
    )
    client = PydanticAIInferenceClient(
        InferenceConfig(
            model_name=config.ai_provider.advice_model,
            temperature=config.ai_provider.temperature,
            max_tokens=config.ai_provider.max_tokens,
            api_key=config.ai_provider.openai_api_key,
            timeout_seconds=config.ai_provider.timeout_seconds,
        )
    )
    generator = AdviceGenerator(store, cache, retry_controller, client)
    notifier = get_email_backend(config.email)

    return BloodPressureTracker(store, generator, notifier)


async def _sweep_advice_cache(cache: AdviceCache, interval_seconds: float) -> None:
    """Periodically drop expired advice so idle fingerprints do not linger."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await cache.sweep()
        except Exception as e:
            logger.error("advice_cache_sweep_failed", error=str(e))


@asynccontextmanager
async def tracker_session(config: AppConfig | None = None) -> AsyncIterator[BloodPressureTracker]:
    """
    Build the tracker against the configured database for the lifetime of
    the block: the schema is created and a cache sweeper started on entry,
    the sweeper stopped and the engine disposed on exit.
    """
    config = config or get_config()
    store = SQLAlchemyReadingStore(config.database.url, echo=config.database.echo)
    sweeper: asyncio.Task[None] | None = None

    try:
        await store.create_schema()
        tracker = build_tracker(config, store)
        sweeper = asyncio.create_task(
            _sweep_advice_cache(
                tracker.advice_generator.cache, config.advice.cache_sweep_interval_seconds
            ),
            name="advice-cache-sweeper",
        )
        logger.info("tracker_session_started", database=config.database.url)

        yield tracker
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
        await store.close()
        logger.info("tracker_session_ended")


async def main() -> None:
    """Demonstrate a registration, two checks and an emailed report."""
    from bpcare.logging_config import configure_logging

    config = get_config()
    configure_logging(config.logging)

    async with tracker_session(config) as tracker:
        if (await tracker.store.get_user(1234)).is_err():
            await tracker.register_user(
                UserProfile(user_id=1234, name="Demo User", age=45, gender=Gender.MALE)
            )

        for systolic, diastolic in [(128, 82), (180, 110)]:
            check = await tracker.check_blood_pressure(1234, systolic, diastolic)
            print(f"\n🩺 {systolic}/{diastolic} mmHg -> {check.category.value}")
            print(f"Advice: {check.advice}")

        history = await tracker.get_history(1234)
        print(f"\n📈 {len(history)} readings on record")

        sent = await tracker.email_report(1234, "demo@example.com", advice=check.advice)
        print("✅ Report sent" if sent else "❌ Report failed")


if __name__ == "__main__":
    asyncio.run(main())
