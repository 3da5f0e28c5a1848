"""
Reading store backed by SQLAlchemy's asyncio extension.

Each public operation is a sequence of awaited statements in its own session.
``record_visit`` wraps the reading insert and the profile update in one
transaction with explicit commit and rollback. Driver-level failures surface
as ``StorageError``; an unknown user is an expected outcome and comes back as
an error ``Result`` from ``get_user``.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError
from sqlalchemy import event, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from adapters.storage.models import Base, ReadingRecord, UserRecord, as_utc
from bpcare.domain.errors import StorageError, UserAlreadyExistsError, UserNotFoundError
from bpcare.domain.models import Reading, UserProfile
from bpcare.domain.result import Result

logger = structlog.get_logger(__name__)

TIMESTAMP_STEP = timedelta(microseconds=1)


def _is_memory_sqlite(url: str) -> bool:
    if not url.startswith("sqlite"):
        return False
    database = url.split("://", 1)[-1]
    return database in ("", "/") or ":memory:" in database


def _engine_options(url: str) -> dict[str, Any]:
    if _is_memory_sqlite(url):
        # one shared connection, otherwise every checkout sees an empty database
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class SQLAlchemyReadingStore:
    """Users and readings in a relational database."""

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, **_engine_options(url))
        if url.startswith("sqlite"):
            _enable_sqlite_foreign_keys(self.engine)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        self.logger = logger.bind(component="reading_store")

    async def create_schema(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not create schema: {e}") from e
        self.logger.info("schema_ready")

    async def close(self) -> None:
        await self.engine.dispose()

    async def create_user(self, profile: UserProfile) -> UserProfile:
        async with self.session_factory() as session:
            try:
                if await session.get(UserRecord, profile.user_id) is not None:
                    raise UserAlreadyExistsError(profile.user_id)
                session.add(
                    UserRecord(
                        id=profile.user_id,
                        name=profile.name,
                        age=profile.age,
                        gender=profile.gender.value,
                        language=profile.language,
                        problem=profile.problem,
                    )
                )
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise UserAlreadyExistsError(profile.user_id) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageError(f"Could not create user {profile.user_id}: {e}") from e

        self.logger.info("user_registered", user_id=profile.user_id)
        return profile

    async def get_user(self, user_id: int) -> Result[UserProfile, UserNotFoundError]:
        try:
            async with self.session_factory() as session:
                record = await session.get(UserRecord, user_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load user {user_id}: {e}") from e

        if record is None:
            return Result.err(UserNotFoundError(user_id))
        return Result.ok(record.to_domain())

    async def insert_reading(self, user_id: int, systolic: int, diastolic: int) -> Reading:
        return await self.record_visit(user_id, systolic, diastolic)

    async def record_visit(
        self,
        user_id: int,
        systolic: int,
        diastolic: int,
        problem: str | None = None,
        language: str | None = None,
    ) -> Reading:
        # validates the values before anything touches the database
        Reading(user_id=user_id, systolic=systolic, diastolic=diastolic)

        async with self.session_factory() as session:
            try:
                user = await session.get(UserRecord, user_id)
                if user is None:
                    raise UserNotFoundError(user_id)

                if problem is not None or language is not None:
                    updates = {
                        field: value
                        for field, value in (("problem", problem), ("language", language))
                        if value is not None
                    }
                    # the stored row must stay loadable as a UserProfile
                    profile = UserProfile.model_validate(
                        {**user.to_domain().model_dump(), **updates}
                    )
                    user.problem = profile.problem
                    user.language = profile.language
                    user.updated_at = datetime.now(UTC)

                record = ReadingRecord(
                    user_id=user_id,
                    systolic=systolic,
                    diastolic=diastolic,
                    recorded_at=await self._next_timestamp(session, user_id),
                )
                session.add(record)
                await session.flush()
                reading = record.to_domain()
                await session.commit()
            except (UserNotFoundError, ValidationError):
                await session.rollback()
                raise
            except SQLAlchemyError as e:
                await session.rollback()
                self.logger.error("visit_rolled_back", user_id=user_id, error=str(e))
                raise StorageError(f"Could not record reading for user {user_id}: {e}") from e

        self.logger.info(
            "reading_recorded",
            user_id=user_id,
            reading_id=reading.reading_id,
            profile_updated=problem is not None or language is not None,
        )
        return reading

    async def list_readings(self, user_id: int) -> list[Reading]:
        stmt = (
            select(ReadingRecord)
            .where(ReadingRecord.user_id == user_id)
            .order_by(ReadingRecord.recorded_at, ReadingRecord.id)
        )
        try:
            async with self.session_factory() as session:
                records = (await session.scalars(stmt)).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not list readings for user {user_id}: {e}") from e
        return [r.to_domain() for r in records]

    async def delete_user(self, user_id: int) -> bool:
        """Delete a user and, by cascade, all of their readings."""
        async with self.session_factory() as session:
            try:
                user = await session.get(UserRecord, user_id)
                if user is None:
                    return False
                await session.delete(user)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageError(f"Could not delete user {user_id}: {e}") from e

        self.logger.info("user_deleted", user_id=user_id)
        return True

    async def _next_timestamp(self, session: AsyncSession, user_id: int) -> datetime:
        """Insertion time, nudged forward so a user's readings strictly increase."""
        stmt = (
            select(ReadingRecord.recorded_at)
            .where(ReadingRecord.user_id == user_id)
            .order_by(ReadingRecord.recorded_at.desc())
            .limit(1)
        )
        last = await session.scalar(stmt)
        now = datetime.now(UTC)
        if last is not None and now <= as_utc(last):
            return as_utc(last) + TIMESTAMP_STEP
        return now
