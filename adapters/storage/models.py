"""
SQLAlchemy table mappings for users and blood pressure readings.

Readings belong to exactly one user and are removed only when the owning
user is deleted (ON DELETE CASCADE).
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from bpcare.domain.models import Gender, Reading, UserProfile


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    pass


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[str] = mapped_column(String(10), nullable=False)
    language: Mapped[str] = mapped_column(String(50), nullable=False, default="English")
    problem: Mapped[str] = mapped_column(Text, nullable=False, default="none")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    readings: Mapped[list["ReadingRecord"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_domain(self) -> UserProfile:
        return UserProfile(
            user_id=self.id,
            name=self.name,
            age=self.age,
            gender=Gender(self.gender),
            language=self.language,
            problem=self.problem,
        )

    def __repr__(self) -> str:
        return f"<UserRecord {self.id}: {self.name}>"


class ReadingRecord(Base):
    __tablename__ = "blood_pressure_readings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    systolic: Mapped[int] = mapped_column(Integer, nullable=False)
    diastolic: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    user: Mapped[UserRecord] = relationship(back_populates="readings")

    __table_args__ = (Index("ix_readings_user_recorded", "user_id", "recorded_at"),)

    def to_domain(self) -> Reading:
        return Reading(
            reading_id=self.id,
            user_id=self.user_id,
            systolic=self.systolic,
            diastolic=self.diastolic,
            recorded_at=as_utc(self.recorded_at),
        )

    def __repr__(self) -> str:
        return f"<ReadingRecord {self.id}: {self.systolic}/{self.diastolic}>"
