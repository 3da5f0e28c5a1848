"""
Domain models for blood-pressure tracking and AI advice.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; storage adapters map them to and from rows.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Gender(str, Enum):
    """Gender as captured at registration."""

    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class BPCategory(str, Enum):
    """AHA blood pressure categories."""

    NORMAL = "Normal"
    ELEVATED = "Elevated"
    STAGE_1 = "Stage 1"
    STAGE_2 = "Stage 2"
    CRISIS = "Crisis"


def classify_bp(systolic: int, diastolic: int) -> BPCategory:
    """Classify a blood pressure reading into a category."""
    if systolic > 180 or diastolic > 120:
        return BPCategory.CRISIS
    if systolic >= 140 or diastolic >= 90:
        return BPCategory.STAGE_2
    if systolic >= 130 or diastolic >= 80:
        return BPCategory.STAGE_1
    if systolic >= 120 and diastolic < 80:
        return BPCategory.ELEVATED
    return BPCategory.NORMAL


class UserProfile(BaseModel):
    """A registered user and the context used to personalise advice."""

    user_id: int = Field(ge=0, description="Caller-assigned unique identifier")
    name: str = Field(min_length=1, max_length=200)
    age: int = Field(ge=0, le=130)
    gender: Gender
    language: str = Field(default="English", min_length=1, max_length=50)
    problem: str = Field(default="none", max_length=2000, description="Free-text health note")


class Reading(BaseModel):
    """Individual blood pressure reading. Append-only once stored."""

    model_config = ConfigDict(frozen=True)

    reading_id: int | None = None
    user_id: int
    systolic: int = Field(ge=60, le=300)
    diastolic: int = Field(ge=30, le=200)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def category(self) -> BPCategory:
        return classify_bp(self.systolic, self.diastolic)


class InferenceSuccess(BaseModel):
    """The inference service produced advice text."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    text: str


class InferenceRateLimited(BaseModel):
    """The inference service explicitly signalled throttling."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["rate_limited"] = "rate_limited"
    detail: str = ""


class InferenceFailed(BaseModel):
    """Any other inference failure: network, timeout, bad response, bug."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    error: str
    error_type: str = "Exception"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "InferenceFailed":
        return cls(error=str(exc) or repr(exc), error_type=type(exc).__name__)


InferenceOutcome = InferenceSuccess | InferenceRateLimited | InferenceFailed


class CheckResult(BaseModel):
    """Outcome of a blood pressure check: the stored reading plus advice."""

    reading: Reading
    category: BPCategory
    advice: str


class AdviceReport(BaseModel):
    """An email-ready report of a user's reading history."""

    subject: str
    body_text: str
    body_html: str
    image: bytes | None = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
