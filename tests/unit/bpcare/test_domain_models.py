"""Tests for domain models, classification and the Result type."""

from datetime import UTC, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from bpcare.domain.errors import UserNotFoundError
from bpcare.domain.models import (
    BPCategory,
    Gender,
    InferenceFailed,
    Reading,
    UserProfile,
    classify_bp,
)
from bpcare.domain.result import Result


@pytest.mark.parametrize(
    ("systolic", "diastolic", "expected"),
    [
        (110, 70, BPCategory.NORMAL),
        (119, 79, BPCategory.NORMAL),
        (120, 75, BPCategory.ELEVATED),
        (129, 79, BPCategory.ELEVATED),
        (130, 70, BPCategory.STAGE_1),
        (118, 85, BPCategory.STAGE_1),
        (140, 85, BPCategory.STAGE_2),
        (125, 95, BPCategory.STAGE_2),
        (180, 120, BPCategory.STAGE_2),
        (181, 90, BPCategory.CRISIS),
        (150, 121, BPCategory.CRISIS),
    ],
)
def test_classify_bp(systolic: int, diastolic: int, expected: BPCategory) -> None:
    assert classify_bp(systolic, diastolic) == expected


@given(systolic=st.integers(min_value=181, max_value=300), diastolic=st.integers(30, 200))
def test_very_high_systolic_is_always_crisis(systolic: int, diastolic: int) -> None:
    assert classify_bp(systolic, diastolic) == BPCategory.CRISIS


@given(systolic=st.integers(60, 300), diastolic=st.integers(30, 200))
def test_classification_is_total(systolic: int, diastolic: int) -> None:
    assert classify_bp(systolic, diastolic) in set(BPCategory)


class TestUserProfile:
    def test_defaults(self) -> None:
        user = UserProfile(user_id=1, name="Sam", age=30, gender=Gender.OTHER)

        assert user.language == "English"
        assert user.problem == "none"

    def test_gender_from_string(self) -> None:
        user = UserProfile(user_id=1, name="Sam", age=30, gender="Female")  # type: ignore[arg-type]
        assert user.gender is Gender.FEMALE

    @pytest.mark.parametrize(
        "overrides",
        [{"age": -1}, {"age": 131}, {"name": ""}, {"user_id": -5}, {"gender": "unknown"}],
    )
    def test_invalid_profile_rejected(self, overrides: dict) -> None:
        fields = {"user_id": 1, "name": "Sam", "age": 30, "gender": "Male"} | overrides
        with pytest.raises(ValidationError):
            UserProfile(**fields)


class TestReading:
    def test_category_property(self) -> None:
        reading = Reading(user_id=1, systolic=182, diastolic=100)
        assert reading.category == BPCategory.CRISIS

    def test_recorded_at_defaults_to_utc_now(self) -> None:
        before = datetime.now(UTC)
        reading = Reading(user_id=1, systolic=120, diastolic=80)

        assert reading.recorded_at.tzinfo is not None
        assert reading.recorded_at >= before

    def test_is_immutable(self) -> None:
        reading = Reading(user_id=1, systolic=120, diastolic=80)
        with pytest.raises(ValidationError):
            reading.systolic = 130  # type: ignore[misc]

    @pytest.mark.parametrize(
        ("systolic", "diastolic"), [(59, 80), (301, 80), (120, 29), (120, 201)]
    )
    def test_out_of_range_rejected(self, systolic: int, diastolic: int) -> None:
        with pytest.raises(ValidationError):
            Reading(user_id=1, systolic=systolic, diastolic=diastolic)


def test_inference_failed_from_exception() -> None:
    failed = InferenceFailed.from_exception(TimeoutError())

    assert failed.error_type == "TimeoutError"
    assert failed.error  # falls back to repr for empty messages


class TestResult:
    def test_ok(self) -> None:
        result: Result[int, ValueError] = Result.ok(42)

        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == 42

    def test_ok_with_none_value(self) -> None:
        result: Result[None, ValueError] = Result.ok(None)

        assert result.is_ok()
        assert result.unwrap() is None

    def test_err_unwrap_raises_the_error(self) -> None:
        result: Result[int, UserNotFoundError] = Result.err(UserNotFoundError(7))

        assert result.is_err()
        with pytest.raises(UserNotFoundError) as exc_info:
            result.unwrap()
        assert exc_info.value.user_id == 7

    def test_unwrap_or(self) -> None:
        assert Result.err(ValueError("x")).unwrap_or(0) == 0
        assert Result.ok(5).unwrap_or(0) == 5

    def test_unwrap_err_on_ok_raises(self) -> None:
        with pytest.raises(ValueError):
            Result.ok(1).unwrap_err()

    def test_cannot_hold_both(self) -> None:
        with pytest.raises(ValueError):
            Result(value=1, error=ValueError("x"))
