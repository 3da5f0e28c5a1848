"""
Reading store protocol.

The tracker depends only on this structural interface; the SQLAlchemy adapter
in ``adapters.storage`` is the production implementation.
"""

from typing import Protocol

from bpcare.domain.errors import UserNotFoundError
from bpcare.domain.models import Reading, UserProfile
from bpcare.domain.result import Result


class ReadingStore(Protocol):
    """Persists user profiles and time-ordered blood pressure readings."""

    async def create_user(self, profile: UserProfile) -> UserProfile:
        """Insert a new user. Raises UserAlreadyExistsError if the id is taken."""
        ...

    async def get_user(self, user_id: int) -> Result[UserProfile, UserNotFoundError]:
        """Fetch a user profile, or an error Result when unknown."""
        ...

    async def insert_reading(self, user_id: int, systolic: int, diastolic: int) -> Reading:
        """Append a reading stamped with the insertion time."""
        ...

    async def record_visit(
        self,
        user_id: int,
        systolic: int,
        diastolic: int,
        problem: str | None = None,
        language: str | None = None,
    ) -> Reading:
        """
        Insert a reading and update the user's profile in one transaction.

        Raises UserNotFoundError for an unknown user and pydantic's
        ValidationError when the reading or the updated profile is invalid;
        in both cases nothing is written.
        """
        ...

    async def list_readings(self, user_id: int) -> list[Reading]:
        """All readings of a user, ascending by recorded time."""
        ...
