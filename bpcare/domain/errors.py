"""Exception hierarchy for the blood-pressure tracker."""


class BPCareError(Exception):
    """Base class for all tracker errors."""


class UserNotFoundError(BPCareError):
    """No user is registered under the requested identifier."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class UserAlreadyExistsError(BPCareError):
    """Registration attempted with an identifier that is already taken."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} already exists")
        self.user_id = user_id


class StorageError(BPCareError):
    """The reading store could not complete an operation."""


class NotifierError(BPCareError):
    """A report could not be delivered."""
