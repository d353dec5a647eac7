"""Error taxonomy of the reservation engine.

ValidationError, CapacityExceededError, NotFoundError and
InvalidTransitionError are meant for the caller. AuthorizationError and
SchemaDriftError trigger a retry and only surface when the retry fails too.
NotificationDeliveryError is always recovered where it is raised.
"""


class SchedulingError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(SchedulingError):
    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class CapacityExceededError(SchedulingError):
    pass


class NotFoundError(SchedulingError):
    pass


class AuthorizationError(SchedulingError):
    pass


class InvalidTransitionError(SchedulingError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move reservation from {current} to {target}")
        self.current = current
        self.target = target


class SchemaDriftError(SchedulingError):
    """A referenced column is absent in this deployment's schema."""

    def __init__(self, table: str, columns):
        self.table = table
        self.columns = tuple(columns)
        super().__init__(f"{table} is missing column(s): {', '.join(self.columns)}")


class NotificationDeliveryError(SchedulingError):
    pass


class BackendUnavailableError(SchedulingError):
    pass


class ConfirmationError(SchedulingError):
    """Neither the direct update nor the backend route could change the status."""
