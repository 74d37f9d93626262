"""Error taxonomy for the reminder engine."""


class ReminderError(Exception):
    """Base class for all reminder engine errors."""


class ValidationError(ReminderError):
    """Malformed reminder input. Raised before anything reaches the store."""


class StorageError(ReminderError):
    """Persistence failed. The operation was aborted and in-memory state is unchanged."""


class BackendSchedulingError(ReminderError):
    """The notification backend refused or failed to arm a trigger."""

    def __init__(self, message: str, trigger_id: str | None = None):
        super().__init__(message)
        self.trigger_id = trigger_id


class NotFoundError(ReminderError):
    """An operation referenced an unknown reminder or log id."""

    def __init__(self, kind: str, item_id: str):
        super().__init__(f"{kind} not found: {item_id}")
        self.kind = kind
        self.item_id = item_id
