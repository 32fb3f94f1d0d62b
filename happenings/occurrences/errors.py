"""Errors raised by the occurrence engine."""


class InvalidDateError(ValueError):
    """Raised when a date key is malformed or date arithmetic gets bad input."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Invalid date key: {value!r}. Expected YYYY-MM-DD.")


class InvalidRecurrenceDescriptor(ValueError):
    """Raised when a recurrence rule cannot be interpreted.

    Expansion batches catch this per event: the event shows no occurrences
    and every other event in the batch is unaffected.
    """

    def __init__(self, rule: str | None, reason: str) -> None:
        self.rule = rule
        self.reason = reason
        super().__init__(f"Invalid recurrence rule {rule!r}: {reason}")


class UnknownOccurrenceError(ValueError):
    """Raised when an event does not occur on the requested date key."""

    def __init__(self, event_id: object, date_key: str) -> None:
        self.event_id = event_id
        self.date_key = date_key
        super().__init__(f"Event {event_id} has no occurrence on {date_key}")


class OccurrenceCancelledError(Exception):
    """Raised when a write targets a cancelled occurrence."""

    def __init__(self, event_id: object, date_key: str) -> None:
        self.event_id = event_id
        self.date_key = date_key
        super().__init__(f"This occurrence ({date_key}) has been cancelled.")


class InvalidOverridePatch(ValueError):
    """Raised when an override patch value has the wrong type or format."""

    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Invalid override value for {field}: {value!r}")
