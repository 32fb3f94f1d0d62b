from enum import Enum


class TableNames(str, Enum):
    EVENTS = "events"
    OCCURRENCE_OVERRIDES = "occurrence_overrides"
    SIGNUPS = "signups"
    OCCURRENCE_LOCKS = "occurrence_locks"
