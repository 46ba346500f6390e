"""Error taxonomy for event generation."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence


class SynthEventsError(Exception):
    pass


class ViolationCode(str, Enum):
    MISSING_FIELD = "missing_field"
    BAD_TYPE = "bad_type"
    EVENT_NAME = "event_name"
    NON_NUMERIC = "non_numeric"
    RESERVED_KEY = "reserved_key"
    BAD_VALUE = "bad_value"
    UNKNOWN_FIELD = "unknown_field"
    TIME_ORDER = "time_order"


class SchemaViolation(SynthEventsError):
    """A constructed event (or wire record) breaks the schema contract."""

    def __init__(self, code: ViolationCode, field: Optional[str], message: str):
        super().__init__(message)
        self.code = code
        self.field = field
        self.message = message

    def __repr__(self) -> str:
        return f"SchemaViolation({self.code.value}, field={self.field!r}, {self.message!r})"


class GenerationConfigError(SynthEventsError, ValueError):
    """Session configuration is unusable; raised before any event is produced."""


class GenerationFailure(SynthEventsError):
    """A user/time slot failed validation twice in a row."""

    def __init__(self, user_key: int, time, violations: Sequence[SchemaViolation]):
        self.user_key = user_key
        self.time = time
        self.violations: List[SchemaViolation] = list(violations)
        reasons = "; ".join(v.message for v in self.violations)
        super().__init__(f"could not generate a valid event for user {user_key} at {time}: {reasons}")


class ResourceExhaustion(SynthEventsError):
    """A distribution table or sampling pool cannot produce values."""


class SinkError(SynthEventsError):
    pass
