"""
Field contracts for the ingestion event schema.

Reserved fields carry the `#` sentinel on the wire and have fixed meaning
(identity, time, type, preset device/geo attributes). Everything else is a
custom property whose legal value types depend on the event type.
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Union


RESERVED_PREFIX = "#"


class EventType(str, Enum):
    TRACK = "track"
    USER_SET = "user_set"
    USER_ADD = "user_add"


class ValueConstraint(str, Enum):
    ANY_SCALAR = "any_scalar"  # string, number, boolean or null
    NUMERIC = "numeric"


# -----------------------------
# Reserved envelope
# -----------------------------

IDENTITY_FIELDS = ("account_id", "distinct_id", "time", "type")

# preset name -> expected python type on the wire (numbers.Real: any finite number)
PRESET_FIELDS: Dict[str, type] = {
    "ip": str,
    "country": str,
    "province": str,
    "city": str,
    "os": str,
    "os_version": str,
    "model": str,
    "device_id": str,
    "carrier": str,
    "network_type": str,
    "app_version": str,
    "manufacturer": str,
    "screen_width": numbers.Real,
    "screen_height": numbers.Real,
    "uuid": str,
}

NUMERIC_PRESET_FIELDS = frozenset(name for name, kind in PRESET_FIELDS.items() if kind is numbers.Real)


def reserved_name(field: str) -> str:
    return RESERVED_PREFIX + field


def field_name(reserved: str) -> str:
    if not reserved.startswith(RESERVED_PREFIX):
        raise ValueError(f"not a reserved field name: {reserved!r}")
    return reserved[len(RESERVED_PREFIX):]


def is_reserved(name: str) -> bool:
    """True for any key in the `#` namespace, known to the schema or not."""
    return name.startswith(RESERVED_PREFIX)


ALL_RESERVED: FrozenSet[str] = frozenset(
    reserved_name(f) for f in (*IDENTITY_FIELDS, "event_name", *PRESET_FIELDS)
)


@dataclass(frozen=True)
class FieldSpec:
    type: EventType
    required: FrozenSet[str]
    optional: FrozenSet[str]
    forbidden: FrozenSet[str]
    custom_values: ValueConstraint

    def allows(self, reserved: str) -> bool:
        return reserved in self.required or reserved in self.optional


_REQUIRED_BASE = frozenset(reserved_name(f) for f in IDENTITY_FIELDS)
_OPTIONAL = frozenset(reserved_name(f) for f in PRESET_FIELDS)
_EVENT_NAME = reserved_name("event_name")

_SPECS: Dict[EventType, FieldSpec] = {
    EventType.TRACK: FieldSpec(
        type=EventType.TRACK,
        required=_REQUIRED_BASE | {_EVENT_NAME},
        optional=_OPTIONAL,
        forbidden=frozenset(),
        custom_values=ValueConstraint.ANY_SCALAR,
    ),
    EventType.USER_SET: FieldSpec(
        type=EventType.USER_SET,
        required=_REQUIRED_BASE,
        optional=_OPTIONAL,
        forbidden=frozenset({_EVENT_NAME}),
        custom_values=ValueConstraint.ANY_SCALAR,
    ),
    EventType.USER_ADD: FieldSpec(
        type=EventType.USER_ADD,
        required=_REQUIRED_BASE,
        optional=_OPTIONAL,
        forbidden=frozenset({_EVENT_NAME}),
        custom_values=ValueConstraint.NUMERIC,
    ),
}


def describe(event_type: Union[EventType, str]) -> FieldSpec:
    """Return the field contract for an event type.

    Accepts the enum or its wire string; unknown types raise ValueError.
    """
    return _SPECS[EventType(event_type)]
