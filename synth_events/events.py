"""
Immutable event objects.

An Event keeps the fixed reserved envelope (identity, time, type, event name,
preset attributes) apart from the open map of custom properties. Custom values
are classified into a closed set of kinds so the validator can enforce the
numeric-only rule of user_add.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

import pandas as pd

from .schema import EventType


class ValueKind(str, Enum):
    NUMERIC = "numeric"
    TEXT = "text"
    BOOLEAN = "boolean"
    NULL = "null"


def classify_value(value: Any) -> Optional[ValueKind]:
    """Return the kind of a custom property value, or None if it is not a legal scalar."""
    if value is None:
        return ValueKind.NULL
    # bool is an int subclass; it must never count as numeric
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, str):
        return ValueKind.TEXT
    if isinstance(value, numbers.Real):
        return ValueKind.NUMERIC if math.isfinite(value) else None
    return None


def _frozen_map(values: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(values or {}))


@dataclass(frozen=True)
class Event:
    type: EventType
    account_id: str
    distinct_id: str
    time: pd.Timestamp
    event_name: Optional[str] = None
    preset: Mapping[str, Any] = field(default_factory=dict)
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "preset", _frozen_map(self.preset))
        object.__setattr__(self, "properties", _frozen_map(self.properties))

    @property
    def user_id(self):
        return self.account_id, self.distinct_id
