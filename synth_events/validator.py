"""
Schema validation and the flat wire representation.

Wire record: reserved fields with the `#` prefix at the top level, custom
properties inlined next to them (no nested properties object).
"""

from __future__ import annotations

import numbers
from typing import Any, Dict, List, Mapping

import pandas as pd

from .errors import SchemaViolation, ViolationCode
from .events import Event, ValueKind, classify_value
from .schema import (
    PRESET_FIELDS,
    EventType,
    ValueConstraint,
    describe,
    field_name,
    is_reserved,
    reserved_name,
)


# -----------------------------
# Time
# -----------------------------

def format_time(ts: pd.Timestamp) -> str:
    """ISO 8601 in UTC with millisecond precision, e.g. 2025-01-01T08:30:00.125Z."""
    ts = pd.Timestamp(ts)
    ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return f"{ts.strftime('%Y-%m-%dT%H:%M:%S')}.{ts.microsecond // 1000:03d}Z"


def parse_time(value: Any) -> pd.Timestamp:
    if not isinstance(value, str):
        raise SchemaViolation(ViolationCode.BAD_VALUE, "#time", f"#time must be an ISO 8601 string, got {value!r}")
    try:
        ts = pd.Timestamp(value)
    except ValueError as exc:
        raise SchemaViolation(ViolationCode.BAD_VALUE, "#time", f"unparseable #time {value!r}") from exc
    if ts is pd.NaT:
        raise SchemaViolation(ViolationCode.BAD_VALUE, "#time", f"unparseable #time {value!r}")
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


# -----------------------------
# Validation
# -----------------------------

def _check_identity(event: Event, out: List[SchemaViolation]) -> None:
    for name in ("account_id", "distinct_id"):
        value = getattr(event, name)
        if not isinstance(value, str) or not value:
            out.append(SchemaViolation(
                ViolationCode.MISSING_FIELD, reserved_name(name), f"{reserved_name(name)} must be a non-empty string"
            ))

    ts = event.time
    if ts is None or ts is pd.NaT:
        out.append(SchemaViolation(ViolationCode.MISSING_FIELD, "#time", "#time is required"))
    elif not isinstance(ts, pd.Timestamp) or ts.tzinfo is None:
        out.append(SchemaViolation(ViolationCode.BAD_VALUE, "#time", "#time must be a timezone-aware timestamp"))
    elif ts.nanosecond or ts.microsecond % 1000:
        out.append(SchemaViolation(ViolationCode.BAD_VALUE, "#time", "#time has sub-millisecond precision"))


def _check_preset(event: Event, out: List[SchemaViolation]) -> None:
    spec = describe(event.type)
    for name, value in event.preset.items():
        wire = reserved_name(name)
        if name not in PRESET_FIELDS or not spec.allows(wire):
            out.append(SchemaViolation(ViolationCode.UNKNOWN_FIELD, wire, f"{wire} is not a reserved preset field"))
            continue
        expected = PRESET_FIELDS[name]
        if expected is numbers.Real:
            ok, label = classify_value(value) is ValueKind.NUMERIC, "a finite number"
        else:
            ok, label = isinstance(value, expected) and not isinstance(value, bool), expected.__name__
        if not ok:
            out.append(SchemaViolation(
                ViolationCode.BAD_VALUE, wire, f"{wire} must be {label}, got {type(value).__name__}"
            ))


def _check_properties(event: Event, out: List[SchemaViolation]) -> None:
    numeric_only = describe(event.type).custom_values is ValueConstraint.NUMERIC
    for key, value in event.properties.items():
        if not isinstance(key, str) or not key:
            out.append(SchemaViolation(ViolationCode.BAD_VALUE, str(key), "custom property names must be non-empty strings"))
            continue
        if is_reserved(key):
            out.append(SchemaViolation(
                ViolationCode.RESERVED_KEY, key, f"custom property {key!r} uses the reserved namespace"
            ))
            continue
        kind = classify_value(value)
        if kind is None:
            out.append(SchemaViolation(
                ViolationCode.BAD_VALUE, key, f"custom property {key!r} has non-scalar value {value!r}"
            ))
        elif numeric_only and kind is not ValueKind.NUMERIC:
            out.append(SchemaViolation(
                ViolationCode.NON_NUMERIC, key, f"user_add property {key!r} must be numeric, got {value!r}"
            ))


def find_violations(event: Event) -> List[SchemaViolation]:
    """Collect every schema violation of an event (empty list when valid)."""
    if not isinstance(event.type, EventType):
        return [SchemaViolation(ViolationCode.BAD_TYPE, "#type", f"unknown event type {event.type!r}")]

    out: List[SchemaViolation] = []
    _check_identity(event, out)

    if event.type is EventType.TRACK:
        if not isinstance(event.event_name, str) or not event.event_name:
            out.append(SchemaViolation(ViolationCode.EVENT_NAME, "#event_name", "track events need a non-empty #event_name"))
    elif event.event_name is not None:
        out.append(SchemaViolation(
            ViolationCode.EVENT_NAME, "#event_name", f"{event.type.value} events must not carry #event_name"
        ))

    _check_preset(event, out)
    _check_properties(event, out)
    return out


def validate(event: Event) -> Event:
    """Return the event unchanged if it satisfies the schema, else raise the first SchemaViolation."""
    violations = find_violations(event)
    if violations:
        raise violations[0]
    return event


# -----------------------------
# Wire format
# -----------------------------

def serialize(event: Event) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "#account_id": event.account_id,
        "#distinct_id": event.distinct_id,
        "#time": format_time(event.time),
        "#type": event.type.value,
    }
    if event.event_name is not None:
        record["#event_name"] = event.event_name
    for name in PRESET_FIELDS:
        if name in event.preset:
            record[reserved_name(name)] = event.preset[name]
    record.update(event.properties)
    return record


def deserialize(record: Mapping[str, Any]) -> Event:
    """Rebuild an Event from a wire record. Structural problems raise SchemaViolation."""
    if not isinstance(record, Mapping):
        raise SchemaViolation(ViolationCode.BAD_VALUE, None, f"wire record must be an object, got {type(record).__name__}")
    if "#type" not in record:
        raise SchemaViolation(ViolationCode.MISSING_FIELD, "#type", "#type is required")
    try:
        event_type = EventType(record["#type"])
    except ValueError:
        raise SchemaViolation(ViolationCode.BAD_TYPE, "#type", f"unknown #type {record['#type']!r}") from None

    preset: Dict[str, Any] = {}
    properties: Dict[str, Any] = {}
    for key, value in record.items():
        if not is_reserved(key):
            properties[key] = value
            continue
        name = field_name(key)
        if name in ("account_id", "distinct_id", "time", "type", "event_name"):
            continue
        if name not in PRESET_FIELDS:
            raise SchemaViolation(ViolationCode.UNKNOWN_FIELD, key, f"{key} is not a known reserved field")
        preset[name] = value

    raw_time = record.get("#time")
    return Event(
        type=event_type,
        account_id=record.get("#account_id"),
        distinct_id=record.get("#distinct_id"),
        time=parse_time(raw_time) if raw_time is not None else None,
        event_name=record.get("#event_name"),
        preset=preset,
        properties=properties,
    )


def validate_record(record: Mapping[str, Any]) -> Event:
    return validate(deserialize(record))
