"""
Synthetic ingestion event generator.

Produces schema-valid, referentially consistent streams of `track`,
`user_set` and `user_add` events for seeding or load-testing an analytics
platform.
"""

from .config import PresetProfilePool, SessionConfig, TrackEventSpec, load_config
from .errors import (
    GenerationConfigError,
    GenerationFailure,
    ResourceExhaustion,
    SchemaViolation,
    SinkError,
    SynthEventsError,
    ViolationCode,
)
from .events import Event, ValueKind, classify_value
from .schema import EventType, FieldSpec, describe, is_reserved
from .session import GenerationSession, generate, run_sharded
from .validator import deserialize, serialize, validate, validate_record

__version__ = "0.1.0"

__all__ = [
    "Event",
    "EventType",
    "FieldSpec",
    "GenerationConfigError",
    "GenerationFailure",
    "GenerationSession",
    "PresetProfilePool",
    "ResourceExhaustion",
    "SchemaViolation",
    "SessionConfig",
    "SinkError",
    "SynthEventsError",
    "TrackEventSpec",
    "ValueKind",
    "ViolationCode",
    "classify_value",
    "describe",
    "deserialize",
    "generate",
    "is_reserved",
    "load_config",
    "run_sharded",
    "serialize",
    "validate",
    "validate_record",
]
