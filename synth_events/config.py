"""
Session configuration.

A SessionConfig is built from the camelCase option surface of the ingestion
tooling (userCount, timeRangeStart, eventTypeWeights, ...) either directly
from a mapping or from a JSON / YAML file. Every model validates on
construction; any problem is reported as a GenerationConfigError before a
single event is produced.
"""

from __future__ import annotations

import json
import os
from typing import Annotated, Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd
import yaml
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import GenerationConfigError
from .schema import EventType

# shared field types
Count = Annotated[StrictInt, Field(gt=0)]
Weight = Annotated[float, Field(ge=0, allow_inf_nan=False)]
Probability = Annotated[float, Field(ge=0, le=1)]

PROPERTY_KINDS = frozenset({
    "choice", "int", "float", "normal", "lognormal", "poisson", "exponential",
    "pareto", "beta", "bool", "constant", "uuid", "faker", "geo",
})


def _config_error(exc: ValidationError) -> GenerationConfigError:
    problems = []
    for err in exc.errors():
        where = ".".join(str(part) for part in err["loc"]) or "config"
        problems.append(f"{where}: {err['msg']}")
    return GenerationConfigError("; ".join(problems))


class _ConfigModel(BaseModel):
    """camelCase on the wire, snake_case in code; unknown keys are refused."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise _config_error(exc) from exc

    @classmethod
    def from_dict(cls, data: Any):
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise _config_error(exc) from exc


# -----------------------------
# Property descriptors
# -----------------------------

class PropertyDescriptor(BaseModel):
    """Common keys of a distribution descriptor; kind-specific keys pass through."""

    model_config = ConfigDict(extra="allow")

    kind: str
    probability: Probability = 1.0
    signed: StrictBool = False

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, value: str) -> str:
        if value not in PROPERTY_KINDS:
            raise ValueError(f"unknown distribution kind {value!r}")
        return value


def _descriptor(value: Any) -> Dict[str, Any]:
    try:
        return PropertyDescriptor.model_validate(value).model_dump()
    except ValidationError as exc:
        raise ValueError(str(_config_error(exc))) from None


Descriptor = Annotated[Dict[str, Any], BeforeValidator(_descriptor)]


# -----------------------------
# Preset profile pool defaults
# -----------------------------

class CountryPreset(_ConfigModel):
    country: str = Field(min_length=1)
    country_code: str = ""
    locale: str = "en_US"
    weight: Weight = 1.0
    ip_prefixes: List[str] = Field(default_factory=list)
    carriers: List[str] = Field(default_factory=list)
    provinces: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_code(self) -> "CountryPreset":
        if not self.country_code:
            self.country_code = self.country
        return self


class OsPreset(_ConfigModel):
    os: str = Field(min_length=1)
    manufacturer: str = ""
    versions: List[str] = Field(min_length=1)
    models: List[str] = Field(min_length=1)
    weight: Weight = 1.0


DEFAULT_COUNTRIES = [
    CountryPreset(country="Japan", country_code="JP", locale="ja_JP", weight=0.30,
                  ip_prefixes=["203.", "210.", "221."],
                  carriers=["NTT DoCoMo", "SoftBank", "au", "Rakuten Mobile"],
                  provinces=["Tokyo", "Osaka", "Kanagawa", "Aichi", "Fukuoka"]),
    CountryPreset(country="South Korea", country_code="KR", locale="ko_KR", weight=0.25,
                  ip_prefixes=["211.", "218.", "222."],
                  carriers=["SKT", "KT", "LG U+"],
                  provinces=["Seoul", "Busan", "Gyeonggi", "Incheon", "Daegu"]),
    CountryPreset(country="United States", country_code="US", locale="en_US", weight=0.20,
                  ip_prefixes=["108.", "172.", "192."],
                  carriers=["Verizon", "AT&T", "T-Mobile"],
                  provinces=["California", "New York", "Texas", "Florida", "Washington"]),
    CountryPreset(country="China", country_code="CN", locale="zh_CN", weight=0.15,
                  ip_prefixes=["123.", "175.", "183."],
                  carriers=["China Mobile", "China Unicom", "China Telecom"],
                  provinces=["Beijing", "Shanghai", "Guangdong", "Zhejiang"]),
    CountryPreset(country="Taiwan", country_code="TW", locale="zh_TW", weight=0.10,
                  ip_prefixes=["114.", "140.", "163."],
                  carriers=["Chunghwa Telecom", "Taiwan Mobile", "FarEasTone"],
                  provinces=["Taipei", "New Taipei", "Taichung", "Kaohsiung"]),
]

DEFAULT_OS_OPTIONS = [
    OsPreset(os="iOS", manufacturer="Apple", versions=["17.0", "16.5", "16.0", "15.7"],
             models=["iPhone 15 Pro", "iPhone 15", "iPhone 14 Pro", "iPhone 14", "iPhone 13", "iPhone 12"],
             weight=0.45),
    OsPreset(os="Android", manufacturer="Samsung", versions=["14", "13", "12", "11"],
             models=["Galaxy S24", "Galaxy S23", "Galaxy S22", "Galaxy A54"], weight=0.40),
    OsPreset(os="Android", manufacturer="Google", versions=["14", "13"], models=["Pixel 8", "Pixel 7"], weight=0.15),
]

DEFAULT_NETWORK_TYPES = {"WiFi": 0.50, "5G": 0.25, "4G": 0.15, "LTE": 0.10}
DEFAULT_APP_VERSIONS = {"2.3.0": 0.50, "2.2.1": 0.30, "2.1.0": 0.20}
DEFAULT_SCREEN_RESOLUTIONS = [(1170, 2532), (1080, 2400), (1440, 3200), (828, 1792)]

DEFAULT_TYPE_WEIGHTS = {"track": 0.8, "user_set": 0.1, "user_add": 0.1}
DEFAULT_TRACK_EVENTS = {"page_view": 1.0}


def _has_weight(weights) -> bool:
    return sum(weights) > 0


class PresetProfilePool(_ConfigModel):
    """Missing sections fall back to the built-in pool."""

    countries: List[CountryPreset] = Field(default_factory=lambda: list(DEFAULT_COUNTRIES), min_length=1)
    os_options: List[OsPreset] = Field(default_factory=lambda: list(DEFAULT_OS_OPTIONS), min_length=1)
    network_types: Dict[str, Weight] = Field(default_factory=lambda: dict(DEFAULT_NETWORK_TYPES), min_length=1)
    app_versions: Dict[str, Weight] = Field(default_factory=lambda: dict(DEFAULT_APP_VERSIONS), min_length=1)
    screen_resolutions: List[Tuple[Count, Count]] = Field(
        default_factory=lambda: list(DEFAULT_SCREEN_RESOLUTIONS), min_length=1
    )

    @model_validator(mode="after")
    def _weighted(self) -> "PresetProfilePool":
        tables = {
            "countries": [c.weight for c in self.countries],
            "osOptions": [o.weight for o in self.os_options],
            "networkTypes": list(self.network_types.values()),
            "appVersions": list(self.app_versions.values()),
        }
        for name, weights in tables.items():
            if not _has_weight(weights):
                raise ValueError(f"every {name} weight is zero")
        return self


# -----------------------------
# Session config
# -----------------------------

class TrackEventSpec(_ConfigModel):
    """One track event name. A bare number in config is shorthand for its weight."""

    weight: Weight = 1.0
    properties: Dict[str, Descriptor] = Field(default_factory=dict)
    requires: List[str] = Field(default_factory=list)  # names that must have occurred for the user first
    max_per_user: Optional[Count] = None

    @model_validator(mode="before")
    @classmethod
    def _shorthand(cls, data: Any) -> Any:
        if data is None:
            return {}
        if isinstance(data, (int, float)) and not isinstance(data, bool):
            return {"weight": data}
        return data


def _find_cycle(requires: Mapping[str, List[str]]) -> Optional[List[str]]:
    """A prerequisite cycle as a list of names (first name repeated at the end), or None."""
    done = set()

    def visit(name: str, path: List[str]) -> Optional[List[str]]:
        if name in path:
            return path[path.index(name):] + [name]
        if name in done:
            return None
        for dep in requires.get(name, ()):
            cycle = visit(dep, path + [name])
            if cycle:
                return cycle
        done.add(name)
        return None

    for name in requires:
        cycle = visit(name, [])
        if cycle:
            return cycle
    return None


def _to_utc(value: Any) -> pd.Timestamp:
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"not an ISO 8601 timestamp: {value!r}") from exc
    if ts is pd.NaT:
        raise ValueError(f"not an ISO 8601 timestamp: {value!r}")
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


UtcTimestamp = Annotated[pd.Timestamp, BeforeValidator(_to_utc)]


class SessionConfig(_ConfigModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_count: Count
    time_range_start: UtcTimestamp
    time_range_end: UtcTimestamp
    events_per_user: Optional[Count] = None
    event_rate: Optional[Annotated[float, Field(gt=0, allow_inf_nan=False)]] = None  # events per user per day
    event_type_weights: Dict[EventType, Weight] = Field(default_factory=lambda: dict(DEFAULT_TYPE_WEIGHTS))
    custom_property_specs: Dict[EventType, Dict[str, Descriptor]] = Field(default_factory=dict)
    track_events: Dict[str, TrackEventSpec] = Field(
        default_factory=lambda: {name: TrackEventSpec(weight=w) for name, w in DEFAULT_TRACK_EVENTS.items()}
    )
    preset_profile_pool: PresetProfilePool = Field(default_factory=PresetProfilePool)
    hourly_weights: Optional[Annotated[List[Weight], Field(min_length=24, max_length=24)]] = None  # UTC hour 0..23
    weekday_multipliers: Optional[Annotated[List[Weight], Field(min_length=7, max_length=7)]] = None  # Monday first
    seed: Annotated[StrictInt, Field(ge=0)] = 42
    include_uuid: StrictBool = True
    profile_rotation_rate: Probability = 0.0
    account_id_prefix: str = "u_"
    max_events_per_user: Optional[Count] = None
    first_user_key: Count = 1

    @field_validator("hourly_weights", "weekday_multipliers")
    @classmethod
    def _not_all_zero(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        if value is not None and not _has_weight(value):
            raise ValueError("at least one weight must be positive")
        return value

    @model_validator(mode="after")
    def _consistent(self) -> "SessionConfig":
        if self.time_range_start > self.time_range_end:
            raise ValueError(f"empty time range: {self.time_range_start} is after {self.time_range_end}")
        if (self.events_per_user is None) == (self.event_rate is None):
            raise ValueError("exactly one of eventsPerUser or eventRate must be set")

        for name, spec in self.track_events.items():
            if not name:
                raise ValueError("track event names must be non-empty")
            unknown = [r for r in spec.requires if r not in self.track_events]
            if unknown:
                raise ValueError(f"track event {name!r} requires unknown event(s) {unknown}")
            if name in spec.requires:
                raise ValueError(f"track event {name!r} cannot require itself")
        cycle = _find_cycle({name: spec.requires for name, spec in self.track_events.items()})
        if cycle:
            raise ValueError(f"circular trackEvents requires: {' -> '.join(cycle)}")

        weights = self.effective_type_weights()
        if not _has_weight(weights.values()):
            raise ValueError(
                "all event type weights are zero (user_set/user_add need customPropertySpecs to be drawn)"
            )
        if weights[EventType.TRACK] > 0:
            if not _has_weight(s.weight for s in self.track_events.values()):
                raise ValueError("track events are enabled but every trackEvents weight is zero")
            if not any(s.weight > 0 and not s.requires for s in self.track_events.values()):
                raise ValueError("every weighted track event has prerequisites, so none can ever occur first")
        return self

    # -- derived views --

    def property_specs(self, event_type: EventType) -> Dict[str, Any]:
        return dict(self.custom_property_specs.get(event_type) or {})

    def effective_type_weights(self) -> Dict[EventType, float]:
        """Configured mix with user_set/user_add zeroed when they have nothing to write."""
        weights: Dict[EventType, float] = {}
        for event_type in EventType:
            w = float(self.event_type_weights.get(event_type, 0.0))
            if event_type is EventType.TRACK:
                if not self.track_events:
                    w = 0.0
            elif not any(d["probability"] > 0 for d in self.property_specs(event_type).values()):
                w = 0.0
            weights[event_type] = w
        return weights

    def with_overrides(self, **changes: Any) -> "SessionConfig":
        """A re-validated copy with some fields replaced."""
        return type(self).from_dict({**self.model_dump(), **changes})


def load_config(path: str) -> SessionConfig:
    """Read a SessionConfig from a .json, .yaml or .yml file."""
    ext = os.path.splitext(path)[1].lower()
    with open(path, "r", encoding="utf-8") as f:
        try:
            if ext in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        except (yaml.YAMLError, ValueError) as exc:
            raise GenerationConfigError(f"{path}: unreadable config ({exc})") from exc
    if not isinstance(data, Mapping):
        raise GenerationConfigError(f"{path}: top-level config must be an object")
    return SessionConfig.from_dict(data)
