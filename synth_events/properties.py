"""
Custom property generation from distribution descriptors.

A descriptor is a mapping with a `kind` plus its parameters, e.g.

    {"kind": "choice", "values": ["Warrior", "Mage"], "weights": [0.7, 0.3]}
    {"kind": "int", "min": 1, "max": 100}
    {"kind": "geo", "by": "country_code", "values": {"JP": {...}}, "default": {...}}

Every descriptor may also carry `probability` (chance the property appears on
a given event). Under user_add, negative draws are clamped to zero unless the
descriptor sets `signed: true`.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping

import numpy as np

from .errors import ResourceExhaustion
from .events import ValueKind, classify_value
from .profiles import FakerPool, pick, random_uuid, weighted_index
from .registry import UserSnapshot
from .schema import EventType, ValueConstraint, describe


def _probability(desc: Mapping[str, Any], name: str) -> float:
    p = desc.get("probability", 1.0)
    if classify_value(p) is not ValueKind.NUMERIC or not 0.0 <= p <= 1.0:
        raise ResourceExhaustion(f"property {name!r}: probability must be a number in [0, 1], got {p!r}")
    return float(p)


def _round(value: float, decimals) -> float:
    return float(value) if decimals is None else round(float(value), int(decimals))


class PropertyGenerator:
    def __init__(self, rng: np.random.Generator, fakers: FakerPool):
        self.rng = rng
        self.fakers = fakers
        self._samplers: Dict[str, Callable[[Mapping[str, Any], UserSnapshot], Any]] = {
            "choice": self._choice,
            "int": self._int,
            "float": self._float,
            "normal": self._normal,
            "lognormal": self._lognormal,
            "poisson": self._poisson,
            "exponential": self._exponential,
            "pareto": self._pareto,
            "beta": self._beta,
            "bool": self._bool,
            "constant": lambda d, s: d["value"],
            "uuid": lambda d, s: random_uuid(self.rng),
            "faker": self._faker,
            "geo": self._geo,
        }

    # -----------------------------
    # Public
    # -----------------------------

    def generate(
        self,
        event_type: EventType,
        specs: Mapping[str, Any],
        snapshot: UserSnapshot,
    ) -> Dict[str, Any]:
        """Sample one value per configured property for an event of event_type.

        user_set / user_add always carry at least one property: when every
        optional property was skipped, one of them is drawn anyway.
        """
        numeric_only = describe(event_type).custom_values is ValueConstraint.NUMERIC
        values: Dict[str, Any] = {}
        optional = []
        for name, desc in specs.items():
            if not isinstance(desc, Mapping):
                raise ResourceExhaustion(f"property {name!r}: descriptor must be a mapping, got {desc!r}")
            probability = _probability(desc, name)
            if probability < 1.0 and self.rng.random() >= probability:
                if probability > 0:
                    optional.append(name)
                continue
            values[name] = self._value(desc, snapshot, name, numeric_only)

        if not values and optional and event_type is not EventType.TRACK:
            name = pick(self.rng, optional, "optional properties")
            values[name] = self._value(specs[name], snapshot, name, numeric_only)
        return values

    def _value(self, desc: Mapping[str, Any], snapshot: UserSnapshot, name: str, numeric_only: bool) -> Any:
        value = self.sample(desc, snapshot, name=name)
        if numeric_only and not desc.get("signed", False) and classify_value(value) is ValueKind.NUMERIC:
            value = max(value, type(value)(0))
        return value

    def sample(self, desc: Mapping[str, Any], snapshot: UserSnapshot, name: str = "?") -> Any:
        kind = desc.get("kind")
        sampler = self._samplers.get(kind)
        if sampler is None:
            raise ResourceExhaustion(f"property {name!r}: unknown distribution kind {kind!r}")
        try:
            return sampler(desc, snapshot)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ResourceExhaustion(f"property {name!r}: misconfigured {kind} distribution ({exc!r})") from exc

    # -----------------------------
    # Distributions
    # -----------------------------

    def _choice(self, desc, snapshot):
        values = list(desc["values"])
        weights = desc.get("weights")
        if weights is None:
            return pick(self.rng, values, "choice values")
        if len(weights) != len(values):
            raise ValueError("values and weights must have the same length")
        return values[weighted_index(self.rng, weights, "choice weights")]

    def _int(self, desc, snapshot):
        return int(self.rng.integers(int(desc["min"]), int(desc["max"]) + 1))

    def _float(self, desc, snapshot):
        return _round(self.rng.uniform(float(desc["min"]), float(desc["max"])), desc.get("decimals", 2))

    def _normal(self, desc, snapshot):
        x = float(self.rng.normal(float(desc["mean"]), float(desc["std"])))
        lo, hi = desc.get("min"), desc.get("max")
        if lo is not None:
            x = max(float(lo), x)
        if hi is not None:
            x = min(float(hi), x)
        return _round(x, desc.get("decimals"))

    def _lognormal(self, desc, snapshot):
        return _round(self.rng.lognormal(float(desc["mean"]), float(desc["sigma"])), desc.get("decimals", 2))

    def _poisson(self, desc, snapshot):
        return int(self.rng.poisson(float(desc["lam"])))

    def _exponential(self, desc, snapshot):
        rate = float(desc["rate"])
        if rate <= 0:
            raise ValueError("rate must be positive")
        return _round(self.rng.exponential(1.0 / rate), desc.get("decimals", 2))

    def _pareto(self, desc, snapshot):
        # classic Pareto with minimum `scale`
        x = (self.rng.pareto(float(desc["shape"])) + 1.0) * float(desc["scale"])
        return _round(x, desc.get("decimals", 2))

    def _beta(self, desc, snapshot):
        return _round(self.rng.beta(float(desc["alpha"]), float(desc["beta"])), desc.get("decimals", 4))

    def _bool(self, desc, snapshot):
        return bool(self.rng.random() < float(desc.get("p", 0.5)))

    def _faker(self, desc, snapshot):
        locale = desc.get("locale") or snapshot.profile.locale
        fake = self.fakers.get(locale)
        provider = desc["provider"]
        method = getattr(fake, provider, None)
        if not callable(method):
            raise ResourceExhaustion(f"unknown Faker provider {provider!r}")
        value = method(**dict(desc.get("args") or {}))
        return value if classify_value(value) is not None else str(value)

    def _geo(self, desc, snapshot):
        by = desc.get("by", "country_code")
        key = getattr(snapshot.profile, by)
        table = desc["values"]
        entry = table.get(key, desc.get("default"))
        if entry is None:
            raise ResourceExhaustion(f"geo table has no entry for {by}={key!r} and no default")
        if isinstance(entry, Mapping):
            return self.sample(entry, snapshot, name=f"geo[{key}]")
        return entry
