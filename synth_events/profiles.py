"""
Preset profiles: device, network and geo attributes sampled once per user.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np
from faker import Faker

from .config import PresetProfilePool
from .errors import ResourceExhaustion


@dataclass(frozen=True)
class PresetProfile:
    os: str
    os_version: str
    model: str
    device_id: str
    manufacturer: str
    carrier: str
    network_type: str
    app_version: str
    screen_width: int
    screen_height: int
    ip: str
    country: str
    country_code: str
    province: str
    city: str
    locale: str

    def to_preset(self, fields: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Reserved preset values (unprefixed names) for an event envelope."""
        values = asdict(self)
        values.pop("country_code")
        values.pop("locale")
        if fields is not None:
            values = {k: v for k, v in values.items() if k in fields}
        return {k: v for k, v in values.items() if v not in (None, "")}


# -----------------------------
# Helpers
# -----------------------------

def weighted_index(rng: np.random.Generator, weights: Sequence[float], what: str) -> int:
    """Index drawn proportionally to weights; empty or all-zero tables are unusable."""
    w = np.asarray(weights, dtype=float)
    if w.size == 0:
        raise ResourceExhaustion(f"{what}: nothing to sample from")
    if np.any(w < 0) or not np.all(np.isfinite(w)):
        raise ResourceExhaustion(f"{what}: weights must be finite and non-negative")
    total = w.sum()
    if total <= 0:
        raise ResourceExhaustion(f"{what}: all weights are zero")
    return int(rng.choice(w.size, p=w / total))


def pick(rng: np.random.Generator, items: Sequence[Any], what: str) -> Any:
    if not items:
        raise ResourceExhaustion(f"{what}: nothing to sample from")
    return items[int(rng.integers(0, len(items)))]


def random_uuid(rng: np.random.Generator) -> str:
    return str(uuid.UUID(bytes=rng.bytes(16), version=4))


class FakerPool:
    """One seeded Faker instance per locale."""

    def __init__(self, seed: int):
        self.seed = seed
        self._instances: Dict[str, Faker] = {}

    def get(self, locale: str) -> Faker:
        fake = self._instances.get(locale)
        if fake is None:
            try:
                fake = Faker(locale)
            except AttributeError as exc:
                raise ResourceExhaustion(f"unsupported Faker locale {locale!r}") from exc
            fake.seed_instance(self.seed)
            self._instances[locale] = fake
        return fake


# -----------------------------
# Sampler
# -----------------------------

class ProfileSampler:
    def __init__(self, pool: PresetProfilePool, rng: np.random.Generator, fakers: FakerPool):
        self.pool = pool
        self.rng = rng
        self.fakers = fakers

    def _ip(self, prefixes: Sequence[str]) -> str:
        prefix = pick(self.rng, prefixes, "ip prefixes") if prefixes else f"{int(self.rng.integers(1, 224))}."
        octets = self.rng.integers(0, 256, size=3)
        return prefix + ".".join(str(int(o)) for o in octets)

    def sample(self) -> PresetProfile:
        pool = self.pool
        country = pool.countries[weighted_index(self.rng, [c.weight for c in pool.countries], "countries")]
        os_opt = pool.os_options[weighted_index(self.rng, [o.weight for o in pool.os_options], "os options")]

        net_names = list(pool.network_types)
        network = net_names[weighted_index(self.rng, list(pool.network_types.values()), "network types")]
        versions = list(pool.app_versions)
        app_version = versions[weighted_index(self.rng, list(pool.app_versions.values()), "app versions")]
        width, height = pick(self.rng, pool.screen_resolutions, "screen resolutions")

        fake = self.fakers.get(country.locale)
        return PresetProfile(
            os=os_opt.os,
            os_version=pick(self.rng, os_opt.versions, f"{os_opt.os} versions"),
            model=pick(self.rng, os_opt.models, f"{os_opt.os} models"),
            device_id=random_uuid(self.rng),
            manufacturer=os_opt.manufacturer,
            carrier=pick(self.rng, country.carriers, f"{country.country_code} carriers") if country.carriers else "",
            network_type=network,
            app_version=app_version,
            screen_width=int(width),
            screen_height=int(height),
            ip=self._ip(country.ip_prefixes),
            country=country.country,
            country_code=country.country_code,
            province=pick(self.rng, country.provinces, "provinces") if country.provinces else "",
            city=fake.city(),
            locale=country.locale,
        )
