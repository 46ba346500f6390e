from __future__ import annotations

from types import MappingProxyType

import pytest

from synth_events.config import SessionConfig
from synth_events.profiles import PresetProfile
from synth_events.registry import UserSnapshot


@pytest.fixture
def profile() -> PresetProfile:
    return PresetProfile(
        os="iOS",
        os_version="17.0",
        model="iPhone 15",
        device_id="0b9f4c1e-3f0a-4c44-9a53-5b0d7d1e2a10",
        manufacturer="Apple",
        carrier="SoftBank",
        network_type="WiFi",
        app_version="2.3.0",
        screen_width=1170,
        screen_height=2532,
        ip="203.10.20.30",
        country="Japan",
        country_code="JP",
        province="Tokyo",
        city="Shibuya",
        locale="ja_JP",
    )


@pytest.fixture
def snapshot(profile) -> UserSnapshot:
    return UserSnapshot(
        account_id="u_000001",
        distinct_id="d-1",
        profile=profile,
        properties=MappingProxyType({}),
        counters=MappingProxyType({}),
        last_event_time=None,
    )


@pytest.fixture
def make_config():
    def _make(**overrides) -> SessionConfig:
        kwargs = dict(
            user_count=2,
            time_range_start="2025-01-01T00:00:00Z",
            time_range_end="2025-01-08T00:00:00Z",
            events_per_user=5,
            seed=7,
        )
        kwargs.update(overrides)
        return SessionConfig(**kwargs)

    return _make


MIXED_SPECS = {
    "track": {"session_id": {"kind": "uuid"}},
    "user_set": {
        "tier": {"kind": "choice", "values": ["Bronze", "Silver", "Gold"], "weights": [0.5, 0.3, 0.2]},
        "vip": {"kind": "bool", "p": 0.2},
        "level": {"kind": "int", "min": 1, "max": 60, "probability": 0.7},
    },
    "user_add": {
        "total_sessions": {"kind": "constant", "value": 1},
        "gold": {"kind": "normal", "mean": 50, "std": 80, "decimals": 0, "signed": True},
        "gems": {"kind": "poisson", "lam": 3},
    },
}


@pytest.fixture
def mixed_specs():
    return {k: dict(v) for k, v in MIXED_SPECS.items()}
