from __future__ import annotations

import pandas as pd
import pytest

from synth_events.errors import SchemaViolation, ViolationCode
from synth_events.events import Event
from synth_events.registry import UserRegistry
from synth_events.schema import EventType
from synth_events.validator import validate


@pytest.fixture
def registry():
    return UserRegistry()


@pytest.fixture
def user(registry, profile):
    return registry.get_or_create(1, lambda: profile, lambda: "d-1")


def _at(minutes: int) -> pd.Timestamp:
    return pd.Timestamp("2025-01-01T00:00:00Z") + pd.Timedelta(minutes=minutes)


def _event(user, event_type, minutes=0, **props):
    return Event(
        type=event_type,
        account_id=user.account_id,
        distinct_id=user.distinct_id,
        time=_at(minutes),
        event_name="login" if event_type is EventType.TRACK else None,
        properties=props,
    )


def test_get_or_create_is_idempotent(registry, profile):
    calls = []

    def sampler():
        calls.append(1)
        return profile

    first = registry.get_or_create(3, sampler, lambda: "d-3")
    again = registry.get_or_create(3, sampler, lambda: "other")
    assert first is again
    assert len(calls) == 1
    assert first.account_id == "u_000003"
    assert first.distinct_id == "d-3"
    assert first.properties == {} and first.counters == {}
    assert len(registry) == 1


def test_identity_collision_is_refused(registry, profile):
    registry.get_or_create(1, lambda: profile, lambda: "same")
    registry._users.pop(1)
    with pytest.raises(ValueError):
        registry.get_or_create(1, lambda: profile, lambda: "same")


def test_user_add_accumulates_counters(registry, user):
    registry.apply(user, validate(_event(user, EventType.USER_ADD, 0, x=5)))
    registry.apply(user, validate(_event(user, EventType.USER_ADD, 1, x=3)))
    snap = registry.snapshot(user)
    assert snap.counters["x"] == 8
    assert dict(snap.properties) == {}


def test_user_set_last_write_wins(registry, user):
    registry.apply(user, validate(_event(user, EventType.USER_SET, 0, name="Alice", tier="Gold")))
    registry.apply(user, validate(_event(user, EventType.USER_SET, 1, name="Bob")))
    snap = registry.snapshot(user)
    assert snap.properties == {"name": "Bob", "tier": "Gold"}
    assert dict(snap.counters) == {}


def test_track_only_moves_watermark(registry, user):
    registry.apply(user, validate(_event(user, EventType.TRACK, 4, level=9)))
    snap = registry.snapshot(user)
    assert snap.last_event_time == _at(4)
    assert dict(snap.properties) == {} and dict(snap.counters) == {}
    assert user.event_count == 1


def test_rejected_user_add_never_reaches_counters(registry, user):
    registry.apply(user, validate(_event(user, EventType.USER_ADD, 0, coins=10)))
    bad = _event(user, EventType.USER_ADD, 1, coins="abc")
    with pytest.raises(SchemaViolation):
        registry.apply(user, validate(bad))
    assert registry.snapshot(user).counters == {"coins": 10}


def test_events_going_back_in_time_are_refused(registry, user):
    registry.apply(user, validate(_event(user, EventType.USER_ADD, 10, x=1)))
    with pytest.raises(SchemaViolation) as excinfo:
        registry.apply(user, validate(_event(user, EventType.USER_ADD, 5, x=1)))
    assert excinfo.value.code is ViolationCode.TIME_ORDER
    assert registry.snapshot(user).counters == {"x": 1}


def test_events_for_another_user_are_refused(registry, user, profile):
    other = registry.get_or_create(2, lambda: profile, lambda: "d-2")
    with pytest.raises(ValueError):
        registry.apply(user, validate(_event(other, EventType.USER_SET, 0, name="Eve")))


def test_snapshot_is_read_only(registry, user):
    snap = registry.snapshot(user)
    with pytest.raises(TypeError):
        snap.properties["x"] = 1


def test_rotate_profile_and_teardown(registry, user, profile):
    from dataclasses import replace

    rotated = replace(profile, device_id="new-device")
    assert registry.rotate_profile(user, lambda: rotated) is rotated
    assert registry.snapshot(user).profile.device_id == "new-device"

    registry.teardown()
    assert len(registry) == 0
    assert registry.get(1) is None
