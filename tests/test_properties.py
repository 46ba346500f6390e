from __future__ import annotations

import numpy as np
import pytest

from synth_events.errors import ResourceExhaustion
from synth_events.events import ValueKind, classify_value
from synth_events.profiles import FakerPool
from synth_events.properties import PropertyGenerator
from synth_events.schema import EventType


@pytest.fixture
def gen():
    return PropertyGenerator(np.random.default_rng(11), FakerPool(11))


def test_values_follow_their_descriptors(gen, snapshot):
    specs = {
        "mode": {"kind": "choice", "values": ["Normal", "Hard"], "weights": [0, 1]},
        "stage": {"kind": "int", "min": 3, "max": 3},
        "price": {"kind": "float", "min": 1.0, "max": 2.0},
        "ratio": {"kind": "beta", "alpha": 2, "beta": 5},
        "first": {"kind": "bool", "p": 1.0},
        "ref": {"kind": "constant", "value": None},
        "gap": {"kind": "exponential", "rate": 2.0},
        "spend": {"kind": "pareto", "scale": 10, "shape": 3},
        "basket": {"kind": "lognormal", "mean": 3, "sigma": 0.5},
        "hits": {"kind": "poisson", "lam": 4},
        "score": {"kind": "normal", "mean": 50, "std": 100, "min": 0, "max": 100},
        "order_id": {"kind": "uuid"},
    }
    for _ in range(20):
        values = gen.generate(EventType.TRACK, specs, snapshot)
        assert values["mode"] == "Hard"
        assert values["stage"] == 3
        assert 1.0 <= values["price"] <= 2.0 and round(values["price"], 2) == values["price"]
        assert 0.0 <= values["ratio"] <= 1.0
        assert values["first"] is True
        assert values["ref"] is None
        assert values["gap"] >= 0
        assert values["spend"] >= 10
        assert values["basket"] > 0
        assert isinstance(values["hits"], int)
        assert 0 <= values["score"] <= 100
        assert len(values["order_id"]) == 36
        assert all(classify_value(v) is not None for v in values.values())


def test_probability_controls_presence(gen, snapshot):
    specs = {"never": {"kind": "constant", "value": 1, "probability": 0.0},
             "always": {"kind": "constant", "value": 1}}
    for _ in range(10):
        assert gen.generate(EventType.TRACK, specs, snapshot) == {"always": 1}


def test_geo_sampler_uses_user_country(gen, snapshot):
    spec = {
        "currency": {
            "kind": "geo",
            "values": {"JP": {"kind": "constant", "value": "JPY"}, "KR": "KRW"},
            "default": "USD",
        },
        "region": {"kind": "geo", "by": "province", "values": {"Osaka": "west"}, "default": "other"},
    }
    assert gen.generate(EventType.TRACK, spec, snapshot) == {"currency": "JPY", "region": "other"}


def test_faker_values_are_strings(gen, snapshot):
    values = gen.generate(EventType.USER_SET, {"user_name": {"kind": "faker", "provider": "name"}}, snapshot)
    assert isinstance(values["user_name"], str) and values["user_name"]


def test_user_add_deltas_are_clamped_unless_signed(gen, snapshot):
    specs = {
        "refund": {"kind": "constant", "value": -5},
        "balance": {"kind": "constant", "value": -5, "signed": True},
    }
    assert gen.generate(EventType.USER_ADD, specs, snapshot) == {"refund": 0, "balance": -5}
    # track properties are never clamped
    assert gen.generate(EventType.TRACK, specs, snapshot)["refund"] == -5


def test_non_numeric_user_add_values_are_left_for_the_validator(gen, snapshot):
    values = gen.generate(EventType.USER_ADD, {"coins": {"kind": "constant", "value": "abc"}}, snapshot)
    assert classify_value(values["coins"]) is ValueKind.TEXT


@pytest.mark.parametrize("desc", [
    {"kind": "choice", "values": []},
    {"kind": "choice", "values": ["a", "b"], "weights": [0, 0]},
    {"kind": "choice", "values": ["a", "b"], "weights": [1]},
    {"kind": "int", "min": 5, "max": 1},
    {"kind": "int"},
    {"kind": "exponential", "rate": 0},
    {"kind": "faker", "provider": "no_such_provider"},
    {"kind": "geo", "values": {"KR": "KRW"}},
    {"kind": "geo", "by": "favourite_colour", "values": {}, "default": "x"},
    {"kind": "zipf"},
])
def test_misconfigured_tables_raise_resource_exhaustion(gen, snapshot, desc):
    with pytest.raises(ResourceExhaustion):
        gen.generate(EventType.TRACK, {"p": desc}, snapshot)


def test_descriptor_must_be_a_mapping(gen, snapshot):
    with pytest.raises(ResourceExhaustion):
        gen.generate(EventType.TRACK, {"p": 3}, snapshot)


@pytest.mark.parametrize("event_type", [EventType.USER_SET, EventType.USER_ADD])
def test_user_events_always_carry_a_property(gen, snapshot, event_type):
    specs = {"rare": {"kind": "constant", "value": 1, "probability": 0.05},
             "off": {"kind": "constant", "value": 2, "probability": 0.0}}
    for _ in range(30):
        assert gen.generate(event_type, specs, snapshot) == {"rare": 1}


def test_track_properties_may_all_be_skipped(gen, snapshot):
    specs = {"rare": {"kind": "constant", "value": 1, "probability": 0.01}}
    assert any(gen.generate(EventType.TRACK, specs, snapshot) == {} for _ in range(30))


@pytest.mark.parametrize("probability", ["0.5", -0.1, 1.5, True, None])
def test_probability_must_be_a_number_in_range(gen, snapshot, probability):
    with pytest.raises(ResourceExhaustion):
        gen.generate(EventType.TRACK, {"p": {"kind": "constant", "value": 1, "probability": probability}}, snapshot)


def test_every_configurable_kind_has_a_sampler(gen):
    from synth_events.config import PROPERTY_KINDS

    assert set(gen._samplers) == PROPERTY_KINDS
