from __future__ import annotations

import json

import pandas as pd
import pytest
import yaml

from synth_events.config import PresetProfilePool, SessionConfig, load_config
from synth_events.errors import GenerationConfigError
from synth_events.schema import EventType

OPTIONS = {
    "userCount": 10,
    "timeRangeStart": "2025-02-01T00:00:00+09:00",
    "timeRangeEnd": "2025-02-03T00:00:00+09:00",
    "eventsPerUser": 12,
    "eventTypeWeights": {"track": 3, "user_set": 1, "user_add": 1},
    "customPropertySpecs": {
        "user_set": {"tier": {"kind": "choice", "values": ["Gold", "Silver"]}},
        "user_add": {"coins": {"kind": "int", "min": 1, "max": 10}},
    },
    "trackEvents": {"login": 2, "purchase": {"weight": 1, "properties": {"price": {"kind": "int", "min": 1, "max": 9}}}},
    "presetProfilePool": {
        "countries": [{"country": "Korea", "countryCode": "KR", "locale": "ko_KR", "ipPrefixes": ["211."],
                       "carriers": ["SKT"]}],
        "networkTypes": {"WiFi": 1},
    },
    "seed": 3,
    "includeUuid": False,
}


def test_from_dict_maps_camel_case_options():
    config = SessionConfig.from_dict(OPTIONS)
    assert config.user_count == 10
    assert config.events_per_user == 12 and config.event_rate is None
    assert config.time_range_start == pd.Timestamp("2025-01-31T15:00:00Z")
    assert str(config.time_range_start.tz) == "UTC"
    assert config.track_events["login"].weight == 2
    assert "price" in config.track_events["purchase"].properties
    assert config.seed == 3 and config.include_uuid is False
    pool = config.preset_profile_pool
    assert [c.country_code for c in pool.countries] == ["KR"]
    assert pool.network_types == {"WiFi": 1.0}
    assert pool.os_options == PresetProfilePool().os_options


def test_effective_weights_drop_types_without_properties():
    config = SessionConfig.from_dict({**OPTIONS, "customPropertySpecs": {}})
    weights = config.effective_type_weights()
    assert weights[EventType.TRACK] == 3
    assert weights[EventType.USER_SET] == 0 and weights[EventType.USER_ADD] == 0


@pytest.mark.parametrize("changes", [
    {"userCount": 0},
    {"userCount": -3},
    {"timeRangeStart": "2025-03-01", "timeRangeEnd": "2025-02-01"},
    {"eventTypeWeights": {"track": 0}},
    {"eventTypeWeights": {"track": -1}},
    {"eventTypeWeights": {"page_view": 1}},
    {"eventRate": 5.0},
    {"eventsPerUser": 0},
    {"trackEvents": {"login": 0}},
    {"customPropertySpecs": {"user_del": {}}},
])
def test_invalid_sessions_are_refused(changes):
    with pytest.raises(GenerationConfigError):
        SessionConfig.from_dict({**OPTIONS, **changes})


def test_missing_required_options():
    with pytest.raises(GenerationConfigError):
        SessionConfig.from_dict({"userCount": 1})


def test_unparseable_time_is_a_config_error():
    with pytest.raises(GenerationConfigError):
        SessionConfig.from_dict({**OPTIONS, "timeRangeEnd": "not a date"})


def test_zero_length_window_is_allowed():
    config = SessionConfig.from_dict({**OPTIONS, "timeRangeEnd": OPTIONS["timeRangeStart"]})
    assert config.time_range_start == config.time_range_end


def test_load_json_and_yaml(tmp_path):
    json_path = tmp_path / "session.json"
    json_path.write_text(json.dumps(OPTIONS), encoding="utf-8")
    yaml_path = tmp_path / "session.yaml"
    yaml_path.write_text(yaml.safe_dump(OPTIONS, allow_unicode=True), encoding="utf-8")

    from_json = load_config(str(json_path))
    from_yaml = load_config(str(yaml_path))
    assert from_json.user_count == from_yaml.user_count == 10
    assert from_json.time_range_end == from_yaml.time_range_end
    assert from_json.custom_property_specs == from_yaml.custom_property_specs


def test_load_config_rejects_non_objects(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(GenerationConfigError):
        load_config(str(path))


@pytest.mark.parametrize("changes", [
    {"trackEvents": {"login": "x"}},
    {"presetProfilePool": {"countries": [{"weight": 1}]}},
    {"presetProfilePool": {"screenResolutions": [[1170]]}},
    {"maxEventsPerUser": "3"},
    {"userCount": 2.5},
    {"includeUuid": "no"},
    {"customPropertySpecs": {"user_set": {"tier": {"kind": "choice", "values": ["a"], "probability": "often"}}}},
    {"customPropertySpecs": {"user_set": {"tier": {"kind": "choice", "values": ["a"], "probability": 1.5}}}},
    {"customPropertySpecs": {"user_add": {"gold": {"kind": "int", "min": 1, "max": 2, "signed": "yes"}}}},
    {"customPropertySpecs": {"user_set": {"tier": {"kind": "zipf"}}}},
    {"customPropertySpecs": {"user_set": {"tier": "Gold"}}},
    {"favouriteColour": "red"},
])
def test_malformed_options_are_config_errors(changes):
    with pytest.raises(GenerationConfigError):
        SessionConfig.from_dict({**OPTIONS, **changes})


def test_config_error_names_the_offending_option():
    with pytest.raises(GenerationConfigError) as excinfo:
        SessionConfig.from_dict({**OPTIONS, "trackEvents": {"login": "x"}})
    assert "trackEvents.login" in str(excinfo.value)


def test_descriptors_are_normalised():
    config = SessionConfig.from_dict({
        **OPTIONS,
        "customPropertySpecs": {"user_set": {"tier": {"kind": "choice", "values": ["a"], "probability": "0.5"}}},
    })
    tier = config.property_specs(EventType.USER_SET)["tier"]
    assert tier == {"kind": "choice", "values": ["a"], "probability": 0.5, "signed": False}


def test_track_event_prerequisites_and_caps():
    config = SessionConfig.from_dict({
        **OPTIONS,
        "trackEvents": {
            "signup": {"weight": 1, "maxPerUser": 1},
            "purchase": {"weight": 2, "requires": ["signup"]},
        },
    })
    assert config.track_events["signup"].max_per_user == 1
    assert config.track_events["purchase"].requires == ["signup"]


@pytest.mark.parametrize("track_events", [
    {"login": 1, "purchase": {"requires": ["signup"]}},
    {"login": {"requires": ["login"]}},
    {"login": {"requires": ["purchase"]}, "purchase": {"requires": ["login"]}},
    {"login": 1, "a": {"requires": ["b"]}, "b": {"requires": ["c"]}, "c": {"requires": ["a"]}},
    {"login": {"maxPerUser": 0}},
])
def test_unsatisfiable_track_events_are_refused(track_events):
    with pytest.raises(GenerationConfigError):
        SessionConfig.from_dict({**OPTIONS, "trackEvents": track_events})


def test_activity_weights():
    hourly = [0.0] * 24
    hourly[9] = 5.0
    config = SessionConfig.from_dict({**OPTIONS, "hourlyWeights": hourly, "weekdayMultipliers": [1] * 7})
    assert config.hourly_weights[9] == 5.0
    assert len(config.weekday_multipliers) == 7


@pytest.mark.parametrize("changes", [
    {"hourlyWeights": [1.0] * 23},
    {"hourlyWeights": [0.0] * 24},
    {"hourlyWeights": [-1.0] + [1.0] * 23},
    {"weekdayMultipliers": [1.0] * 8},
    {"weekdayMultipliers": [0] * 7},
])
def test_bad_activity_weights_are_refused(changes):
    with pytest.raises(GenerationConfigError):
        SessionConfig.from_dict({**OPTIONS, **changes})


def test_with_overrides_revalidates():
    config = SessionConfig.from_dict(OPTIONS)
    changed = config.with_overrides(user_count=3, seed=9)
    assert (changed.user_count, changed.seed) == (3, 9)
    assert changed.track_events == config.track_events
    assert config.user_count == 10
    with pytest.raises(GenerationConfigError):
        config.with_overrides(event_rate=2.0)


def test_unreadable_config_file(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(GenerationConfigError):
        load_config(str(path))


def test_circular_requires_are_named():
    with pytest.raises(GenerationConfigError) as excinfo:
        SessionConfig.from_dict({**OPTIONS, "trackEvents": {
            "login": 1, "a": {"requires": ["b", "login"]}, "b": {"requires": ["a"]},
        }})
    assert "a -> b -> a" in str(excinfo.value)
