import json

from flagcore.evaluation_detail import off_reason
from flagcore.events import now_millis
from flagcore.flag import FeatureFlag
from flagcore.flags_state import FeatureFlagsState


def test_can_get_flag_value():
    state = FeatureFlagsState()
    state.add_flag(FeatureFlag(key="key"), "value", 1, None, False)
    assert state.get_flag_value("key") == "value"


def test_unknown_flag_returns_none_value():
    assert FeatureFlagsState().get_flag_value("key") is None


def test_can_get_flag_reason():
    state = FeatureFlagsState()
    state.add_flag(FeatureFlag(key="key"), "value", 1, off_reason(), False)
    assert state.get_flag_reason("key") == off_reason()


def test_unknown_flag_returns_none_reason():
    assert FeatureFlagsState().get_flag_reason("key") is None


def test_returns_none_reason_if_reasons_not_recorded():
    state = FeatureFlagsState()
    state.add_flag(FeatureFlag(key="key"), "value", 1, None, False)
    assert state.get_flag_reason("key") is None


def test_to_values_map():
    state = FeatureFlagsState()
    state.add_flag(FeatureFlag(key="key1"), "value1", 0, None, False)
    state.add_flag(FeatureFlag(key="key2"), "value2", 1, None, False)
    assert state.to_values_map() == {"key1": "value1", "key2": "value2"}


def test_to_json():
    flag1 = FeatureFlag(key="key1", version=100, track_events=False)
    flag2 = FeatureFlag(key="key2", version=200, track_events=True, debug_events_until_date=1000)
    state = FeatureFlagsState()
    state.add_flag(flag1, "value1", 0, None, False)
    state.add_flag(flag2, "value2", 1, None, False)

    expected = {
        "key1": "value1",
        "key2": "value2",
        "$flagsState": {
            "key1": {"variation": 0, "version": 100},
            "key2": {
                "variation": 1,
                "version": 200,
                "trackEvents": True,
                "debugEventsUntilDate": 1000,
            },
        },
        "$valid": True,
    }
    assert json.loads(state.to_json()) == expected
    assert state.to_json_dict() == expected


def test_invalid_state_is_marked_in_json():
    state = FeatureFlagsState(valid=False)
    assert state.to_json_dict() == {"$flagsState": {}, "$valid": False}


def test_details_omitted_for_untracked_flag_when_requested():
    state = FeatureFlagsState()
    state.add_flag(FeatureFlag(key="key", version=5), "v", 0, off_reason(), True)
    assert state.to_json_dict()["$flagsState"]["key"] == {"variation": 0}
    assert state.get_flag_reason("key") is None


def test_details_kept_for_tracked_flag_when_requested():
    state = FeatureFlagsState()
    state.add_flag(FeatureFlag(key="key", version=5, track_events=True), "v", 0, off_reason(), True)
    meta = state.to_json_dict()["$flagsState"]["key"]
    assert meta["version"] == 5
    assert meta["reason"] == {"kind": "OFF"}


def test_details_kept_while_debugging_is_active():
    future = now_millis() + 1000000
    state = FeatureFlagsState()
    flag = FeatureFlag(key="key", version=5, debug_events_until_date=future)
    state.add_flag(flag, "v", 0, off_reason(), True)
    meta = state.to_json_dict()["$flagsState"]["key"]
    assert meta["version"] == 5
    assert meta["debugEventsUntilDate"] == future