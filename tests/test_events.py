from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from flagcore.evaluation_detail import fallthrough_reason
from flagcore.events import (
    CustomEvent,
    FeatureRequestEvent,
    IdentifyEvent,
    IndexEvent,
    new_custom_event,
    new_feature_request_event,
    new_identify_event,
    now_millis,
    to_unix_millis,
    user_key,
)

USER = {"key": "userKey", "name": "Red"}


@dataclass
class _Flag:
    version: int
    track_events: bool
    debug_events_until_date: Optional[int]


def test_feature_request_event_takes_flag_metadata():
    flag = _Flag(version=11, track_events=True, debug_events_until_date=5000)
    before = now_millis()
    event = new_feature_request_event("flagkey", flag, USER, 2, "value", "dflt", "parent")
    after = now_millis()
    assert before <= event.creation_date <= after
    assert event.key == "flagkey"
    assert event.user == USER
    assert event.variation == 2
    assert event.value == "value"
    assert event.default == "dflt"
    assert event.prereq_of == "parent"
    assert event.version == 11
    assert event.track_events is True
    assert event.debug_events_until_date == 5000
    assert event.debug is False
    assert event.reason is None


def test_feature_request_event_without_flag():
    event = new_feature_request_event("badkey", None, USER, None, "d", "d", None)
    assert event.version is None
    assert event.track_events is False
    assert event.debug_events_until_date is None
    assert event.variation is None


def test_feature_request_event_can_carry_reason():
    event = new_feature_request_event("k", None, USER, None, None, None, None)
    event.reason = fallthrough_reason()
    assert event.reason == fallthrough_reason()
    assert isinstance(event, FeatureRequestEvent)


def test_custom_event():
    data = {"thing": "stuff"}
    before = now_millis()
    event = new_custom_event("eventkey", USER, data)
    assert isinstance(event, CustomEvent)
    assert event.key == "eventkey"
    assert event.data == data
    assert event.user == USER
    assert event.creation_date >= before


def test_identify_event():
    event = new_identify_event(USER)
    assert isinstance(event, IdentifyEvent)
    assert event.user == USER
    assert event.creation_date <= now_millis()


def test_index_event_holds_user():
    event = IndexEvent(creation_date=1000, user=USER)
    assert event.creation_date == 1000
    assert user_key(event.user) == "userKey"


def test_creation_date_is_mutable():
    event = new_identify_event(USER)
    event.creation_date = 2000
    assert event.creation_date == 2000


def test_user_key_variants():
    assert user_key(USER) == "userKey"
    assert user_key({"name": "Red"}) is None
    assert user_key(None) is None


def test_to_unix_millis_epoch_is_zero():
    assert to_unix_millis(datetime(1970, 1, 1, tzinfo=timezone.utc)) == 0


def test_to_unix_millis_round_trip():
    millis = now_millis()
    moment = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    assert abs(to_unix_millis(moment) - millis) <= 1


def test_naive_datetime_is_utc():
    aware = datetime(2020, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    assert to_unix_millis(aware.replace(tzinfo=None)) == to_unix_millis(aware)


def test_now_millis_matches_current_datetime():
    current = to_unix_millis(datetime.now(timezone.utc))
    assert abs(now_millis() - current) < 5000