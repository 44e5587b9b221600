from flagcore.config import Config
from flagcore.evaluation_detail import fallthrough_reason
from flagcore.event_summarizer import EventSummarizer, EventSummary
from flagcore.events import (
    IndexEvent,
    new_custom_event,
    new_feature_request_event,
    new_identify_event,
)
from flagcore.events_output import EventOutputFormatter
from flagcore.flag import FeatureFlag

USER = {"key": "userKey", "name": "Red"}
USER_JSON = {"key": "userKey", "name": "Red"}
FILTERED_USER_JSON = {"key": "userKey", "privateAttrs": ["name"]}


def _flag():
    return FeatureFlag(key="flagkey", version=11, track_events=True)


def test_feature_event_uses_user_key_by_default():
    fe = new_feature_request_event("flagkey", _flag(), USER, 2, "value", None, None)
    out = EventOutputFormatter().make_output_event(fe)
    assert out == {
        "kind": "feature",
        "creationDate": fe.creation_date,
        "key": "flagkey",
        "userKey": "userKey",
        "variation": 2,
        "value": "value",
        "default": None,
        "version": 11,
    }


def test_feature_event_can_inline_user_and_reason():
    fe = new_feature_request_event("flagkey", _flag(), USER, 2, "value", None, None)
    fe.reason = fallthrough_reason()
    out = EventOutputFormatter(inline_users=True).make_output_event(fe)
    assert out["user"] == USER_JSON
    assert "userKey" not in out
    assert out["reason"] == {"kind": "FALLTHROUGH"}


def test_debug_event_always_inlines_user():
    fe = new_feature_request_event("flagkey", _flag(), USER, 2, "value", None, None)
    fe.debug = True
    out = EventOutputFormatter().make_output_event(fe)
    assert out["kind"] == "debug"
    assert out["user"] == USER_JSON


def test_all_attributes_private_scrubs_user():
    formatter = EventOutputFormatter(all_attributes_private=True)
    ie = new_identify_event(USER)
    assert formatter.make_output_event(ie) == {
        "kind": "identify",
        "key": "userKey",
        "creationDate": ie.creation_date,
        "user": FILTERED_USER_JSON,
    }


def test_named_private_custom_attribute_is_scrubbed():
    user = {"key": "userKey", "custom": {"a": 1, "b": 2}}
    formatter = EventOutputFormatter(private_attribute_names=frozenset({"a"}))
    out = formatter.make_output_event(IndexEvent(creation_date=5, user=user))
    assert out["user"] == {"key": "userKey", "custom": {"b": 2}, "privateAttrs": ["a"]}


def test_custom_event_output():
    data = {"thing": "stuff"}
    ce = new_custom_event("eventkey", USER, data)
    assert EventOutputFormatter().make_output_event(ce) == {
        "kind": "custom",
        "creationDate": ce.creation_date,
        "key": "eventkey",
        "data": data,
        "userKey": "userKey",
    }
    inline = EventOutputFormatter(inline_users=True).make_output_event(ce)
    assert inline["user"] == USER_JSON
    assert "userKey" not in inline


def test_custom_event_without_data_omits_it():
    ce = new_custom_event("eventkey", USER, None)
    assert "data" not in EventOutputFormatter().make_output_event(ce)


def test_unknown_event_gives_none():
    assert EventOutputFormatter().make_output_event(object()) is None


def test_summary_event_counters():
    summarizer = EventSummarizer()
    flag = FeatureFlag(key="flagkey", version=11)
    summarizer.summarize_event(new_feature_request_event("flagkey", flag, USER, 2, "value", "dflt", None))
    summarizer.summarize_event(new_feature_request_event("flagkey", flag, USER, 2, "value", "dflt", None))
    summarizer.summarize_event(new_feature_request_event("badkey", None, USER, None, "d", "d", None))
    summary = summarizer.snapshot()
    out = EventOutputFormatter().make_summary_event(summary)
    assert out["kind"] == "summary"
    assert out["startDate"] == summary.start_date
    assert out["endDate"] == summary.end_date
    assert out["features"]["flagkey"] == {
        "default": "dflt",
        "counters": [{"value": "value", "variation": 2, "version": 11, "count": 2}],
    }
    assert out["features"]["badkey"] == {
        "default": "d",
        "counters": [{"value": "d", "unknown": True, "count": 1}],
    }


def test_make_output_events_appends_summary_only_when_counted():
    formatter = EventOutputFormatter.from_config(Config())
    ie = new_identify_event(USER)
    assert [e["kind"] for e in formatter.make_output_events([ie], EventSummary())] == ["identify"]

    summarizer = EventSummarizer()
    fe = new_feature_request_event("flagkey", _flag(), USER, 2, "value", None, None)
    summarizer.summarize_event(fe)
    kinds = [e["kind"] for e in formatter.make_output_events([ie, fe], summarizer.snapshot())]
    assert kinds == ["identify", "feature", "summary"]


def test_from_config_takes_privacy_options():
    config = Config().replace(inline_users_in_events=True, all_attributes_private=True)
    formatter = EventOutputFormatter.from_config(config)
    fe = new_feature_request_event("flagkey", _flag(), USER, 2, "value", None, None)
    assert formatter.make_output_event(fe)["user"] == FILTERED_USER_JSON