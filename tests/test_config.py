import dataclasses

import pytest

from flagcore.config import DEFAULT_CONFIG, MINIMUM_POLL_INTERVAL, Config


def test_defaults_match_documented_values():
    config = Config()
    assert config.base_uri == "https://app.launchdarkly.com"
    assert config.stream_uri == "https://stream.launchdarkly.com"
    assert config.events_uri == "https://events.launchdarkly.com"
    assert config.capacity == 10000
    assert config.flush_interval == 5.0
    assert config.poll_interval == MINIMUM_POLL_INTERVAL == 30.0
    assert config.timeout == 3.0
    assert config.stream is True
    assert config.send_events is True
    assert config.offline is False
    assert config.use_ldd is False
    assert config.user_keys_capacity == 1000
    assert config.user_keys_flush_interval == 300.0
    assert config.user_agent == ""


def test_default_path_is_added_to_events_uri():
    config = DEFAULT_CONFIG.replace(events_uri="http://fake/")
    assert config.events_endpoint() == "http://fake/bulk"


def test_trailing_slash_is_optional_for_events_uri():
    config = DEFAULT_CONFIG.replace(events_uri="http://fake")
    assert config.events_endpoint() == "http://fake/bulk"


def test_default_path_is_not_added_to_custom_endpoint():
    config = DEFAULT_CONFIG.replace(events_endpoint_uri="http://fake/")
    assert config.events_endpoint() == "http://fake/"


def test_default_events_endpoint():
    assert Config().events_endpoint() == "https://events.launchdarkly.com/bulk"


@pytest.mark.parametrize(
    "interval, expected",
    [(1.0, 30.0), (29.9, 30.0), (30.0, 30.0), (60.0, 60.0)],
)
def test_effective_poll_interval_never_below_minimum(interval, expected):
    assert Config(poll_interval=interval).effective_poll_interval() == expected


def test_replace_returns_changed_copy():
    original = Config()
    changed = original.replace(capacity=2000, user_agent="SecretAgent")
    assert changed.capacity == 2000
    assert changed.user_agent == "SecretAgent"
    assert original.capacity == 10000
    assert original.user_agent == ""


def test_replace_stores_private_names_as_tuple():
    config = Config().replace(private_attribute_names=["name", "email"])
    assert config.private_attribute_names == ("name", "email")


def test_config_is_immutable():
    config = Config()
    with pytest.raises(dataclasses.FrozenInstanceError):
        setattr(config, "capacity", 5)
    assert config.capacity == 10000


def test_http_client_factory_is_kept():
    def factory(cfg):
        return ("client", cfg.timeout)

    config = Config(http_client_factory=factory, timeout=7.0)
    assert config.http_client_factory(config) == ("client", 7.0)


def test_replace_rejects_unknown_option():
    with pytest.raises(TypeError):
        Config().replace(no_such_option=1)