"""Client configuration."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

MINIMUM_POLL_INTERVAL = 30.0
"""Smallest polling interval in seconds; shorter intervals are raised to this."""

DEFAULT_URI_PATH = "/bulk"


def _default_logger() -> logging.Logger:
    return logging.getLogger("flagcore")


@dataclass(frozen=True)
class Config:
    """Advanced configuration options for the client.

    Intervals and timeouts are given in seconds.
    """

    base_uri: str = "https://app.launchdarkly.com"
    stream_uri: str = "https://stream.launchdarkly.com"
    events_uri: str = "https://events.launchdarkly.com"
    events_endpoint_uri: str = ""
    capacity: int = 10000
    flush_interval: float = 5.0
    sampling_interval: int = 0
    poll_interval: float = MINIMUM_POLL_INTERVAL
    logger: logging.Logger = field(default_factory=_default_logger)
    timeout: float = 3.0
    feature_store: Any = None
    stream: bool = True
    use_ldd: bool = False
    send_events: bool = True
    offline: bool = False
    all_attributes_private: bool = False
    inline_users_in_events: bool = False
    private_attribute_names: tuple[str, ...] = ()
    update_processor: Any = None
    update_processor_factory: Optional[Callable[[str, "Config"], Any]] = None
    event_processor: Any = None
    user_keys_capacity: int = 1000
    user_keys_flush_interval: float = 300.0
    user_agent: str = ""
    http_client_factory: Optional[Callable[["Config"], Any]] = None

    def events_endpoint(self) -> str:
        """The full URI that analytics events are posted to."""
        if self.events_endpoint_uri:
            return self.events_endpoint_uri
        return self.events_uri.rstrip("/") + DEFAULT_URI_PATH

    def effective_poll_interval(self) -> float:
        """The polling interval, never less than the minimum."""
        return max(self.poll_interval, MINIMUM_POLL_INTERVAL)

    def replace(self, **kwargs: Any) -> "Config":
        """Return a copy with the given options changed."""
        if "private_attribute_names" in kwargs:
            kwargs["private_attribute_names"] = tuple(kwargs["private_attribute_names"])
        return dataclasses.replace(self, **kwargs)


DEFAULT_CONFIG = Config()