"""Analytics events produced by the client."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from flagcore.evaluation_detail import EvaluationReason

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MILLISECOND = timedelta(milliseconds=1)


@dataclass
class _EventBase:
    creation_date: int
    user: Any


@dataclass
class FeatureRequestEvent(_EventBase):
    """Evaluation of a feature flag or of one of its prerequisites."""

    key: str
    variation: Optional[int] = None
    value: Any = None
    default: Any = None
    version: Optional[int] = None
    prereq_of: Optional[str] = None
    reason: Optional[EvaluationReason] = None
    track_events: bool = False
    debug: bool = False
    debug_events_until_date: Optional[int] = None


@dataclass
class CustomEvent(_EventBase):
    """An event recorded by an explicit track call."""

    key: str
    data: Any = None


@dataclass
class IdentifyEvent(_EventBase):
    """An event recorded by an explicit identify call."""


@dataclass
class IndexEvent(_EventBase):
    """An event made internally to carry the details of a newly seen user."""


def now_millis() -> int:
    """Current time in milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def to_unix_millis(moment: datetime) -> int:
    """Milliseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _ONE_MILLISECOND


def user_key(user: Any) -> Optional[str]:
    """The key of a user given as a mapping or an object, or ``None``."""
    if user is None:
        return None
    if isinstance(user, Mapping):
        return user.get("key")
    return getattr(user, "key", None)


def new_feature_request_event(
    key: str,
    flag: Any,
    user: Any,
    variation: Optional[int],
    value: Any,
    default: Any,
    prereq_of: Optional[str],
) -> FeatureRequestEvent:
    """Create a feature request event, taking flag metadata when a flag is given."""
    event = FeatureRequestEvent(
        creation_date=now_millis(),
        user=user,
        key=key,
        variation=variation,
        value=value,
        default=default,
        prereq_of=prereq_of,
    )
    if flag is not None:
        event.version = flag.version
        event.track_events = flag.track_events
        event.debug_events_until_date = flag.debug_events_until_date
    return event


def new_custom_event(key: str, user: Any, data: Any) -> CustomEvent:
    """Create a custom event without sending it."""
    return CustomEvent(creation_date=now_millis(), user=user, key=key, data=data)


def new_identify_event(user: Any) -> IdentifyEvent:
    """Create an identify event without sending it."""
    return IdentifyEvent(creation_date=now_millis(), user=user)