"""Conversion of analytics events into the form sent to the events service."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from flagcore.event_summarizer import NIL_VARIATION, EventSummary
from flagcore.events import (
    CustomEvent,
    FeatureRequestEvent,
    IdentifyEvent,
    IndexEvent,
    user_key,
)

FEATURE_REQUEST_EVENT_KIND = "feature"
FEATURE_DEBUG_EVENT_KIND = "debug"
CUSTOM_EVENT_KIND = "custom"
IDENTIFY_EVENT_KIND = "identify"
INDEX_EVENT_KIND = "index"
SUMMARY_EVENT_KIND = "summary"

_PRIVATABLE_ATTRIBUTES = frozenset(
    {"avatar", "country", "email", "firstName", "ip", "lastName", "name", "secondary"}
)


def _user_to_dict(user: Any) -> Optional[dict[str, Any]]:
    if user is None:
        return None
    if isinstance(user, Mapping):
        data = dict(user)
    elif callable(getattr(user, "to_dict", None)):
        data = dict(user.to_dict())
    elif dataclasses.is_dataclass(user) and not isinstance(user, type):
        data = dataclasses.asdict(user)
    else:
        data = dict(vars(user))
    return {name: value for name, value in data.items() if value is not None}


@dataclass
class EventOutputFormatter:
    """Turns events and summaries into JSON-ready dictionaries."""

    private_attribute_names: frozenset[str] = field(default_factory=frozenset)
    all_attributes_private: bool = False
    inline_users: bool = False

    @classmethod
    def from_config(cls, config: Any) -> "EventOutputFormatter":
        """A formatter using the privacy and inlining options of ``config``."""
        return cls(
            private_attribute_names=frozenset(config.private_attribute_names),
            all_attributes_private=config.all_attributes_private,
            inline_users=config.inline_users_in_events,
        )

    def _is_private(self, name: str, user_private: set[str]) -> bool:
        return (
            self.all_attributes_private
            or name in self.private_attribute_names
            or name in user_private
        )

    def _scrub_user(self, user: Any) -> Optional[dict[str, Any]]:
        data = _user_to_dict(user)
        if data is None:
            return None
        user_private = set(data.pop("privateAttributeNames", None) or ())
        hidden: list[str] = []
        result: dict[str, Any] = {}
        for name, value in data.items():
            if name == "custom":
                continue
            if name in _PRIVATABLE_ATTRIBUTES and self._is_private(name, user_private):
                hidden.append(name)
            else:
                result[name] = value
        custom = data.get("custom")
        if isinstance(custom, Mapping):
            kept = {}
            for name, value in custom.items():
                if self._is_private(name, user_private):
                    hidden.append(name)
                else:
                    kept[name] = value
            if kept:
                result["custom"] = kept
        elif custom is not None:
            result["custom"] = custom
        if hidden:
            result["privateAttrs"] = sorted(hidden)
        return result

    def make_output_events(
        self, events: Iterable[Any], summary: EventSummary
    ) -> list[dict[str, Any]]:
        """Format all events, followed by a summary event if there are counters."""
        output = [
            formatted
            for formatted in (self.make_output_event(event) for event in events)
            if formatted is not None
        ]
        if summary.counters:
            output.append(self.make_summary_event(summary))
        return output

    def make_output_event(self, event: Any) -> Optional[dict[str, Any]]:
        """Format one event; unknown kinds of event give ``None``."""
        if isinstance(event, FeatureRequestEvent):
            data: dict[str, Any] = {
                "kind": FEATURE_DEBUG_EVENT_KIND if event.debug else FEATURE_REQUEST_EVENT_KIND,
                "creationDate": event.creation_date,
                "key": event.key,
            }
            self._add_user(data, event.user, self.inline_users or event.debug)
            if event.variation is not None:
                data["variation"] = event.variation
            data["value"] = event.value
            data["default"] = event.default
            if event.version is not None:
                data["version"] = event.version
            if event.prereq_of is not None:
                data["prereqOf"] = event.prereq_of
            if event.reason is not None:
                data["reason"] = event.reason.to_dict()
            return data
        if isinstance(event, CustomEvent):
            data = {
                "kind": CUSTOM_EVENT_KIND,
                "creationDate": event.creation_date,
                "key": event.key,
            }
            self._add_user(data, event.user, self.inline_users)
            if event.data is not None:
                data["data"] = event.data
            return data
        if isinstance(event, IdentifyEvent):
            return {
                "kind": IDENTIFY_EVENT_KIND,
                "creationDate": event.creation_date,
                "key": user_key(event.user),
                "user": self._scrub_user(event.user),
            }
        if isinstance(event, IndexEvent):
            return {
                "kind": INDEX_EVENT_KIND,
                "creationDate": event.creation_date,
                "user": self._scrub_user(event.user),
            }
        return None

    def _add_user(self, data: dict[str, Any], user: Any, inline: bool) -> None:
        if inline:
            scrubbed = self._scrub_user(user)
            if scrubbed is not None:
                data["user"] = scrubbed
        else:
            key = user_key(user)
            if key is not None:
                data["userKey"] = key

    def make_summary_event(self, summary: EventSummary) -> dict[str, Any]:
        """Format summary counters as a summary event."""
        features: dict[str, dict[str, Any]] = {}
        for key, value in summary.counters.items():
            flag_data = features.setdefault(
                key.key, {"default": value.flag_default, "counters": []}
            )
            counter: dict[str, Any] = {"value": value.flag_value}
            if key.variation != NIL_VARIATION:
                counter["variation"] = key.variation
            if key.version == 0:
                counter["unknown"] = True
            else:
                counter["version"] = key.version
            counter["count"] = value.count
            flag_data["counters"].append(counter)
        return {
            "kind": SUMMARY_EVENT_KIND,
            "startDate": summary.start_date,
            "endDate": summary.end_date,
            "features": features,
        }