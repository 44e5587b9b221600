"""Snapshot of all flag values for one user, for bootstrapping front-end clients."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from flagcore.evaluation_detail import EvaluationReason
from flagcore.events import now_millis


class FlagsStateOption(Enum):
    """Optional behaviours when building a flags state."""

    CLIENT_SIDE_ONLY = "ClientSideOnly"
    WITH_REASONS = "WithReasons"
    DETAILS_ONLY_FOR_TRACKED_FLAGS = "DetailsOnlyForTrackedFlags"

    def __str__(self) -> str:
        return self.value


@dataclass
class _FlagMetadata:
    variation: Optional[int] = None
    version: Optional[int] = None
    reason: Optional[EvaluationReason] = None
    track_events: Optional[bool] = None
    debug_events_until_date: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.variation is not None:
            data["variation"] = self.variation
        if self.version is not None:
            data["version"] = self.version
        if self.reason is not None:
            data["reason"] = self.reason.to_dict()
        if self.track_events is not None:
            data["trackEvents"] = self.track_events
        if self.debug_events_until_date is not None:
            data["debugEventsUntilDate"] = self.debug_events_until_date
        return data


class FeatureFlagsState:
    """Flag values and metadata recorded for a specific user."""

    def __init__(self, valid: bool = True) -> None:
        self.valid = valid
        self._values: dict[str, Any] = {}
        self._metadata: dict[str, _FlagMetadata] = {}

    def add_flag(
        self,
        flag: Any,
        value: Any,
        variation: Optional[int],
        reason: Optional[EvaluationReason],
        details_only_if_tracked: bool,
    ) -> None:
        """Record the result of evaluating ``flag``."""
        meta = _FlagMetadata(
            variation=variation,
            debug_events_until_date=flag.debug_events_until_date,
        )
        include_detail = not details_only_if_tracked or flag.track_events
        if not include_detail and flag.debug_events_until_date is not None:
            include_detail = flag.debug_events_until_date > now_millis()
        if include_detail:
            meta.version = flag.version
            meta.reason = reason
        if flag.track_events:
            meta.track_events = True
        self._values[flag.key] = value
        self._metadata[flag.key] = meta

    def get_flag_value(self, key: str) -> Any:
        """The recorded value of a flag, or ``None`` if unknown."""
        return self._values.get(key)

    def get_flag_reason(self, key: str) -> Optional[EvaluationReason]:
        """The recorded reason for a flag, or ``None`` if not recorded or unknown."""
        meta = self._metadata.get(key)
        return meta.reason if meta is not None else None

    def to_values_map(self) -> dict[str, Any]:
        """A mapping of flag keys to flag values."""
        return dict(self._values)

    def to_json_dict(self) -> dict[str, Any]:
        """The JSON-ready structure used to bootstrap a front-end client."""
        data: dict[str, Any] = dict(self._values)
        data["$flagsState"] = {key: meta.to_dict() for key, meta in self._metadata.items()}
        data["$valid"] = self.valid
        return data

    def to_json(self) -> str:
        """Serialize to compact JSON."""
        return json.dumps(self.to_json_dict(), separators=(",", ":"), sort_keys=True)