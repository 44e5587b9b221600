"""Counting of flag evaluations for summary events."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any

from flagcore.events import FeatureRequestEvent

NIL_VARIATION = -1


@dataclass(frozen=True)
class CounterKey:
    """Identifies one counter: a flag, a variation and a flag version."""

    key: str
    variation: int
    version: int


@dataclass
class CounterValue:
    """How often a counter was hit, with the value and default seen."""

    count: int
    flag_value: Any
    flag_default: Any


@dataclass
class EventSummary:
    """Counters and the span of creation dates they cover."""

    counters: dict[CounterKey, CounterValue] = field(default_factory=dict)
    start_date: int = 0
    end_date: int = 0


class EventSummarizer:
    """Accumulates summary counters; not thread-safe, used from one worker."""

    def __init__(self) -> None:
        self._state = EventSummary()

    def summarize_event(self, event: Any) -> None:
        """Count ``event`` if it is a feature request event."""
        if not isinstance(event, FeatureRequestEvent):
            return
        key = CounterKey(
            key=event.key,
            variation=event.variation if event.variation is not None else NIL_VARIATION,
            version=event.version if event.version is not None else 0,
        )
        counter = self._state.counters.get(key)
        if counter is not None:
            counter.count += 1
        else:
            self._state.counters[key] = CounterValue(1, event.value, event.default)

        created = event.creation_date
        if self._state.start_date == 0 or created < self._state.start_date:
            self._state.start_date = created
        if created > self._state.end_date:
            self._state.end_date = created

    def snapshot(self) -> EventSummary:
        """A copy of the current summary data."""
        return EventSummary(
            counters={k: dataclasses.replace(v) for k, v in self._state.counters.items()},
            start_date=self._state.start_date,
            end_date=self._state.end_date,
        )

    def reset(self) -> None:
        """Discard all counters."""
        self._state = EventSummary()