"""Feature flag evaluation, an in-memory flag store and analytics event processing."""

__version__ = "0.1.0"

__all__ = [
    "config",
    "evaluation_detail",
    "event_processor",
    "event_summarizer",
    "events",
    "events_output",
    "feature_store",
    "flag",
    "flags_state",
]