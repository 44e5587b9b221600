"""Asynchronous buffering and delivery of analytics events."""

from __future__ import annotations

import abc
import dataclasses
import json
import logging
import queue
import random
import threading
import time
import urllib.error
import urllib.request
from collections import OrderedDict
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

from flagcore.config import DEFAULT_CONFIG, Config
from flagcore.event_summarizer import EventSummarizer, EventSummary
from flagcore.events import (
    FeatureRequestEvent,
    IdentifyEvent,
    IndexEvent,
    now_millis,
    to_unix_millis,
    user_key,
)
from flagcore.events_output import EventOutputFormatter

MAX_FLUSH_WORKERS = 5
EVENT_SCHEMA_HEADER = "X-LaunchDarkly-Event-Schema"
CURRENT_EVENT_SCHEMA = "3"


def is_http_error_recoverable(status: int) -> bool:
    """True if a request that failed with ``status`` may succeed when retried."""
    if 400 <= status < 500:
        return status in (400, 408, 429)
    return True


def _http_error_message(status: int, context: str, recovery: str) -> str:
    if status in (401, 403):
        detail = " (invalid SDK key)"
    else:
        detail = ""
    return f"Received HTTP error {status}{detail} for {context} - {recovery}"


def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


@dataclass
class _Response:
    status: int
    headers: dict[str, str] = field(default_factory=dict)


class HttpEventSender:
    """Posts request bodies over HTTP with the standard library."""

    def __init__(self, timeout: float = DEFAULT_CONFIG.timeout) -> None:
        self.timeout = timeout

    def post(self, url: str, body: bytes, headers: Mapping[str, str]) -> _Response:
        """POST ``body`` to ``url``; return the status and headers of the reply.

        Connection failures raise ``OSError``; HTTP error statuses are returned.
        """
        request = urllib.request.Request(url, data=body, headers=dict(headers), method="POST")
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as reply:
                reply.read()
                return _Response(reply.status, dict(reply.headers.items()))
        except urllib.error.HTTPError as error:
            try:
                error.read()
            finally:
                error.close()
            return _Response(error.code, dict(error.headers.items()) if error.headers else {})


class EventProcessor(abc.ABC):
    """Dispatches analytics events."""

    @abc.abstractmethod
    def send_event(self, event: Any) -> None:
        """Record an event asynchronously."""

    @abc.abstractmethod
    def flush(self) -> None:
        """Ask for buffered events to be sent as soon as possible."""

    @abc.abstractmethod
    def close(self) -> None:
        """Deliver pending events and stop; later calls are ignored."""

    def __enter__(self) -> "EventProcessor":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class NullEventProcessor(EventProcessor):
    """An event processor that discards everything."""

    def send_event(self, event: Any) -> None:
        """Discard the event."""

    def flush(self) -> None:
        """Do nothing."""

    def close(self) -> None:
        """Do nothing."""


class EventBuffer:
    """Events waiting to be flushed, together with their summary counters."""

    def __init__(self, capacity: int, logger: Optional[logging.Logger] = None) -> None:
        self.capacity = capacity
        self.events: list[Any] = []
        self.capacity_exceeded = False
        self._summarizer = EventSummarizer()
        self._logger = logger or logging.getLogger("flagcore.events")

    def add_event(self, event: Any) -> None:
        """Append an event unless the buffer is full, warning once when it is."""
        if len(self.events) >= self.capacity:
            if not self.capacity_exceeded:
                self.capacity_exceeded = True
                self._logger.warning(
                    "Exceeded event queue capacity. Increase capacity to avoid dropping events."
                )
            return
        self.capacity_exceeded = False
        self.events.append(event)

    def add_to_summary(self, event: Any) -> None:
        """Count the event in the summary."""
        self._summarizer.summarize_event(event)

    def get_payload(self) -> tuple[list[Any], EventSummary]:
        """The buffered events and a snapshot of the summary."""
        return list(self.events), self._summarizer.snapshot()

    def clear(self) -> None:
        """Drop all buffered events and counters."""
        self.events = []
        self._summarizer.reset()


class _LruCache:
    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._keys: OrderedDict[str, None] = OrderedDict()

    def add(self, key: str) -> bool:
        """Remember ``key``; return True if it was already known."""
        if key in self._keys:
            self._keys.move_to_end(key)
            return True
        self._keys[key] = None
        while len(self._keys) > max(self._capacity, 0):
            self._keys.popitem(last=False)
        return False

    def clear(self) -> None:
        self._keys.clear()


class _WaitGroup:
    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    def add(self) -> None:
        with self._cond:
            self._count += 1

    def done(self) -> None:
        with self._cond:
            self._count -= 1
            if self._count <= 0:
                self._cond.notify_all()

    def wait(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._count <= 0)


@dataclass
class _SendEvent:
    event: Any


@dataclass
class _Flush:
    pass


@dataclass
class _Sync:
    reply: threading.Event = field(default_factory=threading.Event)


@dataclass
class _Shutdown:
    reply: threading.Event = field(default_factory=threading.Event)


class DefaultEventProcessor(EventProcessor):
    """Buffers events on a background thread and posts them in batches.

    ``client`` must provide ``post(url, body, headers)`` returning an object with
    ``status`` and ``headers``. Without one, ``config.http_client_factory`` is used
    if set, otherwise an ``HttpEventSender``.
    """

    def __init__(
        self,
        sdk_key: str,
        config: Config = DEFAULT_CONFIG,
        client: Any = None,
        *,
        retry_delay: float = 1.0,
    ) -> None:
        if client is None:
            if config.http_client_factory is not None:
                client = config.http_client_factory(config)
            else:
                client = HttpEventSender(config.timeout)
        self._sdk_key = sdk_key
        self._config = config
        self._client = client
        self._retry_delay = retry_delay
        self._logger = config.logger
        self._events_uri = config.events_endpoint()
        self._formatter = EventOutputFormatter.from_config(config)

        self._state_lock = threading.Lock()
        self._last_known_past_time = 0
        self._disabled = False

        self._close_lock = threading.Lock()
        self._closed = False

        self._inbox: queue.Queue[Any] = queue.Queue(maxsize=max(config.capacity, 0))
        self._flush_queue: queue.Queue[Any] = queue.Queue(maxsize=1)
        self._workers = _WaitGroup()
        for _ in range(MAX_FLUSH_WORKERS):
            threading.Thread(target=self._run_flush_worker, daemon=True).start()
        threading.Thread(target=self._run_main_loop, daemon=True).start()

    def send_event(self, event: Any) -> None:
        """Queue an event for processing."""
        if not self._closed:
            self._inbox.put(_SendEvent(event))

    def flush(self) -> None:
        """Ask for a flush as soon as possible."""
        if not self._closed:
            self._inbox.put(_Flush())

    def close(self) -> None:
        """Flush, wait for all deliveries to finish and stop."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._inbox.put(_Flush())
        message = _Shutdown()
        self._inbox.put(message)
        message.reply.wait()

    def wait_until_inactive(self) -> None:
        """Block until queued messages are processed and flushes have finished."""
        if self._closed:
            return
        message = _Sync()
        self._inbox.put(message)
        message.reply.wait()

    def _run_main_loop(self) -> None:
        config = self._config
        buffer = EventBuffer(config.capacity, self._logger)
        user_keys = _LruCache(config.user_keys_capacity)
        flush_interval = config.flush_interval
        if flush_interval <= 0:
            flush_interval = DEFAULT_CONFIG.flush_interval
        reset_interval = config.user_keys_flush_interval
        if reset_interval <= 0:
            reset_interval = DEFAULT_CONFIG.user_keys_flush_interval
        next_flush = time.monotonic() + flush_interval
        next_reset = time.monotonic() + reset_interval

        while True:
            timeout = max(0.0, min(next_flush, next_reset) - time.monotonic())
            try:
                message = self._inbox.get(timeout=timeout)
            except queue.Empty:
                message = None

            if isinstance(message, _Shutdown):
                self._workers.wait()
                for _ in range(MAX_FLUSH_WORKERS):
                    self._flush_queue.put(None)
                message.reply.set()
                return

            try:
                if isinstance(message, _SendEvent):
                    self._process_event(message.event, buffer, user_keys)
                elif isinstance(message, _Flush):
                    self._trigger_flush(buffer)
                elif isinstance(message, _Sync):
                    self._workers.wait()
                    message.reply.set()
                current = time.monotonic()
                if current >= next_flush:
                    self._trigger_flush(buffer)
                    next_flush = current + flush_interval
                if current >= next_reset:
                    user_keys.clear()
                    next_reset = current + reset_interval
            except Exception:
                self._logger.exception("Unexpected error in event processing thread")
                if isinstance(message, _Sync):
                    message.reply.set()

    def _process_event(self, event: Any, buffer: EventBuffer, user_keys: _LruCache) -> None:
        buffer.add_to_summary(event)

        will_add_full_event = False
        debug_event = None
        if isinstance(event, FeatureRequestEvent):
            if self._should_sample():
                will_add_full_event = event.track_events
                if self._should_debug(event):
                    debug_event = dataclasses.replace(event, debug=True)
        else:
            will_add_full_event = self._should_sample()

        if not (will_add_full_event and self._config.inline_users_in_events):
            if not _notice_user(user_keys, event.user) and not isinstance(event, IdentifyEvent):
                buffer.add_event(IndexEvent(creation_date=event.creation_date, user=event.user))
        if will_add_full_event:
            buffer.add_event(event)
        if debug_event is not None:
            buffer.add_event(debug_event)

    def _should_sample(self) -> bool:
        interval = self._config.sampling_interval
        return interval == 0 or random.randrange(interval) == 0

    def _should_debug(self, event: FeatureRequestEvent) -> bool:
        until = event.debug_events_until_date
        if until is None:
            return False
        with self._state_lock:
            last_known = self._last_known_past_time
        return until > last_known and until > now_millis()

    def _is_disabled(self) -> bool:
        with self._state_lock:
            return self._disabled

    def _trigger_flush(self, buffer: EventBuffer) -> None:
        if self._is_disabled():
            buffer.clear()
            return
        events, summary = buffer.get_payload()
        if not events and not summary.counters:
            return
        self._workers.add()
        try:
            self._flush_queue.put_nowait((events, summary))
        except queue.Full:
            # A worker has not yet taken the previous payload; keep the buffer.
            self._workers.done()
            return
        buffer.clear()

    def _run_flush_worker(self) -> None:
        while True:
            payload = self._flush_queue.get()
            if payload is None:
                return
            try:
                events, summary = payload
                output = self._formatter.make_output_events(events, summary)
                if output:
                    response = self._post_events(output)
                    if response is not None:
                        self._handle_response(response)
            except Exception:
                self._logger.exception("Unexpected error while flushing events")
            finally:
                self._workers.done()

    def _post_events(self, output_events: list[Any]) -> Any:
        try:
            body = json.dumps(output_events, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as error:
            self._logger.error("Unexpected error marshalling event json: %s", error)
            return None
        headers = {
            "Authorization": self._sdk_key,
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
            EVENT_SCHEMA_HEADER: CURRENT_EVENT_SCHEMA,
        }
        response = None
        for attempt in range(2):
            if attempt > 0:
                self._logger.warning("Will retry posting events after %s second(s)", self._retry_delay)
                time.sleep(self._retry_delay)
            try:
                response = self._client.post(self._events_uri, body, headers)
            except Exception as error:
                response = None
                self._logger.warning("Unexpected error while sending events: %s", error)
                continue
            if response.status >= 400 and is_http_error_recoverable(response.status):
                self._logger.warning("Received error status %d when sending events", response.status)
                continue
            break
        return response

    def _handle_response(self, response: Any) -> None:
        status = response.status
        if not 200 <= status < 300:
            self._logger.warning(
                _http_error_message(status, "posting events", "some events were dropped")
            )
            if not is_http_error_recoverable(status):
                with self._state_lock:
                    self._disabled = True
            return
        date = _header(getattr(response, "headers", None), "Date")
        if date is None:
            return
        try:
            moment = parsedate_to_datetime(date)
        except (TypeError, ValueError):
            return
        with self._state_lock:
            self._last_known_past_time = to_unix_millis(moment)


def _notice_user(user_keys: _LruCache, user: Any) -> bool:
    key = user_key(user)
    if key is None:
        return True
    return user_keys.add(key)