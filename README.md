# flagcore

A small library for evaluating feature flags against users and reporting
analytics events about those evaluations. It has no dependencies outside the
standard library.

## What is in it

- `flagcore.flag` — the flag model: `FeatureFlag`, `Rule`, `Clause`,
  `VariationOrRollout`, `Rollout`, `WeightedVariation`, `Target` and
  `Prerequisite`. `FeatureFlag.from_dict` builds a flag from its JSON form.
  `FeatureFlag.evaluate_detail(user, store, send_reasons_in_events)` returns an
  `EvaluationDetail` and the list of `FeatureRequestEvent`s produced by
  prerequisite flags; `FeatureFlag.evaluate(user, store)` returns value,
  variation index and those events. `bucket_user` gives the deterministic
  rollout bucket (a number in [0, 1)) and `user_attribute` reads a built-in or
  custom user attribute. `FEATURES` and `SEGMENTS` are the store kinds used
  for flags and segments.
- `flagcore.evaluation_detail` — `EvaluationDetail` (value, variation index,
  reason; `is_default_value()`), `EvaluationReason` with `to_dict`/`from_dict`
  and `to_json`/`from_json`, the enums `EvalReasonKind` and `EvalErrorKind`,
  and the constructors `off_reason()`, `target_match_reason()`,
  `rule_match_reason(rule_index, rule_id)`,
  `prerequisite_failed_reason(key)`, `fallthrough_reason()` and
  `error_reason(error_kind)`. `str()` of a reason gives forms such as
  `OFF`, `RULE_MATCH(1,id)` or `ERROR(EXCEPTION)`.
- `flagcore.feature_store` — `VersionedDataKind` and `InMemoryFeatureStore`,
  a thread-safe store with `init`, `get`, `all`, `upsert`, `delete` and
  `initialized`. `upsert` and `delete` only take effect when the new version
  is greater than the stored one; deleted items are kept as placeholders and
  are hidden from `get` and `all`.
- `flagcore.flags_state` — `FeatureFlagsState`, a per-user snapshot of flag
  values with `get_flag_value`, `get_flag_reason`, `to_values_map`,
  `to_json_dict` and `to_json`; the JSON holds the values, a `$flagsState`
  object of metadata and `$valid`. `FlagsStateOption` names the options
  `CLIENT_SIDE_ONLY`, `WITH_REASONS` and `DETAILS_ONLY_FOR_TRACKED_FLAGS`.
- `flagcore.events` — `FeatureRequestEvent`, `CustomEvent`, `IdentifyEvent`,
  `IndexEvent` and the constructors `new_feature_request_event`,
  `new_custom_event` and `new_identify_event`, plus `now_millis`,
  `to_unix_millis` and `user_key`.
- `flagcore.event_summarizer` — `EventSummarizer`, which counts feature
  request events per flag key, variation and version (`CounterKey`,
  `CounterValue`, `EventSummary`).
- `flagcore.events_output` — `EventOutputFormatter`, which turns events and a
  summary into the JSON-ready dictionaries that are posted, hiding private
  user attributes (listed under `privateAttrs`) and either inlining users or
  giving only their key.
- `flagcore.event_processor` — `DefaultEventProcessor`, which buffers events
  on a background thread and posts them in batches; `NullEventProcessor`,
  which discards them; `EventBuffer`; `HttpEventSender`, the default
  transport built on `urllib`; and `is_http_error_recoverable(status)`.
- `flagcore.config` — `Config`, a frozen dataclass of options (times in
  seconds), with `replace(**kwargs)`, `events_endpoint()` and
  `effective_poll_interval()`; `DEFAULT_CONFIG` holds the defaults.

Users may be given either as mappings (`{"key": "user-1", "name": "Red",
"custom": {...}}`) or as objects with the same attributes.

## Evaluating a flag

```python
from flagcore.feature_store import InMemoryFeatureStore
from flagcore.flag import FeatureFlag

store = InMemoryFeatureStore()
flag = FeatureFlag.from_dict({
    "key": "new-dashboard",
    "version": 3,
    "on": True,
    "fallthrough": {"variation": 0},
    "offVariation": 1,
    "variations": [True, False],
})

detail, prerequisite_events = flag.evaluate_detail({"key": "user-1"}, store, False)
print(detail.value, detail.variation_index, detail.reason)  # True 0 FALLTHROUGH
```

Evaluation checks, in order: whether the flag is on, its prerequisites (looked
up in the store under `FEATURES`), its targets, its rules and finally its
fallthrough. A variation index outside the flag's variations, or a
fallthrough or rule with neither a variation nor a usable rollout, gives an
`ERROR(MALFORMED_FLAG)` reason with no value.

## Sending events

```python
from flagcore.config import Config
from flagcore.event_processor import DefaultEventProcessor
from flagcore.events import new_identify_event

config = Config().replace(events_uri="http://localhost:8030")
processor = DefaultEventProcessor("placeholder", config)
processor.send_event(new_identify_event({"key": "user-1"}))
processor.flush()
processor.close()
```

Events are posted to `events_uri` followed by `/bulk`, or to
`events_endpoint_uri` exactly when that is set. The first argument is sent
as the `Authorization` header. A connection failure or a recoverable error
status is retried once after `retry_delay` seconds (one second by default).
A 4xx status other than 400, 408 and 429 stops the processor from sending any
further events. `close()` flushes whatever is buffered and waits for
deliveries to finish; the processor can also be used as a context manager.

To post through something other than `HttpEventSender`, pass a `client`
object, or set `Config.http_client_factory` to a callable taking the config;
either must provide `post(url, body, headers)` returning an object with
`status` and `headers`.

## What it does not do

- There is no client object that fetches flags from a service: nothing here
  streams or polls for flag data. `Config` carries options such as
  `stream_uri`, `stream`, `poll_interval` and `update_processor_factory`, but
  no code in the package acts on them; flag data has to be put into the store
  yourself with `init` or `upsert`.
- Clauses support only the `in` operator and `segmentMatch`; any other
  operator never matches. There is no segment model: a `segmentMatch` clause
  matches when the object stored under `SEGMENTS` has a `contains_user(user)`
  method that returns true.
- The only store is in memory; there is no persistent storage.

## Running the tests

```
pip install ".[test]"
pytest
```