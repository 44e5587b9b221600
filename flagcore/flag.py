"""Feature flag model and evaluation."""

from __future__ import annotations

import dataclasses
import hashlib
import struct
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from flagcore.evaluation_detail import (
    EvalErrorKind,
    EvaluationDetail,
    EvaluationReason,
    error_reason,
    fallthrough_reason,
    off_reason,
    prerequisite_failed_reason,
    rule_match_reason,
    target_match_reason,
)
from flagcore.events import FeatureRequestEvent, new_feature_request_event, user_key
from flagcore.feature_store import VersionedDataKind

OPERATOR_SEGMENT_MATCH = "segmentMatch"
USER_KEY_ATTRIBUTE = "key"

_BUILTIN_ATTRIBUTES = frozenset(
    {
        "key",
        "secondary",
        "ip",
        "country",
        "email",
        "firstName",
        "lastName",
        "avatar",
        "name",
        "anonymous",
    }
)


def _float32(value: float) -> float:
    """Round ``value`` to single precision."""
    return struct.unpack("f", struct.pack("f", value))[0]


_LONG_SCALE = _float32(float(0xFFFFFFFFFFFFFFF))


def _field(user: Any, name: str) -> Any:
    if isinstance(user, Mapping):
        return user.get(name)
    return getattr(user, name, None)


def user_attribute(user: Any, attr: str) -> Any:
    """The value of a built-in or custom user attribute, or ``None`` if absent."""
    if user is None:
        return None
    if attr in _BUILTIN_ATTRIBUTES:
        return _field(user, attr)
    custom = _field(user, "custom")
    if isinstance(custom, Mapping):
        return custom.get(attr)
    return None


def _bucketable_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return None


def bucket_user(user: Any, key: str, attr: str, salt: str) -> float:
    """Deterministic bucket in [0, 1) for the user, flag key and salt."""
    id_hash = _bucketable_string(user_attribute(user, attr))
    if id_hash is None:
        return 0.0
    secondary = _field(user, "secondary")
    if secondary is not None:
        id_hash = f"{id_hash}.{secondary}"
    digest = hashlib.sha1(f"{key}.{salt}.{id_hash}".encode("utf-8")).hexdigest()[:15]
    int_value = int(digest, 16)
    return _float32(_float32(float(int_value)) / _LONG_SCALE)


def _op_in(user_value: Any, clause_value: Any) -> bool:
    if isinstance(user_value, bool) != isinstance(clause_value, bool):
        return False
    return user_value == clause_value


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {"in": _op_in}


@dataclass
class WeightedVariation:
    """A share of users, out of 100000, who receive a variation."""

    variation: int
    weight: int


@dataclass
class Rollout:
    """How users are bucketed into variations in a percentage rollout."""

    variations: list[WeightedVariation] = field(default_factory=list)
    bucket_by: Optional[str] = None


@dataclass
class VariationOrRollout:
    """Either a fixed variation or a percentage rollout."""

    variation: Optional[int] = None
    rollout: Optional[Rollout] = None

    def variation_index_for_user(self, user: Any, key: str, salt: str) -> Optional[int]:
        """The variation index for the user, or ``None`` if the data is malformed."""
        if self.variation is not None:
            return self.variation
        if self.rollout is None or not self.rollout.variations:
            return None
        bucket_by = self.rollout.bucket_by or USER_KEY_ATTRIBUTE
        bucket = bucket_user(user, key, bucket_by, salt)
        total = 0.0
        for weighted in self.rollout.variations:
            total = _float32(total + _float32(_float32(float(weighted.weight)) / _float32(100000.0)))
            if bucket < total:
                return weighted.variation
        return None


@dataclass
class Clause:
    """A single matching condition within a rule."""

    attribute: str
    op: str
    values: list[Any] = field(default_factory=list)
    negate: bool = False

    def _maybe_negate(self, result: bool) -> bool:
        return not result if self.negate else result

    def _matches_without_segments(self, user: Any) -> bool:
        user_value = user_attribute(user, self.attribute)
        if user_value is None:
            return False
        match = _OPERATORS.get(self.op)
        if match is None:
            # An unknown operator never matches any value.
            return self._maybe_negate(False)
        candidates = user_value if isinstance(user_value, (list, tuple)) else [user_value]
        return self._maybe_negate(
            any(match(candidate, value) for candidate in candidates for value in self.values)
        )

    def matches_user(self, store: Any, user: Any) -> bool:
        """True if the user satisfies this clause.

        Segment clauses look segments up in ``store``; a segment matches when its
        ``contains_user(user)`` returns true.
        """
        if self.op != OPERATOR_SEGMENT_MATCH:
            return self._matches_without_segments(user)
        for value in self.values:
            if not isinstance(value, str):
                continue
            try:
                segment = store.get(SEGMENTS, value)
            except Exception:
                segment = None
            contains = getattr(segment, "contains_user", None)
            if callable(contains) and contains(user):
                return self._maybe_negate(True)
        return self._maybe_negate(False)


@dataclass
class Rule(VariationOrRollout):
    """AND-ed clauses with the variation or rollout served on a match."""

    id: str = ""
    clauses: list[Clause] = field(default_factory=list)

    def matches_user(self, store: Any, user: Any) -> bool:
        """True if every clause matches the user."""
        return all(clause.matches_user(store, user) for clause in self.clauses)


@dataclass
class Target:
    """User keys that receive a specific variation."""

    values: list[str]
    variation: int


@dataclass
class Prerequisite:
    """Another flag that must return a specific variation."""

    key: str
    variation: int


@dataclass
class FeatureFlag:
    """An individual feature flag."""

    key: str = ""
    version: int = 0
    on: bool = False
    track_events: bool = False
    deleted: bool = False
    prerequisites: list[Prerequisite] = field(default_factory=list)
    salt: str = ""
    sel: str = ""
    targets: list[Target] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)
    fallthrough: VariationOrRollout = field(default_factory=VariationOrRollout)
    off_variation: Optional[int] = None
    variations: list[Any] = field(default_factory=list)
    debug_events_until_date: Optional[int] = None
    client_side: bool = False

    def clone(self) -> "FeatureFlag":
        """A shallow copy of this flag."""
        return dataclasses.replace(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureFlag":
        """Build a flag from its JSON form."""
        return cls(
            key=data.get("key", ""),
            version=int(data.get("version", 0)),
            on=bool(data.get("on", False)),
            track_events=bool(data.get("trackEvents", False)),
            deleted=bool(data.get("deleted", False)),
            prerequisites=[
                Prerequisite(p.get("key", ""), int(p.get("variation", 0)))
                for p in data.get("prerequisites") or []
            ],
            salt=data.get("salt", ""),
            sel=data.get("sel", ""),
            targets=[
                Target(list(t.get("values") or []), int(t.get("variation", 0)))
                for t in data.get("targets") or []
            ],
            rules=[_rule_from_dict(r) for r in data.get("rules") or []],
            fallthrough=VariationOrRollout(**_vr_fields(data.get("fallthrough") or {})),
            off_variation=data.get("offVariation"),
            variations=list(data.get("variations") or []),
            debug_events_until_date=data.get("debugEventsUntilDate"),
            client_side=bool(data.get("clientSide", False)),
        )

    def evaluate_detail(
        self, user: Any, store: Any, send_reasons_in_events: bool
    ) -> tuple[EvaluationDetail, list[FeatureRequestEvent]]:
        """Evaluate for the user; return the detail and any prerequisite events."""
        if not self.on:
            return self._off_value(off_reason()), []
        failure, events = self._check_prerequisites(user, store, send_reasons_in_events)
        if failure is not None:
            return self._off_value(failure), events
        return self._evaluate_internal(user, store), events

    def evaluate(self, user: Any, store: Any) -> tuple[Any, Optional[int], list[FeatureRequestEvent]]:
        """Evaluate for the user; return value, variation index and prerequisite events."""
        detail, events = self.evaluate_detail(user, store, False)
        return detail.value, detail.variation_index, events

    def _check_prerequisites(
        self, user: Any, store: Any, send_reasons_in_events: bool
    ) -> tuple[Optional[EvaluationReason], list[FeatureRequestEvent]]:
        events: list[FeatureRequestEvent] = []
        for prereq in self.prerequisites:
            try:
                prereq_flag = store.get(FEATURES, prereq.key)
            except Exception:
                prereq_flag = None
            if not isinstance(prereq_flag, FeatureFlag):
                return prerequisite_failed_reason(prereq.key), events
            result, more_events = prereq_flag.evaluate_detail(user, store, send_reasons_in_events)
            prereq_ok = prereq_flag.on and result.variation_index == prereq.variation
            events.extend(more_events)
            event = new_feature_request_event(
                prereq.key, prereq_flag, user, result.variation_index, result.value, None, self.key
            )
            if send_reasons_in_events:
                event.reason = result.reason
            events.append(event)
            if not prereq_ok:
                return prerequisite_failed_reason(prereq.key), events
        return None, events

    def _evaluate_internal(self, user: Any, store: Any) -> EvaluationDetail:
        key = user_key(user)
        for target in self.targets:
            if key in target.values:
                return self._variation(target.variation, target_match_reason())
        for index, rule in enumerate(self.rules):
            if rule.matches_user(store, user):
                return self._value_for(rule, user, rule_match_reason(index, rule.id))
        return self._value_for(self.fallthrough, user, fallthrough_reason())

    def _variation(self, index: int, reason: EvaluationReason) -> EvaluationDetail:
        if not 0 <= index < len(self.variations):
            return EvaluationDetail(reason=error_reason(EvalErrorKind.MALFORMED_FLAG))
        return EvaluationDetail(value=self.variations[index], variation_index=index, reason=reason)

    def _off_value(self, reason: EvaluationReason) -> EvaluationDetail:
        if self.off_variation is None:
            return EvaluationDetail(reason=reason)
        return self._variation(self.off_variation, reason)

    def _value_for(
        self, choice: VariationOrRollout, user: Any, reason: EvaluationReason
    ) -> EvaluationDetail:
        index = choice.variation_index_for_user(user, self.key, self.salt)
        if index is None:
            return EvaluationDetail(reason=error_reason(EvalErrorKind.MALFORMED_FLAG))
        return self._variation(index, reason)


def _vr_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    rollout_data = data.get("rollout")
    rollout = None
    if rollout_data is not None:
        rollout = Rollout(
            variations=[
                WeightedVariation(int(w.get("variation", 0)), int(w.get("weight", 0)))
                for w in rollout_data.get("variations") or []
            ],
            bucket_by=rollout_data.get("bucketBy"),
        )
    return {"variation": data.get("variation"), "rollout": rollout}


def _rule_from_dict(data: Mapping[str, Any]) -> Rule:
    return Rule(
        id=data.get("id", ""),
        clauses=[
            Clause(
                attribute=c.get("attribute", ""),
                op=c.get("op", ""),
                values=list(c.get("values") or []),
                negate=bool(c.get("negate", False)),
            )
            for c in data.get("clauses") or []
        ],
        **_vr_fields(data),
    )


def _deleted_flag(key: str, version: int) -> FeatureFlag:
    return FeatureFlag(key=key, version=version, deleted=True)


FEATURES = VersionedDataKind("features", _deleted_flag)
SEGMENTS = VersionedDataKind("segments")