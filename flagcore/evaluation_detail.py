"""Evaluation results and the reasons that explain them."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class EvalReasonKind(str, Enum):
    """General category of an evaluation reason."""

    OFF = "OFF"
    TARGET_MATCH = "TARGET_MATCH"
    RULE_MATCH = "RULE_MATCH"
    PREREQUISITE_FAILED = "PREREQUISITE_FAILED"
    FALLTHROUGH = "FALLTHROUGH"
    ERROR = "ERROR"


class EvalErrorKind(str, Enum):
    """Kind of error that stopped a flag evaluation."""

    CLIENT_NOT_READY = "CLIENT_NOT_READY"
    FLAG_NOT_FOUND = "FLAG_NOT_FOUND"
    MALFORMED_FLAG = "MALFORMED_FLAG"
    USER_NOT_SPECIFIED = "USER_NOT_SPECIFIED"
    WRONG_TYPE = "WRONG_TYPE"
    EXCEPTION = "EXCEPTION"


@dataclass(frozen=True)
class EvaluationReason:
    """Why a flag evaluation produced a particular value.

    Only the fields that belong to ``kind`` are meaningful: ``rule_index`` and
    ``rule_id`` for RULE_MATCH, ``prerequisite_key`` for PREREQUISITE_FAILED and
    ``error_kind`` for ERROR.
    """

    kind: EvalReasonKind
    rule_index: Optional[int] = None
    rule_id: Optional[str] = None
    prerequisite_key: Optional[str] = None
    error_kind: Optional[EvalErrorKind] = None

    def __str__(self) -> str:
        if self.kind is EvalReasonKind.RULE_MATCH:
            return f"{self.kind.value}({self.rule_index},{self.rule_id})"
        if self.kind is EvalReasonKind.PREREQUISITE_FAILED:
            return f"{self.kind.value}({self.prerequisite_key})"
        if self.kind is EvalReasonKind.ERROR:
            error = self.error_kind.value if self.error_kind is not None else ""
            return f"{self.kind.value}({error})"
        return self.kind.value

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form of this reason."""
        data: dict[str, Any] = {"kind": self.kind.value}
        if self.kind is EvalReasonKind.RULE_MATCH:
            data["ruleIndex"] = self.rule_index if self.rule_index is not None else 0
            data["ruleId"] = self.rule_id if self.rule_id is not None else ""
        elif self.kind is EvalReasonKind.PREREQUISITE_FAILED:
            data["prerequisiteKey"] = self.prerequisite_key or ""
        elif self.kind is EvalReasonKind.ERROR:
            data["errorKind"] = self.error_kind.value if self.error_kind is not None else ""
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["EvaluationReason"]:
        """Build a reason from its JSON-ready form; ``None`` gives ``None``."""
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise ValueError(f"Evaluation reason must be an object, not {type(data).__name__}")
        raw_kind = data.get("kind")
        try:
            kind = EvalReasonKind(raw_kind)
        except ValueError:
            raise ValueError(f"Unknown evaluation reason kind: {raw_kind}") from None
        if kind is EvalReasonKind.OFF:
            return off_reason()
        if kind is EvalReasonKind.FALLTHROUGH:
            return fallthrough_reason()
        if kind is EvalReasonKind.TARGET_MATCH:
            return target_match_reason()
        if kind is EvalReasonKind.RULE_MATCH:
            return rule_match_reason(int(data.get("ruleIndex", 0)), str(data.get("ruleId", "")))
        if kind is EvalReasonKind.PREREQUISITE_FAILED:
            return prerequisite_failed_reason(str(data.get("prerequisiteKey", "")))
        return error_reason(EvalErrorKind(data.get("errorKind")))

    def to_json(self) -> str:
        """Serialize this reason to compact JSON."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> Optional["EvaluationReason"]:
        """Parse a reason from JSON text; ``null`` gives ``None``."""
        return cls.from_dict(json.loads(text))


_OFF = EvaluationReason(EvalReasonKind.OFF)
_TARGET_MATCH = EvaluationReason(EvalReasonKind.TARGET_MATCH)
_FALLTHROUGH = EvaluationReason(EvalReasonKind.FALLTHROUGH)


def off_reason() -> EvaluationReason:
    """The flag was off and returned its off value."""
    return _OFF


def target_match_reason() -> EvaluationReason:
    """The user key was specifically targeted."""
    return _TARGET_MATCH


def rule_match_reason(rule_index: int, rule_id: str) -> EvaluationReason:
    """The user matched the rule at ``rule_index``."""
    return EvaluationReason(EvalReasonKind.RULE_MATCH, rule_index=rule_index, rule_id=rule_id)


def prerequisite_failed_reason(prerequisite_key: str) -> EvaluationReason:
    """A prerequisite flag was off or did not return the wanted variation."""
    return EvaluationReason(EvalReasonKind.PREREQUISITE_FAILED, prerequisite_key=prerequisite_key)


def fallthrough_reason() -> EvaluationReason:
    """The flag was on but no target or rule matched."""
    return _FALLTHROUGH


def error_reason(error_kind: EvalErrorKind) -> EvaluationReason:
    """The flag could not be evaluated."""
    return EvaluationReason(EvalReasonKind.ERROR, error_kind=EvalErrorKind(error_kind))


@dataclass
class EvaluationDetail:
    """A flag evaluation result together with the reason for it."""

    value: Any = None
    variation_index: Optional[int] = None
    reason: Optional[EvaluationReason] = None

    def is_default_value(self) -> bool:
        """True when no variation was selected, so the default applies."""
        return self.variation_index is None