"""Canonical data model: raw capture events, recorded steps and results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


class StepType(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    TYPE = "type"
    SELECT = "select"
    CHECK = "check"
    UNCHECK = "uncheck"
    PRESS = "press"
    SUBMIT = "submit"


class StepSource(str, Enum):
    AUTOMATION = "automation"
    MANUAL = "manual"
    GENERATED_SCRIPT = "generated-script"
    TRACE = "trace"


EDIT_TYPES = frozenset({StepType.FILL, StepType.TYPE})


def new_step_id() -> str:
    return f"step-{uuid4().hex[:12]}"


@dataclass
class RawEvent:
    """An action as reported by a capture source, before normalization.

    ``target`` optionally carries an element descriptor (see
    ``recorder.selector_resolver``) when the source could not compute a
    selector itself. ``timestamp`` is in the source's own clock.
    """

    type: str
    selector: Optional[str] = None
    url: Optional[str] = None
    value: Optional[str] = None
    text: Optional[str] = None
    key: Optional[str] = None
    timestamp: Optional[float] = None
    target: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawEvent":
        known = {"type", "selector", "url", "value", "text", "key", "timestamp", "target"}
        return cls(
            type=str(data.get("type") or data.get("action") or ""),
            selector=data.get("selector"),
            url=data.get("url"),
            value=data.get("value"),
            text=data.get("text"),
            key=data.get("key"),
            timestamp=data.get("timestamp"),
            target=data.get("target"),
            extra={k: v for k, v in data.items() if k not in known and k != "action"},
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        for name in ("selector", "url", "value", "text", "key", "timestamp"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


@dataclass(frozen=True)
class Step:
    """One canonical recorded action."""

    type: StepType
    selector: Optional[str]
    value: str
    source: StepSource
    timestamp: float
    id: str = field(default_factory=new_step_id)

    @property
    def is_edit(self) -> bool:
        return self.type in EDIT_TYPES

    def with_value(self, **changes: Any) -> "Step":
        return replace(self, **changes)

    def describe(self) -> str:
        if self.type is StepType.NAVIGATE:
            return f"navigate to {self.value}"
        if self.type in EDIT_TYPES or self.type in (StepType.SELECT, StepType.PRESS):
            return f"{self.type.value} {self.selector} = {self.value!r}"
        return f"{self.type.value} {self.selector}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "selector": self.selector,
            "value": self.value,
            "source": self.source.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        return cls(
            type=StepType(data["type"]),
            selector=data.get("selector"),
            value=data.get("value") or "",
            source=StepSource(data.get("source") or StepSource.MANUAL.value),
            timestamp=float(data.get("timestamp") or 0.0),
            id=data.get("id") or new_step_id(),
        )


@dataclass(frozen=True)
class GeneratedScript:
    """Synthesized script text. Regenerating produces a new instance."""

    name: str
    text: str
    step_count: int
    generated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "text": self.text,
            "stepCount": self.step_count,
            "generatedAt": self.generated_at,
        }


@dataclass
class StepFailureRecord:
    step_index: int
    error: str
    step: Optional[Step] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"stepIndex": self.step_index, "error": self.error}
        if self.step is not None:
            payload["step"] = self.step.to_dict()
        return payload


@dataclass
class PlaybackResult:
    total_steps: int
    completed_steps: int = 0
    completed: bool = True
    stopped_at_index: Optional[int] = None
    errors: List[StepFailureRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "completed": self.completed,
            "totalSteps": self.total_steps,
            "completedSteps": self.completed_steps,
            "errors": [err.to_dict() for err in self.errors],
        }
        if self.stopped_at_index is not None:
            payload["stoppedAtIndex"] = self.stopped_at_index
        return payload


__all__ = [
    "EDIT_TYPES",
    "GeneratedScript",
    "PlaybackResult",
    "RawEvent",
    "Step",
    "StepFailureRecord",
    "StepSource",
    "StepType",
    "new_step_id",
]
