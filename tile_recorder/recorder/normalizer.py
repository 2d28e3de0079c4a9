"""Turn raw capture events into canonical steps and merge them into a session.

Merging keeps two invariants of a session's step list:

* steps stay ordered by ``timestamp`` (ties keep arrival order);
* inside the current uncommitted edit run, a field has at most one
  ``fill``/``type`` step. Re-editing the same selector replaces that step
  in place, keeping its original position and timestamp.

The edit run ends at a ``navigate`` step, at a step on a different
selector, or at an explicit ``commit`` (a raw ``blur`` event).
"""

from __future__ import annotations

import bisect
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..errors import MalformedStep
from ..models import EDIT_TYPES, RawEvent, Step, StepSource, StepType
from .selector_resolver import resolve

logger = logging.getLogger(__name__)

TYPE_ALIASES: Dict[str, StepType] = {
    "input": StepType.FILL,
    "goto": StepType.NAVIGATE,
    "navigation": StepType.NAVIGATE,
    "selectoption": StepType.SELECT,
    "select_option": StepType.SELECT,
    "keypress": StepType.PRESS,
}

COMMIT_EVENTS = frozenset({"blur", "commit"})

_SELECTOR_OPTIONAL = frozenset({StepType.NAVIGATE})


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def is_commit_event(raw: Union[RawEvent, Dict[str, Any]]) -> bool:
    raw_type = raw.type if isinstance(raw, RawEvent) else str(raw.get("type") or raw.get("action") or "")
    return raw_type.strip().lower() in COMMIT_EVENTS


def _step_type(raw_type: str) -> StepType:
    key = (raw_type or "").strip()
    if not key:
        raise MalformedStep("Raw event has no type")
    alias = TYPE_ALIASES.get(key.lower())
    if alias is not None:
        return alias
    try:
        return StepType(key.lower())
    except ValueError:
        raise MalformedStep(f"Unsupported action type: {raw_type}", type=raw_type) from None


def _value_for(step_type: StepType, raw: RawEvent) -> str:
    if step_type is StepType.NAVIGATE:
        return raw.url or raw.value or ""
    if step_type is StepType.PRESS:
        return raw.key or raw.value or ""
    if step_type is StepType.TYPE:
        return raw.text if raw.text is not None else (raw.value or "")
    if raw.value is not None:
        return str(raw.value)
    return raw.text or ""


def normalize(
    raw: Union[RawEvent, Dict[str, Any]],
    source: StepSource,
    timestamp: Optional[float] = None,
) -> Step:
    """Build a ``Step`` from a raw event or raise ``MalformedStep``.

    When the event carries no selector but an element descriptor, the
    selector is resolved from the descriptor. ``timestamp`` overrides the
    event's own one; with neither, the monotonic clock is used.
    """

    if isinstance(raw, dict):
        raw = RawEvent.from_dict(raw)
    step_type = _step_type(raw.type)

    selector = raw.selector
    if (selector is None or not str(selector).strip()) and raw.target:
        selector = resolve(raw.target)

    if step_type in _SELECTOR_OPTIONAL:
        selector = selector.strip() if isinstance(selector, str) and selector.strip() else None
    else:
        if selector is None or not str(selector).strip():
            raise MalformedStep(f"{step_type.value} step requires a selector", type=step_type.value)
        selector = str(selector).strip()

    value = _value_for(step_type, raw)
    if step_type is StepType.NAVIGATE and not value.strip():
        raise MalformedStep("navigate step requires a url", type=step_type.value)
    if step_type is StepType.PRESS and not value:
        raise MalformedStep("press step requires a key", type=step_type.value)

    if timestamp is None:
        timestamp = raw.timestamp if raw.timestamp is not None else monotonic_ms()
    return Step(
        type=step_type,
        selector=selector,
        value=value,
        source=source,
        timestamp=float(timestamp),
    )


class StepMerger:
    """Ordered step list for one recording, with edit-run tracking.

    ``merge`` returns ``(step, replaced)`` where ``replaced`` tells whether
    an existing edit step was overwritten instead of a new one appended.
    """

    def __init__(self, steps: Optional[Sequence[Step]] = None) -> None:
        self._steps: List[Step] = list(steps or [])
        # Steps before this index belong to committed runs.
        self._run_start = len(self._steps)

    @property
    def steps(self) -> List[Step]:
        return list(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def clear(self) -> None:
        self._steps.clear()
        self._run_start = 0

    def commit(self) -> None:
        self._run_start = len(self._steps)

    def _collapse_target(self, step: Step) -> Optional[int]:
        for index in range(len(self._steps) - 1, self._run_start - 1, -1):
            existing = self._steps[index]
            if existing.is_edit and existing.selector == step.selector:
                return index
        return None

    def merge(self, step: Step) -> Tuple[Step, bool]:
        if self._steps and step.timestamp < self._steps[-1].timestamp:
            # Late arrival: place it chronologically and close the run.
            position = bisect.bisect_right([s.timestamp for s in self._steps], step.timestamp)
            self._steps.insert(position, step)
            self.commit()
            return step, False

        if step.type is StepType.NAVIGATE:
            self._steps.append(step)
            self.commit()
            return step, False

        if self._run_start < len(self._steps) and self._steps[-1].selector != step.selector:
            self.commit()

        if step.type in EDIT_TYPES:
            index = self._collapse_target(step)
            if index is not None:
                existing = self._steps[index]
                merged = existing.with_value(type=step.type, value=step.value, source=step.source)
                self._steps[index] = merged
                logger.debug("[Merger] Collapsed %s on %s", step.type.value, step.selector)
                return merged, True

        self._steps.append(step)
        return step, False


def merge_steps(steps: Sequence[Step], new_step: Step) -> List[Step]:
    """Pure form of ``StepMerger.merge`` over a list whose tail run is open.

    The trailing run is reconstructed from the list itself: the last steps
    sharing the final step's selector, back to the last ``navigate``.
    """

    merger = StepMerger(steps)
    run_start = len(steps)
    if steps and steps[-1].type is not StepType.NAVIGATE:
        tail_selector = steps[-1].selector
        while run_start > 0:
            candidate = steps[run_start - 1]
            if candidate.type is StepType.NAVIGATE or candidate.selector != tail_selector:
                break
            run_start -= 1
    merger._run_start = run_start
    merger.merge(new_step)
    return merger.steps


__all__ = [
    "COMMIT_EVENTS",
    "StepMerger",
    "is_commit_event",
    "merge_steps",
    "monotonic_ms",
    "normalize",
]
