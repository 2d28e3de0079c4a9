"""Trace parser: turn a Playwright ``trace.zip`` into raw recorder events.

The archive holds one or more ``*.trace`` files of JSON lines. Structured
action records (``before`` in current Playwright versions, ``action`` in
older ones) are the primary source. Low-level ``Input.*`` events are only a
fallback: a mouse press is linked to the nearest preceding frame snapshot,
and when that snapshot belongs to an action call with a selector, that
selector is reused. Otherwise the lossy placeholder ``[position="x,y"]`` is
emitted. Mapping coordinates onto snapshot DOM geometry is not attempted.
"""
from __future__ import annotations

import json
import logging
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import RawEvent

logger = logging.getLogger(__name__)

TYPING_WINDOW_MS = 1000

# Trace method name -> raw event type understood by the normalizer.
ACTION_METHODS = {
    "goto": "navigate",
    "click": "click",
    "fill": "fill",
    "type": "type",
    "press": "press",
    "selectOption": "select",
    "check": "check",
    "uncheck": "uncheck",
}


def _number(value: Any) -> str:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    return str(int(number)) if number.is_integer() else str(number)


def position_placeholder(x: Any, y: Any) -> str:
    return f'[position="{_number(x)},{_number(y)}"]'


def _select_value(params: Dict[str, Any]) -> Optional[str]:
    for key in ("value", "values", "options"):
        raw = params.get(key)
        if isinstance(raw, list) and raw:
            first = raw[0]
            if isinstance(first, dict):
                return first.get("value") or first.get("valueOrLabel") or first.get("label")
            return str(first)
        if isinstance(raw, str):
            return raw
    return None


class TraceAnalyzer:
    """Extract ordered interactions from a Playwright trace archive."""

    def __init__(self, trace_path: Path):
        self.trace_path = Path(trace_path)
        self.trace_events: List[Dict[str, Any]] = []
        self._call_selectors: Dict[str, str] = {}

    def load_trace(self) -> None:
        """Read every ``*.trace`` member of the archive; bad lines are skipped."""
        if not self.trace_path.exists():
            raise FileNotFoundError(f"Trace not found: {self.trace_path}")

        self.trace_events = []
        with zipfile.ZipFile(self.trace_path, "r") as zf:
            members = sorted(name for name in zf.namelist() if name.endswith(".trace"))
            for name in members:
                trace_data = zf.read(name).decode("utf-8", errors="replace")
                for line in trace_data.splitlines():
                    if not line.strip():
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(event, dict):
                        self.trace_events.append(event)
        logger.debug("[Trace] Loaded %d events from %s", len(self.trace_events), self.trace_path)

    def _action_event(self, method: str, params: Dict[str, Any], timestamp: Any) -> Optional[RawEvent]:
        raw_type = ACTION_METHODS.get(method)
        if raw_type is None:
            return None
        ts = float(timestamp) if isinstance(timestamp, (int, float)) else None
        selector = params.get("selector")
        if raw_type == "navigate":
            return RawEvent(type=raw_type, url=params.get("url"), timestamp=ts)
        if raw_type == "press":
            return RawEvent(type=raw_type, selector=selector, key=params.get("key"), timestamp=ts)
        if raw_type == "type":
            return RawEvent(type=raw_type, selector=selector, text=params.get("text") or "", timestamp=ts)
        if raw_type == "select":
            return RawEvent(type=raw_type, selector=selector, value=_select_value(params), timestamp=ts)
        return RawEvent(type=raw_type, selector=selector, value=params.get("value"), timestamp=ts)

    def find_selector_for_position(self, index: int, x: Any, y: Any) -> str:
        """Best-effort selector for a pointer event at ``trace_events[index]``."""
        for event in reversed(self.trace_events[:index]):
            if event.get("type") != "frame-snapshot":
                continue
            snapshot = event.get("snapshot") or {}
            selector = self._call_selectors.get(str(snapshot.get("callId") or ""))
            if selector:
                return selector
            break
        return position_placeholder(x, y)

    def extract_trace_interactions(self) -> List[RawEvent]:
        """Map trace records to raw events, ordered by timestamp."""
        interactions: List[RawEvent] = []
        self._call_selectors = {}

        for index, event in enumerate(self.trace_events):
            event_type = event.get("type", "")
            method = event.get("method", "")
            params = event.get("params") or {}

            if event_type == "before":
                if params.get("selector") and event.get("callId"):
                    self._call_selectors[str(event["callId"])] = params["selector"]
                raw = self._action_event(method, params, event.get("startTime"))
                if raw is not None:
                    interactions.append(raw)

            elif event_type == "action":
                metadata = event.get("metadata") or event
                meta_params = metadata.get("params") or params
                name = metadata.get("method") or metadata.get("action") or event.get("action", "")
                raw = self._action_event(name, meta_params, metadata.get("startTime") or event.get("timestamp"))
                if raw is not None:
                    interactions.append(raw)

            elif event_type == "navigation" or method in ("Page.navigate", "navigated"):
                url = event.get("url") or params.get("url")
                if not url:
                    continue
                last = interactions[-1] if interactions else None
                if last is not None and last.type == "navigate" and last.url == url:
                    continue
                ts = event.get("timestamp") or event.get("time")
                interactions.append(RawEvent(type="navigate", url=url, timestamp=ts))

            elif method == "Input.dispatchMouseEvent" and params.get("type") == "mousePressed":
                x, y = params.get("x"), params.get("y")
                interactions.append(
                    RawEvent(
                        type="click",
                        selector=self.find_selector_for_position(index, x, y),
                        timestamp=event.get("timestamp"),
                        extra={"x": x, "y": y},
                    )
                )

            elif method in ("Input.dispatchKeyEvent", "Input.insertText"):
                if params.get("type") in ("keyUp", "rawKeyDown"):
                    continue
                last = interactions[-1] if interactions else None
                # Typing is attributed to the field the previous click focused.
                if last is not None and last.type in ("click", "type") and last.selector:
                    interactions.append(
                        RawEvent(
                            type="type",
                            selector=last.selector,
                            text=params.get("text") or params.get("key") or "",
                            timestamp=event.get("timestamp"),
                        )
                    )

            elif event_type == "input" and event.get("selector"):
                interactions.append(
                    RawEvent(
                        type="fill",
                        selector=event.get("selector"),
                        value=event.get("value") or "",
                        timestamp=event.get("timestamp"),
                    )
                )

        # Records without a time inherit the previous one so sorting keeps them in place.
        last_ts = 0.0
        for item in interactions:
            if isinstance(item.timestamp, (int, float)):
                item.timestamp = float(item.timestamp)
                last_ts = item.timestamp
            else:
                item.timestamp = last_ts
        interactions.sort(key=lambda item: item.timestamp)
        return consolidate_typing(interactions)

    def analyze(self) -> List[RawEvent]:
        self.load_trace()
        return self.extract_trace_interactions()


def consolidate_typing(actions: List[RawEvent], window_ms: float = TYPING_WINDOW_MS) -> List[RawEvent]:
    """Merge keystroke ``type`` events on one selector that arrive within ``window_ms``."""
    consolidated: List[RawEvent] = []
    current: Optional[RawEvent] = None
    last_keystroke = 0.0

    for action in actions:
        ts = action.timestamp or 0.0
        if (
            action.type == "type"
            and current is not None
            and current.selector == action.selector
            and ts - last_keystroke < window_ms
        ):
            current.text = (current.text or "") + (action.text or "")
            last_keystroke = ts
            continue
        if current is not None:
            consolidated.append(current)
            current = None
        if action.type == "type":
            current = RawEvent(
                type="type",
                selector=action.selector,
                text=action.text or "",
                timestamp=action.timestamp,
                extra=dict(action.extra),
            )
            last_keystroke = ts
        else:
            consolidated.append(action)

    if current is not None:
        consolidated.append(current)
    return consolidated


def parse_trace(trace_path: Path) -> List[RawEvent]:
    return TraceAnalyzer(trace_path).analyze()


__all__ = ["TraceAnalyzer", "consolidate_typing", "parse_trace", "position_placeholder"]
