"""Capture source contract and the factory that picks one per recording."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ...config import Settings
from ...core.browser import BrowserHandle
from ...errors import InvalidState
from ...models import RawEvent, StepSource

logger = logging.getLogger(__name__)

EventSink = Callable[[RawEvent], Awaitable[Any]]


class CaptureMode(str, Enum):
    API_INTERCEPTION = "api-interception"
    DOM_INJECTION = "dom-injection"
    CODEGEN_PROCESS = "codegen-process"
    TRACE = "trace"


DEFAULT_CAPTURE_MODE = CaptureMode.DOM_INJECTION


@dataclass
class SourceConfig:
    mode: CaptureMode = DEFAULT_CAPTURE_MODE
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, value: Union["SourceConfig", str, Dict[str, Any], None]) -> "SourceConfig":
        if isinstance(value, SourceConfig):
            return value
        if value is None:
            return cls()
        if isinstance(value, str):
            return cls(mode=_parse_mode(value))
        options = dict(value)
        mode = options.pop("mode", None) or options.pop("source", None)
        return cls(mode=_parse_mode(mode) if mode else DEFAULT_CAPTURE_MODE, options=options)

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode.value, **self.options}


def _parse_mode(value: str) -> CaptureMode:
    key = str(value).strip().lower().replace("_", "-")
    try:
        return CaptureMode(key)
    except ValueError:
        allowed = ", ".join(m.value for m in CaptureMode)
        raise InvalidState(f"Unknown capture source '{value}'. Expected one of: {allowed}") from None


@dataclass
class CaptureContext:
    """Everything a source needs while it is active for one session."""

    session_id: str
    browser: BrowserHandle
    settings: Settings
    sink: EventSink
    session_dir: Path
    start_url: Optional[str] = None


class CaptureSource(abc.ABC):
    """A producer of raw events for exactly one session.

    ``activate`` may raise ``CaptureSourceError``; the session then keeps
    recording in degraded mode. ``deactivate`` must be safe to call once
    after any activation attempt and returns events only known at stop time
    (codegen output, trace contents).
    """

    mode: CaptureMode
    step_source: StepSource = StepSource.AUTOMATION

    def __init__(self, config: Optional[SourceConfig] = None) -> None:
        self.config = config or SourceConfig(mode=self.mode)
        self.context: Optional[CaptureContext] = None
        self.artifacts: Dict[str, str] = {}

    @property
    def active(self) -> bool:
        return self.context is not None

    @abc.abstractmethod
    async def activate(self, context: CaptureContext) -> None:
        ...

    @abc.abstractmethod
    async def deactivate(self) -> List[RawEvent]:
        ...

    async def emit(self, event: RawEvent) -> None:
        """Forward ``event`` to the session; dropped once deactivated."""
        context = self.context
        if context is None:
            logger.debug("[Capture] Ignoring %s after deactivation", event.type)
            return
        await context.sink(event)


def build_capture_source(config: Union[SourceConfig, str, Dict[str, Any], None]) -> CaptureSource:
    from .api_interception import ApiInterceptionSource
    from .codegen_process import CodegenProcessSource
    from .dom_injection import DomInjectionSource
    from .trace_capture import TraceCaptureSource

    parsed = SourceConfig.parse(config)
    registry = {
        CaptureMode.API_INTERCEPTION: ApiInterceptionSource,
        CaptureMode.DOM_INJECTION: DomInjectionSource,
        CaptureMode.CODEGEN_PROCESS: CodegenProcessSource,
        CaptureMode.TRACE: TraceCaptureSource,
    }
    return registry[parsed.mode](parsed)


__all__ = [
    "CaptureContext",
    "CaptureMode",
    "CaptureSource",
    "DEFAULT_CAPTURE_MODE",
    "EventSink",
    "SourceConfig",
    "build_capture_source",
]
