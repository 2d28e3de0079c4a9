"""Trace capture: record a Playwright trace and parse it on stop."""

from __future__ import annotations

import asyncio
import logging
import time
import zipfile
from typing import List

from ...errors import BrowserEngineError, CaptureSourceError
from ...models import RawEvent, StepSource
from ..trace_parser import parse_trace
from .base import CaptureContext, CaptureMode, CaptureSource

logger = logging.getLogger(__name__)


class TraceCaptureSource(CaptureSource):
    mode = CaptureMode.TRACE
    step_source = StepSource.TRACE

    async def activate(self, context: CaptureContext) -> None:
        try:
            await context.browser.start_tracing(title=context.session_id)
        except BrowserEngineError as exc:
            raise CaptureSourceError(f"Tracing could not be started: {exc}", mode=self.mode.value) from exc
        self.context = context
        logger.info("[Trace] Tracing started for %s", context.session_id)

    async def deactivate(self) -> List[RawEvent]:
        context = self.context
        if context is None:
            return []
        self.context = None
        trace_path = context.session_dir / f"trace-{context.session_id}-{int(time.time() * 1000)}.zip"
        try:
            await context.browser.stop_tracing(trace_path)
        except BrowserEngineError as exc:
            raise CaptureSourceError(f"Tracing could not be stopped: {exc}", mode=self.mode.value) from exc
        self.artifacts["trace"] = str(trace_path)
        try:
            events = await asyncio.to_thread(parse_trace, trace_path)
        except (OSError, zipfile.BadZipFile) as exc:
            raise CaptureSourceError(f"Trace could not be read: {exc}", mode=self.mode.value) from exc
        logger.info("[Trace] Extracted %d interactions from %s", len(events), trace_path.name)
        return events


__all__ = ["TraceCaptureSource"]
