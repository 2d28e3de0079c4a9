"""API-call interception: record the actions automation performs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional

from ...core.browser import BindingCallback, BrowserHandle, NavigationCallback
from ...errors import CaptureSourceError
from ...models import RawEvent, StepSource
from .base import CaptureContext, CaptureMode, CaptureSource, EventSink

logger = logging.getLogger(__name__)


class RecordingAwareBrowser:
    """Browser handle decorator that reports successful actions.

    Every action is performed on the wrapped handle first. Only when it
    succeeds and a recorder is attached is the matching raw event emitted;
    failures propagate unchanged and emit nothing.
    """

    def __init__(self, inner: BrowserHandle) -> None:
        self.inner = inner
        self._emit: Optional[EventSink] = None

    @property
    def recording(self) -> bool:
        return self._emit is not None

    def attach(self, emit: EventSink) -> None:
        self._emit = emit

    def detach(self) -> None:
        self._emit = None

    async def _record(self, event: RawEvent) -> None:
        emit = self._emit
        if emit is not None:
            await emit(event)

    @property
    def url(self) -> str:
        return self.inner.url

    async def goto(self, url: str, timeout_ms: Optional[float] = None) -> None:
        await self.inner.goto(url, timeout_ms)
        await self._record(RawEvent(type="navigate", url=url))

    async def click(self, selector: str) -> None:
        await self.inner.click(selector)
        await self._record(RawEvent(type="click", selector=selector))

    async def fill(self, selector: str, value: str) -> None:
        await self.inner.fill(selector, value)
        await self._record(RawEvent(type="fill", selector=selector, value=value))

    async def type(self, selector: str, text: str) -> None:
        await self.inner.type(selector, text)
        await self._record(RawEvent(type="type", selector=selector, text=text))

    async def select_option(self, selector: str, value: str) -> None:
        await self.inner.select_option(selector, value)
        await self._record(RawEvent(type="select", selector=selector, value=value))

    async def check(self, selector: str) -> None:
        await self.inner.check(selector)
        await self._record(RawEvent(type="check", selector=selector))

    async def uncheck(self, selector: str) -> None:
        await self.inner.uncheck(selector)
        await self._record(RawEvent(type="uncheck", selector=selector))

    async def press(self, selector: str, key: str) -> None:
        await self.inner.press(selector, key)
        await self._record(RawEvent(type="press", selector=selector, key=key))

    async def submit(self, selector: str) -> None:
        await self.inner.submit(selector)
        await self._record(RawEvent(type="submit", selector=selector))

    # Everything below is passed through without recording.

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self.inner.evaluate(expression, arg)

    async def highlight(self, selector: str, on: bool = True) -> bool:
        return await self.inner.highlight(selector, on)

    async def expose_binding(self, name: str, callback: BindingCallback) -> None:
        await self.inner.expose_binding(name, callback)

    async def add_init_script(self, script: str) -> None:
        await self.inner.add_init_script(script)

    def on_navigation(self, callback: Optional[NavigationCallback]) -> None:
        self.inner.on_navigation(callback)

    async def start_tracing(self, title: Optional[str] = None) -> None:
        await self.inner.start_tracing(title)

    async def stop_tracing(self, path: Path) -> Path:
        return await self.inner.stop_tracing(path)

    async def close(self) -> None:
        self.detach()
        await self.inner.close()


class ApiInterceptionSource(CaptureSource):
    mode = CaptureMode.API_INTERCEPTION
    step_source = StepSource.AUTOMATION

    async def activate(self, context: CaptureContext) -> None:
        browser = context.browser
        if not isinstance(browser, RecordingAwareBrowser):
            raise CaptureSourceError(
                "API interception needs a RecordingAwareBrowser session handle",
                mode=self.mode.value,
            )
        self.context = context
        browser.attach(self.emit)
        logger.info("[Capture] API interception active for %s", context.session_id)

    async def deactivate(self) -> List[RawEvent]:
        context = self.context
        self.context = None
        if context is not None and isinstance(context.browser, RecordingAwareBrowser):
            context.browser.detach()
        return []


__all__ = ["ApiInterceptionSource", "RecordingAwareBrowser"]
