"""Browser engine handle: the only place that talks to Playwright directly.

Every coroutine here suspends until the engine acknowledges the action.
Engine failures are re-raised as ``BrowserEngineError`` so callers never see
raw Playwright exceptions.
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..config import Settings
from ..errors import BrowserEngineError
from .browser_utils import launch_args_for

logger = logging.getLogger(__name__)

BindingCallback = Callable[[Any], Awaitable[None]]
NavigationCallback = Callable[[str], None]

HIGHLIGHT_SCRIPT = """
(el, on) => {
    if (on) {
        el.style.outline = '3px solid #f59e0b';
        el.style.outlineOffset = '2px';
        el.scrollIntoView({ behavior: 'smooth', block: 'center' });
    } else {
        el.style.outline = '';
        el.style.outlineOffset = '';
    }
    return true;
}
"""

SUBMIT_SCRIPT = """
(el) => {
    const form = el.tagName === 'FORM' ? el : el.closest('form');
    if (!form) throw new Error('No form found for submit target');
    if (typeof form.requestSubmit === 'function') form.requestSubmit();
    else form.submit();
}
"""


class BrowserHandle(Protocol):
    """Operations the recorder needs from a browser session."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, timeout_ms: Optional[float] = None) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def fill(self, selector: str, value: str) -> None: ...

    async def type(self, selector: str, text: str) -> None: ...

    async def select_option(self, selector: str, value: str) -> None: ...

    async def check(self, selector: str) -> None: ...

    async def uncheck(self, selector: str) -> None: ...

    async def press(self, selector: str, key: str) -> None: ...

    async def submit(self, selector: str) -> None: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...

    async def highlight(self, selector: str, on: bool = True) -> bool: ...

    async def expose_binding(self, name: str, callback: BindingCallback) -> None: ...

    async def add_init_script(self, script: str) -> None: ...

    def on_navigation(self, callback: Optional[NavigationCallback]) -> None: ...

    async def start_tracing(self, title: Optional[str] = None) -> None: ...

    async def stop_tracing(self, path: Path) -> Path: ...

    async def close(self) -> None: ...


BrowserFactory = Callable[[Settings], Awaitable[BrowserHandle]]


def _engine_call(operation: str):
    """Translate Playwright errors raised by the wrapped coroutine."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except PlaywrightError as exc:
                raise BrowserEngineError(operation, exc) from exc

        return wrapper

    return decorator


class PlaywrightBrowserHandle:
    """Owns one Playwright driver, browser, context and page."""

    def __init__(self, playwright: Any, browser: Any, context: Any, page: Any, settings: Settings) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._settings = settings
        self._bindings: Dict[str, BindingCallback] = {}
        self._navigation_callback: Optional[NavigationCallback] = None
        self._closed = False
        page.on("framenavigated", self._handle_frame_navigated)

    @classmethod
    async def launch(cls, settings: Settings) -> "PlaywrightBrowserHandle":
        playwright = await async_playwright().start()
        try:
            browser_type = getattr(playwright, settings.browser)
            browser = await browser_type.launch(
                headless=settings.headless,
                args=list(launch_args_for(settings.browser)),
            )
            width, height = settings.viewport
            context = await browser.new_context(viewport={"width": width, "height": height})
            context.set_default_timeout(settings.action_timeout_ms)
            page = await context.new_page()
        except PlaywrightError as exc:
            await playwright.stop()
            raise BrowserEngineError("launch", exc) from exc
        except BaseException:
            # Cancelled by the caller's timeout: do not leave the driver running.
            await playwright.stop()
            raise
        logger.info("[Browser] Launched %s (headless=%s)", settings.browser, settings.headless)
        return cls(playwright, browser, context, page, settings)

    @property
    def url(self) -> str:
        return self._page.url

    @property
    def closed(self) -> bool:
        return self._closed

    @_engine_call("goto")
    async def goto(self, url: str, timeout_ms: Optional[float] = None) -> None:
        await self._page.goto(url, timeout=timeout_ms)

    @_engine_call("click")
    async def click(self, selector: str) -> None:
        await self._page.click(selector)

    @_engine_call("fill")
    async def fill(self, selector: str, value: str) -> None:
        await self._page.fill(selector, value)

    @_engine_call("type")
    async def type(self, selector: str, text: str) -> None:
        await self._page.type(selector, text, delay=50)

    @_engine_call("select_option")
    async def select_option(self, selector: str, value: str) -> None:
        await self._page.select_option(selector, value)

    @_engine_call("check")
    async def check(self, selector: str) -> None:
        await self._page.check(selector)

    @_engine_call("uncheck")
    async def uncheck(self, selector: str) -> None:
        await self._page.uncheck(selector)

    @_engine_call("press")
    async def press(self, selector: str, key: str) -> None:
        await self._page.press(selector, key)

    @_engine_call("submit")
    async def submit(self, selector: str) -> None:
        await self._page.locator(selector).first.evaluate(SUBMIT_SCRIPT)

    @_engine_call("evaluate")
    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self._page.evaluate(expression, arg)

    async def highlight(self, selector: str, on: bool = True) -> bool:
        """Outline the first element matching ``selector``; never raises."""
        try:
            await self._page.locator(selector).first.evaluate(
                HIGHLIGHT_SCRIPT, on, timeout=self._settings.highlight_ms or 300
            )
            return True
        except PlaywrightError as exc:
            logger.debug("[Browser] Highlight skipped for %s: %s", selector, exc)
            return False

    @_engine_call("expose_binding")
    async def expose_binding(self, name: str, callback: BindingCallback) -> None:
        # Playwright refuses to register a name twice; later calls only swap
        # the Python-side callback.
        first_registration = name not in self._bindings
        self._bindings[name] = callback
        if not first_registration:
            return

        async def dispatch(source: Dict[str, Any], payload: Any) -> None:
            handler = self._bindings.get(name)
            if handler is not None:
                await handler(payload)

        await self._context.expose_binding(name, dispatch)

    @_engine_call("add_init_script")
    async def add_init_script(self, script: str) -> None:
        await self._context.add_init_script(script=script)

    def on_navigation(self, callback: Optional[NavigationCallback]) -> None:
        self._navigation_callback = callback

    def _handle_frame_navigated(self, frame: Any) -> None:
        callback = self._navigation_callback
        if callback is None or self._closed:
            return
        if frame != self._page.main_frame:
            return
        try:
            callback(frame.url)
        except Exception as exc:
            logger.warning("[Browser] Navigation callback failed: %s", exc)

    @_engine_call("start_tracing")
    async def start_tracing(self, title: Optional[str] = None) -> None:
        await self._context.tracing.start(screenshots=True, snapshots=True, sources=False, title=title)

    @_engine_call("stop_tracing")
    async def stop_tracing(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        await self._context.tracing.stop(path=str(path))
        return path

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._navigation_callback = None
        self._bindings.clear()
        errors: List[str] = []
        for label, closer in (
            ("context", self._context.close),
            ("browser", self._browser.close),
            ("driver", self._playwright.stop),
        ):
            try:
                await closer()
            except Exception as exc:
                errors.append(f"{label}: {exc}")
        if errors:
            logger.warning("[Browser] Errors while closing: %s", "; ".join(errors))


async def launch_playwright_browser(settings: Settings) -> BrowserHandle:
    return await PlaywrightBrowserHandle.launch(settings)


__all__ = [
    "BrowserFactory",
    "BrowserHandle",
    "HIGHLIGHT_SCRIPT",
    "PlaywrightBrowserHandle",
    "launch_playwright_browser",
]
