"""Shared fixtures: an in-memory browser double and test settings."""

from __future__ import annotations

import dataclasses
import json
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest

from tile_recorder.config import Settings
from tile_recorder.errors import BrowserEngineError
from tile_recorder.services.session_manager import SessionManager


class FakeBrowserHandle:
    """Implements the browser handle protocol without a real browser.

    Actions on a selector listed in ``missing`` fail the way the real
    handle does (``BrowserEngineError``); everything else succeeds and is
    appended to ``calls``.
    """

    def __init__(
        self,
        missing: Optional[Set[str]] = None,
        fail_goto: bool = False,
        fail_evaluate: bool = False,
    ) -> None:
        self.missing = set(missing or ())
        self.fail_goto = fail_goto
        self.fail_evaluate = fail_evaluate
        self.calls: List[tuple] = []
        self.bindings: Dict[str, Any] = {}
        self.init_scripts: List[str] = []
        self.navigation_callback = None
        self.highlights: List[tuple] = []
        self.tracing = False
        # Written as a trace archive by stop_tracing when set.
        self.trace_events: Optional[List[Dict[str, Any]]] = None
        self.closed = False
        self._url = "about:blank"

    @property
    def url(self) -> str:
        return self._url

    def _act(self, name: str, selector: str, *args: Any) -> None:
        if selector in self.missing:
            raise BrowserEngineError(name, RuntimeError(f"Timeout waiting for selector {selector}"))
        self.calls.append((name, selector) + args)

    async def goto(self, url: str, timeout_ms: Optional[float] = None) -> None:
        if self.fail_goto:
            raise BrowserEngineError("goto", RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}"))
        self._url = url
        self.calls.append(("goto", url))

    async def click(self, selector: str) -> None:
        self._act("click", selector)

    async def fill(self, selector: str, value: str) -> None:
        self._act("fill", selector, value)

    async def type(self, selector: str, text: str) -> None:
        self._act("type", selector, text)

    async def select_option(self, selector: str, value: str) -> None:
        self._act("select_option", selector, value)

    async def check(self, selector: str) -> None:
        self._act("check", selector)

    async def uncheck(self, selector: str) -> None:
        self._act("uncheck", selector)

    async def press(self, selector: str, key: str) -> None:
        self._act("press", selector, key)

    async def submit(self, selector: str) -> None:
        self._act("submit", selector)

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        if self.fail_evaluate:
            raise BrowserEngineError("evaluate", RuntimeError("Execution context was destroyed"))
        return None

    async def highlight(self, selector: str, on: bool = True) -> bool:
        if selector in self.missing:
            return False
        self.highlights.append((selector, on))
        return True

    async def expose_binding(self, name: str, callback: Any) -> None:
        self.bindings[name] = callback

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    def on_navigation(self, callback: Any) -> None:
        self.navigation_callback = callback

    async def start_tracing(self, title: Optional[str] = None) -> None:
        self.tracing = True

    async def stop_tracing(self, path: Path) -> Path:
        self.tracing = False
        if self.trace_events is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(path, "w") as zf:
                zf.writestr("trace.trace", "\n".join(json.dumps(e) for e in self.trace_events))
        return path

    async def close(self) -> None:
        self.closed = True

    def actions(self) -> List[tuple]:
        return [call for call in self.calls if call[0] != "goto"]


class FakeBrowserFactory:
    """Browser factory that hands out ``FakeBrowserHandle`` instances and remembers them."""

    def __init__(self, **handle_options: Any) -> None:
        self.handle_options = handle_options
        self.handles: List[FakeBrowserHandle] = []
        self.fail_launch = False

    async def __call__(self, settings: Settings) -> FakeBrowserHandle:
        if self.fail_launch:
            raise BrowserEngineError("launch", RuntimeError("Executable doesn't exist"))
        handle = FakeBrowserHandle(**self.handle_options)
        self.handles.append(handle)
        return handle


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return dataclasses.replace(
        Settings(),
        output_dir=tmp_path / "recordings",
        headless=True,
        settle_ms=0,
        highlight_ms=0,
        launch_timeout=5.0,
        navigation_timeout=5.0,
        close_timeout=2.0,
        codegen_stop_timeout=0.5,
    )


@pytest.fixture
def browser_factory() -> FakeBrowserFactory:
    return FakeBrowserFactory()


@pytest.fixture
def manager(settings: Settings, browser_factory: FakeBrowserFactory) -> SessionManager:
    return SessionManager(settings, browser_factory=browser_factory)
