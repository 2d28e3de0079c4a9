"""DOM-event injection: listen to the page itself while the user interacts.

A script registered as an init script (and evaluated once on the current
document) installs capture-phase listeners for ``click``, ``input``,
``change``, ``submit``, ``keydown`` and ``focusout``. Each listener sends a
payload with an element descriptor to the ``__tileRecorderEmit`` binding;
the selector is resolved on the Python side.

Edits are de-duplicated per selector here: an ``input`` or ``change`` whose
value equals the last value emitted for that selector is dropped. A click on
a submit control reports the form it submits, and the ``submit`` event the
browser then fires for that form is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from ...errors import BrowserEngineError, CaptureSourceError, MalformedStep
from ...models import RawEvent, StepSource
from ..selector_resolver import DESCRIBE_ELEMENT_JS, resolve
from .base import CaptureContext, CaptureMode, CaptureSource

logger = logging.getLogger(__name__)

BINDING_NAME = "__tileRecorderEmit"

CAPTURE_SCRIPT = """
(() => {
    if (window.__tileRecorderInstalled) { return; }
    window.__tileRecorderInstalled = true;
    const describe = %(describe)s;

    const resolveEmitter = () => {
        try {
            if (typeof window.%(binding)s === 'function') return window.%(binding)s;
            if (window.opener && typeof window.opener.%(binding)s === 'function') return window.opener.%(binding)s;
            if (window.parent && window.parent !== window && typeof window.parent.%(binding)s === 'function') {
                return window.parent.%(binding)s;
            }
        } catch (e) {
            // Cross-origin opener/parent.
        }
        return null;
    };

    const send = (payload) => {
        const emit = resolveEmitter();
        if (!emit) {
            console.debug('[TileRecorder] No recorder binding available, event dropped');
            return;
        }
        try {
            payload.timestamp = Date.now();
            Promise.resolve(emit(payload)).catch((err) => console.debug('[TileRecorder] emit failed', err));
        } catch (e) {
            console.debug('[TileRecorder] emit failed', e);
        }
    };

    const isToggle = (el) => el && el.tagName === 'INPUT' && (el.type === 'checkbox' || el.type === 'radio');
    const isTextField = (el) => el && (el.tagName === 'TEXTAREA' || el.isContentEditable ||
        (el.tagName === 'INPUT' && !isToggle(el) && !['button', 'submit', 'reset', 'file'].includes(el.type)));

    document.addEventListener('click', (event) => {
        const el = event.target instanceof Element ? event.target : null;
        if (!el || isToggle(el) || el.tagName === 'SELECT' || el.tagName === 'OPTION') return;
        if (el.id === '__tile_recorder_badge') return;
        const payload = { type: 'click', target: describe(el) };
        const submitter = el.closest ? el.closest('button, input[type="submit"], input[type="image"]') : null;
        if (submitter && submitter.form && (submitter.type === 'submit' || submitter.type === 'image')) {
            // Replaying the click submits the form; the submit event that follows is dropped.
            payload.submitsForm = describe(submitter.form);
        }
        send(payload);
    }, true);

    document.addEventListener('input', (event) => {
        const el = event.target;
        if (!isTextField(el)) return;
        const value = el.isContentEditable ? el.innerText : el.value;
        send({ type: 'fill', target: describe(el), value: value });
    }, true);

    document.addEventListener('change', (event) => {
        const el = event.target;
        if (!el) return;
        if (el.tagName === 'SELECT') {
            send({ type: 'select', target: describe(el), value: el.value });
        } else if (isToggle(el)) {
            send({ type: el.checked ? 'check' : 'uncheck', target: describe(el) });
        } else if (isTextField(el)) {
            send({ type: 'fill', target: describe(el), value: el.value });
        }
    }, true);

    document.addEventListener('submit', (event) => {
        if (event.target) send({ type: 'submit', target: describe(event.target) });
    }, true);

    document.addEventListener('keydown', (event) => {
        const el = event.target;
        if (!el || !['Enter', 'Escape', 'Tab'].includes(event.key)) return;
        // Enter inside a form is reported by the submit listener.
        if (event.key === 'Enter' && el.closest && el.closest('form')) return;
        send({ type: 'press', target: describe(el), key: event.key });
    }, true);

    document.addEventListener('focusout', (event) => {
        if (isTextField(event.target)) send({ type: 'blur' });
    }, true);
})();
""" % {"describe": DESCRIBE_ELEMENT_JS.strip(), "binding": BINDING_NAME}

INDICATOR_SCRIPT = """
(show) => {
    const id = '__tile_recorder_badge';
    const existing = document.getElementById(id);
    if (!show) { if (existing) existing.remove(); return; }
    if (existing || !document.body) return;
    const badge = document.createElement('div');
    badge.id = id;
    badge.textContent = '● Recording';
    badge.style.cssText = 'position:fixed;top:8px;right:8px;z-index:2147483647;padding:4px 10px;' +
        'background:#dc2626;color:#fff;font:12px sans-serif;border-radius:12px;pointer-events:none;';
    document.body.appendChild(badge);
}
"""

_EDIT_EVENTS = {"fill", "input"}


async def set_recording_indicator(browser: Any, show: bool) -> None:
    """Show or hide the in-page recording badge; failures are only logged."""
    try:
        await browser.evaluate(INDICATOR_SCRIPT, show)
    except BrowserEngineError as exc:
        logger.debug("[Capture] Recording indicator not updated: %s", exc)


class DomInjectionSource(CaptureSource):
    mode = CaptureMode.DOM_INJECTION
    step_source = StepSource.MANUAL

    def __init__(self, config=None) -> None:
        super().__init__(config)
        self._last_values: Dict[str, str] = {}
        self._submitted_by_click: Optional[str] = None
        self._pending: Set[asyncio.Task] = set()

    async def activate(self, context: CaptureContext) -> None:
        self._last_values = {}
        self._submitted_by_click = None
        browser = context.browser
        self.context = context
        try:
            await browser.expose_binding(BINDING_NAME, self._on_binding)
            await browser.add_init_script(CAPTURE_SCRIPT)
            await browser.evaluate(CAPTURE_SCRIPT.strip().rstrip(";"))
        except BrowserEngineError as exc:
            self.context = None
            raise CaptureSourceError(f"DOM capture script could not be installed: {exc}", mode=self.mode.value) from exc
        browser.on_navigation(self._on_navigation)
        await set_recording_indicator(browser, True)
        logger.info("[Capture] DOM injection active for %s", context.session_id)

    async def deactivate(self) -> List[RawEvent]:
        context = self.context
        if context is None:
            return []
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        self.context = None
        context.browser.on_navigation(None)

        async def ignore(_payload: Any) -> None:
            return None

        try:
            await context.browser.expose_binding(BINDING_NAME, ignore)
        except BrowserEngineError as exc:
            logger.debug("[Capture] Could not silence binding: %s", exc)
        await set_recording_indicator(context.browser, False)
        return []

    def to_raw_event(self, payload: Dict[str, Any]) -> Optional[RawEvent]:
        """Build a raw event from a page payload.

        ``None`` for a repeated edit value, or for a form submit already
        reported by the click on its submit button.
        """
        raw = RawEvent.from_dict(payload)
        # The page clock is not comparable with the server clock.
        if raw.timestamp is not None:
            raw.extra["pageTimestamp"] = raw.timestamp
            raw.timestamp = None
        if not raw.selector and raw.target:
            raw.selector = resolve(raw.target)

        submitted_form, self._submitted_by_click = self._submitted_by_click, None
        if raw.type == "submit" and submitted_form is not None and raw.selector == submitted_form:
            return None
        submits_form = raw.extra.pop("submitsForm", None)
        if raw.type == "click" and isinstance(submits_form, dict):
            self._submitted_by_click = resolve(submits_form)

        if raw.type in _EDIT_EVENTS and raw.selector:
            value = "" if raw.value is None else str(raw.value)
            if self._last_values.get(raw.selector) == value:
                return None
            self._last_values[raw.selector] = value
        return raw

    async def _on_binding(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            logger.debug("[Capture] Ignoring non-object payload from page: %r", payload)
            return
        try:
            raw = self.to_raw_event(payload)
        except (MalformedStep, ValueError, TypeError) as exc:
            logger.info("[Capture] Dropping unreadable page event: %s", exc)
            return
        if raw is not None:
            await self.emit(raw)

    def _on_navigation(self, url: str) -> None:
        # A new document ends the current edit run.
        self._last_values = {}
        self._submitted_by_click = None
        task = asyncio.ensure_future(self.emit(RawEvent(type="commit", url=url)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


__all__ = ["BINDING_NAME", "CAPTURE_SCRIPT", "DomInjectionSource", "set_recording_indicator"]
