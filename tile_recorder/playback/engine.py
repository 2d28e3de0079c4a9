"""Replay a step list against a live browser session."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Sequence

from ..config import Settings
from ..core.browser import BrowserHandle
from ..core.events import PLAYBACK_COMPLETE, STEP_ERROR, STEP_PLAYING, RecorderEventBroker
from ..errors import MalformedStep, RecorderError
from ..models import PlaybackResult, Step, StepFailureRecord, StepType

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop flag, checked between steps only."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


async def _navigate(browser: BrowserHandle, step: Step, settings: Optional[Settings]) -> None:
    timeout_ms = settings.navigation_timeout * 1000 if settings else None
    await browser.goto(step.value, timeout_ms)


STEP_EXECUTORS: Dict[StepType, Callable[[BrowserHandle, Step, Optional[Settings]], Awaitable[None]]] = {
    StepType.NAVIGATE: _navigate,
    StepType.CLICK: lambda b, s, _: b.click(s.selector),
    StepType.FILL: lambda b, s, _: b.fill(s.selector, s.value),
    StepType.TYPE: lambda b, s, _: b.type(s.selector, s.value),
    StepType.SELECT: lambda b, s, _: b.select_option(s.selector, s.value),
    StepType.CHECK: lambda b, s, _: b.check(s.selector),
    StepType.UNCHECK: lambda b, s, _: b.uncheck(s.selector),
    StepType.PRESS: lambda b, s, _: b.press(s.selector, s.value),
    StepType.SUBMIT: lambda b, s, _: b.submit(s.selector),
}


async def execute_step(browser: BrowserHandle, step: Step, settings: Optional[Settings] = None) -> None:
    """Perform one step; shared by playback and the manual/automation endpoints."""
    executor = STEP_EXECUTORS.get(step.type)
    if executor is None:
        raise MalformedStep(f"Unsupported step type: {step.type}")
    await executor(browser, step, settings)


class PlaybackEngine:
    """Runs steps in order with highlight, settle delay and per-step isolation.

    A failing step is recorded and reported through ``step-error``; the
    remaining steps still run. Cancellation is honoured before each step and
    reported as ``stopped_at_index`` (1-based index of the first step that
    did not run).
    """

    def __init__(self, settings: Settings, broker: Optional[RecorderEventBroker] = None) -> None:
        self.settings = settings
        self.broker = broker

    def _publish(self, event: str, session_id: str, payload: Dict) -> None:
        if self.broker is not None:
            self.broker.publish(event, session_id, payload)

    async def play(
        self,
        session_id: str,
        browser: BrowserHandle,
        steps: Sequence[Step],
        token: Optional[CancellationToken] = None,
    ) -> PlaybackResult:
        token = token or CancellationToken()
        total = len(steps)
        result = PlaybackResult(total_steps=total)
        settle = max(self.settings.settle_ms, 0) / 1000.0
        logger.info("[Playback] Playing %d steps for %s", total, session_id)

        for index, step in enumerate(steps, start=1):
            if token.cancelled:
                result.completed = False
                result.stopped_at_index = index
                logger.info("[Playback] Cancelled before step %d of %s", index, session_id)
                break

            self._publish(
                STEP_PLAYING,
                session_id,
                {"stepIndex": index, "step": step.to_dict(), "progress": f"{index}/{total}"},
            )
            highlighted = bool(step.selector) and await browser.highlight(step.selector, True)
            try:
                await execute_step(browser, step, self.settings)
                result.completed_steps += 1
            except Exception as exc:
                message = exc.message if isinstance(exc, RecorderError) else str(exc)
                logger.warning("[Playback] Step %d (%s) failed in %s: %s", index, step.type.value, session_id, message)
                result.errors.append(StepFailureRecord(step_index=index, error=message, step=step))
                self._publish(STEP_ERROR, session_id, {"stepIndex": index, "error": message, "step": step.to_dict()})
            if highlighted:
                await browser.highlight(step.selector, False)
            if settle and index < total:
                await asyncio.sleep(settle)

        self._publish(PLAYBACK_COMPLETE, session_id, result.to_dict())
        logger.info(
            "[Playback] Finished %s: %d/%d steps ok, %d errors",
            session_id,
            result.completed_steps,
            total,
            len(result.errors),
        )
        return result


__all__ = ["CancellationToken", "PlaybackEngine", "STEP_EXECUTORS", "execute_step"]
