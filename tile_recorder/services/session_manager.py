"""Session lifecycle: start, record, stop and synthesize, play, close.

State machine per session::

    Created -> Loaded -> Recording -> Stopped -> Closed
    Loaded | Stopped -> Playing -> (back to where it started)
    Recording -> Recording   (restart replaces the capture source)

Recording and playing exclude each other. Operations that change a
session's state take the session's registry lock; ingesting a captured
event does not await anything, so it cannot interleave with another
mutation of the same step list.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from ..config import Settings
from ..core.browser import BrowserFactory, launch_playwright_browser
from ..core.browser_utils import normalize_url
from ..core.events import (
    CAPTURE_DEGRADED,
    RECORDING_STARTED,
    RECORDING_STOPPED,
    SESSION_CLOSED,
    STEP_RECORDED,
    RecorderEventBroker,
)
from ..core.session_registry import SessionRegistry
from ..errors import (
    CaptureSourceError,
    InvalidState,
    MalformedStep,
    RecorderError,
    SessionNotFound,
    SessionStartError,
    StepExecutionError,
)
from ..models import GeneratedScript, PlaybackResult, RawEvent, Step, StepSource
from ..playback.engine import CancellationToken, PlaybackEngine, execute_step
from ..recorder.capture import CaptureContext, CaptureMode, CaptureSource, SourceConfig, build_capture_source
from ..recorder.capture.api_interception import RecordingAwareBrowser
from ..recorder.normalizer import StepMerger, is_commit_event, normalize
from ..synthesis import runner
from ..synthesis.script_synthesizer import synthesize
from .script_store import ScriptStore, script_name_for

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CREATED = "created"
    LOADED = "loaded"
    RECORDING = "recording"
    STOPPED = "stopped"
    PLAYING = "playing"
    CLOSED = "closed"


def new_session_id() -> str:
    return f"session_{uuid4().hex[:8]}"


@dataclass
class ManualActionResult:
    step: Optional[Step]
    total_steps: int
    executed: bool = False
    error: Optional[str] = None


@dataclass
class Session:
    session_id: str
    url: str
    browser: RecordingAwareBrowser
    state: SessionState = SessionState.CREATED
    merger: StepMerger = field(default_factory=StepMerger)
    capture: Optional[CaptureSource] = None
    capture_mode: Optional[CaptureMode] = None
    script_name: Optional[str] = None
    recording_url: Optional[str] = None
    degraded_reason: Optional[str] = None
    generated_script: Optional[GeneratedScript] = None
    script_path: Optional[Path] = None
    artifacts: Dict[str, str] = field(default_factory=dict)
    playback_token: Optional[CancellationToken] = None
    playback_done: asyncio.Event = field(default_factory=asyncio.Event)
    last_playback: Optional[PlaybackResult] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __post_init__(self) -> None:
        self.playback_done.set()

    @property
    def steps(self) -> List[Step]:
        return self.merger.steps

    @property
    def is_recording(self) -> bool:
        return self.state is SessionState.RECORDING

    def to_dict(self) -> Dict[str, Any]:
        steps = self.steps
        counts: Dict[str, int] = {}
        for step in steps:
            counts[step.source.value] = counts.get(step.source.value, 0) + 1
        return {
            "sessionId": self.session_id,
            "url": self.url,
            "state": self.state.value,
            "isRecording": self.is_recording,
            "captureMode": self.capture_mode.value if self.capture_mode else None,
            "degraded": self.degraded_reason is not None,
            "degradedReason": self.degraded_reason,
            "totalSteps": len(steps),
            "stepsBySource": counts,
            "steps": [s.to_dict() for s in steps],
            "hasScript": self.generated_script is not None,
            "scriptPath": str(self.script_path) if self.script_path else None,
            "artifacts": dict(self.artifacts),
            "createdAt": self.created_at,
        }


class SessionManager:
    def __init__(
        self,
        settings: Settings,
        browser_factory: Optional[BrowserFactory] = None,
        broker: Optional[RecorderEventBroker] = None,
        script_store: Optional[ScriptStore] = None,
        playback: Optional[PlaybackEngine] = None,
    ) -> None:
        self.settings = settings
        self.browser_factory: BrowserFactory = browser_factory or launch_playwright_browser
        self.broker = broker or RecorderEventBroker()
        self.script_store = script_store or ScriptStore(settings.output_dir)
        self.playback = playback or PlaybackEngine(settings, self.broker)
        self.registry: SessionRegistry[Session] = SessionRegistry()

    # Lifecycle -----------------------------------------------------------

    async def start(self, url: str, session_id: Optional[str] = None) -> Session:
        """Launch a browser, open ``url`` and register the session as Loaded."""
        session_id = session_id or new_session_id()
        if not url or not str(url).strip():
            raise SessionStartError("A url is required to start a session", sessionId=session_id)
        target = normalize_url(url)

        async with self.registry.locked(session_id):
            if session_id in self.registry:
                raise InvalidState(f"Session already exists: {session_id}", sessionId=session_id)
            logger.info("[Session] Starting %s at %s", session_id, target)
            handle = None
            try:
                handle = await asyncio.wait_for(
                    self.browser_factory(self.settings), timeout=self.settings.launch_timeout
                )
                await asyncio.wait_for(
                    handle.goto(target, self.settings.navigation_timeout * 1000),
                    timeout=self.settings.navigation_timeout + 1,
                )
            except asyncio.TimeoutError as exc:
                await self._release(handle, session_id)
                stage = "Browser launch" if handle is None else "Navigation"
                raise SessionStartError(f"{stage} timed out for {target}", sessionId=session_id) from exc
            except Exception as exc:
                await self._release(handle, session_id)
                message = exc.message if isinstance(exc, RecorderError) else str(exc)
                raise SessionStartError(f"Could not start session: {message}", sessionId=session_id) from exc

            session = Session(session_id=session_id, url=target, browser=RecordingAwareBrowser(handle))
            session.state = SessionState.LOADED
            self.registry.add(session_id, session)
        logger.info("[Session] %s loaded", session_id)
        return session

    async def close(self, session_id: str) -> None:
        """Force-stop recording or playback, release the browser and forget the session."""
        session = self.registry.get(session_id)
        if session.playback_token is not None:
            session.playback_token.cancel()
        try:
            await asyncio.wait_for(session.playback_done.wait(), timeout=self.settings.close_timeout)
        except asyncio.TimeoutError:
            logger.warning("[Session] Playback of %s did not stop in time; closing anyway", session_id)

        async with self.registry.locked(session_id):
            session = self.registry.get(session_id)
            if session.is_recording:
                await self._deactivate_capture(session)
            session.state = SessionState.CLOSED
            self.registry.remove(session_id)
        await self._release(session.browser, session_id)
        self._publish(SESSION_CLOSED, session_id, {})
        logger.info("[Session] %s closed", session_id)

    async def shutdown(self) -> None:
        ids = self.registry.ids()
        if ids:
            logger.info("[Session] Closing %d open sessions", len(ids))
        for session_id in ids:
            try:
                await self.close(session_id)
            except SessionNotFound:
                continue
            except Exception as exc:
                logger.warning("[Session] Failed to close %s during shutdown: %s", session_id, exc)

    async def _release(self, handle: Any, session_id: str) -> None:
        if handle is None:
            return
        try:
            await asyncio.wait_for(handle.close(), timeout=self.settings.close_timeout)
        except asyncio.TimeoutError:
            logger.warning("[Session] Browser of %s did not close within %.1fs", session_id, self.settings.close_timeout)
        except Exception as exc:
            logger.warning("[Session] Error releasing browser of %s: %s", session_id, exc)

    # Recording -----------------------------------------------------------

    async def start_recording(
        self,
        session_id: str,
        source_config: Union[SourceConfig, str, Dict[str, Any], None] = None,
    ) -> Session:
        """Reset the step list and activate exactly one capture source.

        Starting again while already recording replaces the running source;
        nothing from the first activation is kept.
        """
        config = SourceConfig.parse(source_config)
        async with self.registry.locked(session_id):
            session = self.registry.get(session_id)
            if session.state is SessionState.PLAYING:
                raise InvalidState("Cannot record while playback is running", sessionId=session_id)
            if session.state is SessionState.RECORDING:
                logger.info("[Session] Restarting recording for %s", session_id)
                await self._deactivate_capture(session)
            elif session.state not in (SessionState.LOADED, SessionState.STOPPED):
                raise InvalidState(
                    f"Cannot start recording in state {session.state.value}", sessionId=session_id
                )

            source = build_capture_source(config)
            session.merger.clear()
            session.generated_script = None
            session.script_path = None
            session.artifacts = {}
            session.degraded_reason = None
            session.capture = source
            session.capture_mode = config.mode
            session.recording_url = session.browser.url or session.url
            session.script_name = config.options.get("name") or script_name_for(session.url, session_id)
            session.state = SessionState.RECORDING

            context = CaptureContext(
                session_id=session_id,
                browser=session.browser,
                settings=self.settings,
                sink=self._sink_for(session, source),
                session_dir=self.script_store.session_dir(session_id),
                start_url=session.recording_url,
            )
            try:
                await source.activate(context)
            except CaptureSourceError as exc:
                self._mark_degraded(session, exc)
        self._publish(
            RECORDING_STARTED,
            session_id,
            {"captureMode": config.mode.value, "degraded": session.degraded_reason is not None},
        )
        logger.info("[Session] Recording %s with %s", session_id, config.mode.value)
        return session

    async def record_step(
        self,
        session_id: str,
        raw: Union[RawEvent, Dict[str, Any]],
        source: StepSource = StepSource.MANUAL,
    ) -> Optional[Step]:
        """Normalize and merge one raw event. ``None`` for commit-only events."""
        session = self.registry.get(session_id)
        return self._ingest(session, raw, source)

    async def record_manual_action(
        self,
        session_id: str,
        raw: Union[RawEvent, Dict[str, Any]],
        execute: bool = False,
    ) -> ManualActionResult:
        """Record an action reported by a client; optionally perform it too.

        A failed execution is reported in the result, not raised: the step
        stays recorded.
        """
        session = self.registry.get(session_id)
        step = self._ingest(session, raw, StepSource.MANUAL)
        result = ManualActionResult(step=step, total_steps=len(session.merger))
        if not execute or step is None:
            return result
        try:
            # The inner handle: API interception must not record it a second time.
            await execute_step(session.browser.inner, step, self.settings)
        except RecorderError as exc:
            logger.warning("[Session] Manual action %s failed in %s: %s", step.type.value, session_id, exc.message)
            result.error = exc.message
            return result
        result.executed = True
        return result

    async def perform_action(self, session_id: str, raw: Union[RawEvent, Dict[str, Any]]) -> Step:
        """Execute an automation action through the recording-aware handle."""
        step = normalize(raw, StepSource.AUTOMATION)
        async with self.registry.locked(session_id):
            session = self.registry.get(session_id)
            if session.state not in (SessionState.LOADED, SessionState.RECORDING, SessionState.STOPPED):
                raise InvalidState(
                    f"Cannot perform actions in state {session.state.value}", sessionId=session_id
                )
            try:
                await execute_step(session.browser, step, self.settings)
            except RecorderError as exc:
                raise StepExecutionError(session_id, len(session.steps) + 1, exc.message, step.type.value) from exc
        return step

    async def stop_recording(self, session_id: str) -> Session:
        """Deactivate capture, merge late events, synthesize and persist the script.

        Stopping a session that already stopped is a no-op.
        """
        async with self.registry.locked(session_id):
            session = self.registry.get(session_id)
            if session.state is SessionState.STOPPED:
                logger.debug("[Session] %s already stopped", session_id)
                return session
            if session.state is not SessionState.RECORDING:
                raise InvalidState(f"Session is not recording ({session.state.value})", sessionId=session_id)

            late_events = await self._deactivate_capture(session, keep_source=True)
            source = session.capture
            step_source = source.step_source if source is not None else StepSource.MANUAL
            for raw in late_events:
                if raw.timestamp is not None:
                    raw.extra.setdefault("sourceTimestamp", raw.timestamp)
                    raw.timestamp = None
                try:
                    self._ingest(session, raw, step_source)
                except MalformedStep as exc:
                    logger.info("[Session] Dropping late %s event for %s: %s", raw.type, session_id, exc)
            session.capture = None
            session.state = SessionState.STOPPED

            steps = session.steps
            script = synthesize(
                steps,
                session.script_name or session_id,
                start_url=session.recording_url,
                browser=self.settings.browser,
            )
            session.generated_script = script
            try:
                session.script_path = await asyncio.to_thread(self.script_store.save, session_id, script)
            except (OSError, ValueError) as exc:
                logger.warning("[Session] Could not persist script for %s: %s", session_id, exc)

        self._publish(
            RECORDING_STOPPED,
            session_id,
            {"totalSteps": len(steps), "scriptName": script.name, "artifacts": dict(session.artifacts)},
        )
        logger.info("[Session] %s stopped with %d steps", session_id, len(steps))
        return session

    def _sink_for(self, session: Session, source: CaptureSource):
        async def sink(raw: RawEvent) -> None:
            if session.capture is not source:
                return
            try:
                self._ingest(session, raw, source.step_source)
            except MalformedStep as exc:
                logger.info("[Session] Dropping malformed %s event for %s: %s", raw.type, session.session_id, exc)
            except InvalidState as exc:
                logger.debug("[Session] Ignoring late event for %s: %s", session.session_id, exc)

        return sink

    def _ingest(self, session: Session, raw: Union[RawEvent, Dict[str, Any]], source: StepSource) -> Optional[Step]:
        # No awaits below: the step list cannot change underneath us.
        if session.state is not SessionState.RECORDING:
            raise InvalidState(
                f"Session is not recording ({session.state.value})", sessionId=session.session_id
            )
        if is_commit_event(raw):
            session.merger.commit()
            return None
        if isinstance(raw, dict):
            raw = RawEvent.from_dict(raw)
        if raw.timestamp is not None:
            # Client clocks are not comparable with ours; order by arrival.
            raw.extra.setdefault("clientTimestamp", raw.timestamp)
            raw.timestamp = None
        step = normalize(raw, source)
        merged, replaced = session.merger.merge(step)
        self._publish(
            STEP_RECORDED,
            session.session_id,
            {"step": merged.to_dict(), "totalSteps": len(session.merger), "replaced": replaced},
        )
        return merged

    async def _deactivate_capture(self, session: Session, keep_source: bool = False) -> List[RawEvent]:
        source = session.capture
        if source is None:
            return []
        try:
            late = await source.deactivate()
        except (RecorderError, OSError) as exc:
            self._mark_degraded(session, exc)
            late = []
        session.artifacts.update(source.artifacts)
        if not keep_source:
            session.capture = None
        return late

    def _mark_degraded(self, session: Session, exc: BaseException) -> None:
        reason = exc.message if isinstance(exc, RecorderError) else str(exc)
        session.degraded_reason = reason
        logger.warning("[Session] Capture degraded for %s: %s", session.session_id, reason)
        self._publish(CAPTURE_DEGRADED, session.session_id, {"error": reason})

    # Playback ------------------------------------------------------------

    async def play(self, session_id: str, steps: Optional[Sequence[Step]] = None) -> PlaybackResult:
        async with self.registry.locked(session_id):
            session = self.registry.get(session_id)
            if session.state is SessionState.RECORDING:
                raise InvalidState("Cannot play while recording is active", sessionId=session_id)
            if session.state is SessionState.PLAYING:
                raise InvalidState("Playback is already running", sessionId=session_id)
            if session.state not in (SessionState.LOADED, SessionState.STOPPED):
                raise InvalidState(f"Cannot play in state {session.state.value}", sessionId=session_id)
            to_play = list(steps) if steps is not None else session.steps
            if not to_play:
                raise InvalidState("No recorded steps to play", sessionId=session_id)
            token = CancellationToken()
            previous_state = session.state
            session.playback_token = token
            session.playback_done.clear()
            session.state = SessionState.PLAYING

        try:
            result = await self.playback.play(session_id, session.browser.inner, to_play, token)
        finally:
            if session.state is SessionState.PLAYING:
                session.state = previous_state
            session.playback_token = None
            session.playback_done.set()
        session.last_playback = result
        return result

    def stop_playback(self, session_id: str) -> bool:
        """Request cancellation; ``False`` when no playback is running."""
        session = self.registry.get(session_id)
        token = session.playback_token
        if token is None:
            return False
        token.cancel()
        logger.info("[Session] Stop requested for playback of %s", session_id)
        return True

    # Queries and scripts -------------------------------------------------

    def status(self, session_id: str) -> Dict[str, Any]:
        return self.registry.get(session_id).to_dict()

    def export_script(self, session_id: str) -> GeneratedScript:
        session = self.registry.get(session_id)
        if session.generated_script is None:
            raise InvalidState("No script has been generated for this session yet", sessionId=session_id)
        return session.generated_script

    async def run_script(self, session_id: str, headed: bool = False, timeout: Optional[float] = None) -> runner.ScriptRunResult:
        script = self.export_script(session_id)
        return await asyncio.to_thread(runner.run_script, script.text, script.name, headed, timeout)

    def _publish(self, event: str, session_id: str, payload: Dict[str, Any]) -> None:
        self.broker.publish(event, session_id, payload)


__all__ = ["ManualActionResult", "Session", "SessionManager", "SessionState", "new_session_id"]
