from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ...core.events import ALL_SESSIONS, RecorderEventBroker
from ...recorder.codegen_parser import parse_script_to_steps
from ...services.session_manager import SessionManager
from ..sse import queue_events, sse_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])


def _manager(request: Request) -> SessionManager:
    return request.app.state.manager


def _broker(request: Request) -> RecorderEventBroker:
    return request.app.state.broker


class StartSessionRequest(BaseModel):
    url: str = Field(..., description="Page to open in the session's browser")
    sessionId: Optional[str] = Field(None, description="Caller-chosen id; generated when omitted")


class SessionRequest(BaseModel):
    sessionId: str = Field(..., description="Target session id")


class StartRecordingRequest(SessionRequest):
    sourceConfig: Optional[Union[str, Dict[str, Any]]] = Field(
        None,
        description="Capture mode name, or {mode, ...options}; defaults to dom-injection",
    )


class RecordActionRequest(SessionRequest):
    action: Dict[str, Any] = Field(..., description="Raw event: type, selector/target, value, url, key")
    execute: bool = Field(False, description="Also perform the action in the session's browser")


class PerformActionRequest(SessionRequest):
    action: Dict[str, Any] = Field(..., description="Raw event to execute through the recording-aware browser")


class RunScriptRequest(SessionRequest):
    headed: bool = False
    timeout: Optional[float] = Field(None, gt=0, description="Seconds before the script process is killed")


class ParseScriptRequest(BaseModel):
    script: str = Field(..., description="Generated Playwright (python or js) script text")


@router.post("/api/start-session")
async def start_session(request: Request, payload: StartSessionRequest):
    session = await _manager(request).start(payload.url, payload.sessionId)
    return {
        "success": True,
        "sessionId": session.session_id,
        "state": session.state.value,
        "message": f"Session started for {session.url}",
    }


@router.post("/api/start-recording")
async def start_recording(request: Request, payload: StartRecordingRequest):
    session = await _manager(request).start_recording(payload.sessionId, payload.sourceConfig)
    return {
        "success": True,
        "sessionId": session.session_id,
        "captureMode": session.capture_mode.value if session.capture_mode else None,
        "degraded": session.degraded_reason is not None,
        "degradedReason": session.degraded_reason,
        "message": "Recording started",
    }


@router.post("/api/record-action")
async def record_action(request: Request, payload: RecordActionRequest):
    result = await _manager(request).record_manual_action(
        payload.sessionId, payload.action, execute=payload.execute
    )
    body: Dict[str, Any] = {
        "success": True,
        "step": result.step.to_dict() if result.step else None,
        "totalSteps": result.total_steps,
        "executed": result.executed,
    }
    if result.error:
        body["executionError"] = result.error
    return body


@router.post("/api/perform-action")
async def perform_action(request: Request, payload: PerformActionRequest):
    step = await _manager(request).perform_action(payload.sessionId, payload.action)
    return {"success": True, "step": step.to_dict()}


@router.post("/api/stop-recording")
async def stop_recording(request: Request, payload: SessionRequest):
    session = await _manager(request).stop_recording(payload.sessionId)
    script = session.generated_script
    return {
        "success": True,
        "sessionId": session.session_id,
        "steps": [step.to_dict() for step in session.steps],
        "totalSteps": len(session.steps),
        "script": script.to_dict() if script else None,
        "scriptPath": str(session.script_path) if session.script_path else None,
        "artifacts": dict(session.artifacts),
        "degraded": session.degraded_reason is not None,
    }


@router.post("/api/play-recording")
async def play_recording(request: Request, payload: SessionRequest):
    result = await _manager(request).play(payload.sessionId)
    return {"success": True, "sessionId": payload.sessionId, **result.to_dict()}


@router.post("/api/stop-playback")
async def stop_playback(request: Request, payload: SessionRequest):
    stopped = _manager(request).stop_playback(payload.sessionId)
    message = "Playback stop requested" if stopped else "No playback running"
    return {"success": True, "stopped": stopped, "message": message}


@router.post("/api/close-session")
async def close_session(request: Request, payload: SessionRequest):
    await _manager(request).close(payload.sessionId)
    return {"success": True, "sessionId": payload.sessionId, "message": "Session closed"}


@router.get("/api/recording-status/{session_id}")
async def recording_status(request: Request, session_id: str):
    return {"success": True, **_manager(request).status(session_id)}


@router.get("/api/sessions")
async def list_sessions(request: Request):
    manager = _manager(request)
    sessions = [manager.registry.get(sid) for sid in manager.registry.ids()]
    return {
        "success": True,
        "sessions": [
            {"sessionId": s.session_id, "url": s.url, "state": s.state.value, "totalSteps": len(s.steps)}
            for s in sessions
        ],
    }


@router.get("/api/export-test/{session_id}")
async def export_test(request: Request, session_id: str):
    script = _manager(request).export_script(session_id)
    return PlainTextResponse(
        script.text,
        media_type="text/x-python",
        headers={"Content-Disposition": f'attachment; filename="{script.name}.py"'},
    )


@router.post("/api/run-script")
async def run_script(request: Request, payload: RunScriptRequest):
    result = await _manager(request).run_script(payload.sessionId, headed=payload.headed, timeout=payload.timeout)
    return result.to_dict()


@router.post("/api/parse-script")
async def parse_script(payload: ParseScriptRequest):
    steps = parse_script_to_steps(payload.script)
    return {"success": True, "steps": [step.to_dict() for step in steps], "count": len(steps)}


@router.get("/api/sessions/{session_id}/events")
async def session_events(request: Request, session_id: str):
    # Subscribing to an unknown id is an error; the stream itself outlives the session.
    _manager(request).registry.get(session_id)
    broker = _broker(request)
    queue = broker.connect(session_id)

    async def stream():
        try:
            async for frame in queue_events(queue):
                if await request.is_disconnected():
                    break
                yield frame
        finally:
            broker.disconnect(session_id, queue)

    return sse_response(stream())


async def _stream_events(websocket: WebSocket, session_id: str) -> None:
    broker: RecorderEventBroker = websocket.app.state.broker
    queue = broker.connect(session_id)
    await websocket.accept()
    logger.info(
        "[Events] Subscriber connected for %s (%d listening)", session_id, broker.subscriber_count(session_id)
    )

    async def forward() -> None:
        while True:
            await websocket.send_json(await queue.get())

    sender = asyncio.create_task(forward())
    try:
        # Client messages are ignored; reading is how a disconnect is noticed.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("[Events] Subscriber disconnected from %s", session_id)
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        broker.disconnect(session_id, queue)


@router.websocket("/ws/events")
async def all_events(websocket: WebSocket):
    await _stream_events(websocket, ALL_SESSIONS)


@router.websocket("/ws/sessions/{session_id}")
async def session_event_socket(websocket: WebSocket, session_id: str):
    await _stream_events(websocket, session_id)
