from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)

ALL_SESSIONS = "*"

STEP_RECORDED = "step-recorded"
STEP_PLAYING = "step-playing"
STEP_ERROR = "step-error"
PLAYBACK_COMPLETE = "playback-complete"
RECORDING_STARTED = "recording-started"
RECORDING_STOPPED = "recording-stopped"
CAPTURE_DEGRADED = "capture-degraded"
SESSION_CLOSED = "session-closed"


class RecorderEventBroker:
    """Fan-out of recorder events to WebSocket/SSE subscribers.

    Delivery is at-most-once: ``publish`` never awaits a subscriber, and a
    subscriber whose queue is full misses the event. Events are enqueued in
    the order ``publish`` is called.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._listeners: Dict[str, Set[asyncio.Queue]] = {}
        self._max_queue_size = max_queue_size

    def connect(self, session_id: str = ALL_SESSIONS) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._listeners.setdefault(session_id, set()).add(queue)
        return queue

    def disconnect(self, session_id: str, queue: asyncio.Queue) -> None:
        listeners = self._listeners.get(session_id)
        if not listeners:
            return
        listeners.discard(queue)
        if not listeners:
            self._listeners.pop(session_id, None)

    def subscriber_count(self, session_id: str = ALL_SESSIONS) -> int:
        return len(self._listeners.get(session_id, ()))

    def publish(self, event: str, session_id: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        message: Dict[str, Any] = {"event": event, "sessionId": session_id, "ts": time.time()}
        if payload:
            message.update(payload)
        queues = list(self._listeners.get(session_id, ())) + list(self._listeners.get(ALL_SESSIONS, ()))
        for queue in queues:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.debug("[Events] Dropping %s for a slow subscriber of %s", event, session_id)
        return message


__all__ = [
    "ALL_SESSIONS",
    "CAPTURE_DEGRADED",
    "PLAYBACK_COMPLETE",
    "RECORDING_STARTED",
    "RECORDING_STOPPED",
    "RecorderEventBroker",
    "SESSION_CLOSED",
    "STEP_ERROR",
    "STEP_PLAYING",
    "STEP_RECORDED",
]
