"""Error taxonomy shared by the recorder core and the API layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class RecorderError(Exception):
    """Base class for every error the recorder reports to its callers."""

    code = "recorder_error"
    http_status = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "errorType": self.code,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class SessionNotFound(RecorderError):
    code = "session_not_found"
    http_status = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}", sessionId=session_id)
        self.session_id = session_id


class SessionStartError(RecorderError):
    code = "session_start_error"
    http_status = 502


class InvalidState(RecorderError):
    code = "invalid_state"
    http_status = 409


class MalformedStep(RecorderError):
    code = "malformed_step"
    http_status = 422


class CaptureSourceError(RecorderError):
    code = "capture_source_error"
    http_status = 500


class BrowserEngineError(RecorderError):
    """Wraps a failure raised by the browser automation engine."""

    code = "browser_engine_error"
    http_status = 502

    def __init__(self, operation: str, error: BaseException) -> None:
        super().__init__(f"{operation} failed: {error}", operation=operation)
        self.operation = operation
        self.original = error


class StepExecutionError(RecorderError):
    """A single step failed while a script or a playback was running.

    ``owner`` is the script name or the session id the step belongs to and
    ``step_index`` is the 1-based ordinal of the failing step.
    """

    code = "step_execution_error"
    http_status = 500

    def __init__(self, owner: str, step_index: int, error: Any, step_type: Optional[str] = None) -> None:
        message = str(error) if not isinstance(error, str) else error
        super().__init__(
            f"Failed at step {step_index} in {owner!r}: {message}",
            owner=owner,
            stepIndex=step_index,
        )
        self.owner = owner
        self.step_index = step_index
        self.error = message
        self.step_type = step_type


__all__ = [
    "BrowserEngineError",
    "CaptureSourceError",
    "InvalidState",
    "MalformedStep",
    "RecorderError",
    "SessionNotFound",
    "SessionStartError",
    "StepExecutionError",
]
