from .base import (
    CaptureContext,
    CaptureMode,
    CaptureSource,
    DEFAULT_CAPTURE_MODE,
    SourceConfig,
    build_capture_source,
)

__all__ = [
    "CaptureContext",
    "CaptureMode",
    "CaptureSource",
    "DEFAULT_CAPTURE_MODE",
    "SourceConfig",
    "build_capture_source",
]
