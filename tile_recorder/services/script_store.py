"""Persist synthesized scripts under ``<output_dir>/<session_id>/``."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from ..models import GeneratedScript

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_name(value: str, fallback: str = "recording", limit: int = 80) -> str:
    cleaned = _UNSAFE.sub("_", value or "").strip("._")
    return cleaned[:limit] or fallback


def script_name_for(url: str, session_id: str) -> str:
    """Readable default name: host/path of the recorded page plus the session id."""
    url_part = re.sub(r"^https?://", "", url or "")
    url_part = safe_name(url_part, fallback="test", limit=30)
    return f"{url_part}_{safe_name(session_id)}"


class ScriptStore:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def session_dir(self, session_id: str) -> Path:
        path = (self.root / safe_name(session_id, fallback="session")).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Session directory escapes output root: {session_id!r}")
        return path

    def save(self, session_id: str, script: GeneratedScript) -> Path:
        directory = self.session_dir(session_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{safe_name(script.name)}.py"
        path.write_text(script.text, encoding="utf-8")
        logger.info("[Store] Saved script for %s to %s", session_id, path)
        return path


__all__ = ["ScriptStore", "safe_name", "script_name_for"]
