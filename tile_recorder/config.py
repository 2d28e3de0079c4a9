"""Runtime settings loaded from the environment (and ``.env`` files)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv

from .core.browser_utils import normalize_browser_name, parse_viewport

logger = logging.getLogger(__name__)


def _load_env_files() -> None:
    """Load ``.env`` from the working directory, then from the repository root."""
    try:
        load_dotenv()
    except Exception as exc:
        logger.debug("load_dotenv failed: %s", exc)
    repo_root_env = Path(__file__).resolve().parents[1] / ".env"
    if repo_root_env.exists():
        load_dotenv(dotenv_path=repo_root_env, override=False)


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    output_dir: Path = Path("recordings").resolve()
    browser: str = "chromium"
    headless: bool = False
    viewport: Tuple[int, int] = (1200, 800)
    launch_timeout: float = 30.0
    navigation_timeout: float = 30.0
    action_timeout_ms: float = 10_000
    settle_ms: float = 500
    highlight_ms: float = 300
    codegen_stop_timeout: float = 5.0
    close_timeout: float = 10.0
    allow_origins: List[str] = field(default_factory=lambda: ["http://localhost:5178"])
    api_host: str = "0.0.0.0"
    api_port: int = 8284
    log_level: str = "INFO"


def load_settings() -> Settings:
    _load_env_files()
    origins = os.getenv("ALLOW_ORIGINS", "http://localhost:5178").split(",")
    return Settings(
        output_dir=Path(os.getenv("RECORDER_OUTPUT_DIR", "recordings")).resolve(),
        browser=normalize_browser_name(os.getenv("RECORDER_BROWSER", "chromium")),
        headless=_env_flag("RECORDER_HEADLESS", "0"),
        viewport=parse_viewport(os.getenv("RECORDER_VIEWPORT")),
        launch_timeout=_env_float("RECORDER_LAUNCH_TIMEOUT", 30.0),
        navigation_timeout=_env_float("RECORDER_NAVIGATION_TIMEOUT", 30.0),
        action_timeout_ms=_env_float("RECORDER_ACTION_TIMEOUT_MS", 10_000),
        settle_ms=_env_float("RECORDER_SETTLE_MS", 500),
        highlight_ms=_env_float("RECORDER_HIGHLIGHT_MS", 300),
        codegen_stop_timeout=_env_float("RECORDER_CODEGEN_STOP_TIMEOUT", 5.0),
        close_timeout=_env_float("RECORDER_CLOSE_TIMEOUT", 10.0),
        allow_origins=[o.strip() for o in origins if o.strip()],
        api_host=os.getenv("API_HOST", "0.0.0.0"),
        api_port=int(os.getenv("API_PORT", "8284")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


__all__ = ["Settings", "get_settings", "load_settings"]
