"""Use Playwright's official codegen for recording.

The codegen process opens its own browser window on the session URL and
writes a Python script when it exits. Stopping the recording sends it
SIGINT, waits (bounded) for the script file and parses it.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional

from ...errors import CaptureSourceError
from ...models import RawEvent, StepSource
from ..codegen_parser import parse_script
from .base import CaptureContext, CaptureMode, CaptureSource

logger = logging.getLogger(__name__)


def codegen_command(url: str, output_file: Path, browser: str = "chromium") -> List[str]:
    return [
        sys.executable,
        "-m",
        "playwright",
        "codegen",
        "--target",
        "python-async",
        "--browser",
        browser,
        "--output",
        str(output_file),
        url,
    ]


class CodegenProcessSource(CaptureSource):
    mode = CaptureMode.CODEGEN_PROCESS
    step_source = StepSource.GENERATED_SCRIPT

    def __init__(self, config=None) -> None:
        super().__init__(config)
        self.process: Optional[asyncio.subprocess.Process] = None
        self.output_file: Optional[Path] = None

    async def activate(self, context: CaptureContext) -> None:
        url = self.config.options.get("url") or context.start_url or context.browser.url
        context.session_dir.mkdir(parents=True, exist_ok=True)
        self.output_file = context.session_dir / f"codegen-{context.session_id}-{int(time.time() * 1000)}.py"
        cmd = codegen_command(url, self.output_file, context.settings.browser)
        logger.info("[Codegen] Starting Playwright codegen for %s", url)
        logger.debug("[Codegen] Command: %s", " ".join(cmd))
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise CaptureSourceError(f"Could not start Playwright codegen: {exc}", mode=self.mode.value) from exc
        self.context = context

    async def _stop_process(self, timeout: float) -> None:
        process = self.process
        if process is None or process.returncode is not None:
            return
        try:
            if os.name == "nt":
                process.terminate()
            else:
                process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("[Codegen] Process did not exit within %.1fs, killing it", timeout)
            process.kill()
            await process.wait()

    async def _read_script(self, timeout: float) -> str:
        output_file = self.output_file
        if output_file is None:
            return ""
        deadline = time.monotonic() + timeout
        while True:
            if output_file.exists() and output_file.stat().st_size > 0:
                return output_file.read_text(encoding="utf-8")
            if time.monotonic() >= deadline:
                logger.warning("[Codegen] No script generated at %s", output_file)
                return ""
            await asyncio.sleep(0.2)

    async def deactivate(self) -> List[RawEvent]:
        if self.context is None and self.process is None:
            return []
        timeout = self.context.settings.codegen_stop_timeout if self.context else 5.0
        self.context = None
        await self._stop_process(timeout)
        script = await self._read_script(timeout)
        self.process = None
        if not script:
            return []
        if self.output_file is not None:
            self.artifacts["script"] = str(self.output_file)
        events = parse_script(script)
        logger.info("[Codegen] Captured %d actions", len(events))
        return events


__all__ = ["CodegenProcessSource", "codegen_command"]
