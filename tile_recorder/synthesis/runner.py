# runner.py
"""Execute synthesized scripts in a subprocess and collect per-step failures."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import StepExecutionError
from ..models import GeneratedScript
from .script_synthesizer import FAILURE_MARKER

logger = logging.getLogger(__name__)


@dataclass
class ScriptRunResult:
    name: str
    success: bool
    failure: Optional[StepExecutionError] = None
    returncode: Optional[int] = None
    logs: str = ""

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "script": self.name,
            "success": self.success,
            "returncode": self.returncode,
        }
        if self.failure is not None:
            payload["failedStep"] = self.failure.step_index
            payload["error"] = self.failure.error
        elif not self.success:
            payload["error"] = self.logs.strip().splitlines()[-1] if self.logs.strip() else "Script failed"
        return payload


@dataclass
class SuiteRunResult:
    results: List[ScriptRunResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def failures(self) -> List[StepExecutionError]:
        return [r.failure for r in self.results if r.failure is not None]

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "total": len(self.results),
            "passed": sum(1 for r in self.results if r.success),
            "results": [r.to_dict() for r in self.results],
        }


def parse_run_output(name: str, stdout: str) -> Optional[StepExecutionError]:
    """Find the ``STEP_FAILED`` line a generated script prints and rebuild the error."""
    for line in (stdout or "").splitlines():
        if not line.startswith(FAILURE_MARKER + " "):
            continue
        try:
            payload = json.loads(line[len(FAILURE_MARKER) + 1:])
        except json.JSONDecodeError:
            continue
        return StepExecutionError(
            str(payload.get("script") or name),
            int(payload.get("stepIndex") or 0),
            str(payload.get("error") or ""),
        )
    return None


def _script_command(script_path: str) -> List[str]:
    return [sys.executable, script_path]


def run_script(
    script_text: str,
    name: str,
    headed: bool = False,
    timeout: Optional[float] = None,
    env_overrides: Optional[Dict[str, str]] = None,
) -> ScriptRunResult:
    """Write ``script_text`` to a temp file and execute it with this interpreter."""
    with tempfile.NamedTemporaryFile(delete=False, suffix=".py", mode="w", encoding="utf-8") as tmp:
        tmp.write(script_text)
        tmp_path = tmp.name

    env = os.environ.copy()
    env["RECORDER_HEADLESS"] = "0" if headed else "1"
    if env_overrides:
        env.update(env_overrides)

    cmd = _script_command(tmp_path)
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=env,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("[Runner] %s timed out after %ss", name, timeout)
        return ScriptRunResult(name=name, success=False, logs=f"Timed out after {exc.timeout}s")
    finally:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass

    stdout = result.stdout or ""
    stderr = result.stderr or ""
    failure = parse_run_output(name, stdout)
    success = result.returncode == 0 and failure is None
    header = f"$ {' '.join(cmd)}\n"
    if failure is not None:
        logger.warning("[Runner] %s", failure.message)
    return ScriptRunResult(
        name=name,
        success=success,
        failure=failure,
        returncode=result.returncode,
        logs=header + stdout + "\n" + stderr,
    )


def run_suite(
    scripts: Sequence[GeneratedScript | Tuple[str, str]],
    headed: bool = False,
    timeout: Optional[float] = None,
) -> SuiteRunResult:
    """Run scripts in order; a failing script does not stop the ones after it."""
    suite = SuiteRunResult()
    for item in scripts:
        if isinstance(item, GeneratedScript):
            name, text = item.name, item.text
        else:
            name, text = item
        logger.info("[Runner] Running %s", name)
        suite.results.append(run_script(text, name, headed=headed, timeout=timeout))
    return suite


__all__ = ["ScriptRunResult", "SuiteRunResult", "parse_run_output", "run_script", "run_suite"]
