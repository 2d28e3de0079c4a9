"""Render a step list as a standalone Playwright (async Python) script.

Every step becomes its own ``try`` block. A failure at step ``i`` raises
``StepFailure(SCRIPT_NAME, i, exc)``, which stops the remaining steps of
that script only; ``main()`` turns it into a single ``STEP_FAILED`` line
on stdout and a non-zero exit code, so a suite runner can carry on with the
next script.

Synthesis is pure. The generation time only appears in a header comment.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..models import GeneratedScript, Step, StepType

logger = logging.getLogger(__name__)

FAILURE_MARKER = "STEP_FAILED"
SUCCESS_MARKER = "SCRIPT_PASSED"

SUBMIT_JS = "el => { const f = el.tagName === 'FORM' ? el : el.closest('form'); if (f) f.requestSubmit(); }"

_HEADER = '''\
# Generated by tile-recorder. Do not edit by hand.
# Script: {name_comment}
# Generated at: {generated_at}
# Steps: {count}
import asyncio
import json
import os
import sys

from playwright.async_api import async_playwright

SCRIPT_NAME = {name!r}
START_URL = {start_url!r}
HEADLESS = os.getenv("RECORDER_HEADLESS", "0").strip().lower() in ("1", "true", "yes")


class StepFailure(Exception):
    def __init__(self, script_name, step_index, error):
        super().__init__(f"Failed at Step {{step_index}} in {{script_name!r}}: {{error}}")
        self.script_name = script_name
        self.step_index = step_index
        self.error = error


async def run(page):
    if START_URL:
        await page.goto(START_URL)
'''

_FOOTER = '''

async def main():
    async with async_playwright() as p:
        browser = await p.{browser}.launch(headless=HEADLESS)
        page = await browser.new_page()
        try:
            await run(page)
        except StepFailure as failure:
            print("{failure_marker} " + json.dumps({{
                "script": failure.script_name,
                "stepIndex": failure.step_index,
                "error": str(failure.error),
            }}), flush=True)
            return 1
        finally:
            await browser.close()
    print("{success_marker} " + json.dumps({{"script": SCRIPT_NAME}}), flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
'''


def _navigate(step: Step) -> str:
    return f"await page.goto({step.value!r})"


def _click(step: Step) -> str:
    return f"await page.click({step.selector!r})"


def _fill(step: Step) -> str:
    return f"await page.fill({step.selector!r}, {step.value!r})"


def _type(step: Step) -> str:
    return f"await page.type({step.selector!r}, {step.value!r})"


def _select(step: Step) -> str:
    return f"await page.select_option({step.selector!r}, {step.value!r})"


def _check(step: Step) -> str:
    return f"await page.check({step.selector!r})"


def _uncheck(step: Step) -> str:
    return f"await page.uncheck({step.selector!r})"


def _press(step: Step) -> str:
    return f"await page.press({step.selector!r}, {step.value!r})"


def _submit(step: Step) -> str:
    return f"await page.locator({step.selector!r}).first.evaluate({SUBMIT_JS!r})"


STEP_RENDERERS: Dict[StepType, Callable[[Step], str]] = {
    StepType.NAVIGATE: _navigate,
    StepType.CLICK: _click,
    StepType.FILL: _fill,
    StepType.TYPE: _type,
    StepType.SELECT: _select,
    StepType.CHECK: _check,
    StepType.UNCHECK: _uncheck,
    StepType.PRESS: _press,
    StepType.SUBMIT: _submit,
}


def _comment(text: str) -> str:
    return re.sub(r"[\r\n]+", " ", text)


def render_step(step: Step, index: int) -> List[str]:
    """Lines for step ``index`` (1-based), indented for the ``run`` body."""
    renderer = STEP_RENDERERS.get(step.type)
    source = getattr(step.source, "value", step.source)
    if renderer is None:
        step_type = getattr(step.type, "value", step.type)
        return [f"    # Step {index}: unsupported step type {_comment(repr(step_type))} skipped"]
    return [
        f"    # Step {index}: {_comment(step.describe())} [{source}]",
        "    try:",
        f"        {renderer(step)}",
        "    except Exception as exc:",
        f"        raise StepFailure(SCRIPT_NAME, {index}, exc) from exc",
    ]


def synthesize(
    steps: Sequence[Step],
    script_name: str,
    generated_at: Optional[str] = None,
    start_url: Optional[str] = None,
    browser: str = "chromium",
) -> GeneratedScript:
    generated_at = generated_at or datetime.now(timezone.utc).isoformat()
    if steps and steps[0].type is StepType.NAVIGATE:
        start_url = None

    lines: List[str] = [
        _HEADER.format(
            name=script_name,
            name_comment=_comment(script_name),
            generated_at=generated_at,
            count=len(steps),
            start_url=start_url,
        ).rstrip("\n")
    ]
    skipped = 0
    for index, step in enumerate(steps, start=1):
        lines.append("")
        rendered = render_step(step, index)
        if len(rendered) == 1:
            skipped += 1
        lines.extend(rendered)
    if skipped:
        logger.info("[Synth] %d unsupported steps skipped in %s", skipped, script_name)

    text = "\n".join(lines) + _FOOTER.format(
        browser=browser,
        failure_marker=FAILURE_MARKER,
        success_marker=SUCCESS_MARKER,
    )
    return GeneratedScript(name=script_name, text=text, step_count=len(steps), generated_at=generated_at)


__all__ = ["FAILURE_MARKER", "STEP_RENDERERS", "SUCCESS_MARKER", "render_step", "synthesize"]
