"""Playback: per-step isolation, cancellation and progress events."""

import asyncio
import dataclasses

import pytest

from tile_recorder.core.events import PLAYBACK_COMPLETE, STEP_ERROR, STEP_PLAYING, RecorderEventBroker
from tile_recorder.errors import MalformedStep
from tile_recorder.models import Step, StepSource, StepType
from tile_recorder.playback.engine import CancellationToken, PlaybackEngine, execute_step

from conftest import FakeBrowserHandle


def _click(selector, ts=0.0):
    return Step(type=StepType.CLICK, selector=selector, value="", source=StepSource.MANUAL, timestamp=ts)


def _drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


async def test_failed_step_does_not_stop_playback(settings):
    broker = RecorderEventBroker()
    queue = broker.connect("s1")
    browser = FakeBrowserHandle(missing={"#missing"})
    engine = PlaybackEngine(settings, broker)

    result = await engine.play("s1", browser, [_click("#one"), _click("#missing"), _click("#three")])

    assert result.completed
    assert result.completed_steps == 2
    assert [(e.step_index, "#missing" in e.error) for e in result.errors] == [(2, True)]
    assert browser.actions() == [("click", "#one"), ("click", "#three")]

    events = _drain(queue)
    assert [e["event"] for e in events] == [
        STEP_PLAYING, STEP_PLAYING, STEP_ERROR, STEP_PLAYING, PLAYBACK_COMPLETE,
    ]
    assert events[1]["progress"] == "2/3"
    assert events[2]["stepIndex"] == 2
    assert events[-1]["errors"][0]["stepIndex"] == 2


async def test_highlight_is_removed_after_each_step(settings):
    browser = FakeBrowserHandle()
    await PlaybackEngine(settings).play("s1", browser, [_click("#a")])
    assert browser.highlights == [("#a", True), ("#a", False)]


async def test_cancel_between_steps_reports_next_index(settings):
    browser = FakeBrowserHandle()
    token = CancellationToken()
    engine = PlaybackEngine(settings)

    original_click = browser.click

    async def click_then_cancel(selector):
        await original_click(selector)
        if selector == "#two":
            token.cancel()

    browser.click = click_then_cancel
    steps = [_click("#one"), _click("#two"), _click("#three"), _click("#four")]
    result = await engine.play("s1", browser, steps, token)

    assert not result.completed
    assert result.stopped_at_index == 3
    assert browser.actions() == [("click", "#one"), ("click", "#two")]
    assert result.to_dict()["stoppedAtIndex"] == 3


async def test_settle_interval_between_steps(settings, monkeypatch):
    slept = []

    real_sleep = asyncio.sleep

    async def fake_sleep(seconds, *args, **kwargs):
        slept.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    engine = PlaybackEngine(dataclasses.replace(settings, settle_ms=250))
    await engine.play("s1", FakeBrowserHandle(), [_click("#a"), _click("#b"), _click("#c")])
    assert slept == [0.25, 0.25]


async def test_execute_step_covers_every_type():
    browser = FakeBrowserHandle()
    steps = [
        Step(type=StepType.NAVIGATE, selector=None, value="https://x.test", source=StepSource.MANUAL, timestamp=0),
        Step(type=StepType.FILL, selector="#a", value="1", source=StepSource.MANUAL, timestamp=0),
        Step(type=StepType.TYPE, selector="#a", value="2", source=StepSource.MANUAL, timestamp=0),
        Step(type=StepType.SELECT, selector="#s", value="x", source=StepSource.MANUAL, timestamp=0),
        Step(type=StepType.CHECK, selector="#c", value="", source=StepSource.MANUAL, timestamp=0),
        Step(type=StepType.UNCHECK, selector="#c", value="", source=StepSource.MANUAL, timestamp=0),
        Step(type=StepType.PRESS, selector="#a", value="Enter", source=StepSource.MANUAL, timestamp=0),
        Step(type=StepType.SUBMIT, selector="form", value="", source=StepSource.MANUAL, timestamp=0),
    ]
    for step in steps:
        await execute_step(browser, step)
    assert [c[0] for c in browser.calls] == [
        "goto", "fill", "type", "select_option", "check", "uncheck", "press", "submit",
    ]


async def test_execute_step_rejects_unknown_type():
    step = Step(type="hover", selector="#a", value="", source=StepSource.MANUAL, timestamp=0)
    with pytest.raises(MalformedStep):
        await execute_step(FakeBrowserHandle(), step)
