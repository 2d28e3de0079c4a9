"""Session lifecycle, recording, playback and isolation through ``SessionManager``."""

import asyncio

import pytest

from tile_recorder.core.events import RECORDING_STOPPED, SESSION_CLOSED, STEP_RECORDED
from tile_recorder.errors import InvalidState, SessionNotFound, SessionStartError, StepExecutionError
from tile_recorder.models import StepSource
from tile_recorder.recorder.capture.dom_injection import BINDING_NAME
from tile_recorder.services.session_manager import SessionManager, SessionState

from conftest import FakeBrowserFactory


def _summary(steps):
    return [(s.type.value, s.selector, s.value) for s in steps]


async def test_record_click_and_collapsed_fill(manager):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    await manager.record_step("s1", {"type": "click", "selector": "#submit"})
    await manager.record_step("s1", {"type": "fill", "selector": "#name", "value": "Al"})
    await manager.record_step("s1", {"type": "fill", "selector": "#name", "value": "Alice"})
    session = await manager.stop_recording("s1")

    assert _summary(session.steps) == [("click", "#submit", ""), ("fill", "#name", "Alice")]
    assert session.state is SessionState.STOPPED
    assert session.script_path.exists()
    assert "await page.fill('#name', 'Alice')" in session.generated_script.text
    assert "START_URL = 'https://example.com'" in session.generated_script.text


async def test_dom_injection_events_from_page(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", "dom-injection")
    handle = browser_factory.handles[0]
    emit = handle.bindings[BINDING_NAME]
    assert handle.init_scripts

    await emit({"type": "click", "selector": "#submit", "timestamp": 1700000000000})
    await emit({"type": "input", "selector": "#name", "value": "Al"})
    await emit({"type": "input", "selector": "#name", "value": "Al"})
    await emit({"type": "input", "selector": "#name", "value": "Alice"})
    await emit({"type": "click", "target": {"tag": "button", "text": "Save"}})
    await emit("not an object")
    await emit({"type": "click", "selector": ""})

    session = await manager.stop_recording("s1")
    assert _summary(session.steps) == [
        ("click", "#submit", ""),
        ("fill", "#name", "Alice"),
        ("click", 'button:has-text("Save")', ""),
    ]
    assert all(s.source is StepSource.MANUAL for s in session.steps)


async def test_dom_navigation_commits_edit_run(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    handle = browser_factory.handles[0]
    emit = handle.bindings[BINDING_NAME]

    await emit({"type": "input", "selector": "#q", "value": "a"})
    handle.navigation_callback("https://example.com/next")
    await asyncio.sleep(0)
    await emit({"type": "input", "selector": "#q", "value": "a"})

    session = await manager.stop_recording("s1")
    assert [s.value for s in session.steps] == ["a", "a"]


async def test_events_after_stop_are_ignored(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    handle = browser_factory.handles[0]
    emit = handle.bindings[BINDING_NAME]
    await manager.stop_recording("s1")

    await emit({"type": "click", "selector": "#late"})
    assert manager.registry.get("s1").steps == []


async def test_api_interception_records_automation(manager):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", {"mode": "api-interception"})
    await manager.perform_action("s1", {"type": "fill", "selector": "#user", "value": "bob"})
    await manager.perform_action("s1", {"type": "click", "selector": "#login"})
    session = await manager.stop_recording("s1")

    assert _summary(session.steps) == [("fill", "#user", "bob"), ("click", "#login", "")]
    assert all(s.source is StepSource.AUTOMATION for s in session.steps)


async def test_perform_action_not_recorded_without_interception(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", "dom-injection")
    await manager.perform_action("s1", {"type": "click", "selector": "#x"})
    assert manager.registry.get("s1").steps == []
    assert ("click", "#x") in browser_factory.handles[0].calls


async def test_failed_automation_action_is_reported_and_not_recorded(settings):
    manager = SessionManager(settings, browser_factory=FakeBrowserFactory(missing={"#gone"}))
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", "api-interception")
    with pytest.raises(StepExecutionError) as info:
        await manager.perform_action("s1", {"type": "click", "selector": "#gone"})
    assert info.value.step_index == 1
    assert manager.registry.get("s1").steps == []


async def test_manual_action_with_execution(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", "api-interception")
    browser_factory.handles[0].missing.add("#broken")

    ok = await manager.record_manual_action("s1", {"type": "click", "selector": "#ok"}, execute=True)
    assert ok.executed and ok.error is None
    assert ok.total_steps == 1
    broken = await manager.record_manual_action("s1", {"type": "click", "selector": "#broken"}, execute=True)
    assert not broken.executed and "#broken" in broken.error
    assert broken.total_steps == 2

    # Executed on the raw handle: interception does not record a second copy.
    assert _summary(manager.registry.get("s1").steps) == [("click", "#ok", ""), ("click", "#broken", "")]


async def test_blur_event_commits_without_a_step(manager):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    await manager.record_step("s1", {"type": "fill", "selector": "#a", "value": "1"})
    assert await manager.record_step("s1", {"type": "blur", "selector": "#a"}) is None
    await manager.record_step("s1", {"type": "fill", "selector": "#a", "value": "2"})
    assert [s.value for s in manager.registry.get("s1").steps] == ["1", "2"]


async def test_trace_capture_steps_and_artifact(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", "trace")
    handle = browser_factory.handles[0]
    assert handle.tracing
    handle.trace_events = [
        {"type": "before", "method": "click", "params": {"selector": "#a"}, "startTime": 10},
        {"type": "before", "method": "fill", "params": {"selector": "#b", "value": "x"}, "startTime": 20},
    ]
    session = await manager.stop_recording("s1")

    assert _summary(session.steps) == [("click", "#a", ""), ("fill", "#b", "x")]
    assert all(s.source is StepSource.TRACE for s in session.steps)
    assert session.artifacts["trace"].endswith(".zip")
    assert session.degraded_reason is None


async def test_degraded_capture_keeps_session_recording(settings):
    manager = SessionManager(settings, browser_factory=FakeBrowserFactory(fail_evaluate=True))
    await manager.start("https://example.com", "s1")
    session = await manager.start_recording("s1", "dom-injection")

    assert session.state is SessionState.RECORDING
    assert session.degraded_reason
    await manager.record_step("s1", {"type": "click", "selector": "#still-works"})
    assert len((await manager.stop_recording("s1")).steps) == 1


async def test_unknown_capture_mode(manager):
    await manager.start("https://example.com", "s1")
    with pytest.raises(InvalidState):
        await manager.start_recording("s1", "screen-scraper")
    assert manager.registry.get("s1").state is SessionState.LOADED


async def test_restart_recording_resets_steps(manager):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    await manager.record_step("s1", {"type": "click", "selector": "#first"})
    await manager.start_recording("s1")
    await manager.record_step("s1", {"type": "click", "selector": "#second"})
    session = await manager.stop_recording("s1")
    assert _summary(session.steps) == [("click", "#second", "")]


async def test_stop_recording_unknown_session(manager):
    with pytest.raises(SessionNotFound):
        await manager.stop_recording("never-started")


async def test_stop_recording_is_idempotent(manager):
    broker_queue = manager.broker.connect("s1")
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    await manager.record_step("s1", {"type": "click", "selector": "#a"})

    first, second = await asyncio.gather(manager.stop_recording("s1"), manager.stop_recording("s1"))
    third = await manager.stop_recording("s1")

    assert first.generated_script is second.generated_script is third.generated_script
    events = []
    while not broker_queue.empty():
        events.append(broker_queue.get_nowait()["event"])
    assert events.count(RECORDING_STOPPED) == 1
    assert events.count(STEP_RECORDED) == 1


async def test_stop_recording_before_start_recording_is_invalid(manager):
    await manager.start("https://example.com", "s1")
    with pytest.raises(InvalidState):
        await manager.stop_recording("s1")


async def test_start_failure_leaves_nothing_registered(settings):
    factory = FakeBrowserFactory()
    factory.fail_launch = True
    manager = SessionManager(settings, browser_factory=factory)
    with pytest.raises(SessionStartError):
        await manager.start("https://example.com", "s1")
    assert "s1" not in manager.registry


async def test_navigation_failure_releases_browser(settings):
    factory = FakeBrowserFactory(fail_goto=True)
    manager = SessionManager(settings, browser_factory=factory)
    with pytest.raises(SessionStartError):
        await manager.start("https://unreachable.invalid", "s1")
    assert "s1" not in manager.registry
    assert factory.handles[0].closed


async def test_start_requires_url_and_unique_id(manager):
    with pytest.raises(SessionStartError):
        await manager.start("   ", "s1")
    await manager.start("example.com", "s1")
    assert manager.registry.get("s1").url == "https://example.com"
    with pytest.raises(InvalidState):
        await manager.start("https://example.com", "s1")


async def test_generated_session_ids(manager):
    session = await manager.start("https://example.com")
    assert session.session_id.startswith("session_")
    assert session.state is SessionState.LOADED


async def test_close_while_recording_releases_browser(manager, browser_factory):
    queue = manager.broker.connect("s1")
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", "trace")
    await manager.close("s1")

    handle = browser_factory.handles[0]
    assert handle.closed
    assert "s1" not in manager.registry
    with pytest.raises(SessionNotFound):
        manager.status("s1")
    events = [queue.get_nowait()["event"] for _ in range(queue.qsize())]
    assert events[-1] == SESSION_CLOSED


async def test_close_unknown_session(manager):
    with pytest.raises(SessionNotFound):
        await manager.close("nope")


async def test_sessions_are_isolated(manager, browser_factory):
    await manager.start("https://a.test", "a")
    await manager.start("https://b.test", "b")
    await manager.start_recording("a")
    await manager.start_recording("b")

    async def feed(session_id, count):
        for i in range(count):
            await manager.record_step(session_id, {"type": "click", "selector": f"#{session_id}-{i}"})
            await asyncio.sleep(0)

    await asyncio.gather(feed("a", 5), feed("b", 4))
    a = await manager.stop_recording("a")
    b = await manager.stop_recording("b")

    assert [s.selector for s in a.steps] == [f"#a-{i}" for i in range(5)]
    assert [s.selector for s in b.steps] == [f"#b-{i}" for i in range(4)]
    assert a.browser is not b.browser
    assert browser_factory.handles[0].url == "https://a.test"
    assert browser_factory.handles[1].url == "https://b.test"


async def test_step_timestamps_stay_ordered(manager):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    for index in range(10):
        await manager.record_step("s1", {"type": "click", "selector": f"#b{index}"})
    await manager.record_step("s1", {"type": "click", "selector": "#late", "timestamp": 0})
    steps = manager.registry.get("s1").steps
    # Caller clocks do not reorder steps; arrival order is kept.
    assert steps[-1].selector == "#late"
    assert all(a.timestamp <= b.timestamp for a, b in zip(steps, steps[1:]))


async def test_wall_clock_timestamp_does_not_break_collapse(manager):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    first = await manager.record_step("s1", {"type": "click", "selector": "#submit", "timestamp": 1.76e12})
    await manager.record_step("s1", {"type": "fill", "selector": "#name", "value": "Al"})
    await manager.record_step("s1", {"type": "fill", "selector": "#name", "value": "Alice"})

    steps = manager.registry.get("s1").steps
    assert _summary(steps) == [("click", "#submit", ""), ("fill", "#name", "Alice")]
    assert first.timestamp < 1.76e12
    assert steps[0].timestamp <= steps[1].timestamp


async def test_manual_action_total_survives_concurrent_close(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    handle = browser_factory.handles[0]

    async def click_and_close(selector):
        await manager.close("s1")

    handle.click = click_and_close
    result = await manager.record_manual_action("s1", {"type": "click", "selector": "#ok"}, execute=True)
    assert result.executed
    assert result.total_steps == 1
    with pytest.raises(SessionNotFound):
        manager.registry.get("s1")



async def test_play_recording_continues_past_failure(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    for selector in ("#one", "#missing", "#three"):
        await manager.record_step("s1", {"type": "click", "selector": selector})
    await manager.stop_recording("s1")
    handle = browser_factory.handles[0]
    handle.missing.add("#missing")

    result = await manager.play("s1")

    assert result.completed
    assert [e.step_index for e in result.errors] == [2]
    assert handle.actions() == [("click", "#one"), ("click", "#three")]
    assert manager.registry.get("s1").state is SessionState.STOPPED


async def test_play_requires_steps_and_idle_session(manager):
    await manager.start("https://example.com", "s1")
    with pytest.raises(InvalidState):
        await manager.play("s1")
    await manager.start_recording("s1")
    await manager.record_step("s1", {"type": "click", "selector": "#a"})
    with pytest.raises(InvalidState):
        await manager.play("s1")


async def test_stop_playback_cancels_before_next_step(manager, browser_factory):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1")
    for selector in ("#one", "#two", "#three"):
        await manager.record_step("s1", {"type": "click", "selector": selector})
    await manager.stop_recording("s1")

    handle = browser_factory.handles[0]
    gate = asyncio.Event()
    entered = asyncio.Event()
    original_click = handle.click

    async def slow_click(selector):
        if selector == "#one":
            entered.set()
            await gate.wait()
        await original_click(selector)

    handle.click = slow_click
    assert not manager.stop_playback("s1")

    task = asyncio.create_task(manager.play("s1"))
    await entered.wait()
    assert manager.registry.get("s1").state is SessionState.PLAYING
    with pytest.raises(InvalidState):
        await manager.start_recording("s1")
    assert manager.stop_playback("s1")
    gate.set()
    result = await task

    assert not result.completed
    assert result.stopped_at_index == 2
    assert handle.actions() == [("click", "#one")]


async def test_export_script_requires_a_recording(manager):
    await manager.start("https://example.com", "s1")
    with pytest.raises(InvalidState):
        manager.export_script("s1")


async def test_status_reports_counts(manager):
    await manager.start("https://example.com", "s1")
    await manager.start_recording("s1", "api-interception")
    await manager.perform_action("s1", {"type": "click", "selector": "#a"})
    await manager.record_step("s1", {"type": "click", "selector": "#b"})
    status = manager.status("s1")
    assert status["isRecording"]
    assert status["captureMode"] == "api-interception"
    assert status["stepsBySource"] == {"automation": 1, "manual": 1}
    assert status["totalSteps"] == 2


async def test_shutdown_closes_everything(manager, browser_factory):
    await manager.start("https://a.test", "a")
    await manager.start("https://b.test", "b")
    await manager.start_recording("a")
    await manager.shutdown()
    assert len(manager.registry) == 0
    assert all(h.closed for h in browser_factory.handles)

