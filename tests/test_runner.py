"""Script runner: failure-marker parsing and suite aggregation."""

import json
import subprocess
from unittest import mock

from tile_recorder.models import GeneratedScript
from tile_recorder.synthesis import runner
from tile_recorder.synthesis.runner import ScriptRunResult, parse_run_output, run_script, run_suite


def _completed(stdout="", returncode=0):
    return subprocess.CompletedProcess(args=["python"], returncode=returncode, stdout=stdout, stderr="")


def test_parse_run_output_finds_marker():
    stdout = "launching\nSTEP_FAILED " + json.dumps({"script": "login", "stepIndex": 3, "error": "Timeout"}) + "\n"
    failure = parse_run_output("fallback", stdout)
    assert failure.owner == "login"
    assert failure.step_index == 3
    assert failure.error == "Timeout"


def test_parse_run_output_ignores_unrelated_lines():
    assert parse_run_output("x", "all good\nSTEP_FAILED not-json\n") is None
    assert parse_run_output("x", "") is None


def test_run_script_reports_failed_step():
    marker = "STEP_FAILED " + json.dumps({"script": "flow", "stepIndex": 2, "error": "no such element"})
    with mock.patch.object(runner.subprocess, "run", return_value=_completed(marker, returncode=1)) as run:
        result = run_script("print('hi')", "flow", headed=True)
    env = run.call_args.kwargs["env"]
    assert env["RECORDER_HEADLESS"] == "0"
    assert not result.success
    assert result.to_dict() == {
        "script": "flow",
        "success": False,
        "returncode": 1,
        "failedStep": 2,
        "error": "no such element",
    }


def test_run_script_timeout():
    with mock.patch.object(runner.subprocess, "run", side_effect=subprocess.TimeoutExpired(cmd="python", timeout=3)):
        result = run_script("pass", "slow", timeout=3)
    assert not result.success
    assert "Timed out" in result.to_dict()["error"]


def test_suite_continues_past_failed_script():
    outcomes = iter(
        [
            ScriptRunResult(name="a", success=True, returncode=0),
            ScriptRunResult(name="b", success=False, failure=parse_run_output("b", 'STEP_FAILED {"stepIndex": 4, "error": "boom"}'), returncode=1),
            ScriptRunResult(name="c", success=True, returncode=0),
        ]
    )
    scripts = [
        GeneratedScript(name="a", text="", step_count=0, generated_at=""),
        ("b", ""),
        ("c", ""),
    ]
    with mock.patch.object(runner, "run_script", side_effect=lambda *args, **kwargs: next(outcomes)) as run:
        suite = run_suite(scripts)
    assert run.call_count == 3
    assert not suite.success
    assert [(f.owner, f.step_index, f.error) for f in suite.failures] == [("b", 4, "boom")]
    assert suite.to_dict()["passed"] == 2
