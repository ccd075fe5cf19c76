"""Tests for the built-in failure analyzers, debt detectors and the JUnit reporter."""
from datetime import datetime, timezone
from xml.etree import ElementTree as ET

import pytest

from specrun.engine import FailureAnalysisEngine, TechnicalDebtEngine
from specrun.models import (
    ActionResult,
    ConditionOutcome,
    Phase,
    RunResult,
    RunSummary,
    Severity,
    TaskResult,
    TaskStatus,
    ValidationResult,
)
from specrun.plugins import PluginRegistry
from specrun.plugins.builtin.junit_reporter_plugin import JUnitReporter, build_junit
from specrun.plugins.builtin.output_quality_detector_plugin import OutputQualityDetector
from specrun.plugins.builtin.pattern_analyzer_plugin import PatternBasedAnalyzer
from specrun.plugins.builtin.performance_detector_plugin import PerformanceDetector, severity_for
from specrun.plugins.builtin.validation_analyzer_plugin import ValidationAnalyzer


def failed_task(*actions, validation=None):
    return TaskResult(task_id="T", status=TaskStatus.FAILED, actions=list(actions),
                      validation=validation, failure_reason="failed")


def passed_task(*actions):
    return TaskResult(task_id="T", status=TaskStatus.PASSED, actions=list(actions))


def failed_action(error, **kwargs):
    return ActionResult(action_id="STEP.1", action_type="TERMINAL_COMMAND", success=False,
                        error=error, **kwargs)


# ---------------------------------------------------------------------------
# Failure analyzers
# ---------------------------------------------------------------------------


class TestPatternBasedAnalyzer:
    @pytest.mark.parametrize(
        "error,category",
        [
            ("connect ECONNREFUSED 127.0.0.1:3000", "NETWORK_ERROR"),
            ("HTTP 401 Unauthorized. Expected: 200", "AUTH_ERROR"),
            ("ModuleNotFoundError: No module named 'flask'", "DEPENDENCY_ERROR"),
            ("File not found: /app/dist/index.js", "INCOMPLETE_IMPLEMENTATION"),
            ("Invalid parameters for HTTP_REQUEST: url: Field required", "CONFIG_ERROR"),
            ("Invalid JSON: Expecting value", "DATA_ERROR"),
            ("TypeError: cannot read property", "RUNTIME_ERROR"),
            ("HTTP request timeout after 3000ms", "TIMEOUT"),
        ],
    )
    @pytest.mark.asyncio
    async def test_categories(self, error, category):
        results = await PatternBasedAnalyzer().analyze(failed_task(failed_action(error)))
        assert [r.category for r in results] == [category]
        assert results[0].evidence["fullError"] == error
        assert results[0].analyzer == "pattern-based-analyzer"

    @pytest.mark.asyncio
    async def test_stderr_is_considered(self):
        action = failed_action("Command exited with code 1. Expected: 0",
                               data={"stderr": "Error: Cannot find module 'express'"})
        results = await PatternBasedAnalyzer().analyze(failed_task(action))
        assert results[0].category == "DEPENDENCY_ERROR"

    @pytest.mark.asyncio
    async def test_timed_out_action(self):
        action = failed_action("Timeout after 50ms", timed_out=True)
        results = await PatternBasedAnalyzer().analyze(failed_task(action))
        assert results[0].category == "TIMEOUT"
        assert results[0].confidence == 0.9

    @pytest.mark.asyncio
    async def test_declines_when_nothing_matches(self):
        assert await PatternBasedAnalyzer().analyze(failed_task(failed_action("mysterious"))) is None
        assert await PatternBasedAnalyzer().analyze(failed_task()) is None


class TestValidationAnalyzer:
    @pytest.mark.asyncio
    async def test_logic_error_lists_violations(self):
        validation = ValidationResult(
            passed=False,
            success_conditions=[ConditionOutcome(type="EXPRESSION", description="has items", held=False)],
        )
        ok = ActionResult(action_id="STEP.1", action_type="HTTP_REQUEST", success=True)
        results = await ValidationAnalyzer().analyze(failed_task(ok, validation=validation))

        assert results[0].category == "LOGIC_ERROR"
        assert results[0].confidence == 0.8
        assert results[0].evidence["violatedConditions"] == ["success condition not met: has items"]

    @pytest.mark.asyncio
    async def test_declines_when_an_action_failed(self):
        validation = ValidationResult(passed=False)
        assert await ValidationAnalyzer().analyze(failed_task(failed_action("x"), validation=validation)) is None


@pytest.mark.asyncio
async def test_failure_engine_skips_declining_analyzers():
    registry = PluginRegistry()
    registry.register(ValidationAnalyzer())
    registry.register(PatternBasedAnalyzer())
    validation = ValidationResult(passed=False)
    task = failed_task(
        ActionResult(action_id="STEP.1", action_type="X", success=True,
                     error=None, data={}),
        validation=validation,
    )
    results = await FailureAnalysisEngine(registry).analyze(task)
    assert [r.analyzer for r in results] == ["validation-analyzer"]

    assert await FailureAnalysisEngine(registry).analyze(passed_task()) == []


# ---------------------------------------------------------------------------
# Debt detectors
# ---------------------------------------------------------------------------


class TestPerformanceDetector:
    @pytest.mark.parametrize(
        "actual,severity",
        [(600, Severity.LOW), (1100, Severity.MEDIUM), (1600, Severity.HIGH)],
    )
    def test_severity_by_ratio(self, actual, severity):
        assert severity_for(actual, 500) == severity

    @pytest.mark.asyncio
    async def test_flags_slow_actions_only(self):
        slow = ActionResult(action_id="STEP.1", action_type="HTTP_REQUEST", success=True,
                            duration_ms=1500, data={"url": "http://x/api", "method": "GET"})
        fast = ActionResult(action_id="STEP.2", action_type="HTTP_REQUEST", success=True, duration_ms=20)
        background = ActionResult(action_id="STEP.3", action_type="TERMINAL_COMMAND", success=True,
                                  duration_ms=90_000, data={"background": True})
        unknown = ActionResult(action_id="STEP.4", action_type="CUSTOM", success=True, duration_ms=90_000)

        items = await PerformanceDetector().analyze(passed_task(slow, fast, background, unknown))

        assert len(items) == 1
        item = items[0]
        assert item.category == "PERFORMANCE_DEGRADATION"
        assert item.severity == Severity.LOW
        assert item.evidence.threshold == 1000
        assert item.evidence.actual == 1500
        assert item.evidence.location == "GET http://x/api"


class TestOutputQualityDetector:
    @pytest.mark.asyncio
    async def test_command_warnings(self):
        action = ActionResult(action_id="STEP.1", action_type="TERMINAL_COMMAND", success=True,
                              data={"command": "npm run build", "stdout": "WARNING: x is deprecated\nok\n",
                                    "stderr": ""})
        items = await OutputQualityDetector().analyze(passed_task(action))
        assert [i.category for i in items] == ["CODE_QUALITY"]
        assert items[0].evidence.actual == 1

    @pytest.mark.asyncio
    async def test_http_issues(self):
        action = ActionResult(
            action_id="STEP.1", action_type="HTTP_REQUEST", success=True,
            data={"url": "http://x/items", "method": "GET", "status": 200, "headers": {},
                  "body": list(range(25))},
        )
        items = await OutputQualityDetector().analyze(passed_task(action))
        descriptions = [i.description for i in items]
        assert descriptions == [
            "Response missing Content-Type header",
            "List endpoint returned 25 items without pagination metadata",
        ]

    @pytest.mark.asyncio
    async def test_accepted_server_error(self):
        action = ActionResult(
            action_id="STEP.1", action_type="HTTP_REQUEST", success=True,
            data={"url": "http://x/items", "status": 500, "headers": {"Content-Type": "application/json"}},
        )
        items = await OutputQualityDetector().analyze(passed_task(action))
        assert [(i.category, i.severity) for i in items] == [("API_ENDPOINT_INCOMPLETE", Severity.HIGH)]


@pytest.mark.asyncio
async def test_debt_engine_ignores_failed_tasks():
    registry = PluginRegistry()
    registry.register(PerformanceDetector(thresholds={"*": 0}))
    slow = ActionResult(action_id="STEP.1", action_type="X", success=True, duration_ms=5)
    assert len(await TechnicalDebtEngine(registry).detect(passed_task(slow))) == 1
    assert await TechnicalDebtEngine(registry).detect(failed_task(slow)) == []


# ---------------------------------------------------------------------------
# JUnit reporter
# ---------------------------------------------------------------------------


@pytest.fixture
def run_result():
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return RunResult(
        run_id="r1",
        started_at=moment,
        finished_at=moment,
        duration_ms=1234.0,
        tasks={
            "ok": TaskResult(task_id="ok", title="Passes", status=TaskStatus.PASSED, duration_ms=10),
            "bad": failed_task(failed_action("exit 1", phase=Phase.STEP)).model_copy(update={"task_id": "bad"}),
            "later": TaskResult(task_id="later", status=TaskStatus.SKIPPED, failure_reason="stopped"),
        },
        summary=RunSummary(total=3, passed=1, failed=1, skipped=1),
    )


def test_build_junit(run_result):
    suite = build_junit(run_result)
    assert suite.get("tests") == "3"
    assert suite.get("failures") == "1"
    assert suite.get("time") == "1.234"

    cases = {case.get("classname"): case for case in suite.findall("testcase")}
    assert cases["ok"].get("name") == "Passes"
    assert cases["bad"].find("failure").get("message") == "failed"
    assert "STEP.1: exit 1" in cases["bad"].find("failure").text
    assert cases["later"].find("skipped").get("message") == "stopped"


@pytest.mark.asyncio
async def test_junit_reporter_writes_file(run_result, tmp_path):
    path = await JUnitReporter().generate(run_result, tmp_path / "reports")
    assert path == tmp_path / "reports" / "junit.xml"
    assert ET.parse(path).getroot().tag == "testsuite"
