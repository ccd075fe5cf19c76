import asyncio

import pytest

from specrun.config import Settings
from specrun.engine import (
    ActionDispatcher,
    EventChannel,
    ExecutionContext,
    FailureAnalysisEngine,
    RunController,
    TaskOrchestrator,
    TechnicalDebtEngine,
    ValidationEngine,
)
from specrun.models import ExecutorOutput
from specrun.plugins import BaseExecutor, PluginRegistry
from specrun.plugins.builtin.condition_validators_plugin import (
    ActionSuccessValidator,
    ExpressionValidator,
    FieldCompareValidator,
)
from specrun.spec import SpecificationLoader
from specrun.utils.exceptions import ActionExecutionError


class FakeExecutor(BaseExecutor):
    """Executor whose behaviour is driven by the action parameters.

    ``data`` is returned as output; ``fail`` raises ActionExecutionError with
    ``error``; ``raise`` raises a RuntimeError; ``sleepMs`` waits first.
    """

    name = "fake-executor"
    action_types = ("FAKE",)

    def __init__(self):
        self.calls = []
        self.cleaned_up = 0

    async def execute(self, params, context):
        self.calls.append((context.task_id, dict(params)))
        if params.get("sleepMs"):
            await asyncio.sleep(params["sleepMs"] / 1000)
        if params.get("raise"):
            raise RuntimeError(params["raise"])
        if params.get("fail"):
            raise ActionExecutionError(params.get("error", "fake failure"), data=params.get("data"))
        return ExecutorOutput(data=params.get("data", {}))

    async def cleanup(self):
        self.cleaned_up += 1


def fake(action_id, **params):
    return {"actionId": action_id, "type": "FAKE", "parameters": params}


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def registry(fake_executor):
    reg = PluginRegistry()
    reg.register(fake_executor)
    reg.register(ActionSuccessValidator())
    reg.register(FieldCompareValidator())
    reg.register(ExpressionValidator())
    return reg


@pytest.fixture
def action():
    """Build a FAKE action document: ``action("STEP.1", data={...})``."""
    return fake


@pytest.fixture
def make_spec(tmp_path):
    """Build a Specification rooted at ``tmp_path`` from task documents."""

    def _make(tasks, **global_configuration):
        document = {
            "schemaVersion": "1.0.0",
            "globalConfiguration": {"evidenceDirectory": "evidence", **global_configuration},
            "tasks": tasks,
        }
        return SpecificationLoader(environ={}).from_document(document, base_dir=tmp_path)

    return _make


@pytest.fixture
def events():
    return EventChannel()


@pytest.fixture
def make_orchestrator(registry, events):
    """Wire a TaskOrchestrator around ``registry``; keyword args override parts."""

    def _make(clock=None, strict=False, evidence=None, global_configuration=None):
        dispatcher = (
            ActionDispatcher(registry, clock=clock) if clock is not None else ActionDispatcher(registry)
        )
        return TaskOrchestrator(
            dispatcher=dispatcher,
            validation_engine=ValidationEngine(registry, strict=strict),
            failure_engine=FailureAnalysisEngine(registry, events=events),
            debt_engine=TechnicalDebtEngine(registry, events=events),
            context=ExecutionContext(global_configuration),
            events=events,
            evidence=evidence,
        )

    return _make


@pytest.fixture
def engine_settings():
    return Settings(_env_file=None)


@pytest.fixture
def controller(registry, engine_settings):
    return RunController(settings=engine_settings, registry=registry)


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws
