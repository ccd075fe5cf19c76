"""Tests for the action dispatcher."""
import pytest

from specrun.engine import ActionDispatcher, ExecutionContext
from specrun.engine.dispatcher import resolve_references
from specrun.models import ActionResult, ExecutorOutput, Phase
from specrun.plugins import BaseExecutor
from specrun.spec import ActionSpec, GlobalConfiguration


def spec(action_id="STEP.1", type="FAKE", **kwargs):
    return ActionSpec.model_validate({"actionId": action_id, "type": type, **kwargs})


@pytest.fixture
def context():
    ctx = ExecutionContext()
    ctx.begin_task("T")
    return ctx


@pytest.fixture
def view(context):
    return context.view("T")


def ticking(*values):
    return iter(values).__next__


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success(self, registry, view):
        dispatcher = ActionDispatcher(registry, clock=ticking(1.0, 1.25))
        result = await dispatcher.dispatch(spec(parameters={"data": {"x": 1}}), view, Phase.PREREQ)
        assert result.success is True
        assert result.data == {"x": 1}
        assert result.phase == Phase.PREREQ
        assert result.duration_ms == 250.0
        assert result.error is None

    @pytest.mark.asyncio
    async def test_unknown_action_type_is_a_failed_result(self, registry, view):
        result = await ActionDispatcher(registry).dispatch(spec(type="NOPE"), view)
        assert result.success is False
        assert result.error == "No executor registered for action type: NOPE"

    @pytest.mark.asyncio
    async def test_execution_error_keeps_data(self, registry, view):
        action = spec(parameters={"fail": True, "error": "exit 2", "data": {"stderr": "bad"}})
        result = await ActionDispatcher(registry).dispatch(action, view)
        assert result.success is False
        assert result.error == "exit 2"
        assert result.data == {"stderr": "bad"}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, registry, view):
        result = await ActionDispatcher(registry).dispatch(spec(parameters={"raise": "kaboom"}), view)
        assert result.success is False
        assert result.error == "RuntimeError: kaboom"

    @pytest.mark.asyncio
    async def test_action_timeout(self, registry, view):
        action = spec(parameters={"sleepMs": 1000}, timeoutMs=20)
        result = await ActionDispatcher(registry).dispatch(action, view)
        assert result.success is False
        assert result.timed_out is True
        assert result.error == "Timeout after 20ms"

    @pytest.mark.asyncio
    async def test_global_timeout_applies_when_action_has_none(self, registry):
        context = ExecutionContext(GlobalConfiguration(timeout=20))
        result = await ActionDispatcher(registry, default_timeout_ms=60_000).dispatch(
            spec(parameters={"sleepMs": 1000}), context.view("T")
        )
        assert result.error == "Timeout after 20ms"

    @pytest.mark.asyncio
    async def test_zero_timeout_disables_the_default(self, registry, view):
        action = spec(parameters={"sleepMs": 30}, timeoutMs=0)
        result = await ActionDispatcher(registry, default_timeout_ms=1).dispatch(action, view)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_dict_output_and_failure_without_message(self, registry, view):
        class DictExecutor(BaseExecutor):
            action_types = ("DICT",)

            async def execute(self, params, context):
                return {"success": params["ok"], "data": {"k": "v"}}

        registry.register(DictExecutor())
        dispatcher = ActionDispatcher(registry)
        ok = await dispatcher.dispatch(spec(type="DICT", parameters={"ok": True}), view)
        bad = await dispatcher.dispatch(spec(type="DICT", parameters={"ok": False}), view)
        assert ok.success and ok.data == {"k": "v"}
        assert bad.error == "Executor reported failure without error message"

    @pytest.mark.asyncio
    async def test_wrong_output_type(self, registry, view):
        class BadExecutor(BaseExecutor):
            action_types = ("BAD",)

            async def execute(self, params, context):
                return 42

        registry.register(BadExecutor())
        result = await ActionDispatcher(registry).dispatch(spec(type="BAD"), view)
        assert result.error == "Executor returned int, expected ExecutorOutput"

    @pytest.mark.asyncio
    async def test_output_is_made_json_safe(self, registry, view):
        class Handle:
            def __str__(self):
                return "<handle 7>"

        class HandleExecutor(BaseExecutor):
            action_types = ("HANDLE",)

            async def execute(self, params, context):
                return ExecutorOutput(data={"handle": Handle(), "tags": {"a"}, "n": 1})

        registry.register(HandleExecutor())
        result = await ActionDispatcher(registry).dispatch(spec(type="HANDLE"), view)
        assert result.success is True
        assert result.data == {"handle": "<handle 7>", "tags": ["a"], "n": 1}
        result.model_dump_json()

    @pytest.mark.asyncio
    async def test_executor_timeout_error_is_not_an_action_timeout(self, registry, view):
        class UpstreamExecutor(BaseExecutor):
            action_types = ("UPSTREAM",)

            async def execute(self, params, context):
                raise TimeoutError("upstream took too long")

        registry.register(UpstreamExecutor())
        result = await ActionDispatcher(registry).dispatch(spec(type="UPSTREAM"), view)
        assert result.success is False
        assert result.timed_out is False
        assert result.error == "TimeoutError: upstream took too long"

    @pytest.mark.asyncio
    async def test_background_flag_reaches_executor(self, registry, view, fake_executor):
        await ActionDispatcher(registry).dispatch(spec(isBackground=True), view)
        assert fake_executor.calls[-1][1]["background"] is True


class TestReferences:
    @pytest.fixture
    def populated(self, context):
        context.record("T", ActionResult(
            action_id="STEP.1", action_type="HTTP_REQUEST", success=True,
            data={"status": 201, "body": {"id": 42, "tags": ["a", "b"]}},
        ))
        return context.view("T")

    def test_whole_reference_keeps_type(self, populated):
        assert resolve_references("{{STEP.1.body.id}}", populated) == 42
        assert resolve_references("{{ STEP.1.body }}", populated) == {"id": 42, "tags": ["a", "b"]}

    def test_embedded_reference_is_formatted(self, populated):
        assert resolve_references("/items/{{STEP.1.body.id}}", populated) == "/items/42"

    def test_result_fields_and_list_indexes(self, populated):
        assert resolve_references("{{STEP.1.success}}", populated) is True
        assert resolve_references("{{STEP.1.body.tags.1}}", populated) == "b"

    def test_unresolved_reference_is_left_as_is(self, populated):
        assert resolve_references("{{STEP.9.id}}", populated) == "{{STEP.9.id}}"
        assert resolve_references("x {{STEP.1.body.nope}}", populated) == "x {{STEP.1.body.nope}}"

    def test_nested_structures(self, populated):
        params = {"headers": {"X-Id": "{{STEP.1.body.id}}"}, "list": ["{{STEP.1.status}}"], "n": 3}
        assert resolve_references(params, populated) == {
            "headers": {"X-Id": 42}, "list": [201], "n": 3,
        }

    @pytest.mark.asyncio
    async def test_dispatch_resolves_parameters(self, registry, populated, fake_executor):
        await ActionDispatcher(registry).dispatch(
            spec("STEP.2", parameters={"url": "/items/{{STEP.1.body.id}}"}), populated
        )
        assert fake_executor.calls[-1][1] == {"url": "/items/42"}
