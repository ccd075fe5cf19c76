"""Action dispatcher -- resolves an executor for each action and runs it.

The :class:`ActionDispatcher` is the bridge between a task's
:class:`ActionSpec` entries and the executor plugins.  For every action it:

1. Looks up the executor by action type.
2. Resolves ``{{ACTION_ID.path}}`` references in the parameters.
3. Awaits :meth:`BaseExecutor.execute` under the action's timeout.
4. Returns an :class:`ActionResult` with the measured duration.

Nothing raised by an executor escapes :meth:`dispatch`; every failure,
including an unknown action type or a timeout, becomes a failed result.
"""

from __future__ import annotations

import asyncio
import re
import time
import traceback
from datetime import datetime
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from specrun.engine.context import ContextView
from specrun.models import ActionResult, ExecutorOutput, Phase, utcnow
from specrun.plugins.base import BaseExecutor
from specrun.plugins.registry import PluginRegistry
from specrun.spec.models import ActionSpec
from specrun.utils.exceptions import ActionExecutionError, UnknownActionTypeError
from specrun.utils.logging import get_logger

_REFERENCE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def resolve_references(value: Any, context: ContextView) -> Any:
    """Replace ``{{ACTION_ID.path}}`` references with earlier action outputs.

    A string that is exactly one reference takes the referenced value as is
    (so numbers and mappings keep their type); references embedded in
    longer strings are formatted with ``str()``.  References that cannot be
    resolved are left untouched.
    """
    if isinstance(value, str):
        whole = _REFERENCE.fullmatch(value.strip())
        if whole:
            try:
                return context.lookup(whole.group(1))
            except KeyError:
                return value

        def _substitute(match: re.Match) -> str:
            try:
                return str(context.lookup(match.group(1)))
            except KeyError:
                return match.group(0)

        return _REFERENCE.sub(_substitute, value)
    if isinstance(value, list):
        return [resolve_references(item, context) for item in value]
    if isinstance(value, dict):
        return {key: resolve_references(item, context) for key, item in value.items()}
    return value


async def _own_timeouts(call: Awaitable[Any]) -> Any:
    """Await *call*; a TimeoutError the executor raises itself is an ordinary failure.

    Only ``wait_for`` expiring around this wrapper counts as an action timeout.
    """
    try:
        return await call
    except (TimeoutError, asyncio.TimeoutError) as exc:
        raise ActionExecutionError(f"{type(exc).__name__}: {exc}") from exc


def json_safe(data: dict) -> dict:
    """Coerce executor output to JSON-native values; unknown objects become ``str()``."""
    return to_jsonable_python(data, fallback=str)


class ActionDispatcher:
    """Dispatch single actions to executor plugins.

    Parameters
    ----------
    registry:
        The populated :class:`PluginRegistry` executors are resolved from.
    default_timeout_ms:
        Timeout for actions that declare none.  ``None`` or ``0`` disables it.
    clock:
        Monotonic clock in seconds used to measure durations.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        default_timeout_ms: int | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.registry = registry
        self.default_timeout_ms = default_timeout_ms
        self._clock = clock
        self.logger = get_logger("engine.dispatcher")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        action: ActionSpec,
        context: ContextView,
        phase: Phase = Phase.STEP,
    ) -> ActionResult:
        """Execute *action* and return its :class:`ActionResult`."""
        started_at = utcnow()
        start = self._clock()
        timeout_ms = self._timeout_for(action, context)
        self.logger.info(
            "action_start",
            task_id=context.task_id,
            action_id=action.action_id,
            action_type=action.type,
            phase=phase.value,
        )

        try:
            executor = self.registry.executor_for(action.type)
            params = resolve_references(dict(action.parameters), context)
            if action.is_background:
                params.setdefault("background", True)
            raw = await self._execute(executor, params, context, timeout_ms)
            output = self._coerce(raw)

        except UnknownActionTypeError as exc:
            return self._fail(action, phase, str(exc), start, started_at)

        except asyncio.TimeoutError:
            return self._fail(
                action, phase, f"Timeout after {timeout_ms}ms", start, started_at, timed_out=True
            )

        except ActionExecutionError as exc:
            return self._fail(action, phase, str(exc), start, started_at, data=exc.data)

        except Exception as exc:
            self.logger.error(
                "action_unexpected_error",
                task_id=context.task_id,
                action_id=action.action_id,
                error=str(exc),
                traceback=traceback.format_exc(),
            )
            return self._fail(action, phase, f"{type(exc).__name__}: {exc}", start, started_at)

        if not output.success:
            return self._fail(
                action,
                phase,
                output.error or "Executor reported failure without error message",
                start,
                started_at,
                data=output.data,
            )

        result = self._build(action, phase, True, start, started_at, data=output.data)
        self.logger.info(
            "action_complete",
            task_id=context.task_id,
            action_id=action.action_id,
            duration_ms=result.duration_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _timeout_for(self, action: ActionSpec, context: ContextView) -> int | None:
        if action.timeout_ms is not None:
            return action.timeout_ms or None
        if context.global_configuration.timeout is not None:
            return context.global_configuration.timeout or None
        return self.default_timeout_ms or None

    @staticmethod
    async def _execute(
        executor: BaseExecutor,
        params: dict,
        context: ContextView,
        timeout_ms: int | None,
    ) -> Any:
        call = _own_timeouts(executor.execute(params, context))
        if timeout_ms is None:
            return await call
        return await asyncio.wait_for(call, timeout=timeout_ms / 1000)

    @staticmethod
    def _coerce(raw: Any) -> ExecutorOutput:
        """Accept an :class:`ExecutorOutput` or an equivalent mapping."""
        if isinstance(raw, ExecutorOutput):
            return raw
        if isinstance(raw, dict):
            try:
                return ExecutorOutput.model_validate(raw)
            except ValidationError as exc:
                raise ActionExecutionError(f"Malformed executor output: {exc}") from exc
        raise ActionExecutionError(f"Executor returned {type(raw).__name__}, expected ExecutorOutput")

    def _build(
        self,
        action: ActionSpec,
        phase: Phase,
        success: bool,
        start: float,
        started_at: datetime,
        data: dict | None = None,
        error: str | None = None,
        timed_out: bool = False,
    ) -> ActionResult:
        duration_ms = round((self._clock() - start) * 1000, 3)
        return ActionResult(
            action_id=action.action_id,
            action_type=action.type,
            phase=phase,
            description=action.description,
            success=success,
            duration_ms=duration_ms,
            data=json_safe(data or {}),
            error=error,
            timed_out=timed_out,
            started_at=started_at,
        )

    def _fail(
        self,
        action: ActionSpec,
        phase: Phase,
        error: str,
        start: float,
        started_at: datetime,
        data: dict | None = None,
        timed_out: bool = False,
    ) -> ActionResult:
        result = self._build(
            action, phase, False, start, started_at, data=data, error=error, timed_out=timed_out
        )
        self.logger.warning(
            "action_failed",
            action_id=action.action_id,
            action_type=action.type,
            error=error,
            duration_ms=result.duration_ms,
        )
        return result
