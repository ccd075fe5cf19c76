"""Execution context -- the live, append-only working set of a run.

The :class:`ExecutionContext` is owned by the task orchestrator, which is
the only writer.  Executors, validators and analyzers receive a
:class:`ContextView`: a read-only window scoped to one task that can also
look up earlier action outputs by reference (``"STEP.1.body.id"``).
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from specrun.models import ActionResult
from specrun.spec.models import GlobalConfiguration

# ActionResult attributes addressable in a reference; any other segment is
# looked up inside the action's data.
_RESULT_FIELDS: dict[str, str] = {
    "success": "success",
    "error": "error",
    "durationMs": "duration_ms",
    "duration_ms": "duration_ms",
    "data": "data",
    "timedOut": "timed_out",
}


class ExecutionContext:
    """Per-run store of action results, keyed by task id."""

    def __init__(self, global_configuration: GlobalConfiguration | None = None) -> None:
        self.global_configuration = global_configuration or GlobalConfiguration()
        self._results: dict[str, list[ActionResult]] = {}

    def begin_task(self, task_id: str) -> None:
        self._results.setdefault(task_id, [])

    def record(self, task_id: str, result: ActionResult) -> None:
        """Append *result* to *task_id*'s results; earlier entries are never rewritten."""
        self._results.setdefault(task_id, []).append(result)

    def results_for(self, task_id: str) -> tuple[ActionResult, ...]:
        return tuple(self._results.get(task_id, ()))

    def view(self, task_id: str) -> ContextView:
        return ContextView(self, task_id)

    @property
    def task_ids(self) -> list[str]:
        return list(self._results)


class ContextView:
    """Read-only view of an :class:`ExecutionContext` for one task."""

    def __init__(self, context: ExecutionContext, task_id: str) -> None:
        self._context = context
        self.task_id = task_id

    @property
    def global_configuration(self) -> GlobalConfiguration:
        return self._context.global_configuration

    @property
    def workspace_root(self) -> Path:
        return Path(self.global_configuration.workspace_root)

    @property
    def environment(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self.global_configuration.environment))

    @property
    def results(self) -> tuple[ActionResult, ...]:
        return self._context.results_for(self.task_id)

    def get(self, action_id: str) -> ActionResult | None:
        for result in self.results:
            if result.action_id == action_id:
                return result
        return None

    def task_results(self, task_id: str) -> tuple[ActionResult, ...]:
        """Results of another task in the same run."""
        return self._context.results_for(task_id)

    def lookup(self, reference: str) -> Any:
        """Resolve ``"<actionId>.<path>"`` against this task's results.

        Action ids may themselves contain dots, so the longest matching
        action id wins.  Raises :class:`KeyError` when nothing matches.
        """
        parts = reference.strip().split(".")
        for cut in range(len(parts), 0, -1):
            result = self.get(".".join(parts[:cut]))
            if result is not None:
                return resolve_path(result, parts[cut:])
        raise KeyError(reference)


def resolve_path(result: ActionResult, segments: list[str]) -> Any:
    """Walk *segments* into an action result.

    An empty path yields the result's data.  A leading ``success``,
    ``error``, ``durationMs`` or ``data`` segment addresses the result
    itself; anything else is read from the data.
    """
    if not segments:
        return result.data

    head, rest = segments[0], segments[1:]
    if head in _RESULT_FIELDS:
        value: Any = getattr(result, _RESULT_FIELDS[head])
    else:
        value = result.data
        rest = segments

    for segment in rest:
        if isinstance(value, Mapping):
            if segment not in value:
                raise KeyError(segment)
            value = value[segment]
        elif isinstance(value, (list, tuple)):
            try:
                value = value[int(segment)]
            except (ValueError, IndexError) as exc:
                raise KeyError(segment) from exc
        else:
            raise KeyError(segment)
    return value
