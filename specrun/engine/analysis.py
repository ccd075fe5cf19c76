"""Post-task analysis stages.

:class:`FailureAnalysisEngine` explains FAILED tasks and
:class:`TechnicalDebtEngine` flags quality issues in PASSED tasks.  Both ask
every subscribed plugin in descending priority order and keep every
contribution.  A plugin that raises is logged and reported on the event
channel; it never changes the task's verdict.
"""

from __future__ import annotations

from typing import Sequence

from pydantic import BaseModel

from specrun.engine.events import EventChannel
from specrun.models import FailureAnalysisResult, TaskResult, TaskStatus, TechnicalDebtItem
from specrun.plugins.registry import PluginRegistry
from specrun.utils.logging import get_logger

logger = get_logger("engine.analysis")


class _AnalysisStage:
    """Shared fan-out over an ordered plugin capability."""

    stage: str = ""
    required_status: TaskStatus
    item_type: type[BaseModel]

    def __init__(self, registry: PluginRegistry, events: EventChannel | None = None) -> None:
        self.registry = registry
        self.events = events

    def _plugins(self) -> Sequence:
        raise NotImplementedError

    async def run(self, task_result: TaskResult) -> list:
        """Collect contributions for *task_result*.

        Returns an empty list without calling any plugin when the task's
        status is not the one this stage handles.
        """
        if task_result.status != self.required_status:
            return []

        collected: list = []
        for plugin in self._plugins():
            try:
                contribution = await plugin.analyze(task_result)
            except Exception as exc:
                logger.error(
                    f"{self.stage}_plugin_error",
                    plugin=plugin.plugin_name,
                    task_id=task_result.task_id,
                    error=str(exc),
                    exc_info=True,
                )
                if self.events is not None:
                    await self.events.error(
                        f"{plugin.plugin_name} failed: {exc}",
                        source=plugin.plugin_name,
                        task_id=task_result.task_id,
                    )
                continue

            if not contribution:
                logger.debug(f"{self.stage}_declined", plugin=plugin.plugin_name,
                             task_id=task_result.task_id)
                continue
            if isinstance(contribution, self.item_type):
                contribution = [contribution]

            for item in contribution:
                if isinstance(item, self.item_type):
                    collected.append(item)
                else:
                    logger.warning(
                        f"{self.stage}_bad_item",
                        plugin=plugin.plugin_name,
                        item_type=type(item).__name__,
                    )

        logger.info(f"{self.stage}_complete", task_id=task_result.task_id, items=len(collected))
        return collected


class FailureAnalysisEngine(_AnalysisStage):
    """Run every failure analyzer against a FAILED task."""

    stage = "failure_analysis"
    required_status = TaskStatus.FAILED
    item_type = FailureAnalysisResult

    def _plugins(self) -> Sequence:
        return self.registry.failure_analyzers()

    async def analyze(self, task_result: TaskResult) -> list[FailureAnalysisResult]:
        return await self.run(task_result)


class TechnicalDebtEngine(_AnalysisStage):
    """Run every debt detector against a PASSED task."""

    stage = "technical_debt"
    required_status = TaskStatus.PASSED
    item_type = TechnicalDebtItem

    def _plugins(self) -> Sequence:
        return self.registry.debt_detectors()

    async def detect(self, task_result: TaskResult) -> list[TechnicalDebtItem]:
        return await self.run(task_result)
