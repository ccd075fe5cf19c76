"""Task orchestrator -- drives one task through PREREQ, STEPS and CLEANUP.

State machine per task::

    PENDING -> RUNNING_PREREQ -> RUNNING_STEPS -> RUNNING_CLEANUP -> PASSED | FAILED
    PENDING -> SKIPPED

* Actions within a phase run strictly in declared order.
* A failed action without ``continueOnFailure`` aborts its phase.
* A blocked PREREQ phase skips STEPS; the task is FAILED without validation.
* CLEANUP runs once PREREQ (and STEPS, if started) have concluded, whatever
  their outcome.  Its failures are recorded but never change the verdict.
* Validation decides PASSED vs FAILED only when STEPS ran unblocked.
* FAILED tasks go through failure analysis, PASSED tasks through debt
  detection, never both.
"""

from __future__ import annotations

import time
from typing import Callable

from specrun.engine.analysis import FailureAnalysisEngine, TechnicalDebtEngine
from specrun.engine.context import ContextView, ExecutionContext
from specrun.engine.dispatcher import ActionDispatcher
from specrun.engine.events import (
    ActionCompleteEvent,
    EventChannel,
    TaskCompleteEvent,
    TaskStartEvent,
)
from specrun.engine.evidence import EvidenceWriter
from specrun.engine.validation import ValidationEngine
from specrun.models import (
    ActionResult,
    Phase,
    TaskResult,
    TaskState,
    TaskStatus,
    ValidationResult,
    utcnow,
)
from specrun.spec.models import ActionSpec, TaskSpec
from specrun.utils.logging import get_logger

logger = get_logger("engine.orchestrator")


class TaskOrchestrator:
    """Run tasks one at a time against a shared :class:`ExecutionContext`.

    The orchestrator is the only writer of the context.  ``clock`` is a
    monotonic clock in seconds; run deadlines passed to :meth:`run_task`
    are expressed on the same clock.
    """

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        validation_engine: ValidationEngine,
        failure_engine: FailureAnalysisEngine,
        debt_engine: TechnicalDebtEngine,
        context: ExecutionContext,
        events: EventChannel,
        evidence: EvidenceWriter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.dispatcher = dispatcher
        self.validation_engine = validation_engine
        self.failure_engine = failure_engine
        self.debt_engine = debt_engine
        self.context = context
        self.events = events
        self.evidence = evidence
        self.clock = clock
        self.states: dict[str, TaskState] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_task(self, task_id: str, task: TaskSpec, deadline: float | None = None) -> TaskResult:
        """Execute *task* and return its final :class:`TaskResult`."""
        started_at = utcnow()
        start = self.clock()
        self.states[task_id] = TaskState.PENDING
        self.context.begin_task(task_id)
        view = self.context.view(task_id)

        logger.info("task_start", task_id=task_id, title=task.title)
        await self.events.emit(TaskStartEvent(task_id=task_id, title=task.title))

        failure_reason: str | None = None
        steps_clear = False

        self._transition(task_id, TaskState.RUNNING_PREREQ)
        blocking = await self._run_phase(task_id, task.prerequisites, Phase.PREREQ, view)

        if blocking is not None:
            failure_reason = f"Prerequisite {blocking.action_id} failed: {blocking.error}"
        elif deadline is not None and self.clock() >= deadline:
            failure_reason = "Run timeout exceeded before steps"
            logger.warning("run_timeout_before_steps", task_id=task_id)
        else:
            self._transition(task_id, TaskState.RUNNING_STEPS)
            blocking = await self._run_phase(task_id, task.steps, Phase.STEP, view)
            if blocking is not None:
                failure_reason = f"Step {blocking.action_id} failed: {blocking.error}"
            else:
                steps_clear = True

        self._transition(task_id, TaskState.RUNNING_CLEANUP)
        await self._run_phase(task_id, task.cleanup, Phase.CLEANUP, view)

        validation: ValidationResult | None = None
        if steps_clear:
            validation = await self.validation_engine.evaluate(task.validation_criteria, view)
            if not validation.passed:
                failure_reason = self._validation_reason(validation)

        status = TaskStatus.PASSED if steps_clear and validation.passed else TaskStatus.FAILED
        result = TaskResult(
            task_id=task_id,
            title=task.title,
            status=status,
            actions=list(view.results),
            validation=validation,
            failure_reason=failure_reason,
            started_at=started_at,
            finished_at=utcnow(),
            duration_ms=round((self.clock() - start) * 1000, 3),
        )

        if status == TaskStatus.FAILED:
            analyses = await self.failure_engine.analyze(result)
            if analyses:
                result = result.model_copy(update={"failure_analysis": analyses})
        else:
            debt = await self.debt_engine.detect(result)
            if debt:
                result = result.model_copy(update={"technical_debt": debt})

        return await self._finish(result)

    async def skip(self, task_id: str, task: TaskSpec, reason: str) -> TaskResult:
        """Record *task* as SKIPPED without running any of its phases."""
        self.states[task_id] = TaskState.PENDING
        self.context.begin_task(task_id)
        logger.info("task_skipped", task_id=task_id, reason=reason)
        await self.events.emit(TaskStartEvent(task_id=task_id, title=task.title))

        result = TaskResult(
            task_id=task_id,
            title=task.title,
            status=TaskStatus.SKIPPED,
            failure_reason=reason,
        )
        return await self._finish(result)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_phase(
        self,
        task_id: str,
        actions: list[ActionSpec],
        phase: Phase,
        view: ContextView,
    ) -> ActionResult | None:
        """Run *actions* in order; return the result that blocked the phase, if any."""
        for action in actions:
            result = await self.dispatcher.dispatch(action, view, phase)
            self.context.record(task_id, result)
            if self.evidence is not None:
                await self.evidence.write_action(task_id, result)
            await self.events.emit(
                ActionCompleteEvent(
                    task_id=task_id,
                    action_id=result.action_id,
                    action_type=result.action_type,
                    phase=phase,
                    success=result.success,
                    duration_ms=result.duration_ms,
                )
            )

            if not result.success and not action.continue_on_failure:
                logger.warning(
                    "phase_aborted",
                    task_id=task_id,
                    phase=phase.value,
                    action_id=action.action_id,
                )
                return result
        return None

    def _transition(self, task_id: str, state: TaskState) -> None:
        previous = self.states.get(task_id, TaskState.PENDING)
        self.states[task_id] = state
        logger.debug("task_state", task_id=task_id, previous=previous.value, state=state.value)

    async def _finish(self, result: TaskResult) -> TaskResult:
        self._transition(result.task_id, TaskState(result.status.value))
        if self.evidence is not None:
            await self.evidence.write_task(result)
        await self.events.emit(TaskCompleteEvent(task_id=result.task_id, status=result.status))
        logger.info(
            "task_complete",
            task_id=result.task_id,
            status=result.status.value,
            actions=len(result.actions),
            failure_analysis=len(result.failure_analysis),
            technical_debt=len(result.technical_debt),
            duration_ms=result.duration_ms,
        )
        return result

    @staticmethod
    def _validation_reason(validation: ValidationResult) -> str:
        held = [c for c in validation.failure_conditions if c.held]
        if held:
            return f"Failure condition held: {held[0].description or held[0].type}"
        unmet = [c.description or c.type for c in validation.success_conditions if not c.held]
        return f"Success conditions not met: {', '.join(unmet)}"
