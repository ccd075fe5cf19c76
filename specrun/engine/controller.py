"""Run controller -- the top-level façade over the execution engine.

The :class:`RunController` wires the registry, loader, dispatcher,
validation and analysis engines, evidence writer and event channel
together, then runs every task of a specification sequentially:

1. :meth:`initialize` discovers plugins and loads the specification.
2. :meth:`execute` runs each task in declaration order and returns a
   :class:`RunResult` (task failures never raise).
3. :meth:`cleanup` releases plugin resources and closes the event channel.
"""

from __future__ import annotations

import time
import uuid
from pathlib import Path
from typing import Callable

from specrun.config import Settings
from specrun.config import settings as default_settings
from specrun.engine.analysis import FailureAnalysisEngine, TechnicalDebtEngine
from specrun.engine.context import ExecutionContext
from specrun.engine.dispatcher import ActionDispatcher
from specrun.engine.events import EventChannel, EventKind, Listener
from specrun.engine.evidence import EvidenceWriter
from specrun.engine.orchestrator import TaskOrchestrator
from specrun.engine.validation import ValidationEngine
from specrun.models import RunResult, RunSummary, TaskResult, TaskStatus, utcnow
from specrun.plugins.registry import PluginRegistry
from specrun.spec.loader import SpecificationLoader
from specrun.spec.models import Specification
from specrun.utils.exceptions import EngineStateError
from specrun.utils.logging import get_logger

logger = get_logger("engine.controller")


class RunController:
    """Load a specification and execute it.

    Parameters
    ----------
    settings:
        Engine settings; the module-level ``settings`` when omitted.
    registry:
        A pre-populated registry.  When omitted, :meth:`initialize` builds
        one and discovers the built-in and configured plugin directories.
    events:
        Event channel for this run; a fresh one is created when omitted.
    loader:
        Specification loader; a default :class:`SpecificationLoader` when
        omitted.
    clock:
        Clock handed to the :class:`ActionDispatcher` for action durations.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: PluginRegistry | None = None,
        events: EventChannel | None = None,
        loader: SpecificationLoader | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.settings = settings or default_settings
        self.registry = registry
        self.events = events or EventChannel()
        self.loader = loader or SpecificationLoader()
        self.clock = clock

        self.specification: Specification | None = None
        self.evidence: EvidenceWriter | None = None
        self.last_result: RunResult | None = None
        self.reports: list[Path] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, spec_source: str | Path | Specification, fmt: str | None = None) -> Specification:
        """Discover plugins (unless a registry was supplied) and load the specification.

        Raises :class:`~specrun.utils.exceptions.SpecError` or
        :class:`~specrun.utils.exceptions.PluginRegistryError`; both are
        fatal and no task runs.
        """
        if self.registry is None:
            self.registry = PluginRegistry()
            self.registry.discover(self.settings.plugin_dirs)
            for error in self.registry.load_errors:
                await self.events.error(str(error), source="plugin-registry")

        if isinstance(spec_source, Specification):
            specification = spec_source
        else:
            specification = self.loader.load(spec_source, fmt=fmt)

        gc = specification.global_configuration
        evidence_dir = Path(gc.workspace_root) / (gc.evidence_directory or self.settings.evidence_directory)
        self.evidence = EvidenceWriter(evidence_dir, events=self.events)
        self.specification = specification

        logger.info(
            "controller_initialized",
            tasks=len(specification.tasks),
            plugins=len(self.registry),
            evidence_dir=str(evidence_dir),
        )
        return specification

    async def execute(self) -> RunResult:
        """Run every task in declaration order and return the aggregated result.

        Raises :class:`EngineStateError` when called before :meth:`initialize`.
        """
        if self.specification is None or self.registry is None or self.evidence is None:
            raise EngineStateError("execute() called before initialize()")

        spec = self.specification
        gc = spec.global_configuration
        stop_on_failure = self._pick(gc.stop_on_failure, self.settings.stop_on_failure)
        strict = self._pick(gc.strict_validation, self.settings.strict_validation)

        orchestrator = self._build_orchestrator(strict)
        run_id = uuid.uuid4().hex[:12]
        started_at = utcnow()
        start = orchestrator.clock()
        deadline = start + gc.run_timeout_ms / 1000 if gc.run_timeout_ms else None

        logger.info(
            "run_start",
            run_id=run_id,
            tasks=len(spec.tasks),
            stop_on_failure=stop_on_failure,
            strict_validation=strict,
        )

        results: dict[str, TaskResult] = {}
        halted = False
        for task_id, task in spec.tasks.items():
            if halted:
                result = await orchestrator.skip(task_id, task, "Skipped after an earlier task failed")
            elif deadline is not None and orchestrator.clock() >= deadline:
                result = await orchestrator.skip(task_id, task, "Run timeout exceeded")
            else:
                result = await orchestrator.run_task(task_id, task, deadline=deadline)
                if result.status == TaskStatus.FAILED and stop_on_failure:
                    halted = True
            results[task_id] = result

        run_result = RunResult(
            run_id=run_id,
            spec_version=spec.schema_version,
            started_at=started_at,
            finished_at=utcnow(),
            duration_ms=round((orchestrator.clock() - start) * 1000, 3),
            tasks=results,
            summary=self._summarize(results),
        )

        await self.evidence.write_run(run_result)
        await self._run_reporters(run_result)
        self.last_result = run_result

        logger.info(
            "run_complete",
            run_id=run_id,
            success=run_result.success,
            **run_result.summary.model_dump(),
        )
        return run_result

    async def get_evidence(self, task_id: str) -> TaskResult:
        """Read the persisted summary of *task_id* back from evidence."""
        if self.evidence is None:
            raise EngineStateError("get_evidence() called before initialize()")
        return await self.evidence.read_task(task_id)

    async def cleanup(self) -> None:
        if self.registry is not None:
            await self.registry.cleanup_all()
        self.events.close()
        logger.info("controller_cleanup_complete")

    def on(self, kind: EventKind | str | None, callback: Listener) -> Callable[[], None]:
        """Shortcut for ``events.subscribe``."""
        return self.events.subscribe(kind, callback)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_orchestrator(self, strict: bool) -> TaskOrchestrator:
        # A fresh context per run keeps repeated executions independent.
        context = ExecutionContext(self.specification.global_configuration)
        dispatcher = ActionDispatcher(
            self.registry,
            default_timeout_ms=self.settings.default_timeout_ms,
            clock=self.clock,
        )
        return TaskOrchestrator(
            dispatcher=dispatcher,
            validation_engine=ValidationEngine(self.registry, strict=strict),
            failure_engine=FailureAnalysisEngine(self.registry, events=self.events),
            debt_engine=TechnicalDebtEngine(self.registry, events=self.events),
            context=context,
            events=self.events,
            evidence=self.evidence,
        )

    async def _run_reporters(self, run_result: RunResult) -> None:
        for reporter in self.registry.reporters():
            try:
                path = await reporter.generate(run_result, self.evidence.evidence_dir)
            except Exception as exc:
                logger.error("reporter_error", reporter=reporter.plugin_name, error=str(exc), exc_info=True)
                await self.events.error(f"{reporter.plugin_name} failed: {exc}", source=reporter.plugin_name)
                continue
            if path is not None:
                self.reports.append(Path(path))
                logger.info("report_generated", reporter=reporter.plugin_name, path=str(path))

    @staticmethod
    def _pick(override: bool | None, default: bool) -> bool:
        return default if override is None else override

    @staticmethod
    def _summarize(results: dict[str, TaskResult]) -> RunSummary:
        statuses = [r.status for r in results.values()]
        return RunSummary(
            total=len(statuses),
            passed=statuses.count(TaskStatus.PASSED),
            failed=statuses.count(TaskStatus.FAILED),
            skipped=statuses.count(TaskStatus.SKIPPED),
        )
