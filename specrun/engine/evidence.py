"""Evidence writer -- persists action, task and run results as JSON.

Layout under the evidence directory::

    execution-report-latest.json
    execution-report-<yyyymmddTHHMMSSffffffZ>-<runId>.json
    <taskId>/task-summary.json
    <taskId>/validation-results.json
    <taskId>/<actionId>.json

Writing is best-effort: an I/O or serialisation failure is logged, recorded in
:attr:`EvidenceWriter.failures` and reported on the event channel, but
never raised into the orchestrator.
"""

from __future__ import annotations

import json
import platform
import sys
from pathlib import Path
from typing import Any, Callable

import aiofiles  # type: ignore[import-untyped]

from specrun import __version__
from specrun.engine.events import EventChannel
from specrun.models import ActionResult, RunResult, TaskResult, utcnow
from specrun.utils.exceptions import EvidenceNotFoundError, EvidenceWriteError
from specrun.utils.file_utils import ensure_dir, safe_filename, sortable_timestamp
from specrun.utils.logging import get_logger

logger = get_logger("engine.evidence")

LATEST_REPORT = "execution-report-latest.json"
TASK_SUMMARY = "task-summary.json"
VALIDATION_RESULTS = "validation-results.json"


class EvidenceWriter:
    """Serialise results under *evidence_dir*.

    Parameters
    ----------
    evidence_dir:
        Root of the evidence tree.  Created lazily on first write.
    events:
        Optional channel that receives an ``error`` event per failed write.
    """

    def __init__(self, evidence_dir: str | Path, events: EventChannel | None = None) -> None:
        self.evidence_dir = Path(evidence_dir)
        self.events = events
        self.failures: list[EvidenceWriteError] = []

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def task_dir(self, task_id: str) -> Path:
        return self.evidence_dir / safe_filename(task_id)

    def action_path(self, task_id: str, action_id: str) -> Path:
        return self.task_dir(task_id) / f"{safe_filename(action_id)}.json"

    def run_path(self, run_result: RunResult) -> Path:
        stamp = sortable_timestamp(run_result.started_at)
        return self.evidence_dir / f"execution-report-{stamp}-{safe_filename(run_result.run_id)}.json"

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def write_action(self, task_id: str, result: ActionResult) -> Path | None:
        return await self._write(
            self.action_path(task_id, result.action_id),
            lambda: {"taskId": task_id, **result.model_dump(mode="json", by_alias=True)},
            task_id,
        )

    async def write_task(self, result: TaskResult) -> Path | None:
        """Write the task summary and its validation results.

        Returns the summary path, or ``None`` if it could not be written.
        """
        task_dir = self.task_dir(result.task_id)
        summary = await self._write(
            task_dir / TASK_SUMMARY,
            lambda: result.model_dump(mode="json", by_alias=True),
            result.task_id,
        )
        await self._write(
            task_dir / VALIDATION_RESULTS,
            lambda: {
                "taskId": result.task_id,
                "validation": (
                    result.validation.model_dump(mode="json", by_alias=True)
                    if result.validation is not None
                    else None
                ),
            },
            result.task_id,
        )
        return summary

    async def write_run(self, result: RunResult) -> Path | None:
        """Write the timestamped run report and refresh the ``latest`` copy."""
        def payload() -> dict[str, Any]:
            return {
                **result.model_dump(mode="json", by_alias=True),
                "metadata": {
                    "generatedBy": f"specrun {__version__}",
                    "generatedAt": utcnow().isoformat(),
                    "platform": platform.platform(),
                    "python": sys.version.split()[0],
                },
            }

        stamped = await self._write(self.run_path(result), payload)
        await self._write(self.evidence_dir / LATEST_REPORT, payload)
        if stamped is not None:
            logger.info("run_evidence_written", path=str(stamped), run_id=result.run_id)
        return stamped

    async def _write(
        self,
        path: Path,
        build: Callable[[], Any],
        task_id: str | None = None,
    ) -> Path | None:
        """Serialise the document returned by *build* to *path*.

        Serialisation happens inside the guarded block so that an
        unserialisable value is reported like any other write failure.
        """
        try:
            text = json.dumps(build(), indent=2, ensure_ascii=False)
            ensure_dir(path.parent)
            async with aiofiles.open(path, mode="w", encoding="utf-8") as fh:
                await fh.write(text)
        except (OSError, TypeError, ValueError) as exc:
            error = EvidenceWriteError(str(path), str(exc))
            self.failures.append(error)
            logger.error("evidence_write_failed", path=str(path), error=str(exc))
            if self.events is not None:
                await self.events.error(str(error), source="evidence", task_id=task_id)
            return None

        logger.debug("evidence_written", path=str(path))
        return path

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def read_run(self, path: str | Path | None = None) -> RunResult:
        """Load a run report; the ``latest`` one when *path* is omitted."""
        target = Path(path) if path is not None else self.evidence_dir / LATEST_REPORT
        return RunResult.model_validate(await self._read(target))

    async def read_task(self, task_id: str) -> TaskResult:
        return TaskResult.model_validate(await self._read(self.task_dir(task_id) / TASK_SUMMARY))

    async def read_action(self, task_id: str, action_id: str) -> ActionResult:
        return ActionResult.model_validate(await self._read(self.action_path(task_id, action_id)))

    @staticmethod
    async def _read(path: Path) -> Any:
        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as fh:
                return json.loads(await fh.read())
        except FileNotFoundError as exc:
            raise EvidenceNotFoundError(str(path)) from exc
