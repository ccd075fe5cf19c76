"""Run submission and inspection endpoints.

Finished runs are kept in a lightweight in-memory store keyed by run id;
per-task details are read back from the evidence directory.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException

from specrun.api.v1.schemas.common import ErrorResponse
from specrun.api.v1.schemas.run import RunRequest, RunResponse
from specrun.config import Settings
from specrun.dependencies import get_plugin_registry, get_run_lock, get_settings
from specrun.engine import EvidenceWriter, RunController
from specrun.models import RunResult, TaskResult
from specrun.plugins import PluginRegistry
from specrun.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@dataclass
class RunRecord:
    result: RunResult
    evidence_dir: Path


# ---------------------------------------------------------------------------
# In-memory run store.
# ---------------------------------------------------------------------------
_runs: dict[str, RunRecord] = {}


def store_run(record: RunRecord) -> None:
    _runs[record.result.run_id] = record


def get_run(run_id: str) -> RunRecord | None:
    return _runs.get(run_id)


def _require_run(run_id: str) -> RunRecord:
    record = get_run(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No run found: {run_id}")
    return record


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/runs",
    response_model=RunResponse,
    responses={422: {"model": ErrorResponse}},
    summary="Execute a specification",
    description="Load the specification at specPath, run every task and return the summary.",
)
async def create_run(
    body: RunRequest,
    registry: PluginRegistry = Depends(get_plugin_registry),
    settings: Settings = Depends(get_settings),
    run_lock: asyncio.Lock = Depends(get_run_lock),
) -> RunResponse:
    controller = RunController(settings=settings, registry=registry)
    async with run_lock:
        await controller.initialize(Path(body.spec_path), fmt=body.format)
        try:
            result = await controller.execute()
        finally:
            await controller.cleanup()

    store_run(RunRecord(result=result, evidence_dir=controller.evidence.evidence_dir))
    logger.info("run_stored", run_id=result.run_id, success=result.success)

    return RunResponse(
        run_id=result.run_id,
        success=result.success,
        summary=result.summary,
        evidence_directory=str(controller.evidence.evidence_dir),
        reports=[str(p) for p in controller.reports],
    )


@router.get(
    "/runs/{run_id}",
    response_model=RunResult,
    responses={404: {"model": ErrorResponse}},
    summary="Get a run result",
)
async def get_run_result(run_id: str) -> RunResult:
    return _require_run(run_id).result


@router.get(
    "/runs/{run_id}/evidence/{task_id}",
    response_model=TaskResult,
    responses={404: {"model": ErrorResponse}},
    summary="Read a task's evidence",
    description="Return the task summary persisted in the run's evidence directory.",
)
async def get_task_evidence(run_id: str, task_id: str) -> TaskResult:
    record = _require_run(run_id)
    return await EvidenceWriter(record.evidence_dir).read_task(task_id)
