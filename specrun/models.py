"""Result models produced while a specification runs.

Every model here is immutable once built.  Evidence documents are these
models serialised with camelCase aliases (``model_dump(by_alias=True)``)
and they validate back from the same JSON without loss.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _ResultModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class TaskStatus(str, Enum):
    """Final verdict of a task."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class TaskState(str, Enum):
    """Orchestrator states a task moves through."""

    PENDING = "PENDING"
    RUNNING_PREREQ = "RUNNING_PREREQ"
    RUNNING_STEPS = "RUNNING_STEPS"
    RUNNING_CLEANUP = "RUNNING_CLEANUP"
    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class Phase(str, Enum):
    PREREQ = "PREREQ"
    STEP = "STEP"
    CLEANUP = "CLEANUP"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ExecutorOutput(_ResultModel):
    """What an executor hands back to the dispatcher."""

    success: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class ActionResult(_ResultModel):
    """Outcome of one dispatched action.

    Attributes:
        action_id: The action's id within its task.
        action_type: The executor key the action was dispatched to.
        phase: Which task phase the action ran in.
        success: Whether the executor reported success.
        duration_ms: Wall-clock duration measured around the executor call.
        data: Structured output from the executor.
        error: Error description when ``success`` is false.
        timed_out: The action was cancelled by its timeout.
    """

    action_id: str
    action_type: str
    phase: Phase = Phase.STEP
    description: str = ""
    success: bool
    duration_ms: float = 0.0
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    timed_out: bool = False
    started_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ConditionOutcome(_ResultModel):
    """Result of evaluating one declared condition.

    ``evaluated`` is false when no validator was registered for ``type`` and
    the leniency policy decided ``held``.
    """

    type: str
    description: str = ""
    held: bool
    evaluated: bool = True
    message: str = ""


class ValidationResult(_ResultModel):
    passed: bool
    success_conditions: list[ConditionOutcome] = Field(default_factory=list)
    failure_conditions: list[ConditionOutcome] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class FailureAnalysisResult(_ResultModel):
    """One analyzer's explanation of a failed task.

    ``category`` is an open taxonomy (``NETWORK_ERROR``, ``AUTH_ERROR``,
    ``CONFIG_ERROR``, ...); ``confidence`` lets consumers rank competing
    explanations.
    """

    analyzer: str
    category: str
    severity: Severity = Severity.MEDIUM
    confidence: float = Field(ge=0.0, le=1.0)
    description: str
    recommendation: str = ""
    potential_causes: list[str] = Field(default_factory=list)
    evidence: dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime = Field(default_factory=utcnow)


class DebtEvidence(_ResultModel):
    metric: str | None = None
    threshold: float | None = None
    actual: float | None = None
    related_steps: list[str] = Field(default_factory=list)
    location: str | None = None


class TechnicalDebtItem(_ResultModel):
    """A quality issue observed in a task that passed."""

    detector: str
    category: str
    severity: Severity = Severity.LOW
    description: str
    recommendation: str = ""
    evidence: DebtEvidence = Field(default_factory=DebtEvidence)
    detected_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Tasks and runs
# ---------------------------------------------------------------------------


class TaskResult(_ResultModel):
    """Aggregated outcome of one task.

    Failure analysis is only ever attached to FAILED tasks and technical
    debt only to PASSED tasks; building a result that breaks this raises.
    """

    task_id: str
    title: str = ""
    status: TaskStatus
    actions: list[ActionResult] = Field(default_factory=list)
    validation: ValidationResult | None = None
    failure_analysis: list[FailureAnalysisResult] = Field(default_factory=list)
    technical_debt: list[TechnicalDebtItem] = Field(default_factory=list)
    failure_reason: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime = Field(default_factory=utcnow)
    duration_ms: float = 0.0

    @model_validator(mode="after")
    def _analysis_matches_status(self) -> "TaskResult":
        if self.failure_analysis and self.status != TaskStatus.FAILED:
            raise ValueError("failure analysis is only allowed on FAILED tasks")
        if self.technical_debt and self.status != TaskStatus.PASSED:
            raise ValueError("technical debt is only allowed on PASSED tasks")
        return self

    def actions_in(self, phase: Phase) -> list[ActionResult]:
        return [a for a in self.actions if a.phase == phase]

    def failed_actions(self) -> list[ActionResult]:
        return [a for a in self.actions if not a.success]


class RunSummary(_ResultModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0


class RunResult(_ResultModel):
    """Terminal artifact of a run: every task result plus summary counts."""

    run_id: str
    spec_version: str = ""
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    tasks: dict[str, TaskResult] = Field(default_factory=dict)
    summary: RunSummary = Field(default_factory=RunSummary)

    @property
    def success(self) -> bool:
        return self.summary.failed == 0
