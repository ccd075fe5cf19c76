"""Abstract base classes for the five plugin capabilities.

A plugin class may implement more than one capability (the registry files
it under each), but most implement exactly one:

* :class:`BaseExecutor` -- runs actions of the types it lists.
* :class:`BaseValidator` -- decides whether a condition holds.
* :class:`BaseFailureAnalyzer` -- explains a FAILED task.
* :class:`BaseDebtDetector` -- flags quality issues in a PASSED task.
* :class:`BaseReporter` -- renders a finished run into a file.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from specrun.models import (
    DebtEvidence,
    ExecutorOutput,
    FailureAnalysisResult,
    RunResult,
    Severity,
    TaskResult,
    TechnicalDebtItem,
)
from specrun.utils.exceptions import InvalidParametersError

if TYPE_CHECKING:
    from specrun.engine.context import ContextView
    from specrun.spec.models import Condition

ParamsT = TypeVar("ParamsT", bound=BaseModel)


class Capability(str, Enum):
    EXECUTOR = "executor"
    VALIDATOR = "validator"
    FAILURE_ANALYZER = "failure_analyzer"
    DEBT_DETECTOR = "debt_detector"
    REPORTER = "reporter"


class BasePlugin(ABC):
    """Common identity and lifecycle for every plugin."""

    name: str = ""
    version: str = "1.0.0"
    description: str = ""

    @property
    def plugin_name(self) -> str:
        return self.name or type(self).__name__

    async def cleanup(self) -> None:
        """Release resources held by the plugin.  Called once per run."""
        return None


class BaseExecutor(BasePlugin):
    """Runs actions of every type listed in :attr:`action_types`."""

    action_types: tuple[str, ...] = ()

    @abstractmethod
    async def execute(self, params: dict, context: ContextView) -> ExecutorOutput | dict:
        """Run one action.

        Parameters
        ----------
        params:
            The action's parameter bag with references to earlier action
            outputs already resolved.
        context:
            Read-only view of the run so far, scoped to the current task.

        Raise :class:`~specrun.utils.exceptions.ActionExecutionError` (or
        return ``ExecutorOutput(success=False, ...)``) to report failure.
        """
        ...

    def parse_params(self, model: type[ParamsT], params: dict[str, Any]) -> ParamsT:
        """Narrow the schema-less parameter bag to *model*."""
        try:
            return model.model_validate(params)
        except ValidationError as exc:
            action_type = self.action_types[0] if self.action_types else self.plugin_name
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            )
            raise InvalidParametersError(action_type, detail) from exc


class BaseValidator(BasePlugin):
    """Evaluates conditions of every type listed in :attr:`condition_types`."""

    condition_types: tuple[str, ...] = ()

    @abstractmethod
    async def validate(self, condition: Condition, context: ContextView) -> bool:
        """Return ``True`` when *condition* holds for the current task."""
        ...


class BaseFailureAnalyzer(BasePlugin):
    """Classifies a FAILED task.  Higher :attr:`priority` runs first."""

    priority: int = 0

    @abstractmethod
    async def analyze(self, task_result: TaskResult) -> list[FailureAnalysisResult] | None:
        """Return explanations for the failure, or nothing to decline."""
        ...

    def create_result(
        self,
        category: str,
        description: str,
        *,
        confidence: float,
        severity: Severity = Severity.MEDIUM,
        recommendation: str = "",
        potential_causes: list[str] | None = None,
        evidence: dict | None = None,
    ) -> FailureAnalysisResult:
        return FailureAnalysisResult(
            analyzer=self.plugin_name,
            category=category,
            severity=severity,
            confidence=confidence,
            description=description,
            recommendation=recommendation,
            potential_causes=potential_causes or [],
            evidence=evidence or {},
        )


class BaseDebtDetector(BasePlugin):
    """Flags quality issues in a PASSED task.  Higher :attr:`priority` runs first."""

    priority: int = 0

    @abstractmethod
    async def analyze(self, task_result: TaskResult) -> list[TechnicalDebtItem] | None:
        """Return detected debt items, or nothing when the task looks clean."""
        ...

    def create_item(
        self,
        category: str,
        severity: Severity,
        description: str,
        recommendation: str,
        evidence: DebtEvidence | None = None,
    ) -> TechnicalDebtItem:
        return TechnicalDebtItem(
            detector=self.plugin_name,
            category=category,
            severity=severity,
            description=description,
            recommendation=recommendation,
            evidence=evidence or DebtEvidence(),
        )


class BaseReporter(BasePlugin):
    """Renders a finished :class:`RunResult` into *output_dir*."""

    format: str = ""

    @abstractmethod
    async def generate(self, run_result: RunResult, output_dir: Path) -> Path | None:
        """Write the report and return its path."""
        ...


CAPABILITY_BASES: dict[Capability, type[BasePlugin]] = {
    Capability.EXECUTOR: BaseExecutor,
    Capability.VALIDATOR: BaseValidator,
    Capability.FAILURE_ANALYZER: BaseFailureAnalyzer,
    Capability.DEBT_DETECTOR: BaseDebtDetector,
    Capability.REPORTER: BaseReporter,
}


def capabilities_of(plugin: object) -> list[Capability]:
    """Return every capability *plugin* implements, in enum order."""
    return [cap for cap, base in CAPABILITY_BASES.items() if isinstance(plugin, base)]
