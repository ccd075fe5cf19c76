"""Failure analyzer for tasks whose actions all succeeded but validation failed."""

from __future__ import annotations

from specrun.models import FailureAnalysisResult, Severity, TaskResult
from specrun.plugins.base import BaseFailureAnalyzer


class ValidationAnalyzer(BaseFailureAnalyzer):
    name = "validation-analyzer"
    description = "Explains failures decided by validation criteria"
    priority = 50

    async def analyze(self, task_result: TaskResult) -> list[FailureAnalysisResult] | None:
        validation = task_result.validation
        if task_result.failed_actions() or validation is None or validation.passed:
            return None

        violated = [
            f"failure condition held: {c.description or c.type}"
            for c in validation.failure_conditions
            if c.held
        ] + [
            f"success condition not met: {c.description or c.type}"
            for c in validation.success_conditions
            if not c.held
        ]

        return [
            self.create_result(
                "LOGIC_ERROR",
                "Every action succeeded but the validation criteria rejected the result",
                confidence=0.8,
                severity=Severity.MEDIUM,
                recommendation="Compare the action outputs with the declared validation criteria",
                potential_causes=violated,
                evidence={"violatedConditions": violated},
            )
        ]
