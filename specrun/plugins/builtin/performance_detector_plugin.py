"""Performance debt detector -- flags actions slower than their threshold."""

from __future__ import annotations

from collections.abc import Mapping

from specrun.models import DebtEvidence, Severity, TaskResult, TechnicalDebtItem
from specrun.plugins.base import BaseDebtDetector

# Milliseconds per action type; "*" applies to any type not listed.
DEFAULT_THRESHOLDS: dict[str, float] = {
    "HTTP_REQUEST": 1000,
    "TERMINAL_COMMAND": 5000,
    "FILE_VALIDATION": 500,
}


def severity_for(actual: float, threshold: float) -> Severity:
    ratio = actual / threshold if threshold else float("inf")
    if ratio > 3:
        return Severity.HIGH
    if ratio > 2:
        return Severity.MEDIUM
    return Severity.LOW


class PerformanceDetector(BaseDebtDetector):
    """Report a ``PERFORMANCE_DEGRADATION`` item for every successful action
    whose duration exceeds the threshold for its type.

    Background actions and action types without a threshold are ignored.
    """

    name = "performance-detector"
    description = "Flags actions exceeding latency thresholds"
    priority = 100

    def __init__(self, thresholds: Mapping[str, float] | None = None) -> None:
        self.thresholds = dict(DEFAULT_THRESHOLDS if thresholds is None else thresholds)

    def threshold_for(self, action_type: str) -> float | None:
        return self.thresholds.get(action_type, self.thresholds.get("*"))

    async def analyze(self, task_result: TaskResult) -> list[TechnicalDebtItem] | None:
        items: list[TechnicalDebtItem] = []
        for action in task_result.actions:
            if not action.success or action.data.get("background"):
                continue
            threshold = self.threshold_for(action.action_type)
            if threshold is None or action.duration_ms <= threshold:
                continue

            items.append(
                self.create_item(
                    "PERFORMANCE_DEGRADATION",
                    severity_for(action.duration_ms, threshold),
                    f"{action.action_type} {action.action_id} took {action.duration_ms:g}ms, "
                    f"exceeds {threshold:g}ms threshold",
                    "Profile the operation; add caching, indexes or pagination where it applies",
                    DebtEvidence(
                        metric="duration",
                        threshold=threshold,
                        actual=action.duration_ms,
                        related_steps=[action.action_id],
                        location=self._location(action.data),
                    ),
                )
            )
        return items

    @staticmethod
    def _location(data: Mapping) -> str | None:
        if "url" in data:
            return f"{data.get('method', 'GET')} {data['url']}"
        return data.get("command") or data.get("filePath")
