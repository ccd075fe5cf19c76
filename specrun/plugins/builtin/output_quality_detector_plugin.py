"""Output quality debt detector.

Looks at the outputs of successful actions for issues that do not fail a
test but still deserve attention: warnings in command output, HTTP 5xx
responses accepted by ``expectedStatus``, responses without a
Content-Type, and unpaginated list endpoints.
"""

from __future__ import annotations

import re

from specrun.models import ActionResult, DebtEvidence, Severity, TaskResult, TechnicalDebtItem
from specrun.plugins.base import BaseDebtDetector

_WARNING = re.compile(r"^.*\b(?:warning|deprecat\w*)\b.*$", re.IGNORECASE | re.MULTILINE)
PAGINATION_LIMIT = 10


class OutputQualityDetector(BaseDebtDetector):
    name = "output-quality-detector"
    description = "Flags warnings and incomplete API responses in passing tasks"
    priority = 50

    async def analyze(self, task_result: TaskResult) -> list[TechnicalDebtItem] | None:
        items: list[TechnicalDebtItem] = []
        for action in task_result.actions:
            if not action.success:
                continue
            if "stdout" in action.data or "stderr" in action.data:
                items.extend(self._command_issues(action))
            if "status" in action.data and "url" in action.data:
                items.extend(self._http_issues(action))
        return items

    def _command_issues(self, action: ActionResult) -> list[TechnicalDebtItem]:
        output = f"{action.data.get('stdout') or ''}\n{action.data.get('stderr') or ''}"
        warnings = [m.group(0).strip() for m in _WARNING.finditer(output)]
        if not warnings:
            return []
        return [
            self.create_item(
                "CODE_QUALITY",
                Severity.LOW,
                f"Command produced {len(warnings)} warning(s)",
                "Address warnings: " + "; ".join(warnings[:2]),
                DebtEvidence(
                    metric="warnings",
                    actual=len(warnings),
                    related_steps=[action.action_id],
                    location=action.data.get("command"),
                ),
            )
        ]

    def _http_issues(self, action: ActionResult) -> list[TechnicalDebtItem]:
        data = action.data
        status = data.get("status") or 0
        headers = {str(k).lower(): v for k, v in (data.get("headers") or {}).items()}
        location = f"{data.get('method', 'GET')} {data.get('url')}"
        evidence = DebtEvidence(related_steps=[action.action_id], location=location)
        items: list[TechnicalDebtItem] = []

        if status >= 500:
            items.append(
                self.create_item(
                    "API_ENDPOINT_INCOMPLETE",
                    Severity.HIGH,
                    f"Endpoint returned {status}; client errors should be reported as 4xx",
                    "Handle invalid input explicitly and return a 4xx status",
                    evidence,
                )
            )
        if "content-type" not in headers:
            items.append(
                self.create_item(
                    "API_ENDPOINT_INCOMPLETE",
                    Severity.LOW,
                    "Response missing Content-Type header",
                    "Set a Content-Type header on every response",
                    evidence,
                )
            )
        body = data.get("body")
        if (
            200 <= status < 300
            and isinstance(body, list)
            and len(body) > PAGINATION_LIMIT
            and "x-total-count" not in headers
        ):
            items.append(
                self.create_item(
                    "API_ENDPOINT_INCOMPLETE",
                    Severity.LOW,
                    f"List endpoint returned {len(body)} items without pagination metadata",
                    "Add pagination support with total count, page and limit metadata",
                    evidence.model_copy(update={"metric": "items", "actual": len(body),
                                                "threshold": PAGINATION_LIMIT}),
                )
            )
        return items
