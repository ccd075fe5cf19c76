"""Pattern-based failure analyzer.

Classifies a failed task by matching the first failed action's error text
(and its stderr, when present) against an ordered table of rules.  The
first matching rule wins; when nothing matches the analyzer declines.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from specrun.models import FailureAnalysisResult, Severity, TaskResult
from specrun.plugins.base import BaseFailureAnalyzer


@dataclass(frozen=True)
class Rule:
    category: str
    patterns: tuple[str, ...]
    description: str
    recommendation: str
    severity: Severity = Severity.MEDIUM
    confidence: float = 0.8
    causes: tuple[str, ...] = field(default_factory=tuple)

    def matches(self, text: str) -> bool:
        return any(re.search(p, text, re.IGNORECASE) for p in self.patterns)


RULES: tuple[Rule, ...] = (
    Rule(
        "TIMEOUT",
        (r"\btime(?:d)?[ -]?out\b", r"etimedout", r"timeout after"),
        "Operation exceeded its timeout",
        "Check the operation's performance or raise its timeoutMs",
        severity=Severity.MEDIUM,
        confidence=0.9,
        causes=("Slow service or command", "Timeout set too low", "Deadlock or hung process"),
    ),
    Rule(
        "NETWORK_ERROR",
        (r"econnrefused", r"connection refused", r"connecterror", r"network is unreachable",
         r"name or service not known", r"nodename nor servname", r"connection reset"),
        "Could not reach the target service",
        "Start the required service or check host, port and network configuration",
        severity=Severity.HIGH,
        confidence=0.9,
        causes=("Service not running", "Wrong host or port", "Firewall or proxy blocking the request"),
    ),
    Rule(
        "AUTH_ERROR",
        (r"\b401\b", r"\b403\b", r"unauthori[sz]ed", r"forbidden", r"invalid token",
         r"authentication failed", r"permission denied"),
        "Authentication or authorization was rejected",
        "Check credentials, tokens and permissions used by the action",
        severity=Severity.HIGH,
        confidence=0.85,
        causes=("Missing or expired token", "Insufficient permissions"),
    ),
    Rule(
        "DEPENDENCY_ERROR",
        (r"no module named", r"modulenotfounderror", r"package not found", r"command not found",
         r"cannot find module", r"eresolve", r"could not resolve dependencies"),
        "A required dependency is missing",
        "Install the missing package or tool and pin its version",
        severity=Severity.HIGH,
        confidence=0.85,
        causes=("Package not installed", "Wrong environment activated", "Tool missing from PATH"),
    ),
    Rule(
        "INCOMPLETE_IMPLEMENTATION",
        (r"file not found", r"no such file", r"does not exist", r"\b404\b", r"not implemented",
         r"no executor registered"),
        "Required implementation or artifact does not exist",
        "Create the missing file, endpoint or plugin",
        severity=Severity.MEDIUM,
        confidence=0.75,
        causes=("Feature not yet implemented", "Wrong path or URL", "Plugin not installed"),
    ),
    Rule(
        "CONFIG_ERROR",
        (r"invalid parameters", r"invalid configuration", r"config(?:uration)?\s+error",
         r"parse error", r"missing required"),
        "The action or environment is misconfigured",
        "Review the action parameters and global configuration",
        severity=Severity.MEDIUM,
        confidence=0.8,
        causes=("Typo in a parameter name", "Missing environment variable"),
    ),
    Rule(
        "DATA_ERROR",
        (r"invalid json", r"schema validation", r"expected .* but got", r"does not match",
         r"jsondecodeerror", r"\b4(?:00|22)\b"),
        "The data produced or received was not what was expected",
        "Compare the expected and actual payloads in the action evidence",
        severity=Severity.MEDIUM,
        confidence=0.7,
        causes=("Contract change", "Malformed fixture data"),
    ),
    Rule(
        "RUNTIME_ERROR",
        (r"typeerror", r"keyerror", r"attributeerror", r"valueerror", r"referenceerror",
         r"traceback \(most recent call last\)", r"exception", r"segmentation fault", r"\b5\d\d\b"),
        "Uncaught error during execution",
        "Inspect the stack trace and add error handling or fix the defect",
        severity=Severity.HIGH,
        confidence=0.6,
        causes=("Unhandled edge case", "Programming error"),
    ),
)


class PatternBasedAnalyzer(BaseFailureAnalyzer):
    name = "pattern-based-analyzer"
    description = "Categorises failures from error message patterns"
    priority = 100

    def __init__(self, rules: tuple[Rule, ...] = RULES) -> None:
        self.rules = rules

    async def analyze(self, task_result: TaskResult) -> list[FailureAnalysisResult] | None:
        failed = task_result.failed_actions()
        if not failed:
            return None
        action = failed[0]

        text = " ".join(
            str(part) for part in (action.error, action.data.get("stderr")) if part
        )
        rule = self._timeout_rule() if action.timed_out else self._match(text)
        if rule is None:
            return None

        return [
            self.create_result(
                rule.category,
                f"{rule.description} ({action.action_id}: {action.error})",
                confidence=rule.confidence,
                severity=rule.severity,
                recommendation=rule.recommendation,
                potential_causes=list(rule.causes),
                evidence={
                    "actionId": action.action_id,
                    "actionType": action.action_type,
                    "phase": action.phase.value,
                    "fullError": action.error,
                },
            )
        ]

    def _match(self, text: str) -> Rule | None:
        if not text:
            return None
        return next((rule for rule in self.rules if rule.matches(text)), None)

    def _timeout_rule(self) -> Rule | None:
        return next((rule for rule in self.rules if rule.category == "TIMEOUT"), None)
