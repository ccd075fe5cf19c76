"""Validation engine -- evaluates a task's success and failure conditions.

Each condition is dispatched to the validator registered for its ``type``.
Failure conditions are evaluated first; the first one that holds decides the
verdict and the remaining conditions are not evaluated.  Otherwise every
success condition must hold.
"""

from __future__ import annotations

from specrun.engine.context import ContextView
from specrun.models import ConditionOutcome, ValidationResult
from specrun.plugins.registry import PluginRegistry
from specrun.spec.models import Condition, ValidationCriteria
from specrun.utils.logging import get_logger

logger = get_logger("engine.validation")


class ValidationEngine:
    """Evaluate :class:`ValidationCriteria` against the execution context.

    Parameters
    ----------
    registry:
        Source of validator plugins.
    strict:
        Policy for condition types with no registered validator.  When
        false (the default) such a condition is treated as satisfied and a
        warning is recorded; when true the task fails closed.
    """

    def __init__(self, registry: PluginRegistry, strict: bool = False) -> None:
        self.registry = registry
        self.strict = strict

    async def evaluate(
        self,
        criteria: ValidationCriteria | None,
        context: ContextView,
    ) -> ValidationResult:
        if criteria is None:
            return ValidationResult(passed=True)

        warnings: list[str] = []
        failure_outcomes: list[ConditionOutcome] = []
        success_outcomes: list[ConditionOutcome] = []

        for condition in criteria.failure_conditions:
            outcome = await self._evaluate_one(condition, context, is_failure=True, warnings=warnings)
            failure_outcomes.append(outcome)
            if outcome.held:
                logger.info(
                    "failure_condition_held",
                    task_id=context.task_id,
                    condition_type=condition.type,
                    description=condition.description,
                )
                return ValidationResult(
                    passed=False,
                    success_conditions=[],
                    failure_conditions=failure_outcomes,
                    warnings=warnings,
                )

        for condition in criteria.success_conditions:
            outcome = await self._evaluate_one(condition, context, is_failure=False, warnings=warnings)
            success_outcomes.append(outcome)

        passed = all(o.held for o in success_outcomes)
        logger.info(
            "validation_complete",
            task_id=context.task_id,
            passed=passed,
            success_conditions=len(success_outcomes),
            failure_conditions=len(failure_outcomes),
            warnings=len(warnings),
        )
        return ValidationResult(
            passed=passed,
            success_conditions=success_outcomes,
            failure_conditions=failure_outcomes,
            warnings=warnings,
        )

    async def _evaluate_one(
        self,
        condition: Condition,
        context: ContextView,
        *,
        is_failure: bool,
        warnings: list[str],
    ) -> ConditionOutcome:
        validator = self.registry.validator_for(condition.type)

        if validator is None:
            # Lenient: success conditions pass, failure conditions do not fire.
            # Strict: the reverse.
            held = self.strict if is_failure else not self.strict
            message = f"No validator registered for condition type: {condition.type}"
            warnings.append(message)
            logger.warning(
                "validator_missing",
                task_id=context.task_id,
                condition_type=condition.type,
                strict=self.strict,
            )
            return ConditionOutcome(
                type=condition.type,
                description=condition.description,
                held=held,
                evaluated=False,
                message=message,
            )

        try:
            held = bool(await validator.validate(condition, context))
        except Exception as exc:
            # A broken check never counts in the task's favour.
            message = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "validator_error",
                task_id=context.task_id,
                condition_type=condition.type,
                error=message,
                exc_info=True,
            )
            return ConditionOutcome(
                type=condition.type,
                description=condition.description,
                held=is_failure,
                message=message,
            )

        return ConditionOutcome(
            type=condition.type,
            description=condition.description,
            held=held,
        )
