"""Specification data models.

A :class:`Specification` is built once per run by the
:class:`~specrun.spec.loader.SpecificationLoader` and is immutable
afterwards.  Field names follow Python conventions; the camelCase names used
in specification documents are accepted as aliases and used when a model is
serialised back with ``by_alias=True``.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class _SpecModel(BaseModel):
    # YAML and JSON hand over `schemaVersion: 1.0` or `PORT: 8080` as numbers.
    model_config = ConfigDict(frozen=True, populate_by_name=True, coerce_numbers_to_str=True)


class ActionSpec(_SpecModel):
    """One executable action: a prerequisite, a step or a cleanup item.

    Attributes:
        action_id: Identifier unique within the owning task (e.g. ``"STEP.1"``).
        type: Action type key resolved against the executor registry.
        parameters: Schema-less parameter bag; each executor narrows it.
        continue_on_failure: Keep running the phase when this action fails.
        is_background: The executor returns once the work has started.
        timeout_ms: Per-action timeout; falls back to the global default.
    """

    action_id: str = Field(alias="actionId")
    type: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    continue_on_failure: bool = Field(default=False, alias="continueOnFailure")
    is_background: bool = Field(default=False, alias="isBackground")
    timeout_ms: int | None = Field(
        default=None,
        alias="timeoutMs",
        validation_alias=AliasChoices("timeoutMs", "timeout", "timeout_ms"),
    )


class Condition(BaseModel):
    """A single validation condition.

    Everything besides ``type`` and ``description`` is kept as a free-form
    parameter for the validator registered for ``type``.  A bare
    ``{"condition": "<expr>"}`` entry is read as an ``EXPRESSION`` condition.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _expression_shorthand(cls, data: Any) -> Any:
        if isinstance(data, dict) and "type" not in data and "condition" in data:
            data = {**data, "type": "EXPRESSION", "expression": data["condition"]}
        return data

    @property
    def params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class ValidationCriteria(_SpecModel):
    success_conditions: list[Condition] = Field(default_factory=list, alias="successConditions")
    failure_conditions: list[Condition] = Field(default_factory=list, alias="failureConditions")


class TaskSpec(_SpecModel):
    """Declarative description of one test task and its three phases."""

    title: str = ""
    description: str = ""
    prerequisites: list[ActionSpec] = Field(default_factory=list)
    steps: list[ActionSpec] = Field(default_factory=list)
    cleanup: list[ActionSpec] = Field(default_factory=list)
    validation_criteria: ValidationCriteria | None = Field(default=None, alias="validationCriteria")

    @model_validator(mode="before")
    @classmethod
    def _flatten_test_execution(cls, data: Any) -> Any:
        # Documents may nest the phases under ``testExecution``.
        if isinstance(data, dict) and isinstance(data.get("testExecution"), dict):
            nested = data["testExecution"]
            data = {k: v for k, v in data.items() if k != "testExecution"}
            for phase in ("prerequisites", "steps", "cleanup"):
                if phase in nested and phase not in data:
                    data[phase] = nested[phase] or []
        return data

    def all_actions(self) -> list[ActionSpec]:
        return [*self.prerequisites, *self.steps, *self.cleanup]


class GlobalConfiguration(_SpecModel):
    model_config = ConfigDict(
        frozen=True, populate_by_name=True, extra="allow", coerce_numbers_to_str=True
    )

    workspace_root: str = Field(default=".", alias="workspaceRoot")
    evidence_directory: str | None = Field(default=None, alias="evidenceDirectory")
    timeout: int | None = None  # default per-action timeout, milliseconds
    run_timeout_ms: int | None = Field(default=None, alias="runTimeoutMs")
    strict_validation: bool | None = Field(default=None, alias="strictValidation")
    stop_on_failure: bool | None = Field(default=None, alias="stopOnFailure")
    environment: dict[str, str] = Field(default_factory=dict)


class Specification(_SpecModel):
    """Root document: schema version, global configuration and tasks.

    ``tasks`` keeps declaration order; the run controller iterates it as is.
    """

    schema_version: str = Field(alias="schemaVersion")
    metadata: dict[str, Any] = Field(default_factory=dict)
    global_configuration: GlobalConfiguration = Field(
        default_factory=GlobalConfiguration, alias="globalConfiguration"
    )
    tasks: dict[str, TaskSpec]

    @property
    def task_ids(self) -> list[str]:
        return list(self.tasks)
