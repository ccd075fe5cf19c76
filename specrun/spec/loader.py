"""Specification loader -- parse, validate, substitute, build.

Two serialisations are accepted and produce the same model: JSON (strict)
and YAML (friendlier for hand-editing).  The loader works in four stages:

1. Parse the raw text into a plain mapping.
2. Check the required shape, collecting every problem found.
3. Substitute ``${NAME}`` environment placeholders in string values.
4. Build the immutable :class:`Specification`.

Any failure is fatal to the run: :class:`SpecParseError` for syntax,
:class:`SpecValidationError` for shape.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from specrun.spec.models import Specification
from specrun.utils.exceptions import SpecParseError, SpecValidationError
from specrun.utils.logging import get_logger

logger = get_logger("spec.loader")

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

_FORMAT_BY_SUFFIX: dict[str, str] = {
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
}

_PHASES = ("prerequisites", "steps", "cleanup")


class SpecificationLoader:
    """Load :class:`Specification` objects from files or raw documents.

    Parameters
    ----------
    environ:
        Variables available to ``${NAME}`` placeholders.  Defaults to
        ``os.environ``.
    """

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self.environ = dict(os.environ if environ is None else environ)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, path: str | Path, fmt: str | None = None) -> Specification:
        """Read and load the specification stored at *path*.

        *fmt* (``"json"`` or ``"yaml"``) overrides detection by file suffix.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SpecParseError(str(path), str(exc)) from exc

        fmt = fmt or _FORMAT_BY_SUFFIX.get(path.suffix.lower())
        return self.loads(text, fmt=fmt, source=str(path), base_dir=path.resolve().parent)

    def loads(
        self,
        text: str,
        fmt: str | None = None,
        source: str = "<string>",
        base_dir: str | Path | None = None,
    ) -> Specification:
        """Load a specification from raw *text*."""
        document = self._parse(text, fmt, source)
        return self.from_document(document, source=source, base_dir=base_dir)

    def from_document(
        self,
        document: Any,
        source: str = "<document>",
        base_dir: str | Path | None = None,
    ) -> Specification:
        """Validate and build a specification from an already-parsed mapping."""
        errors = self._check_shape(document)
        if errors:
            logger.error("spec_invalid", source=source, errors=errors)
            raise SpecValidationError(errors)

        base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        document = self._substitute(document, self._variables(base_dir))
        document = self._resolve_workspace(document, base_dir)

        try:
            spec = Specification.model_validate(document)
        except ValidationError as exc:
            messages = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]
            logger.error("spec_invalid", source=source, errors=messages)
            raise SpecValidationError(messages) from exc

        logger.info(
            "spec_loaded",
            source=source,
            schema_version=spec.schema_version,
            tasks=spec.task_ids,
        )
        return spec

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(text: str, fmt: str | None, source: str) -> Any:
        fmt = (fmt or "").lower().strip()
        if fmt == "yml":
            fmt = "yaml"

        if fmt == "json":
            try:
                return json.loads(text)
            except json.JSONDecodeError as exc:
                raise SpecParseError(source, str(exc)) from exc

        if fmt == "yaml":
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise SpecParseError(source, str(exc)) from exc

        if fmt:
            raise SpecParseError(source, f"Unsupported format: {fmt}")

        # No hint: JSON first, then YAML (a superset of JSON).
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise SpecParseError(source, str(exc)) from exc

    # ------------------------------------------------------------------
    # Shape validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_shape(document: Any) -> list[str]:
        """Return every required-shape problem in *document* (empty if valid)."""
        if not isinstance(document, dict):
            return ["Specification root must be a mapping"]

        errors: list[str] = []

        if document.get("schemaVersion") in (None, ""):
            errors.append("Missing schemaVersion")

        global_config = document.get("globalConfiguration", {})
        if global_config is not None and not isinstance(global_config, dict):
            errors.append("globalConfiguration must be a mapping")
        elif global_config:
            for key in ("timeout", "runTimeoutMs"):
                value = global_config.get(key)
                if isinstance(value, (int, float)) and value < 0:
                    errors.append(f"globalConfiguration.{key} must not be negative")

        tasks = document.get("tasks")
        if not isinstance(tasks, dict):
            errors.append("tasks must be a mapping of task id to task")
            return errors
        if not tasks:
            errors.append("No tasks defined in specification")
            return errors

        for task_id, task in tasks.items():
            if not isinstance(task, dict):
                errors.append(f"Task {task_id} must be a mapping")
                continue

            phases = task.get("testExecution") if isinstance(task.get("testExecution"), dict) else task
            if not phases.get("steps"):
                errors.append(f"Task {task_id} has no steps")

            seen: set[str] = set()
            for phase in _PHASES:
                actions = phases.get(phase) or []
                if not isinstance(actions, list):
                    errors.append(f"Task {task_id} {phase} must be a list")
                    continue
                for index, action in enumerate(actions):
                    where = f"Task {task_id} {phase}[{index}]"
                    if not isinstance(action, dict):
                        errors.append(f"{where} must be a mapping")
                        continue
                    action_id = action.get("actionId")
                    if not action_id:
                        errors.append(f"{where} is missing actionId")
                    elif action_id in seen:
                        errors.append(f"Task {task_id} has duplicate action id {action_id}")
                    else:
                        seen.add(action_id)
                    if not action.get("type"):
                        errors.append(f"{where} is missing type")
                    timeout = action.get("timeoutMs", action.get("timeout"))
                    if isinstance(timeout, (int, float)) and timeout < 0:
                        errors.append(f"{where} timeout must not be negative")

        return errors

    # ------------------------------------------------------------------
    # Substitution
    # ------------------------------------------------------------------

    def _variables(self, base_dir: Path) -> dict[str, str]:
        return {"WORKSPACE_ROOT": str(base_dir), **self.environ}

    @classmethod
    def _substitute(cls, value: Any, variables: Mapping[str, str]) -> Any:
        """Recursively replace ``${NAME}`` in string values.

        Unknown names are left untouched so they remain visible in evidence.
        """
        if isinstance(value, str):
            return _PLACEHOLDER.sub(
                lambda m: variables.get(m.group(1), m.group(0)),
                value,
            )
        if isinstance(value, list):
            return [cls._substitute(item, variables) for item in value]
        if isinstance(value, dict):
            return {key: cls._substitute(item, variables) for key, item in value.items()}
        return value

    @staticmethod
    def _resolve_workspace(document: dict, base_dir: Path) -> dict:
        """Anchor a relative ``workspaceRoot`` to the specification's directory."""
        global_config = dict(document.get("globalConfiguration") or {})
        root = Path(global_config.get("workspaceRoot") or ".")
        if not root.is_absolute():
            root = base_dir / root
        global_config["workspaceRoot"] = str(root.resolve())
        return {**document, "globalConfiguration": global_config}
