"""File validation executor -- existence, size, content and JSON checks."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from specrun.engine.context import ContextView
from specrun.models import ExecutorOutput, utcnow
from specrun.plugins.base import BaseExecutor
from specrun.utils.exceptions import ActionExecutionError


class ValidationType(str, Enum):
    EXISTS = "EXISTS"
    NOT_EXISTS = "NOT_EXISTS"
    CONTENT_MATCH = "CONTENT_MATCH"
    CONTENT_PATTERN = "CONTENT_PATTERN"
    JSON_VALID = "JSON_VALID"


class FileParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    file_path: str
    validation_type: ValidationType = ValidationType.EXISTS
    expected_content: str | None = None
    content_pattern: str | None = None
    min_size: int | None = None
    max_size: int | None = None
    encoding: str = "utf-8"


class FileValidationExecutor(BaseExecutor):
    name = "file-validation"
    description = "Validates file existence, size and content"
    action_types = ("FILE_VALIDATION",)

    async def execute(self, params: dict, context: ContextView) -> ExecutorOutput:
        p = self.parse_params(FileParams, params)
        path = Path(p.file_path)
        if not path.is_absolute():
            path = context.workspace_root / path

        data: dict = {
            "filePath": str(path),
            "validationType": p.validation_type.value,
            "exists": path.exists(),
            "timestamp": utcnow().isoformat(),
        }

        if not data["exists"]:
            if p.validation_type == ValidationType.NOT_EXISTS:
                return ExecutorOutput(data=data)
            raise ActionExecutionError(f"File not found: {path}", data=data)
        if p.validation_type == ValidationType.NOT_EXISTS:
            raise ActionExecutionError(f"File exists but should not: {path}", data=data)

        stat = path.stat()
        data.update(
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
            isDirectory=path.is_dir(),
        )

        if p.min_size is not None and stat.st_size < p.min_size:
            raise ActionExecutionError(
                f"File size {stat.st_size} bytes is less than minimum {p.min_size} bytes", data=data
            )
        if p.max_size is not None and stat.st_size > p.max_size:
            raise ActionExecutionError(
                f"File size {stat.st_size} bytes exceeds maximum {p.max_size} bytes", data=data
            )

        if p.validation_type == ValidationType.EXISTS:
            return ExecutorOutput(data=data)

        if path.is_dir():
            raise ActionExecutionError("Cannot validate content of a directory", data=data)

        async with aiofiles.open(path, mode="r", encoding=p.encoding) as fh:
            content = await fh.read()
        data["contentLength"] = len(content)

        if p.validation_type == ValidationType.CONTENT_MATCH:
            data["contentMatches"] = p.expected_content is not None and p.expected_content in content
            if not data["contentMatches"]:
                raise ActionExecutionError("File content does not match expected string", data=data)

        elif p.validation_type == ValidationType.CONTENT_PATTERN:
            try:
                data["patternMatches"] = bool(p.content_pattern and re.search(p.content_pattern, content))
            except re.error as exc:
                raise ActionExecutionError(f"Invalid content pattern: {exc}", data=data) from exc
            if not data["patternMatches"]:
                raise ActionExecutionError(
                    f"File content does not match pattern: {p.content_pattern}", data=data
                )

        elif p.validation_type == ValidationType.JSON_VALID:
            try:
                data["json"] = json.loads(content)
            except json.JSONDecodeError as exc:
                data["isValidJSON"] = False
                raise ActionExecutionError(f"Invalid JSON: {exc}", data=data) from exc
            data["isValidJSON"] = True

        return ExecutorOutput(data=data)
