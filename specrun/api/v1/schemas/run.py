"""Request/response schemas for run submission and inspection."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from specrun.models import RunSummary


class RunRequest(BaseModel):
    """Run the specification stored at ``specPath`` on the server."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    spec_path: str
    format: str | None = Field(default=None, pattern="^(json|yaml|yml)$")


class RunResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    run_id: str
    success: bool
    summary: RunSummary
    evidence_directory: str
    reports: list[str] = []
