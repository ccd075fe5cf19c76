"""Response schema for plugin introspection."""

from pydantic import BaseModel


class LoadErrorInfo(BaseModel):
    path: str
    detail: str


class PluginsResponse(BaseModel):
    """Registered plugin names per capability plus the keys they serve."""

    plugins: dict[str, list[str]]
    action_types: list[str]
    condition_types: list[str]
    load_errors: list[LoadErrorInfo] = []
    total: int
