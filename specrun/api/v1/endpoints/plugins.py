"""Plugin introspection endpoint -- lists every registered plugin."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from specrun.api.v1.schemas.plugin import LoadErrorInfo, PluginsResponse
from specrun.dependencies import get_plugin_registry
from specrun.plugins import Capability, PluginRegistry

router = APIRouter()


@router.get(
    "/plugins",
    response_model=PluginsResponse,
    summary="List registered plugins",
    description="Return plugin names per capability, the action and condition types they serve, "
    "and any plugin that failed to load.",
)
async def list_plugins(
    registry: PluginRegistry = Depends(get_plugin_registry),
) -> PluginsResponse:
    return PluginsResponse(
        plugins=registry.list_all(),
        action_types=registry.keys(Capability.EXECUTOR),
        condition_types=registry.keys(Capability.VALIDATOR),
        load_errors=[LoadErrorInfo(path=e.path, detail=e.detail) for e in registry.load_errors],
        total=len(registry),
    )
