"""FastAPI dependency functions for injection into endpoint handlers.

The plugin registry is expensive to build (it imports every plugin file),
so it is created once during the app lifespan and stored on ``app.state``;
the dependencies here simply look it up.
"""

from __future__ import annotations

import asyncio

from fastapi import Request

from specrun.config import Settings, settings
from specrun.plugins import PluginRegistry


def get_plugin_registry(request: Request) -> PluginRegistry:
    """Return the plugin registry stored on ``app.state``."""
    return request.app.state.plugin_registry


def get_settings() -> Settings:
    return settings


def get_run_lock(request: Request) -> asyncio.Lock:
    """Return the lock that serialises runs.

    Runs share the registry and its background process table, and a run's
    cleanup stops every tracked process, so only one run may be active.
    """
    return request.app.state.run_lock
