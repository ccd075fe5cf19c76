from fastapi import APIRouter

from specrun.api.v1.endpoints import health, plugins, runs

v1_router = APIRouter()
v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(plugins.router, tags=["plugins"])
v1_router.include_router(runs.router, tags=["runs"])
