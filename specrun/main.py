import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from specrun import __version__
from specrun.api.v1.middleware.error_handler import ErrorHandlerMiddleware
from specrun.api.v1.middleware.logging_middleware import LoggingMiddleware
from specrun.api.v1.router import v1_router
from specrun.config import settings
from specrun.plugins import PluginRegistry
from specrun.utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(debug=settings.debug, json_logs=settings.json_logs)
    logger = get_logger("startup")
    logger.info("Starting specification runner", version=__version__)

    registry = PluginRegistry()
    registry.discover(settings.plugin_dirs)
    app.state.plugin_registry = registry
    logger.info("Plugin registry initialized", plugin_count=len(registry))

    yield

    await registry.cleanup_all()
    logger.info("Shutting down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="specrun",
        description="Specification-driven test execution engine",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.run_lock = asyncio.Lock()

    # The last middleware added wraps all the others.
    # Request logger (innermost, times the handler only)
    app.add_middleware(LoggingMiddleware)
    # Error handler (turns engine exceptions into JSON responses)
    app.add_middleware(ErrorHandlerMiddleware)
    # CORS (outermost, answers preflight before anything else)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()
