"""Global error-handling middleware.

Catches engine exceptions and translates them into structured JSON error
responses with appropriate HTTP status codes.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from specrun.utils.exceptions import (
    EngineStateError,
    EvidenceNotFoundError,
    EvidenceWriteError,
    PluginNotFoundError,
    PluginRegistryError,
    SpecError,
    SpecRunError,
)
from specrun.utils.logging import get_logger

logger = get_logger(__name__)

# Map exception types to HTTP status codes; subclasses inherit their
# nearest mapped ancestor's code.
_STATUS_MAP: dict[type, int] = {
    SpecError: 422,
    PluginNotFoundError: 404,
    EvidenceNotFoundError: 404,
    EngineStateError: 409,
    PluginRegistryError: 500,
    EvidenceWriteError: 500,
}


def status_for(exc: Exception) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_MAP:
            return _STATUS_MAP[cls]
    return 500


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that wraps every request in a try/except and converts
    known exceptions to JSON error responses.

    Unknown exceptions are logged and returned as HTTP 500.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)

        except SpecRunError as exc:
            status_code = status_for(exc)
            logger.warning(
                "handled_error",
                error_type=type(exc).__name__,
                status_code=status_code,
                detail=str(exc),
                path=request.url.path,
            )
            return JSONResponse(
                status_code=status_code,
                content={"error": type(exc).__name__, "detail": str(exc)},
            )

        except Exception as exc:
            logger.error(
                "unhandled_error",
                error_type=type(exc).__name__,
                detail=str(exc),
                path=request.url.path,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "detail": "An unexpected error occurred.  Please try again later.",
                },
            )
