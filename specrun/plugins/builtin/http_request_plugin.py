"""HTTP request executor backed by :mod:`httpx`."""

from __future__ import annotations

import time
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from specrun.engine.context import ContextView
from specrun.models import ExecutorOutput, utcnow
from specrun.plugins.base import BaseExecutor
from specrun.utils.exceptions import ActionExecutionError
from specrun.utils.logging import get_logger

logger = get_logger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class RequestParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    url: str
    method: str = "GET"
    headers: dict[str, str] = {}
    body: Any = None
    params: dict[str, Any] = {}
    expected_status: list[int] = Field(default_factory=lambda: [200, 201])
    timeout: float = Field(default=30_000, description="Request timeout in milliseconds")
    follow_redirects: bool = True


class HttpRequestExecutor(BaseExecutor):
    """Send one HTTP request and check the response status.

    ``transport`` is handed to :class:`httpx.AsyncClient`; tests pass an
    :class:`httpx.MockTransport`.
    """

    name = "http-request"
    description = "Executes HTTP requests for API testing"
    action_types = ("HTTP_REQUEST",)

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.transport = transport

    async def execute(self, params: dict, context: ContextView) -> ExecutorOutput:
        p = self.parse_params(RequestParams, params)
        method = p.method.upper()

        request_kwargs: dict[str, Any] = {"headers": p.headers, "params": p.params or None}
        if p.body is not None and method in _BODY_METHODS:
            if isinstance(p.body, (str, bytes)):
                request_kwargs["content"] = p.body
            else:
                request_kwargs["json"] = p.body

        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=p.timeout / 1000,
            follow_redirects=p.follow_redirects,
        ) as client:
            start = time.perf_counter()
            try:
                response = await client.request(method, p.url, **request_kwargs)
            except httpx.TimeoutException as exc:
                raise ActionExecutionError(
                    f"HTTP request timeout after {p.timeout:g}ms",
                    data={"url": p.url, "method": method},
                ) from exc
            except httpx.HTTPError as exc:
                raise ActionExecutionError(
                    f"HTTP request failed: {type(exc).__name__}: {exc}",
                    data={"url": p.url, "method": method},
                ) from exc
            response_time = round((time.perf_counter() - start) * 1000, 3)

        data = {
            "url": p.url,
            "method": method,
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "body": self._parse_body(response),
            "responseTime": response_time,
            "timestamp": utcnow().isoformat(),
            "expectedStatus": p.expected_status,
        }
        logger.debug("http_response", url=p.url, method=method, status=response.status_code)

        if response.status_code not in p.expected_status:
            expected = ", ".join(str(s) for s in p.expected_status)
            raise ActionExecutionError(
                f"HTTP {response.status_code} {response.reason_phrase}. Expected: {expected}",
                data=data,
            )
        return ExecutorOutput(data=data)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if "application/json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                pass
        return response.text
