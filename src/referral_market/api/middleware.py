from __future__ import annotations

import re
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.routing import Route
from starlette.types import ASGIApp

from referral_market.core.constants import REQUEST_ID_HEADER, USER_ID_HEADER
from referral_market.core.logging import bind_request_context, clear_request_context

Logger = structlog.stdlib.BoundLogger

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _incoming_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_PATTERN.fullmatch(value):
        return value
    return str(uuid.uuid4())


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    if isinstance(route, Route):
        return route.path
    return request.url.path


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id and the caller's identity to the logging context.

    A well-formed ``X-Request-ID`` from the caller is reused, anything else is
    replaced with a fresh UUID. The id is echoed back on the response.
    """

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = _incoming_request_id(request.headers.get(self._header_name))
        identity: dict[str, str] = {}
        user_id = request.headers.get(USER_ID_HEADER)
        if user_id:
            identity["user_id"] = user_id[:64]
        bind_request_context(request_id, **identity)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers[self._header_name] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One structured line per request, keyed by the matched route template."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._logger: Logger = structlog.get_logger("referral_market.request")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._logger.exception(
                "request_failed",
                method=request.method,
                route=_route_template(request),
                duration_ms=round((time.perf_counter() - start) * 1000, 3),
            )
            raise

        log = self._logger.warning if response.status_code >= 500 else self._logger.info
        log(
            "request_completed",
            method=request.method,
            route=_route_template(request),
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        return response
