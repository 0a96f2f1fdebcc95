"""Request-context middleware - one RequestContext per request.

Establishes the correlation id, user, instance and client address before
the endpoint runs, echoes the correlation id back in the response header,
and always tears the context down, logging a WARN under ``REQUEST`` when
the request exceeded the slow-request threshold.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from pgscope.framework.logging.context import ContextPropagator, RequestContext
from pgscope.framework.logging.dispatcher import REQUEST, StructuredLogDispatcher


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Install the request's diagnostic context for the whole request/response cycle."""

    def __init__(
        self,
        app: ASGIApp,
        propagator: ContextPropagator,
        dispatcher: StructuredLogDispatcher,
    ) -> None:
        super().__init__(app)
        self.propagator = propagator
        self.dispatcher = dispatcher

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        ctx = self.propagator.begin(
            headers=request.headers,
            query_params=request.query_params,
            path=request.url.path,
            method=request.method,
            principal=request.scope.get("user"),
            remote_addr=request.client.host if request.client else None,
        )
        request.state.correlation_id = ctx.correlation_id

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            if ctx.correlation_id:
                response.headers[self.propagator.correlation_id_header] = ctx.correlation_id
            return response
        finally:
            self.propagator.end(lambda done: self._log_slow_request(done, status_code))

    def _log_slow_request(self, ctx: RequestContext, status_code: int) -> None:
        if ctx.duration_ms is None:
            return
        self.dispatcher.warn(
            REQUEST,
            f"Slow request: {ctx.method} {ctx.path} took {ctx.duration_ms}ms "
            f"(threshold: {self.propagator.slow_request_threshold_ms}ms)",
            {"method": ctx.method, "path": ctx.path, "status_code": status_code},
        )
