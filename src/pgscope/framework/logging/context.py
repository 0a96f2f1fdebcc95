"""
Request-scoped diagnostic context using contextvars.

Each in-flight request owns one immutable ``RequestContext`` stored in a
``ContextVar``. A ContextVar is copied into every thread-pool job and every
asyncio task created while it is set, so concurrent requests never see each
other's fields and no global map needs locking.

Lifecycle:
    ctx = propagator.begin(headers, query_params, path, method, principal, remote_addr)
    ... every dispatcher.emit() in this task/thread sees ctx ...
    propagator.end()          # always, including error exits

or, equivalently::

    with propagator.request_scope(headers, {}, "/api/instance/prod/stats", "GET"):
        ...

Optional fields are derived by ordered resolver chains; a resolver that
raises is treated as "no value" and the next one is tried. ``method`` and
``path`` are always set.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

from pgscope.core.errors import ContextExtractionError

logger = structlog.get_logger(__name__)

CORRELATION_ID = "correlationId"
USER = "user"
INSTANCE = "instance"
CLIENT_IP = "clientIp"
METHOD = "method"
PATH = "path"
REQUEST_START = "requestStartTime"
DURATION_MS = "duration_ms"

ANONYMOUS = "anonymous"
DEFAULT_INSTANCE = "default"
UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """Diagnostic fields of one request. Replaced, never mutated."""

    method: str
    path: str
    correlation_id: str | None = None
    user: str | None = None
    instance: str | None = None
    client_ip: str | None = None
    request_start_time: float = field(default_factory=time.monotonic)
    duration_ms: int | None = None
    extra: Mapping[str, str] = field(default_factory=dict)
    log_correlation_id: bool = True

    def to_dict(self) -> dict[str, Any]:
        """All set fields, keyed by their log field names, in a stable order."""
        fields: dict[str, Any] = {}
        for key, value in (
            (CORRELATION_ID, self.correlation_id),
            (USER, self.user),
            (INSTANCE, self.instance),
            (CLIENT_IP, self.client_ip),
            (METHOD, self.method),
            (PATH, self.path),
            (REQUEST_START, self.request_start_time),
            (DURATION_MS, self.duration_ms),
        ):
            if value is not None:
                fields[key] = value
        fields.update(self.extra)
        return fields

    def log_fields(self) -> dict[str, Any]:
        """Fields merged into every emitted event."""
        fields: dict[str, Any] = {}
        for key, value in (
            (CORRELATION_ID, self.correlation_id if self.log_correlation_id else None),
            (USER, self.user),
            (INSTANCE, self.instance),
            (DURATION_MS, self.duration_ms),
        ):
            if value is not None:
                fields[key] = value
        fields.update(self.extra)
        return fields

    def elapsed_ms(self, now: float | None = None) -> int:
        return int(((now if now is not None else time.monotonic()) - self.request_start_time) * 1000)


# Context variable for the current request
_request_context: ContextVar[RequestContext | None] = ContextVar("pgscope_request_context", default=None)


def current_context() -> RequestContext | None:
    """The RequestContext of the running request, or None outside one."""
    return _request_context.get()


def current_correlation_id() -> str | None:
    ctx = _request_context.get()
    return ctx.correlation_id if ctx else None


def set_field(key: str, value: str) -> RequestContext | None:
    """Attach an ad-hoc field to the current request. Ignored outside a request."""
    ctx = _request_context.get()
    if ctx is None or key is None or value is None:
        return ctx
    updated = replace(ctx, extra={**ctx.extra, key: str(value)})
    _request_context.set(updated)
    return updated


def add_context_processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Structlog processor that adds request context to every log entry.

    Existing keys win over context keys.
    """
    ctx = _request_context.get()
    if ctx is not None:
        for key, value in ctx.log_fields().items():
            event_dict.setdefault(key, value)
    return event_dict


# =============================================================================
# Resolvers
# =============================================================================


@dataclass(frozen=True)
class RequestInfo:
    """Raw request attributes the resolvers read from."""

    headers: Mapping[str, str]
    query_params: Mapping[str, str]
    path: str
    method: str
    principal: Any = None
    remote_addr: str | None = None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


Resolver = Callable[[RequestInfo], str | None]


def _non_blank(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def instance_from_query(info: RequestInfo) -> str | None:
    return _non_blank(info.query_params.get("instance"))


def instance_from_path(info: RequestInfo) -> str | None:
    """``/api/instance/{name}/...`` → ``name``."""
    segments = [s for s in info.path.split("/") if s]
    if "api" not in segments or "instance" not in segments:
        return None
    idx = segments.index("instance")
    if idx < segments.index("api") or idx + 1 >= len(segments):
        return None
    return _non_blank(segments[idx + 1])


def ip_from_forwarded_for(info: RequestInfo) -> str | None:
    forwarded = info.header("X-Forwarded-For")
    if not forwarded:
        return None
    return _non_blank(forwarded.split(",")[0])


def ip_from_real_ip(info: RequestInfo) -> str | None:
    return _non_blank(info.header("X-Real-IP"))


def ip_from_remote_addr(info: RequestInfo) -> str | None:
    return _non_blank(info.remote_addr)


def user_from_principal(info: RequestInfo) -> str | None:
    principal = info.principal
    if callable(principal):
        principal = principal()
    if principal is None or not getattr(principal, "is_authenticated", True):
        return None
    if isinstance(principal, str):
        return _non_blank(principal)
    # Starlette BaseUser exposes display_name/username; other principals a name
    for attr in ("display_name", "username", "name"):
        name = _non_blank(getattr(principal, attr, None))
        if name is not None:
            return name
    return None


def _constant(value: str) -> Resolver:
    return lambda info: value


INSTANCE_RESOLVERS: tuple[Resolver, ...] = (
    instance_from_query,
    instance_from_path,
    _constant(DEFAULT_INSTANCE),
)

CLIENT_IP_RESOLVERS: tuple[Resolver, ...] = (
    ip_from_forwarded_for,
    ip_from_real_ip,
    ip_from_remote_addr,
    _constant(UNKNOWN_CLIENT),
)

USER_RESOLVERS: tuple[Resolver, ...] = (
    user_from_principal,
    _constant(ANONYMOUS),
)


def resolve_first(resolvers: Sequence[Resolver], info: RequestInfo, field_name: str = "") -> str | None:
    """First non-empty value from ``resolvers``; a failing resolver is skipped."""
    for resolver in resolvers:
        try:
            value = resolver(info)
        except Exception as exc:
            logger.debug("context_field_unavailable", **ContextExtractionError(field_name, exc).to_dict())
            continue
        if value:
            return value
    return None


# =============================================================================
# Propagator
# =============================================================================


class ContextPropagator:
    """Creates and tears down the RequestContext at request boundaries."""

    def __init__(
        self,
        *,
        correlation_id_header: str = "X-Correlation-ID",
        include_correlation_id: bool = True,
        include_user: bool = True,
        include_instance: bool = True,
        include_client_ip: bool = True,
        latency_logging_enabled: bool = True,
        slow_request_threshold_ms: int = 5000,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.correlation_id_header = correlation_id_header
        self.include_correlation_id = include_correlation_id
        self.include_user = include_user
        self.include_instance = include_instance
        self.include_client_ip = include_client_ip
        self.latency_logging_enabled = latency_logging_enabled
        self.slow_request_threshold_ms = slow_request_threshold_ms
        self._id_factory = id_factory
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> ContextPropagator:
        return cls(
            correlation_id_header=settings.correlation_id_header,
            include_correlation_id=settings.correlation_id_enabled,
            include_user=settings.include_user,
            include_instance=settings.include_instance,
            include_client_ip=settings.include_client_ip,
            latency_logging_enabled=settings.latency_logging_enabled,
            slow_request_threshold_ms=settings.slow_request_threshold_ms,
            **kwargs,
        )

    def begin(
        self,
        headers: Mapping[str, str] | None = None,
        query_params: Mapping[str, str] | None = None,
        path: str = "",
        method: str = "",
        principal: Any = None,
        remote_addr: str | None = None,
    ) -> RequestContext:
        """Derive the request's fields and install them as the current context."""
        start = self._clock()
        ctx = RequestContext(method=method or "", path=path or "", request_start_time=start)
        try:
            info = RequestInfo(
                headers={str(k).lower(): v for k, v in (headers or {}).items()},
                query_params=dict(query_params or {}),
                path=path or "",
                method=method or "",
                principal=principal,
                remote_addr=remote_addr,
            )
            ctx = replace(
                ctx,
                correlation_id=self._correlation_id(info),
                log_correlation_id=self.include_correlation_id,
                user=resolve_first(USER_RESOLVERS, info, USER) if self.include_user else None,
                instance=resolve_first(INSTANCE_RESOLVERS, info, INSTANCE) if self.include_instance else None,
                client_ip=resolve_first(CLIENT_IP_RESOLVERS, info, CLIENT_IP) if self.include_client_ip else None,
            )
        except Exception as exc:
            # method and path are unconditional; everything else is best-effort
            logger.debug("request_context_partial", error=str(exc))
        _request_context.set(ctx)
        return ctx

    def current(self) -> RequestContext | None:
        return _request_context.get()

    def end(self, on_complete: Callable[[RequestContext], None] | None = None) -> RequestContext | None:
        """Tag slow requests, run ``on_complete``, then clear the context.

        The context is cleared even if ``on_complete`` raises.
        """
        ctx = _request_context.get()
        try:
            if ctx is None:
                return None
            elapsed = ctx.elapsed_ms(self._clock())
            if self.latency_logging_enabled and elapsed > self.slow_request_threshold_ms:
                ctx = replace(ctx, duration_ms=elapsed)
                _request_context.set(ctx)
            if on_complete is not None:
                on_complete(ctx)
            return ctx
        finally:
            _request_context.set(None)

    @contextmanager
    def request_scope(
        self,
        headers: Mapping[str, str] | None = None,
        query_params: Mapping[str, str] | None = None,
        path: str = "",
        method: str = "",
        principal: Any = None,
        remote_addr: str | None = None,
        on_complete: Callable[[RequestContext], None] | None = None,
    ) -> Iterator[RequestContext]:
        """``begin`` on entry and ``end`` on every exit path."""
        ctx = self.begin(headers, query_params, path, method, principal, remote_addr)
        try:
            yield ctx
        finally:
            self.end(on_complete)

    def _correlation_id(self, info: RequestInfo) -> str:
        """Inbound header value if non-blank, else a fresh UUID."""
        return _non_blank(info.header(self.correlation_id_header)) or self._id_factory()


__all__ = [
    "CORRELATION_ID",
    "USER",
    "INSTANCE",
    "CLIENT_IP",
    "METHOD",
    "PATH",
    "REQUEST_START",
    "DURATION_MS",
    "RequestContext",
    "RequestInfo",
    "ContextPropagator",
    "INSTANCE_RESOLVERS",
    "CLIENT_IP_RESOLVERS",
    "USER_RESOLVERS",
    "resolve_first",
    "current_context",
    "current_correlation_id",
    "set_field",
    "add_context_processor",
]
