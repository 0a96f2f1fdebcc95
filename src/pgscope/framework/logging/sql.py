"""
SQL call interception.

Wraps data-access callables and reports each call through the dispatcher:

    interceptor = SqlCallInterceptor(dispatcher)
    rows = interceptor.around(repo.fetch, "SELECT * FROM pg_stat_activity")

    @logged_sql(interceptor)
    def fetch_locks(conn, sql): ...

The SQL text is found heuristically: the first string argument that, trimmed
and upper-cased, starts with a known statement verb. This is a prefix check,
not a parser; wrapped or parameterized statements may be missed.

Row counts: ``None`` → 0, ints → themselves, sequences → their length,
DB-API cursors → ``rowcount`` when known, anything else → ``-1`` (unknown).
"""

from __future__ import annotations

import functools
import inspect
import time
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from pgscope.framework.logging.dispatcher import DATABASE, SQL, StructuredLogDispatcher
from pgscope.framework.logging.levels import Level

F = TypeVar("F", bound=Callable[..., Any])

SQL_VERBS = ("SELECT", "INSERT", "UPDATE", "DELETE", "WITH", "CREATE", "ALTER", "DROP", "EXPLAIN")
ROW_COUNT_UNKNOWN = -1


def looks_like_sql(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return value.strip().upper().startswith(SQL_VERBS)


def find_sql(values: Iterable[Any]) -> str | None:
    """First argument that looks like a SQL statement."""
    for value in values:
        if looks_like_sql(value):
            return value
    return None


def extract_row_count(result: Any) -> int:
    if result is None:
        return 0
    if isinstance(result, bool):
        return ROW_COUNT_UNKNOWN
    if isinstance(result, int):
        return result
    if isinstance(result, (list, tuple, set, frozenset)):
        return len(result)
    rowcount = getattr(result, "rowcount", None)
    if isinstance(rowcount, int) and not isinstance(rowcount, bool) and rowcount >= 0:
        return rowcount
    return ROW_COUNT_UNKNOWN


def _call_name(call: Callable[..., Any]) -> str:
    return getattr(call, "__qualname__", None) or getattr(call, "__name__", None) or repr(call)


class SqlCallInterceptor:
    """Times data-access calls and logs them as queries or generic DB operations."""

    def __init__(
        self,
        dispatcher: StructuredLogDispatcher,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.dispatcher = dispatcher
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.dispatcher.sql_enabled

    def around(self, call: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Invoke ``call`` and log it. Exceptions are logged then re-raised unchanged."""
        if not self.enabled:
            return call(*args, **kwargs)

        sql = find_sql([*args, *kwargs.values()])
        start = self._clock()
        try:
            result = call(*args, **kwargs)
        except Exception as exc:
            self._log_failure(call, sql, self._elapsed_ms(start), exc)
            raise
        self._log_success(call, sql, self._elapsed_ms(start), result)
        return result

    async def around_async(self, call: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """``around`` for coroutine functions."""
        if not self.enabled:
            return await call(*args, **kwargs)

        sql = find_sql([*args, *kwargs.values()])
        start = self._clock()
        try:
            result = await call(*args, **kwargs)
        except Exception as exc:
            self._log_failure(call, sql, self._elapsed_ms(start), exc)
            raise
        self._log_success(call, sql, self._elapsed_ms(start), result)
        return result

    def wrap(self, func: F) -> F:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                return await self.around_async(func, *args, **kwargs)

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return self.around(func, *args, **kwargs)

        return wrapper  # type: ignore

    # ── Logging ─────────────────────────────────────────────────────

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000

    def _log_success(self, call: Callable[..., Any], sql: str | None, duration_ms: float, result: Any) -> None:
        if sql is not None:
            self.dispatcher.log_query(sql, duration_ms, extract_row_count(result))
            return

        name = _call_name(call)
        level = Level.DEBUG
        if duration_ms > self.dispatcher.sql_slow_threshold_ms:
            level = Level.WARN
        self.dispatcher.emit(
            level,
            DATABASE,
            f"Database operation {name} completed in {duration_ms:.0f}ms",
            {"method": name, "duration_ms": duration_ms},
        )

    def _log_failure(self, call: Callable[..., Any], sql: str | None, duration_ms: float, exc: Exception) -> None:
        name = _call_name(call)
        metadata: dict[str, Any] = {
            "method": name,
            "duration_ms": duration_ms,
            "row_count": ROW_COUNT_UNKNOWN,
        }
        if sql is not None:
            metadata["query"] = self.dispatcher.redact_query(sql)
        self.dispatcher.warn(
            SQL if sql is not None else DATABASE,
            f"Database operation {name} failed after {duration_ms:.0f}ms",
            metadata,
            error=exc,
        )


def logged_sql(interceptor: SqlCallInterceptor) -> Callable[[F], F]:
    """
    Decorator that routes every call through ``interceptor``.

    Usage:
        @logged_sql(interceptor)
        def fetch_activity(conn, sql="SELECT * FROM pg_stat_activity"):
            ...

    Note that defaults are not inspected; pass the SQL text explicitly.
    """
    return interceptor.wrap


__all__ = [
    "SQL_VERBS",
    "ROW_COUNT_UNKNOWN",
    "looks_like_sql",
    "find_sql",
    "extract_row_count",
    "SqlCallInterceptor",
    "logged_sql",
]
