"""
Timing utilities for operation logging.

Provides reusable helpers for logging operation durations:
- Context manager: with dispatcher.start_timing("DATABASE", "refresh"):
- Manual: handle = dispatcher.start_timing(...); ...; handle.close()
- Decorator: @log_timing(dispatcher, "DATABASE")

Closing a handle reports through ``StructuredLogDispatcher.log_operation``
exactly once: INFO normally, WARN when slow, ERROR when marked failed.
Leaving the ``with`` block on an exception marks the handle failed.
"""

from __future__ import annotations

import functools
import inspect
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from pgscope.framework.logging.dispatcher import LogEvent, StructuredLogDispatcher

# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., Any])


class TimingHandle:
    """Measures one operation; reports on close."""

    def __init__(
        self,
        dispatcher: StructuredLogDispatcher,
        category: str,
        operation: str,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.dispatcher = dispatcher
        self.category = category
        self.operation = operation
        self._clock = clock
        self.started_at = clock()
        self.ended_at: float | None = None
        self.success = True
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def elapsed_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else self._clock()
        return (end - self.started_at) * 1000

    def mark_failed(self) -> TimingHandle:
        self.success = False
        return self

    def close(self) -> LogEvent | None:
        """Stop the clock and log. Later calls do nothing."""
        with self._lock:
            if self._closed:
                return None
            self._closed = True
            self.ended_at = self._clock()
        return self.dispatcher.log_operation(
            self.category, self.operation, self.elapsed_ms, self.success
        )

    def __enter__(self) -> TimingHandle:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.mark_failed()
        self.close()


def log_timing(
    dispatcher: StructuredLogDispatcher,
    category: str,
    operation: str | None = None,
) -> Callable[[F], F]:
    """
    Decorator that logs function execution time.

    Usage:
        @log_timing(dispatcher, "DATABASE")
        def refresh_stats(instance):
            ...

    Args:
        dispatcher: Dispatcher receiving the operation event
        category: Event category
        operation: Operation name (defaults to function name)
    """

    def decorator(func: F) -> F:
        name = operation or func.__name__

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with dispatcher.start_timing(category, name):
                    return await func(*args, **kwargs)

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with dispatcher.start_timing(category, name):
                return func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


__all__ = ["TimingHandle", "log_timing"]
