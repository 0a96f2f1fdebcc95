"""
Runtime log-level management.

Levels are held per category (a dotted sink name such as ``pgscope.SQL``).
Each category is in exactly one state:

    Default(level)                 no override; level may be None (inherit)
    Overridden(level, original)    explicit runtime override
    Temporary(level, original, expires_at, timer)
                                   override that reverts on its own

``original`` is recorded by the first override in a chain only, so any
sequence of ``set_level`` / ``set_temporary_level`` calls reverts to the
pre-override baseline. Every state transition for a category happens under
that category's own lock; independent categories never contend.

Usage:
    levels = LevelManager(namespace="pgscope")
    levels.set_temporary_level("pgscope.SQL", "DEBUG", timedelta(minutes=5))
    levels.get_level("pgscope.SQL.slow")   # Level.DEBUG, inherited
    levels.revert("pgscope.SQL")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum, IntEnum
from typing import Any

import structlog

from pgscope.core.errors import InvalidLevelError, InvalidPresetError

logger = structlog.get_logger(__name__)

TRACE_LEVEL_NUM = 5
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")


class Level(IntEnum):
    """Ordered log levels; values match the stdlib ``logging`` numbers."""

    TRACE = TRACE_LEVEL_NUM
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR


_LEVEL_ALIASES: dict[str, Level] = {
    "TRACE": Level.TRACE,
    "FINEST": Level.TRACE,
    "DEBUG": Level.DEBUG,
    "FINER": Level.DEBUG,
    "FINE": Level.DEBUG,
    "INFO": Level.INFO,
    "WARN": Level.WARN,
    "WARNING": Level.WARN,
    "ERROR": Level.ERROR,
    "SEVERE": Level.ERROR,
}


def parse_level(value: str | int | Level | None) -> Level:
    """Parse a level name (or number) into a ``Level``.

    Blank or ``None`` means INFO. Raises ``InvalidLevelError`` otherwise.
    """
    if isinstance(value, Level):
        return value
    if value is None:
        return Level.INFO
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return Level(value)
        except ValueError:
            raise InvalidLevelError(value) from None
    if isinstance(value, str):
        name = value.strip().upper()
        if not name:
            return Level.INFO
        if name in _LEVEL_ALIASES:
            return _LEVEL_ALIASES[name]
    raise InvalidLevelError(value)


class LogPreset(str, Enum):
    """Named level bundles."""

    MINIMAL = "MINIMAL"
    STANDARD = "STANDARD"
    VERBOSE = "VERBOSE"
    DEBUG = "DEBUG"

    @property
    def level(self) -> Level:
        return _PRESET_LEVELS[self]


_PRESET_LEVELS: dict[LogPreset, Level] = {
    LogPreset.MINIMAL: Level.WARN,
    LogPreset.STANDARD: Level.INFO,
    LogPreset.VERBOSE: Level.DEBUG,
    LogPreset.DEBUG: Level.TRACE,
}

PRESET_DESCRIPTIONS: dict[str, str] = {
    "MINIMAL": "Errors and critical warnings only",
    "STANDARD": "Informational messages and above",
    "VERBOSE": "Includes debug information",
    "DEBUG": "All available detail",
}


def parse_preset(value: str | LogPreset) -> LogPreset:
    """Parse a preset name, raising ``InvalidPresetError`` if unknown."""
    if isinstance(value, LogPreset):
        return value
    try:
        return LogPreset(str(value).strip().upper())
    except ValueError:
        raise InvalidPresetError(value, [p.value for p in LogPreset]) from None


# ── Per-category state ──────────────────────────────────────────────


@dataclass(frozen=True)
class Default:
    """No runtime override; ``level`` is the configured baseline or None."""

    level: Level | None = None


@dataclass(frozen=True)
class Overridden:
    level: Level
    original: Level | None


@dataclass(frozen=True)
class Temporary:
    level: Level
    original: Level | None
    expires_at: datetime
    timer: threading.Timer = field(compare=False, repr=False)


CategoryState = Default | Overridden | Temporary


def _original_of(state: CategoryState | None) -> Level | None:
    if isinstance(state, (Overridden, Temporary)):
        return state.original
    if isinstance(state, Default):
        return state.level
    return None


def _to_seconds(duration: timedelta | float | int) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class LevelManager:
    """Category → level store with overrides and scheduled reversion.

    ``get_level`` walks dotted ancestors (``a.b.c`` → ``a.b`` → ``a`` →
    root) and defaults to INFO. When ``sync_stdlib`` is set, every change is
    mirrored onto ``logging.getLogger(category)`` so stdlib handlers agree
    with the manager.
    """

    ROOT = ""

    def __init__(
        self,
        root_level: str | Level = Level.INFO,
        baseline: Mapping[str, str | Level] | None = None,
        *,
        namespace: str = "pgscope",
        sync_stdlib: bool = False,
    ) -> None:
        self.namespace = namespace
        self._sync_stdlib = sync_stdlib
        self._states: dict[str, CategoryState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        self._states[self.ROOT] = Default(parse_level(root_level))
        for name, level in (baseline or {}).items():
            self._states[self._key(name)] = Default(parse_level(level))
        for name, state in list(self._states.items()):
            self._apply_stdlib(name, state.level)

    @classmethod
    def from_settings(cls, settings: Any, *, sync_stdlib: bool = True) -> LevelManager:
        return cls(
            root_level=settings.level,
            baseline=settings.category_levels,
            namespace=settings.namespace,
            sync_stdlib=sync_stdlib,
        )

    # ── Queries ─────────────────────────────────────────────────────

    def get_level(self, category: str) -> Level:
        """Effective level for ``category``, inherited from the nearest ancestor."""
        name = self._key(category)
        while True:
            state = self._states.get(name)
            if state is not None and state.level is not None:
                return state.level
            if not name:
                return Level.INFO
            name = name.rpartition(".")[0]

    def is_enabled(self, category: str, level: Level) -> bool:
        return level >= self.get_level(category)

    def get_log_configuration(self) -> dict[str, str]:
        """Effective level names for well-known and overridden categories."""
        ns = self.namespace
        names = [ns, f"{ns}.SQL", f"{ns}.SECURITY", f"{ns}.AUDIT"]
        config = {"ROOT": self.get_level(self.ROOT).name}
        for name in names:
            config[name] = self.get_level(name).name
        for name, state in list(self._states.items()):
            if name and isinstance(state, (Overridden, Temporary)):
                config[name] = state.level.name
        return config

    def get_temporary_expiry(self) -> dict[str, datetime]:
        return {
            name or "ROOT": state.expires_at
            for name, state in list(self._states.items())
            if isinstance(state, Temporary)
        }

    def state_of(self, category: str) -> CategoryState:
        return self._states.get(self._key(category), Default())

    # ── Mutations ───────────────────────────────────────────────────

    def set_level(self, category: str, level: str | Level) -> bool:
        """Override the level of ``category``. Returns False on an invalid level."""
        try:
            new_level = parse_level(level)
        except InvalidLevelError as exc:
            logger.error("log_level_change_failed", category=category, level=level, error=str(exc))
            return False

        name = self._key(category)
        with self._lock_for(name):
            state = self._states.get(name)
            if isinstance(state, Temporary):
                state.timer.cancel()
            self._states[name] = Overridden(new_level, _original_of(state))
            self._apply_stdlib(name, new_level)

        logger.info("log_level_set", category=name or "ROOT", level=new_level.name)
        return True

    def set_temporary_level(
        self,
        category: str,
        level: str | Level,
        duration: timedelta | float,
    ) -> bool:
        """Override ``category`` and schedule a revert after ``duration`` (seconds or timedelta)."""
        try:
            new_level = parse_level(level)
        except InvalidLevelError as exc:
            logger.error("log_level_change_failed", category=category, level=level, error=str(exc))
            return False

        seconds = _to_seconds(duration)
        if seconds <= 0:
            logger.error("log_level_change_failed", category=category, level=level, error="non-positive duration")
            return False

        name = self._key(category)
        with self._lock_for(name):
            state = self._states.get(name)
            if isinstance(state, Temporary):
                state.timer.cancel()
            timer = threading.Timer(seconds, self._expire, args=(name,))
            timer.daemon = True
            temporary = Temporary(
                level=new_level,
                original=_original_of(state),
                expires_at=datetime.now(UTC) + timedelta(seconds=seconds),
                timer=timer,
            )
            # The timer checks identity of the stored state before reverting,
            # so an expiry that lost a race with a newer override is a no-op.
            timer.args = (name, temporary)
            self._states[name] = temporary
            self._apply_stdlib(name, new_level)
            timer.start()

        logger.info(
            "log_level_set_temporary",
            category=name or "ROOT",
            level=new_level.name,
            expires_at=temporary.expires_at.isoformat(),
        )
        return True

    def revert(self, category: str) -> None:
        """Restore the pre-override level. No-op if ``category`` is not overridden."""
        name = self._key(category)
        with self._lock_for(name):
            state = self._states.get(name)
            if not isinstance(state, (Overridden, Temporary)):
                return
            self._restore(name, state)
        logger.info("log_level_reverted", category=name or "ROOT", level=self.get_level(name).name)

    def apply_preset(self, preset: str | LogPreset, category: str | None = None) -> bool:
        """Apply a preset to ``category`` (root when omitted)."""
        try:
            resolved = parse_preset(preset)
        except InvalidPresetError as exc:
            logger.error("log_preset_failed", preset=preset, error=str(exc))
            return False
        ok = self.set_level(category or self.ROOT, resolved.level)
        if ok:
            logger.info("log_preset_applied", preset=resolved.value, category=category or "ROOT")
        return ok

    def enable_debug_mode(self, duration: timedelta | float) -> bool:
        """Temporarily drop the whole namespace to TRACE."""
        return self.set_temporary_level(self.namespace, Level.TRACE, duration)

    def disable_debug_mode(self) -> None:
        self.revert(self.namespace)

    def shutdown(self) -> None:
        """Cancel every pending reversion timer."""
        for state in list(self._states.values()):
            if isinstance(state, Temporary):
                state.timer.cancel()

    # ── Internals ───────────────────────────────────────────────────

    def _expire(self, name: str, expected: Temporary) -> None:
        with self._lock_for(name):
            if self._states.get(name) is not expected:
                return
            self._restore(name, expected)
        logger.info("log_level_expired", category=name or "ROOT", level=self.get_level(name).name)

    def _restore(self, name: str, state: Overridden | Temporary) -> None:
        # Caller holds the category lock
        if isinstance(state, Temporary):
            state.timer.cancel()
        if state.original is None and name != self.ROOT:
            self._states.pop(name, None)
        else:
            self._states[name] = Default(state.original)
        self._apply_stdlib(name, state.original)

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def _apply_stdlib(self, name: str, level: Level | None) -> None:
        if not self._sync_stdlib:
            return
        target = logging.getLogger(name) if name else logging.getLogger()
        target.setLevel(int(level) if level is not None else logging.NOTSET)

    def _key(self, category: str | None) -> str:
        if category is None or category.upper() == "ROOT":
            return self.ROOT
        return category.strip()


__all__ = [
    "TRACE_LEVEL_NUM",
    "Level",
    "LogPreset",
    "PRESET_DESCRIPTIONS",
    "parse_level",
    "parse_preset",
    "Default",
    "Overridden",
    "Temporary",
    "CategoryState",
    "LevelManager",
]
