"""
Redaction of sensitive data before it reaches any log sink.

``RedactionEngine.redact`` runs a fixed pipeline of stages over a message:

    1. global switch (disabled → input returned unchanged)
    2. connection strings   password=... and URL user:password@ (optional)
    3. JSON pairs           "token": "..."
    4. query parameters     ?key=... / &key=...
    5. auth headers         Bearer ... / Basic ...
    6. configured keys      <pattern>=value, <pattern>: value, quoted or not
    7. PII (optional)       email, credit card, SSN, phone

Every value matcher refuses to match a value that already *is* the
replacement token, and the stages are repeated until the text stops
changing, so running ``redact`` over its own output is a no-op.

Key-based checks (``redact_value`` / ``is_sensitive_key``) match configured
patterns as substrings of the lower-cased key (``db_password``,
``userPassword``). ``redact_key_match="word"`` restricts matching to whole
words, so ``passwordless`` is left alone.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from pgscope.core.settings import DEFAULT_REDACT_PATTERNS

CONNECTION_STRING_REPLACEMENT = "[REDACTED]"

_JSON_SENSITIVE_KEYS = "password|secret|token|key|credential|auth|apikey|api_key|bearer|jwt"
_QUERY_SENSITIVE_KEYS = "password|secret|token|key|auth"

_EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_CREDIT_CARD_PATTERN = re.compile(r"\b[0-9]{4}[-.\s]?[0-9]{4}[-.\s]?[0-9]{4}[-.\s]?[0-9]{4}\b")
_SSN_PATTERN = re.compile(r"\b[0-9]{3}-[0-9]{2}-[0-9]{4}\b")
_PHONE_PATTERN = re.compile(
    r"(?<![\w*-])(\+?[0-9]{1,3}[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b"
)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_MAX_PASSES = 4


def _not_replacement(replacement: str) -> str:
    """Negative lookahead that skips values already redacted."""
    return f"(?!{re.escape(replacement)})"


class RedactionEngine:
    """Stateless text redactor configured from ``LoggingSettings`` values."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        patterns: Iterable[str] | None = None,
        replacement: str = "[REDACTED]",
        mask_pii: bool = False,
        redact_connection_strings: bool = True,
        key_match: str = "substring",
    ) -> None:
        self.enabled = enabled
        self.replacement = replacement
        self.mask_pii = mask_pii
        self.redact_connection_strings = redact_connection_strings
        self.key_match = key_match
        self.patterns = [
            p.strip().lower()
            for p in (DEFAULT_REDACT_PATTERNS if patterns is None else patterns)
            if p and p.strip()
        ]
        self._compile()

    @classmethod
    def from_settings(cls, settings: Any) -> RedactionEngine:
        return cls(
            enabled=settings.redact_enabled,
            patterns=settings.redact_patterns,
            replacement=settings.redact_replacement,
            mask_pii=settings.redact_mask_pii,
            redact_connection_strings=settings.redact_connection_strings,
            key_match=settings.redact_key_match,
        )

    def _compile(self) -> None:
        guard = _not_replacement(self.replacement)
        word = self.key_match == "word"
        self._password_param = re.compile(rf"(password=){guard}([^&;\s]+)", re.IGNORECASE)
        self._url_userinfo = re.compile(rf"(://[^:/@\s]+:){guard}([^@/\s]+)(@)")
        self._json_pair = re.compile(
            rf'"({_JSON_SENSITIVE_KEYS})"(\s*:\s*)"{_not_replacement(self.replacement + chr(34))}([^"]+)"',
            re.IGNORECASE,
        )
        self._query_param = re.compile(
            rf"([?&])({_QUERY_SENSITIVE_KEYS})={guard}([^&\s]+)", re.IGNORECASE
        )
        self._bearer = re.compile(rf"\b(Bearer\s+){guard}([A-Za-z0-9\-_.~+/]+=*)", re.IGNORECASE)
        self._basic = re.compile(rf"\b(Basic\s+){guard}([A-Za-z0-9+/]+=*)", re.IGNORECASE)

        prefix = r"(?<![A-Za-z0-9])" if word else ""
        suffix = r"(?![A-Za-z0-9])" if word else ""
        self._custom = [
            re.compile(
                rf"({prefix}{re.escape(p)}{suffix}[\"']?\s*[=:]\s*[\"']?){guard}([^\"'\s,;&}}{{\]]+)",
                re.IGNORECASE,
            )
            for p in self.patterns
        ]
        self._sensitive_words = [
            re.compile(rf"(?<![a-z0-9]){re.escape(p)}(?![a-z0-9])") for p in self.patterns
        ]

    # ── Public API ──────────────────────────────────────────────────

    def redact(self, text: str | None) -> str | None:
        """Run the full redaction pipeline over ``text``."""
        if not text or not isinstance(text, str):
            return text
        if not self.enabled:
            return text

        # A replaced value can expose a new key/value boundary; repeat until stable
        result = text
        for _ in range(_MAX_PASSES):
            redacted = self._run_stages(result)
            if redacted == result:
                break
            result = redacted
        return result

    def redact_value(self, key: str | None, value: Any) -> Any:
        """Replace ``value`` when ``key`` names a sensitive field."""
        if key is None or value is None or not self.enabled:
            return value
        if self.is_sensitive_key(key):
            return self.replacement
        return value

    def is_sensitive_key(self, key: str | None) -> bool:
        if not key:
            return False
        if self.key_match == "word":
            normalized = _CAMEL_BOUNDARY.sub("_", key).lower()
            return any(p.search(normalized) for p in self._sensitive_words)
        lower_key = key.lower()
        return any(p in lower_key for p in self.patterns)

    def sanitize_connection_string(self, url: str | None) -> str | None:
        """Mask passwords in a DSN/JDBC URL. Always uses ``[REDACTED]``."""
        if url is None:
            return None
        return self._redact_connection_strings(url, CONNECTION_STRING_REPLACEMENT)

    def redact_exception(self, exc: BaseException | None) -> str | None:
        """``<type>: <redacted message>`` for ``exc`` and each chained cause."""
        if exc is None:
            return None
        parts: list[str] = []
        seen: set[int] = set()
        current: BaseException | None = exc
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            parts.append(f"{_type_name(current)}: {self.redact(str(current))}")
            current = current.__cause__ or (
                None if current.__suppress_context__ else current.__context__
            )
        return " Caused by: ".join(parts)

    # ── Stages ──────────────────────────────────────────────────────

    def _run_stages(self, text: str) -> str:
        result = text
        if self.redact_connection_strings:
            result = self._redact_connection_strings(result, self.replacement)
        result = self._redact_json_values(result)
        result = self._redact_query_parameters(result)
        result = self._redact_auth_tokens(result)
        result = self._redact_configured_patterns(result)
        if self.mask_pii:
            result = self._redact_pii(result)
        return result

    def _redact_connection_strings(self, text: str, replacement: str) -> str:
        if replacement == self.replacement:
            password_param, userinfo = self._password_param, self._url_userinfo
        else:
            guard = _not_replacement(replacement)
            password_param = re.compile(rf"(password=){guard}([^&;\s]+)", re.IGNORECASE)
            userinfo = re.compile(rf"(://[^:/@\s]+:){guard}([^@/\s]+)(@)")
        text = password_param.sub(lambda m: m.group(1) + replacement, text)
        return userinfo.sub(lambda m: m.group(1) + replacement + m.group(3), text)

    def _redact_json_values(self, text: str) -> str:
        return self._json_pair.sub(
            lambda m: f'"{m.group(1)}"{m.group(2)}"{self.replacement}"', text
        )

    def _redact_query_parameters(self, text: str) -> str:
        return self._query_param.sub(
            lambda m: f"{m.group(1)}{m.group(2)}={self.replacement}", text
        )

    def _redact_auth_tokens(self, text: str) -> str:
        text = self._bearer.sub(lambda m: m.group(1) + self.replacement, text)
        return self._basic.sub(lambda m: m.group(1) + self.replacement, text)

    def _redact_configured_patterns(self, text: str) -> str:
        for pattern in self._custom:
            text = pattern.sub(lambda m: m.group(1) + self.replacement, text)
        return text

    def _redact_pii(self, text: str) -> str:
        text = _EMAIL_PATTERN.sub(lambda m: f"***@{m.group(1)}", text)
        # Card numbers before phones, so a card is never half-eaten as a phone
        text = _CREDIT_CARD_PATTERN.sub(lambda m: "****-****-****-" + m.group()[-4:], text)
        text = _SSN_PATTERN.sub("***-**-****", text)
        return _PHONE_PATTERN.sub(lambda m: "***-***-" + m.group()[-4:], text)


def _type_name(exc: BaseException) -> str:
    cls = type(exc)
    if cls.__module__ == "builtins":
        return cls.__qualname__
    return f"{cls.__module__}.{cls.__qualname__}"


__all__ = ["CONNECTION_STRING_REPLACEMENT", "RedactionEngine"]
