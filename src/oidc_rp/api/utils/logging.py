"""Safe log output for values that come from browsers or the IdP.

Callback parameters, IdP error descriptions and claim values are all
attacker-influenced, so they go through ``sanitize_for_log`` before being
formatted into a log line. Tokens and secrets go through ``mask_secret``.
"""

from __future__ import annotations

from typing import Any

_MAX_LOG_LENGTH = 500


def _clean(text: str, max_length: int) -> str:
    cleaned = text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    cleaned = "".join(ch for ch in cleaned if ch >= " " and ch != "\x7f")
    if len(cleaned) > max_length:
        return cleaned[:max_length] + "...[truncated]"
    return cleaned


def sanitize_for_log(value: Any, max_length: int = _MAX_LOG_LENGTH) -> Any:
    """Strip CR/LF and control characters, truncating long strings.

    Mappings and sequences are sanitized element by element.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return _clean(value, max_length)
    if isinstance(value, dict):
        return {
            _clean(str(k), max_length): sanitize_for_log(v, max_length)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item, max_length) for item in value]
    return _clean(str(value), max_length)


def mask_secret(value: str | None, visible: int = 6) -> str:
    """Show only a short prefix of a token, state value or secret."""
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "***"
    return f"{_clean(value[:visible], visible)}***"
