from __future__ import annotations

from oidc_rp.api.utils.logging import mask_secret, sanitize_for_log


def test_sanitize_strips_line_breaks_and_control_chars():
    assert sanitize_for_log("user\r\nINFO forged\x00entry") == "user INFO forgedentry"


def test_sanitize_truncates():
    result = sanitize_for_log("x" * 1000, max_length=50)

    assert result == "x" * 50 + "...[truncated]"


def test_sanitize_none_and_containers():
    assert sanitize_for_log(None) == ""
    assert sanitize_for_log({"k": "a\nb"}) == {"k": "a b"}


def test_mask_secret():
    assert mask_secret(None) == "<none>"
    assert mask_secret("short") == "***"
    assert mask_secret("abcdefghijklmnop") == "abcdef***"
