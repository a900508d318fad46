"""Authorization request construction and PKCE helpers."""

from __future__ import annotations

import base64
import hashlib
import secrets
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oidc_rp.models.auth import AuthRequestState, ProviderConfig

CODE_CHALLENGE_METHOD = "S256"


def generate_code_verifier() -> str:
    """High-entropy PKCE verifier (86 chars, within RFC 7636's 43-128)."""
    return secrets.token_urlsafe(64)


def code_challenge_s256(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def append_query(url: str, params: dict[str, str]) -> str:
    """Add ``params`` to ``url`` while keeping any query it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment)
    )


def build_authorization_url(config: ProviderConfig, attempt: AuthRequestState) -> str:
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "scope": " ".join(config.scopes),
        "state": attempt.state,
        "nonce": attempt.nonce,
    }
    if attempt.code_verifier:
        params["code_challenge"] = code_challenge_s256(attempt.code_verifier)
        params["code_challenge_method"] = CODE_CHALLENGE_METHOD

    return append_query(config.endpoints.authorization, params)
