"""Relying-party settings loaded from the environment.

Environment Variables:
    OIDC_SERVER_URL / OIDC_REALM: Keycloak-style base URL and realm
    OIDC_ISSUER: Explicit issuer (overrides server URL + realm)
    OIDC_CLIENT_ID / OIDC_CLIENT_SECRET: Client credentials
    OIDC_REDIRECT_URI: Callback URL registered with the IdP
    OIDC_SCOPES: Comma or space separated scopes
    OIDC_DISCOVERY_URL: Optional discovery document URL
    REDIS_URL: Shared store for pending attempts and sessions
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from oidc_rp.errors import ConfigError
from oidc_rp.models.auth import UserInfoPolicy

DEFAULT_SCOPES = ("openid", "profile", "email")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def normalize_scopes(scopes: Optional[str | list[str] | tuple[str, ...]]) -> tuple[str, ...]:
    """Split, deduplicate and order scopes, making sure ``openid`` is present."""
    if scopes is None:
        return DEFAULT_SCOPES
    if isinstance(scopes, str):
        items = re.split(r"[,\s]+", scopes)
    else:
        items = list(scopes)

    ordered: list[str] = []
    for item in items:
        item = item.strip()
        if item and item not in ordered:
            ordered.append(item)
    if "openid" not in ordered:
        ordered.insert(0, "openid")
    return tuple(ordered)


@dataclass
class RPSettings:
    client_id: str = ""
    redirect_uri: str = ""
    client_secret: Optional[str] = None
    server_url: Optional[str] = None
    realm: Optional[str] = None
    issuer: Optional[str] = None
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    discovery_url: Optional[str] = None
    authorization_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    logout_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None
    pkce_enabled: bool = True
    state_ttl_seconds: int = 600
    clock_skew_seconds: int = 60
    userinfo_policy: UserInfoPolicy = UserInfoPolicy.LENIENT
    fetch_userinfo: bool = True
    http_timeout_seconds: float = 5.0
    jwks_cache_ttl_seconds: int = 3600
    jwks_stale_grace_seconds: int = 300
    base_url: str = "http://localhost:8000"
    post_login_redirect: str = "/dashboard"
    error_redirect: str = "/"
    post_logout_redirect_uri: Optional[str] = None
    session_cookie_name: str = "rp_session"
    session_cookie_secure: bool = False
    session_ttl_seconds: int = 8 * 60 * 60
    redis_url: Optional[str] = None

    @property
    def resolved_issuer(self) -> Optional[str]:
        if self.issuer:
            return self.issuer.rstrip("/")
        if self.server_url and self.realm:
            return f"{self.server_url.rstrip('/')}/realms/{self.realm}"
        return None

    @property
    def resolved_post_logout_redirect_uri(self) -> str:
        return self.post_logout_redirect_uri or f"{self.base_url.rstrip('/')}/"


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(env, name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"{name} must not be negative")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value


def _get_policy(env: Mapping[str, str]) -> UserInfoPolicy:
    raw = _get(env, "OIDC_USERINFO_POLICY")
    if raw is None:
        return UserInfoPolicy.LENIENT
    try:
        return UserInfoPolicy(raw.lower())
    except ValueError as exc:
        raise ConfigError(
            f"OIDC_USERINFO_POLICY must be 'strict' or 'lenient', got {raw!r}"
        ) from exc


def load_settings(environ: Optional[Mapping[str, str]] = None) -> RPSettings:
    """Build settings from ``environ`` (defaults to ``os.environ``)."""
    env = os.environ if environ is None else environ

    return RPSettings(
        client_id=_get(env, "OIDC_CLIENT_ID") or "",
        client_secret=_get(env, "OIDC_CLIENT_SECRET"),
        redirect_uri=_get(env, "OIDC_REDIRECT_URI") or "",
        server_url=_get(env, "OIDC_SERVER_URL"),
        realm=_get(env, "OIDC_REALM"),
        issuer=_get(env, "OIDC_ISSUER"),
        scopes=normalize_scopes(_get(env, "OIDC_SCOPES")),
        discovery_url=_get(env, "OIDC_DISCOVERY_URL"),
        authorization_endpoint=_get(env, "OIDC_AUTHORIZATION_ENDPOINT"),
        token_endpoint=_get(env, "OIDC_TOKEN_ENDPOINT"),
        userinfo_endpoint=_get(env, "OIDC_USERINFO_ENDPOINT"),
        logout_endpoint=_get(env, "OIDC_LOGOUT_ENDPOINT"),
        jwks_uri=_get(env, "OIDC_JWKS_URI"),
        pkce_enabled=_get_bool(env, "OIDC_PKCE_ENABLED", True),
        state_ttl_seconds=_get_int(env, "OIDC_STATE_TTL_SECONDS", 600),
        clock_skew_seconds=_get_int(env, "OIDC_CLOCK_SKEW_SECONDS", 60),
        userinfo_policy=_get_policy(env),
        fetch_userinfo=_get_bool(env, "OIDC_FETCH_USERINFO", True),
        http_timeout_seconds=_get_float(env, "OIDC_HTTP_TIMEOUT_SECONDS", 5.0),
        jwks_cache_ttl_seconds=_get_int(env, "OIDC_JWKS_CACHE_TTL_SECONDS", 3600),
        jwks_stale_grace_seconds=_get_int(env, "OIDC_JWKS_STALE_GRACE_SECONDS", 300),
        base_url=_get(env, "APP_BASE_URL") or "http://localhost:8000",
        post_login_redirect=_get(env, "POST_LOGIN_REDIRECT") or "/dashboard",
        error_redirect=_get(env, "LOGIN_ERROR_REDIRECT") or "/",
        post_logout_redirect_uri=_get(env, "POST_LOGOUT_REDIRECT_URI"),
        session_cookie_name=_get(env, "SESSION_COOKIE_NAME") or "rp_session",
        session_cookie_secure=_get_bool(env, "SESSION_COOKIE_SECURE", False),
        session_ttl_seconds=_get_int(env, "SESSION_TTL_SECONDS", 8 * 60 * 60),
        redis_url=_get(env, "REDIS_URL"),
    )
