"""Provider configuration resolution.

Endpoints come from an OIDC discovery document when one is configured,
otherwise from Keycloak's path conventions under the issuer URL. Explicit
endpoint overrides in the settings always win.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from oidc_rp.errors import ConfigError
from oidc_rp.models.auth import ProviderConfig, ProviderEndpoints
from oidc_rp.settings import RPSettings, normalize_scopes

logger = logging.getLogger(__name__)

KEYCLOAK_ENDPOINT_PATHS = {
    "authorization": "/protocol/openid-connect/auth",
    "token": "/protocol/openid-connect/token",
    "userinfo": "/protocol/openid-connect/userinfo",
    "logout": "/protocol/openid-connect/logout",
    "jwks": "/protocol/openid-connect/certs",
}

DISCOVERY_ATTEMPTS = 2


class ProviderConfigResolver:
    """Resolves ``RPSettings`` into an immutable ``ProviderConfig``.

    The result is computed once and shared by every other component.
    """

    def __init__(self, settings: RPSettings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client
        self._resolved: Optional[ProviderConfig] = None

    async def resolve(self) -> ProviderConfig:
        if self._resolved is not None:
            return self._resolved

        settings = self.settings
        if not settings.client_id:
            raise ConfigError("OIDC client_id is required")
        if not settings.redirect_uri:
            raise ConfigError("OIDC redirect_uri is required")

        issuer = settings.resolved_issuer
        if settings.discovery_url:
            document = await self._fetch_discovery_document(settings.discovery_url)
            issuer, endpoints = self._endpoints_from_discovery(issuer, document)
        else:
            if not issuer:
                raise ConfigError(
                    "OIDC issuer is required: set an issuer, server URL and realm, "
                    "or a discovery URL"
                )
            endpoints = {
                name: f"{issuer}{path}" for name, path in KEYCLOAK_ENDPOINT_PATHS.items()
            }

        overrides = {
            "authorization": settings.authorization_endpoint,
            "token": settings.token_endpoint,
            "userinfo": settings.userinfo_endpoint,
            "logout": settings.logout_endpoint,
            "jwks": settings.jwks_uri,
        }
        for name, value in overrides.items():
            if value:
                endpoints[name] = value

        config = ProviderConfig(
            issuer=issuer,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=settings.redirect_uri,
            scopes=normalize_scopes(settings.scopes),
            endpoints=ProviderEndpoints(
                authorization=endpoints["authorization"],
                token=endpoints["token"],
                jwks=endpoints["jwks"],
                userinfo=endpoints.get("userinfo"),
                logout=endpoints.get("logout"),
            ),
            pkce_enabled=settings.pkce_enabled,
            state_ttl_seconds=settings.state_ttl_seconds,
            clock_skew_seconds=settings.clock_skew_seconds,
            userinfo_policy=settings.userinfo_policy,
            fetch_userinfo=settings.fetch_userinfo,
            http_timeout_seconds=settings.http_timeout_seconds,
        )

        logger.info(
            "OIDC provider resolved: issuer=%s client_id=%s pkce=%s userinfo_policy=%s",
            config.issuer,
            config.client_id,
            config.pkce_enabled,
            config.userinfo_policy.value,
        )
        self._resolved = config
        return config

    async def _fetch_discovery_document(self, url: str) -> dict[str, Any]:
        last_error: Optional[Exception] = None
        for attempt in range(1, DISCOVERY_ATTEMPTS + 1):
            try:
                response = await self.http_client.get(
                    url, timeout=self.settings.http_timeout_seconds
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                last_error = exc
                if exc.response.status_code < 500:
                    break
            except httpx.RequestError as exc:
                last_error = exc
            else:
                try:
                    document = response.json()
                except ValueError as exc:
                    raise ConfigError("OIDC discovery document is not valid JSON") from exc
                if not isinstance(document, dict):
                    raise ConfigError("OIDC discovery document must be a JSON object")
                return document

            logger.warning(
                "OIDC discovery attempt %d/%d failed: %s",
                attempt,
                DISCOVERY_ATTEMPTS,
                last_error,
            )

        raise ConfigError(f"OIDC discovery unreachable at {url}") from last_error

    @staticmethod
    def _endpoints_from_discovery(
        configured_issuer: Optional[str], document: dict[str, Any]
    ) -> tuple[str, dict[str, Optional[str]]]:
        discovered_issuer = document.get("issuer")
        if not discovered_issuer:
            raise ConfigError("OIDC discovery document missing issuer")
        discovered_issuer = str(discovered_issuer).rstrip("/")
        if configured_issuer and configured_issuer != discovered_issuer:
            raise ConfigError(
                f"OIDC issuer mismatch: configured {configured_issuer}, "
                f"discovered {discovered_issuer}"
            )

        endpoints = {
            "authorization": document.get("authorization_endpoint"),
            "token": document.get("token_endpoint"),
            "userinfo": document.get("userinfo_endpoint"),
            "logout": document.get("end_session_endpoint"),
            "jwks": document.get("jwks_uri"),
        }
        missing = [
            name for name in ("authorization", "token", "jwks") if not endpoints[name]
        ]
        if missing:
            raise ConfigError(
                "OIDC discovery missing required endpoints: " + ", ".join(missing)
            )
        return discovered_issuer, endpoints
