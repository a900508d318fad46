from __future__ import annotations

import httpx
import pytest

from oidc_rp.api.services.discovery import ProviderConfigResolver
from oidc_rp.errors import ConfigError
from oidc_rp.models.auth import UserInfoPolicy
from oidc_rp.settings import RPSettings

DISCOVERY_URL = "https://idp.example.com/.well-known/openid-configuration"

DOCUMENT = {
    "issuer": "https://idp.example.com",
    "authorization_endpoint": "https://idp.example.com/authorize",
    "token_endpoint": "https://idp.example.com/token",
    "userinfo_endpoint": "https://idp.example.com/userinfo",
    "end_session_endpoint": "https://idp.example.com/logout",
    "jwks_uri": "https://idp.example.com/jwks",
}


def _settings(**overrides) -> RPSettings:
    values = dict(client_id="demo-client", redirect_uri="https://app.example.com/cb")
    values.update(overrides)
    return RPSettings(**values)


def _client(*responses: httpx.Response | Exception) -> tuple[httpx.AsyncClient, list]:
    calls: list[httpx.Request] = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


class TestKeycloakConventions:
    @pytest.mark.asyncio
    async def test_endpoints_derived_from_server_url_and_realm(self):
        client, calls = _client()
        resolver = ProviderConfigResolver(
            _settings(server_url="https://sso.example.com", realm="demo"), client
        )

        config = await resolver.resolve()

        base = "https://sso.example.com/realms/demo/protocol/openid-connect"
        assert config.issuer == "https://sso.example.com/realms/demo"
        assert config.endpoints.authorization == f"{base}/auth"
        assert config.endpoints.token == f"{base}/token"
        assert config.endpoints.userinfo == f"{base}/userinfo"
        assert config.endpoints.logout == f"{base}/logout"
        assert config.endpoints.jwks == f"{base}/certs"
        assert calls == []

    @pytest.mark.asyncio
    async def test_overrides_win_and_switches_are_carried(self):
        client, _ = _client()
        resolver = ProviderConfigResolver(
            _settings(
                issuer="https://sso.example.com/realms/demo",
                token_endpoint="https://proxy.example.com/token",
                pkce_enabled=False,
                userinfo_policy=UserInfoPolicy.STRICT,
                scopes=("profile",),
            ),
            client,
        )

        config = await resolver.resolve()

        assert config.endpoints.token == "https://proxy.example.com/token"
        assert config.pkce_enabled is False
        assert config.userinfo_policy is UserInfoPolicy.STRICT
        assert config.scopes == ("openid", "profile")

    @pytest.mark.asyncio
    async def test_result_is_cached(self):
        client, _ = _client()
        resolver = ProviderConfigResolver(
            _settings(issuer="https://sso.example.com/realms/demo"), client
        )

        assert await resolver.resolve() is await resolver.resolve()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"client_id": "", "issuer": "https://sso.example.com"},
            {"redirect_uri": "", "issuer": "https://sso.example.com"},
            {},
        ],
    )
    async def test_missing_required_settings(self, overrides):
        client, _ = _client()

        with pytest.raises(ConfigError):
            await ProviderConfigResolver(_settings(**overrides), client).resolve()


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_document_endpoints_are_used(self):
        client, calls = _client(httpx.Response(200, json=DOCUMENT))

        config = await ProviderConfigResolver(
            _settings(discovery_url=DISCOVERY_URL), client
        ).resolve()

        assert config.issuer == "https://idp.example.com"
        assert config.endpoints.logout == "https://idp.example.com/logout"
        assert config.endpoints.jwks == "https://idp.example.com/jwks"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_retries_once_after_server_error(self):
        client, calls = _client(
            httpx.Response(503), httpx.Response(200, json=DOCUMENT)
        )

        config = await ProviderConfigResolver(
            _settings(discovery_url=DISCOVERY_URL), client
        ).resolve()

        assert config.endpoints.token == "https://idp.example.com/token"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_second_transport_failure(self):
        client, calls = _client(
            httpx.ConnectError("refused"), httpx.ConnectError("refused")
        )

        with pytest.raises(ConfigError, match="unreachable"):
            await ProviderConfigResolver(
                _settings(discovery_url=DISCOVERY_URL), client
            ).resolve()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        client, calls = _client(httpx.Response(404))

        with pytest.raises(ConfigError):
            await ProviderConfigResolver(
                _settings(discovery_url=DISCOVERY_URL), client
            ).resolve()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_issuer_mismatch_is_rejected(self):
        client, _ = _client(httpx.Response(200, json=DOCUMENT))

        with pytest.raises(ConfigError, match="issuer mismatch"):
            await ProviderConfigResolver(
                _settings(
                    discovery_url=DISCOVERY_URL, issuer="https://other.example.com"
                ),
                client,
            ).resolve()

    @pytest.mark.asyncio
    async def test_missing_required_endpoint(self):
        document = {key: value for key, value in DOCUMENT.items() if key != "jwks_uri"}
        client, _ = _client(httpx.Response(200, json=document))

        with pytest.raises(ConfigError, match="jwks"):
            await ProviderConfigResolver(
                _settings(discovery_url=DISCOVERY_URL), client
            ).resolve()
