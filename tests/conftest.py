from __future__ import annotations

import secrets
import time
from typing import Any, Optional
from urllib.parse import parse_qsl, urlsplit

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from oidc_rp.api.services.authorization import code_challenge_s256
from oidc_rp.models.auth import ProviderConfig, ProviderEndpoints

ISSUER = "https://sso.example.com/realms/demo"
CLIENT_ID = "demo-client"
CLIENT_SECRET = "demo-secret"
REDIRECT_URI = "https://app.example.com/auth/callback"
KID = "key-1"


def make_provider_config(**overrides: Any) -> ProviderConfig:
    base = f"{ISSUER}/protocol/openid-connect"
    values: dict[str, Any] = dict(
        issuer=ISSUER,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        endpoints=ProviderEndpoints(
            authorization=f"{base}/auth",
            token=f"{base}/token",
            jwks=f"{base}/certs",
            userinfo=f"{base}/userinfo",
            logout=f"{base}/logout",
        ),
    )
    values.update(overrides)
    return ProviderConfig(**values)


class FakeIdentityProvider:
    """Keycloak-shaped IdP served through ``httpx.MockTransport``."""

    def __init__(self, private_key: rsa.RSAPrivateKey, kid: str = KID) -> None:
        self.private_key = private_key
        self.kid = kid
        self.requests: list[httpx.Request] = []
        self.grants: dict[str, dict[str, str]] = {}
        self.id_token_overrides: dict[str, Any] = {}
        self.token_response: Optional[httpx.Response] = None
        self.jwks_response: Optional[httpx.Response] = None
        self.userinfo_response: Optional[httpx.Response] = None
        self.userinfo_claims: dict[str, Any] = {
            "sub": "user-1",
            "email": "ada@example.com",
            "locale": "en",
        }

    # --- helpers used by tests ---

    def jwks(self) -> dict[str, Any]:
        jwk = RSAAlgorithm.to_jwk(self.private_key.public_key(), as_dict=True)
        jwk.update({"kid": self.kid, "use": "sig", "alg": "RS256"})
        return {"keys": [jwk]}

    def sign(
        self,
        claims: dict[str, Any],
        kid: Optional[str] = None,
        key: Any = None,
        algorithm: str = "RS256",
    ) -> str:
        headers = {"kid": kid or self.kid}
        return jwt.encode(
            claims, key or self.private_key, algorithm=algorithm, headers=headers
        )

    def id_token_claims(self, nonce: Optional[str], **overrides: Any) -> dict[str, Any]:
        now = int(time.time())
        claims: dict[str, Any] = {
            "iss": ISSUER,
            "sub": "user-1",
            "aud": CLIENT_ID,
            "exp": now + 300,
            "iat": now,
            "nonce": nonce,
            "name": "Ada Lovelace",
            "preferred_username": "ada",
            "email": "ada@example.com",
        }
        claims.update(self.id_token_overrides)
        claims.update(overrides)
        return {key: value for key, value in claims.items() if value is not None}

    def authorize(self, authorization_url: str) -> tuple[str, str]:
        """Simulate the user signing in; returns ``(code, state)``."""
        query = dict(parse_qsl(urlsplit(authorization_url).query))
        code = secrets.token_urlsafe(16)
        self.grants[code] = query
        return code, query["state"]

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    # --- transport ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/certs"):
            return self.jwks_response or httpx.Response(200, json=self.jwks())
        if path.endswith("/token"):
            return self._token(request)
        if path.endswith("/userinfo"):
            return self.userinfo_response or httpx.Response(
                200, json=self.userinfo_claims
            )
        return httpx.Response(404)

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.token_response is not None:
            return self.token_response

        form = dict(parse_qsl(request.content.decode()))
        grant = self.grants.pop(form.get("code", ""), None)
        if grant is None:
            return httpx.Response(400, json={"error": "invalid_grant"})
        challenge = grant.get("code_challenge")
        if challenge and code_challenge_s256(form.get("code_verifier", "")) != challenge:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "PKCE failed"},
            )

        return httpx.Response(
            200,
            json={
                "access_token": f"access-{secrets.token_hex(8)}",
                "id_token": self.sign(self.id_token_claims(grant.get("nonce"))),
                "refresh_token": "refresh-token",
                "token_type": "Bearer",
                "expires_in": 300,
            },
        )


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def idp(rsa_private_key) -> FakeIdentityProvider:
    return FakeIdentityProvider(rsa_private_key)


@pytest.fixture
def provider_config() -> ProviderConfig:
    return make_provider_config()


@pytest.fixture
def http_client(idp) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(idp.handler))
