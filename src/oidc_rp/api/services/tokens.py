"""Callback handling: state consumption, code exchange and ID token checks.

An authorization code is single use. Whatever goes wrong after the state has
been consumed, the attempt is over and the browser has to start a new login.
Nothing in this module retries a token request.
"""

from __future__ import annotations

import hmac
import logging
import time
from typing import Any, Callable, Mapping, Optional

import httpx
import jwt
from jwt.exceptions import (
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    PyJWTError,
)

from oidc_rp.api.services.jwks import JWKSCache
from oidc_rp.api.services.state import StateManager
from oidc_rp.api.utils.logging import sanitize_for_log
from oidc_rp.errors import (
    AuthorizationError,
    SessionStoreError,
    TokenExchangeError,
    TokenValidationCause,
    TokenValidationError,
)
from oidc_rp.models.auth import AuthRequestState, ProviderConfig, TokenSet

logger = logging.getLogger(__name__)

ALLOWED_ID_TOKEN_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"}
)
REQUIRED_ID_TOKEN_CLAIMS = ["exp", "iat", "iss", "aud", "sub"]


class TokenExchanger:
    """Redeems an authorization code at the token endpoint."""

    def __init__(self, config: ProviderConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http_client = http_client

    async def exchange(self, code: str, attempt: AuthRequestState) -> dict[str, Any]:
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
            "client_id": self.config.client_id,
        }
        if self.config.client_secret:
            payload["client_secret"] = self.config.client_secret
        if attempt.code_verifier:
            payload["code_verifier"] = attempt.code_verifier

        try:
            response = await self.http_client.post(
                self.config.endpoints.token,
                data=payload,
                headers={"Accept": "application/json"},
                timeout=self.config.http_timeout_seconds,
            )
        except httpx.RequestError as exc:
            raise TokenExchangeError(
                f"Token endpoint request failed: {exc.__class__.__name__}: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise TokenExchangeError(
                "Token endpoint rejected the code: "
                f"{response.status_code} {self._error_code(response)}"
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TokenExchangeError("Token endpoint returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise TokenExchangeError("Token endpoint returned a non-object response")

        if not data.get("access_token"):
            raise TokenExchangeError("Token response missing access_token")
        if not data.get("id_token"):
            raise TokenExchangeError("Token response missing id_token")
        return data

    @staticmethod
    def _error_code(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return sanitize_for_log(response.text, max_length=200)
        if isinstance(body, dict):
            error = body.get("error", "unknown_error")
            description = body.get("error_description")
            if description:
                return sanitize_for_log(f"{error}: {description}", max_length=200)
            return sanitize_for_log(error)
        return "unknown_error"


class IDTokenValidator:
    """Verifies an ID token's signature, issuer, audience, expiry and nonce."""

    def __init__(self, config: ProviderConfig, jwks: JWKSCache):
        self.config = config
        self.jwks = jwks

    async def validate(self, id_token: str, expected_nonce: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(id_token)
        except PyJWTError as exc:
            raise TokenValidationError(
                TokenValidationCause.MALFORMED, f"Unparseable ID token: {exc}"
            ) from exc

        algorithm = header.get("alg")
        if not isinstance(algorithm, str) or algorithm not in ALLOWED_ID_TOKEN_ALGORITHMS:
            raise TokenValidationError(
                TokenValidationCause.BAD_SIGNATURE,
                f"Disallowed signing algorithm {sanitize_for_log(algorithm)}",
            )

        kid = header.get("kid")
        if kid is not None and not isinstance(kid, str):
            raise TokenValidationError(
                TokenValidationCause.MALFORMED, "ID token kid header is not a string"
            )
        signing_key = await self.jwks.get_signing_key(kid)

        try:
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=[algorithm],
                audience=self.config.client_id,
                issuer=self.config.issuer,
                leeway=self.config.clock_skew_seconds,
                options={"require": REQUIRED_ID_TOKEN_CLAIMS},
            )
        except InvalidSignatureError as exc:
            raise TokenValidationError(
                TokenValidationCause.BAD_SIGNATURE, "ID token signature is invalid"
            ) from exc
        except ExpiredSignatureError as exc:
            raise TokenValidationError(
                TokenValidationCause.EXPIRED, "ID token has expired"
            ) from exc
        except InvalidAudienceError as exc:
            raise TokenValidationError(
                TokenValidationCause.AUDIENCE_MISMATCH,
                f"ID token audience does not include {self.config.client_id}",
            ) from exc
        except InvalidIssuerError as exc:
            raise TokenValidationError(
                TokenValidationCause.ISSUER_MISMATCH,
                f"ID token issuer is not {self.config.issuer}",
            ) from exc
        except PyJWTError as exc:
            raise TokenValidationError(
                TokenValidationCause.MALFORMED, f"ID token rejected: {exc}"
            ) from exc

        audience = claims.get("aud")
        if isinstance(audience, list) and len(audience) > 1:
            azp = claims.get("azp")
            if azp is not None and azp != self.config.client_id:
                raise TokenValidationError(
                    TokenValidationCause.AUDIENCE_MISMATCH,
                    f"ID token azp {sanitize_for_log(azp)} is not this client",
                )

        nonce = claims.get("nonce")
        if not isinstance(nonce, str) or not hmac.compare_digest(
            nonce.encode(), expected_nonce.encode()
        ):
            raise TokenValidationError(
                TokenValidationCause.NONCE_MISMATCH,
                "ID token nonce does not match the login attempt",
            )

        return claims


class CallbackHandler:
    """Turns callback query parameters into a validated ``TokenSet``."""

    def __init__(
        self,
        state_manager: StateManager,
        exchanger: TokenExchanger,
        validator: IDTokenValidator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state_manager = state_manager
        self.exchanger = exchanger
        self.validator = validator
        self._clock = clock

    def check_for_error(self, params: Mapping[str, Optional[str]]) -> None:
        error = params.get("error")
        if not error:
            return
        # The attempt is over either way; its state must not complete a later callback.
        try:
            self.state_manager.discard(params.get("state"))
        except SessionStoreError as exc:
            logger.warning("Could not retire state after IdP error: %s", exc)
        raise AuthorizationError(error, params.get("error_description"))

    def consume_state(self, params: Mapping[str, Optional[str]]) -> AuthRequestState:
        return self.state_manager.consume(params.get("state"))

    async def exchange_and_validate(
        self, code: Optional[str], attempt: AuthRequestState
    ) -> TokenSet:
        if not code:
            raise TokenExchangeError("Callback is missing the authorization code")

        token_response = await self.exchanger.exchange(code, attempt)
        id_token = token_response["id_token"]
        claims = await self.validator.validate(id_token, attempt.nonce)

        expires_at: Optional[float] = None
        expires_in = token_response.get("expires_in")
        if isinstance(expires_in, (int, float)) or (
            isinstance(expires_in, str) and expires_in.isdigit()
        ):
            expires_at = self._clock() + float(expires_in)

        return TokenSet(
            access_token=token_response["access_token"],
            id_token=id_token,
            id_claims=claims,
            refresh_token=token_response.get("refresh_token"),
            expires_at=expires_at,
            token_type=token_response.get("token_type", "Bearer"),
            scope=token_response.get("scope"),
        )

    async def handle(self, params: Mapping[str, Optional[str]]) -> TokenSet:
        self.check_for_error(params)
        attempt = self.consume_state(params)
        return await self.exchange_and_validate(params.get("code"), attempt)
