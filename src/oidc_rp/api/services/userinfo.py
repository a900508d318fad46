from __future__ import annotations

import logging
from typing import Any

import httpx

from oidc_rp.api.utils.logging import sanitize_for_log
from oidc_rp.errors import UserInfoError, UserInfoFetchError, UserInfoMismatchError
from oidc_rp.models.auth import ProviderConfig, TokenSet, UserInfoPolicy

logger = logging.getLogger(__name__)

# Protocol claims that describe the token, not the user.
TOKEN_ONLY_CLAIMS = frozenset({"nonce", "at_hash", "c_hash", "s_hash"})


def merge_claims(
    id_claims: dict[str, Any], userinfo: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Userinfo values overlaid by ID token values, minus token-only claims."""
    merged = {**(userinfo or {}), **id_claims}
    return {key: value for key, value in merged.items() if key not in TOKEN_ONLY_CLAIMS}


class UserInfoFetcher:
    def __init__(self, config: ProviderConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.config.fetch_userinfo and self.config.endpoints.userinfo)

    async def fetch(self, token_set: TokenSet) -> dict[str, Any]:
        """Read the userinfo endpoint and check its subject."""
        endpoint = self.config.endpoints.userinfo
        if not endpoint:
            raise UserInfoFetchError("Provider has no userinfo endpoint")

        try:
            response = await self.http_client.get(
                endpoint,
                headers={
                    "Authorization": f"Bearer {token_set.access_token}",
                    "Accept": "application/json",
                },
                timeout=self.config.http_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UserInfoFetchError(
                f"Userinfo request failed: {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise UserInfoFetchError(f"Userinfo request failed: {exc}") from exc

        try:
            claims = response.json()
        except ValueError as exc:
            raise UserInfoFetchError("Userinfo response is not valid JSON") from exc
        if not isinstance(claims, dict):
            raise UserInfoFetchError("Userinfo response is not a JSON object")

        if claims.get("sub") != token_set.subject:
            raise UserInfoMismatchError(
                "Userinfo subject %s does not match ID token subject %s"
                % (sanitize_for_log(claims.get("sub")), sanitize_for_log(token_set.subject))
            )
        return claims

    async def fetch_claims(self, token_set: TokenSet) -> dict[str, Any]:
        """Claims for the session, applying the strict/lenient userinfo policy."""
        if not self.enabled:
            return merge_claims(token_set.id_claims)

        try:
            userinfo = await self.fetch(token_set)
        except UserInfoError as exc:
            if self.config.userinfo_policy is UserInfoPolicy.STRICT:
                raise
            logger.warning(
                "Continuing with ID token claims only for sub=%s: %s",
                sanitize_for_log(token_set.subject),
                sanitize_for_log(str(exc)),
            )
            return merge_claims(token_set.id_claims)

        return merge_claims(token_set.id_claims, userinfo)
