"""Cache of the IdP's published signing keys.

Keys are cached by ``kid`` for ``ttl_seconds``. On a miss at most one refresh
is in flight per cache instance: callers that queue up behind a refresh reuse
its result rather than fetching again. If a refresh fails, an entry that
expired less than ``stale_grace_seconds`` ago is still served.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
from jwt import PyJWK, PyJWKSet
from jwt.exceptions import PyJWKSetError

from oidc_rp.api.utils.logging import sanitize_for_log
from oidc_rp.errors import TokenValidationCause, TokenValidationError
from oidc_rp.models.auth import JWKSCacheEntry

logger = logging.getLogger(__name__)


class _KeyFetchError(Exception):
    pass


class JWKSCache:
    def __init__(
        self,
        jwks_uri: str,
        http_client: httpx.AsyncClient,
        ttl_seconds: int = 3600,
        stale_grace_seconds: int = 300,
        min_refresh_interval_seconds: float = 10.0,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.jwks_uri = jwks_uri
        self.http_client = http_client
        self.ttl_seconds = ttl_seconds
        self.stale_grace_seconds = stale_grace_seconds
        self.min_refresh_interval_seconds = min_refresh_interval_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock

        self._entries: Dict[str, JWKSCacheEntry] = {}
        self._lock = asyncio.Lock()
        self._generation = 0
        self._last_refresh_at: Optional[float] = None
        self._last_refresh_error: Optional[Exception] = None
        self.refresh_count = 0

    def _lookup(self, kid: Optional[str]) -> Optional[JWKSCacheEntry]:
        if kid is None:
            # Without a kid the choice is only unambiguous for a single-key set.
            if len(self._entries) == 1:
                return next(iter(self._entries.values()))
            return None
        if not isinstance(kid, str):
            return None
        return self._entries.get(kid)

    def _is_fresh(self, entry: JWKSCacheEntry, now: float) -> bool:
        return now - entry.fetched_at < self.ttl_seconds

    def _within_grace(self, entry: JWKSCacheEntry, now: float) -> bool:
        return now - entry.fetched_at < self.ttl_seconds + self.stale_grace_seconds

    async def get_signing_key(self, kid: Optional[str]) -> PyJWK:
        entry = self._lookup(kid)
        if entry is not None and self._is_fresh(entry, self._clock()):
            return entry.key

        generation = self._generation
        async with self._lock:
            if self._generation != generation:
                # A refresh finished while this caller waited; reuse it.
                return self._resolve_after_refresh(kid, self._last_refresh_error)

            if (
                entry is None
                and self._last_refresh_at is not None
                and self._last_refresh_error is None
                and self._clock() - self._last_refresh_at
                < self.min_refresh_interval_seconds
            ):
                raise TokenValidationError(
                    TokenValidationCause.UNKNOWN_KEY,
                    f"No signing key for kid {sanitize_for_log(kid)}",
                )

            try:
                await self._refresh()
            except _KeyFetchError as exc:
                self._last_refresh_error = exc
                self._generation += 1
                return self._resolve_after_refresh(kid, exc)

            self._last_refresh_error = None
            self._generation += 1
            return self._resolve_after_refresh(kid, None)

    def _resolve_after_refresh(
        self, kid: Optional[str], refresh_error: Optional[Exception]
    ) -> PyJWK:
        now = self._clock()
        entry = self._lookup(kid)
        if entry is not None and self._is_fresh(entry, now):
            return entry.key

        if refresh_error is None:
            raise TokenValidationError(
                TokenValidationCause.UNKNOWN_KEY,
                f"No signing key for kid {sanitize_for_log(kid)}",
            )

        if entry is not None and self._within_grace(entry, now):
            logger.warning(
                "JWKS refresh failed, serving stale key kid=%s: %s",
                sanitize_for_log(kid),
                refresh_error,
            )
            return entry.key

        raise TokenValidationError(
            TokenValidationCause.KEYS_UNAVAILABLE,
            f"Signing keys unavailable: {refresh_error}",
        )

    async def _refresh(self) -> None:
        self.refresh_count += 1
        try:
            response = await self.http_client.get(
                self.jwks_uri, timeout=self.timeout_seconds
            )
            response.raise_for_status()
            data: Any = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("JWKS fetch from %s failed: %s", self.jwks_uri, exc)
            raise _KeyFetchError(str(exc)) from exc

        try:
            jwk_set = PyJWKSet.from_dict(data)
        except (PyJWKSetError, TypeError, AttributeError) as exc:
            logger.error("JWKS document from %s is unusable: %s", self.jwks_uri, exc)
            raise _KeyFetchError(str(exc)) from exc

        now = self._clock()
        entries: Dict[str, JWKSCacheEntry] = {}
        for key in jwk_set.keys:
            if getattr(key, "public_key_use", None) not in ("sig", None):
                continue
            entries[key.key_id or ""] = JWKSCacheEntry(key=key, fetched_at=now)

        self._entries = entries
        self._last_refresh_at = now
        logger.info("JWKS refreshed from %s: %d signing keys", self.jwks_uri, len(entries))
