"""Per-attempt correlation secrets (state, nonce, PKCE verifier).

Each login attempt gets a fresh ``AuthRequestState`` stored under its
``state`` value. ``consume`` is an atomic lookup-and-remove, so a given state
can complete at most one callback even when the callback is delivered twice
at the same time.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from oidc_rp.api.services.authorization import generate_code_verifier
from oidc_rp.api.utils.logging import mask_secret
from oidc_rp.errors import InvalidStateError, SessionStoreError
from oidc_rp.models.auth import AuthRequestState

logger = logging.getLogger(__name__)

DEFAULT_STATE_TTL_SECONDS = 600
STATE_ENTROPY_BYTES = 32


def new_secret() -> str:
    return secrets.token_urlsafe(STATE_ENTROPY_BYTES)


class PendingAttemptStore(ABC):
    """Storage for attempts that have been issued but not yet consumed."""

    @abstractmethod
    def put(self, record: AuthRequestState, ttl_seconds: int) -> None:
        """Store ``record`` under its state value."""
        pass

    @abstractmethod
    def pop(self, state: str) -> Optional[AuthRequestState]:
        """Atomically remove and return the record for ``state``."""
        pass


class MemoryPendingAttemptStore(PendingAttemptStore):
    """In-process store (default). Suitable for a single worker."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._store: Dict[str, AuthRequestState] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def put(self, record: AuthRequestState, ttl_seconds: int) -> None:
        with self._lock:
            self._purge_expired()
            self._store[record.state] = record

    def pop(self, state: str) -> Optional[AuthRequestState]:
        with self._lock:
            return self._store.pop(state, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, record in self._store.items() if record.is_expired(now)]
        for key in expired:
            del self._store[key]


class RedisPendingAttemptStore(PendingAttemptStore):
    """Redis-backed store for multi-worker deployments.

    ``pop`` relies on ``GETDEL`` (Redis 6.2+) so that two workers racing on the
    same state cannot both read it.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: str = "oidc_rp:attempt",
        *,
        redis_client: Any = None,
    ) -> None:
        self._key_prefix = key_prefix
        if redis_client is not None:
            self._client = redis_client
        else:
            import redis

            self._client = redis.from_url(redis_url, decode_responses=True)
            logger.info(
                "Pending attempt store using Redis: %s", (redis_url or "").split("@")[-1]
            )

    def _key(self, state: str) -> str:
        return f"{self._key_prefix}:{state}"

    def put(self, record: AuthRequestState, ttl_seconds: int) -> None:
        try:
            self._client.set(
                self._key(record.state),
                json.dumps(record.to_dict()),
                ex=max(int(ttl_seconds), 1),
            )
        except Exception as exc:
            raise SessionStoreError(f"Failed to store pending attempt: {exc}") from exc

    def pop(self, state: str) -> Optional[AuthRequestState]:
        try:
            raw = self._client.getdel(self._key(state))
        except Exception as exc:
            raise SessionStoreError(f"Failed to read pending attempt: {exc}") from exc
        if raw is None:
            return None
        return AuthRequestState.from_dict(json.loads(raw))


def create_pending_store(redis_url: Optional[str] = None) -> PendingAttemptStore:
    """Use Redis when ``redis_url`` or ``REDIS_URL`` is set, memory otherwise."""
    url = redis_url or os.getenv("REDIS_URL")
    if url:
        return RedisPendingAttemptStore(url)
    return MemoryPendingAttemptStore()


class StateManager:
    """Issues and single-use-consumes login attempt secrets."""

    def __init__(
        self,
        store: PendingAttemptStore,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        pkce_enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.pkce_enabled = pkce_enabled
        self._clock = clock

    def issue(self, return_to: Optional[str] = None) -> AuthRequestState:
        now = self._clock()
        record = AuthRequestState(
            state=new_secret(),
            nonce=new_secret(),
            created_at=now,
            expires_at=now + self.ttl_seconds,
            code_verifier=generate_code_verifier() if self.pkce_enabled else None,
            return_to=return_to,
        )
        self.store.put(record, self.ttl_seconds)
        logger.debug("Issued login attempt state=%s", mask_secret(record.state))
        return record

    def consume(self, state: Optional[str]) -> AuthRequestState:
        if not state:
            raise InvalidStateError("Callback is missing the state parameter")

        record = self.store.pop(state)
        if record is None:
            raise InvalidStateError(
                f"Unknown or already used state {mask_secret(state)}"
            )
        if record.is_expired(self._clock()):
            raise InvalidStateError(f"Expired state {mask_secret(state)}")
        return record

    def discard(self, state: Optional[str]) -> None:
        """Retire ``state`` without checking it; unknown values are ignored."""
        if state:
            self.store.pop(state)
