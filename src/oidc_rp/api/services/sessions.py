"""Session stores and the session materializer.

A session is built completely in memory and then written with a single
``set`` call, so a reader never sees a logged-in session without its claims.
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

from oidc_rp.api.utils.logging import mask_secret, sanitize_for_log
from oidc_rp.errors import SessionStoreError
from oidc_rp.models.auth import Session, TokenSet

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 8 * 60 * 60


class SessionStore(ABC):
    """Create and destroy are atomic per session id."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    def set(self, session_id: str, session: Session) -> None:
        pass

    @abstractmethod
    def destroy(self, session_id: str) -> None:
        pass


class MemorySessionStore(SessionStore):
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._store: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._store.get(session_id)
            if session is None:
                return None
            if session.is_expired(self._clock()):
                del self._store[session_id]
                return None
            return session

    def set(self, session_id: str, session: Session) -> None:
        with self._lock:
            self._purge_expired()
            self._store[session_id] = session

    def destroy(self, session_id: str) -> None:
        with self._lock:
            self._store.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, session in self._store.items() if session.is_expired(now)]
        for key in expired:
            del self._store[key]


class RedisSessionStore(SessionStore):
    """Redis-backed sessions. Failures surface as ``SessionStoreError``."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        key_prefix: str = "oidc_rp:session",
        *,
        redis_client: Any = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        if redis_client is not None:
            self._client = redis_client
        else:
            import redis

            self._client = redis.from_url(redis_url, decode_responses=True)
            logger.info("Session store using Redis: %s", (redis_url or "").split("@")[-1])

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}:{session_id}"

    def get(self, session_id: str) -> Optional[Session]:
        try:
            raw = self._client.get(self._key(session_id))
        except Exception as exc:
            raise SessionStoreError(f"Session read failed: {exc}") from exc
        if raw is None:
            return None
        try:
            return Session.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise SessionStoreError("Stored session is corrupt") from exc

    def set(self, session_id: str, session: Session) -> None:
        try:
            self._client.setex(
                self._key(session_id), self.ttl_seconds, json.dumps(session.to_dict())
            )
        except Exception as exc:
            raise SessionStoreError(f"Session write failed: {exc}") from exc

    def destroy(self, session_id: str) -> None:
        try:
            self._client.delete(self._key(session_id))
        except Exception as exc:
            raise SessionStoreError(f"Session destroy failed: {exc}") from exc


def create_session_store(
    redis_url: Optional[str] = None,
    ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
) -> SessionStore:
    """Use Redis when ``redis_url`` or ``REDIS_URL`` is set, memory otherwise."""
    url = redis_url or os.getenv("REDIS_URL")
    if url:
        return RedisSessionStore(url, ttl_seconds=ttl_seconds)
    return MemorySessionStore()


class SessionMaterializer:
    def __init__(
        self,
        store: SessionStore,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def materialize(self, claims: dict[str, Any], token_set: TokenSet) -> Session:
        now = self._clock()
        session = Session(
            session_id=secrets.token_urlsafe(32),
            logged_in=True,
            user_claims=dict(claims),
            access_token=token_set.access_token,
            id_token=token_set.id_token,
            refresh_token=token_set.refresh_token,
            created_at=now,
            expires_at=now + self.ttl_seconds if self.ttl_seconds else None,
        )

        try:
            self.store.set(session.session_id, session)
        except SessionStoreError:
            raise
        except Exception as exc:
            raise SessionStoreError(f"Session write failed: {exc}") from exc

        logger.info(
            "Session %s established for sub=%s",
            mask_secret(session.session_id),
            sanitize_for_log(claims.get("sub")),
        )
        return session
