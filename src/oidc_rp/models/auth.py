from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from jwt import PyJWK

from oidc_rp.errors import AuthFlowError


class UserInfoPolicy(str, Enum):
    STRICT = "strict"
    LENIENT = "lenient"


class AttemptStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    EXCHANGING = "exchanging"
    VALIDATED = "validated"
    SESSION_ESTABLISHED = "session_established"
    FAILED = "failed"


@dataclass(frozen=True)
class ProviderEndpoints:
    authorization: str
    token: str
    jwks: str
    userinfo: Optional[str] = None
    logout: Optional[str] = None


@dataclass(frozen=True)
class ProviderConfig:
    issuer: str
    client_id: str
    redirect_uri: str
    endpoints: ProviderEndpoints
    client_secret: Optional[str] = None
    scopes: tuple[str, ...] = ("openid", "profile", "email")
    pkce_enabled: bool = True
    state_ttl_seconds: int = 600
    clock_skew_seconds: int = 60
    userinfo_policy: UserInfoPolicy = UserInfoPolicy.LENIENT
    fetch_userinfo: bool = True
    http_timeout_seconds: float = 5.0

    @property
    def is_public_client(self) -> bool:
        return not self.client_secret


@dataclass
class AuthRequestState:
    state: str
    nonce: str
    created_at: float
    expires_at: float
    code_verifier: Optional[str] = None
    return_to: Optional[str] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "nonce": self.nonce,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "code_verifier": self.code_verifier,
            "return_to": self.return_to,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthRequestState":
        return cls(
            state=data["state"],
            nonce=data["nonce"],
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            code_verifier=data.get("code_verifier"),
            return_to=data.get("return_to"),
        )


@dataclass
class TokenSet:
    access_token: str
    id_token: str
    id_claims: dict[str, Any]
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None

    @property
    def subject(self) -> Optional[str]:
        return self.id_claims.get("sub")


@dataclass
class Session:
    session_id: str
    user_claims: dict[str, Any]
    access_token: str
    id_token: str
    created_at: float
    logged_in: bool = True
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "logged_in": self.logged_in,
            "user_claims": self.user_claims,
            "access_token": self.access_token,
            "id_token": self.id_token,
            "refresh_token": self.refresh_token,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        return cls(
            session_id=data["session_id"],
            logged_in=bool(data.get("logged_in", False)),
            user_claims=dict(data.get("user_claims") or {}),
            access_token=data["access_token"],
            id_token=data["id_token"],
            refresh_token=data.get("refresh_token"),
            created_at=float(data["created_at"]),
            expires_at=data.get("expires_at"),
        )


@dataclass
class JWKSCacheEntry:
    key: PyJWK
    fetched_at: float


# --- Flow outcomes interpreted by the transport layer ---


@dataclass
class Redirect:
    url: str


@dataclass
class SessionEstablished:
    session: Session
    redirect_to: str
    status: AttemptStatus = field(default=AttemptStatus.SESSION_ESTABLISHED)


@dataclass
class Failed:
    error: AuthFlowError
    failed_at: AttemptStatus
    redirect_to: str
    status: AttemptStatus = field(default=AttemptStatus.FAILED)


FlowOutcome = Union[Redirect, SessionEstablished, Failed]
