from oidc_rp.models.auth import (
    AttemptStatus,
    AuthRequestState,
    Failed,
    FlowOutcome,
    JWKSCacheEntry,
    ProviderConfig,
    ProviderEndpoints,
    Redirect,
    Session,
    SessionEstablished,
    TokenSet,
    UserInfoPolicy,
)

__all__ = [
    "AttemptStatus",
    "AuthRequestState",
    "Failed",
    "FlowOutcome",
    "JWKSCacheEntry",
    "ProviderConfig",
    "ProviderEndpoints",
    "Redirect",
    "Session",
    "SessionEstablished",
    "TokenSet",
    "UserInfoPolicy",
]
