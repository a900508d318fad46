"""Error taxonomy for the relying-party login flow.

Every flow-terminating error carries a ``public_code`` that is safe to put in
a redirect URL, and the log level the coordinator uses when reporting it.
Diagnostic detail stays in the exception message and never reaches the browser.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

# Error codes from RFC 6749 section 4.1.2.1 and OIDC Core section 3.1.2.6.
REGISTERED_AUTHORIZATION_ERRORS = frozenset(
    {
        "invalid_request",
        "unauthorized_client",
        "access_denied",
        "unsupported_response_type",
        "invalid_scope",
        "server_error",
        "temporarily_unavailable",
        "interaction_required",
        "login_required",
        "account_selection_required",
        "consent_required",
        "invalid_request_uri",
        "invalid_request_object",
        "request_not_supported",
        "request_uri_not_supported",
        "registration_not_supported",
    }
)


class ConfigError(Exception):
    """Provider settings cannot be resolved. Fatal at startup."""


class AuthFlowError(Exception):
    """Base exception for errors that terminate a login attempt."""

    public_code = "login_failed"
    log_level = logging.ERROR


class InvalidStateError(AuthFlowError):
    """Unknown, replayed, or expired ``state`` value."""

    public_code = "invalid_state"
    log_level = logging.WARNING


class AuthorizationError(AuthFlowError):
    """The IdP denied the authorization request."""

    log_level = logging.INFO

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"IdP returned error '{error}'"
        if description:
            message = f"{message}: {description}"
        super().__init__(message)

    @property
    def public_code(self) -> str:  # type: ignore[override]
        if self.error in REGISTERED_AUTHORIZATION_ERRORS:
            return self.error
        return "authorization_failed"


class TokenExchangeError(AuthFlowError):
    """The token endpoint rejected the code or could not be reached."""


class TokenValidationCause(str, Enum):
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    NONCE_MISMATCH = "nonce_mismatch"
    AUDIENCE_MISMATCH = "audience_mismatch"
    ISSUER_MISMATCH = "issuer_mismatch"
    UNKNOWN_KEY = "unknown_key"
    KEYS_UNAVAILABLE = "keys_unavailable"
    MALFORMED = "malformed"


class TokenValidationError(AuthFlowError):
    """The ID token failed a security check."""

    def __init__(self, cause: TokenValidationCause, message: str):
        self.cause = cause
        super().__init__(f"[{cause.value}] {message}")


class UserInfoError(AuthFlowError):
    log_level = logging.WARNING


class UserInfoMismatchError(UserInfoError):
    """The userinfo ``sub`` differs from the ID token ``sub``."""


class UserInfoFetchError(UserInfoError):
    """The userinfo endpoint could not be read."""


class SessionStoreError(AuthFlowError):
    """The session store failed. Never retried internally."""

    public_code = "session_unavailable"
