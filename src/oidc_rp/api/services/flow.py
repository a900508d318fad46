"""Authentication flow coordinator.

Drives one login attempt through

    idle -> pending -> exchanging -> validated -> session_established

with ``failed`` reachable from every step. Results are typed outcomes
(``Redirect``, ``SessionEstablished``, ``Failed``) that the HTTP layer turns
into responses; nothing here knows about requests or cookies.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Mapping, Optional, Union

import httpx

from oidc_rp.api.services.authorization import append_query, build_authorization_url
from oidc_rp.api.services.jwks import JWKSCache
from oidc_rp.api.services.logout import LogoutCoordinator
from oidc_rp.api.services.sessions import SessionMaterializer, SessionStore
from oidc_rp.api.services.state import PendingAttemptStore, StateManager
from oidc_rp.api.services.tokens import CallbackHandler, IDTokenValidator, TokenExchanger
from oidc_rp.api.services.userinfo import UserInfoFetcher
from oidc_rp.api.utils.logging import mask_secret, sanitize_for_log
from oidc_rp.errors import AuthFlowError
from oidc_rp.models.auth import (
    AttemptStatus,
    Failed,
    ProviderConfig,
    Redirect,
    SessionEstablished,
)
from oidc_rp.settings import RPSettings

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    AttemptStatus.IDLE: {AttemptStatus.PENDING, AttemptStatus.FAILED},
    AttemptStatus.PENDING: {AttemptStatus.EXCHANGING, AttemptStatus.FAILED},
    AttemptStatus.EXCHANGING: {AttemptStatus.VALIDATED, AttemptStatus.FAILED},
    AttemptStatus.VALIDATED: {
        AttemptStatus.SESSION_ESTABLISHED,
        AttemptStatus.FAILED,
    },
    AttemptStatus.SESSION_ESTABLISHED: set(),
    AttemptStatus.FAILED: set(),
}


class LoginAttempt:
    """Status tracker for a single attempt. Terminal states never change."""

    def __init__(self, status: AttemptStatus = AttemptStatus.IDLE) -> None:
        self.status = status
        self.failed_at: Optional[AttemptStatus] = None

    def advance(self, target: AttemptStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise RuntimeError(
                f"Invalid login attempt transition {self.status.value} -> {target.value}"
            )
        if target is AttemptStatus.FAILED:
            self.failed_at = self.status
        self.status = target


def is_local_path(value: Optional[str]) -> bool:
    """True for absolute paths on this site (``/x``), false for ``//host`` etc."""
    if not value or not value.startswith("/"):
        return False
    if value.startswith("//") or value.startswith("/\\"):
        return False
    return not any(ch in value for ch in "\r\n\t")


class AuthFlow:
    def __init__(
        self,
        config: ProviderConfig,
        state_manager: StateManager,
        callback_handler: CallbackHandler,
        userinfo: UserInfoFetcher,
        materializer: SessionMaterializer,
        logout_coordinator: LogoutCoordinator,
        post_login_redirect: str = "/dashboard",
        error_redirect: str = "/",
    ) -> None:
        self.config = config
        self.state_manager = state_manager
        self.callback_handler = callback_handler
        self.userinfo = userinfo
        self.materializer = materializer
        self.logout_coordinator = logout_coordinator
        self.post_login_redirect = post_login_redirect
        self.error_redirect = error_redirect

    def begin_login(self, return_to: Optional[str] = None) -> Redirect:
        attempt = LoginAttempt()
        record = self.state_manager.issue(
            return_to=return_to if is_local_path(return_to) else None
        )
        attempt.advance(AttemptStatus.PENDING)
        logger.info("Login started state=%s", mask_secret(record.state))
        return Redirect(url=build_authorization_url(self.config, record))

    async def complete_login(
        self, params: Mapping[str, Optional[str]]
    ) -> Union[SessionEstablished, Failed]:
        attempt = LoginAttempt(AttemptStatus.PENDING)
        try:
            self.callback_handler.check_for_error(params)
            record = self.callback_handler.consume_state(params)

            attempt.advance(AttemptStatus.EXCHANGING)
            token_set = await self.callback_handler.exchange_and_validate(
                params.get("code"), record
            )

            attempt.advance(AttemptStatus.VALIDATED)
            claims = await self.userinfo.fetch_claims(token_set)
            session = self.materializer.materialize(claims, token_set)

            attempt.advance(AttemptStatus.SESSION_ESTABLISHED)
        except AuthFlowError as exc:
            attempt.advance(AttemptStatus.FAILED)
            failed_at = attempt.failed_at or AttemptStatus.PENDING
            logger.log(
                exc.log_level,
                "Login failed during %s: %s: %s",
                failed_at.value,
                exc.__class__.__name__,
                sanitize_for_log(str(exc)),
            )
            return Failed(
                error=exc,
                failed_at=failed_at,
                redirect_to=self.error_url(exc),
            )
        except asyncio.CancelledError:
            logger.warning("Login cancelled during %s", attempt.status.value)
            attempt.advance(AttemptStatus.FAILED)
            raise

        redirect_to = (
            record.return_to if is_local_path(record.return_to) else self.post_login_redirect
        )
        return SessionEstablished(session=session, redirect_to=redirect_to)

    def logout(self, session_id: Optional[str]) -> Redirect:
        return Redirect(url=self.logout_coordinator.logout(session_id))

    def discard_session(self, session_id: str) -> None:
        """Drop a session without IdP logout, e.g. one replaced by a new login."""
        self.materializer.store.destroy(session_id)

    def error_url(self, error: AuthFlowError) -> str:
        return append_query(self.error_redirect, {"error": error.public_code})


def build_auth_flow(
    settings: RPSettings,
    config: ProviderConfig,
    http_client: httpx.AsyncClient,
    pending_store: PendingAttemptStore,
    session_store: SessionStore,
    clock: Callable[[], float] = time.time,
) -> AuthFlow:
    """Wire the flow components for one provider configuration."""
    state_manager = StateManager(
        pending_store,
        ttl_seconds=config.state_ttl_seconds,
        pkce_enabled=config.pkce_enabled,
        clock=clock,
    )
    jwks = JWKSCache(
        config.endpoints.jwks,
        http_client,
        ttl_seconds=settings.jwks_cache_ttl_seconds,
        stale_grace_seconds=settings.jwks_stale_grace_seconds,
        timeout_seconds=config.http_timeout_seconds,
        clock=clock,
    )
    callback_handler = CallbackHandler(
        state_manager,
        TokenExchanger(config, http_client),
        IDTokenValidator(config, jwks),
        clock=clock,
    )
    return AuthFlow(
        config=config,
        state_manager=state_manager,
        callback_handler=callback_handler,
        userinfo=UserInfoFetcher(config, http_client),
        materializer=SessionMaterializer(
            session_store, ttl_seconds=settings.session_ttl_seconds, clock=clock
        ),
        logout_coordinator=LogoutCoordinator(
            config, session_store, settings.resolved_post_logout_redirect_uri
        ),
        post_login_redirect=settings.post_login_redirect,
        error_redirect=settings.error_redirect,
    )
