from __future__ import annotations

import logging
from typing import Optional

from oidc_rp.api.services.authorization import append_query
from oidc_rp.api.services.sessions import SessionStore
from oidc_rp.api.utils.logging import mask_secret
from oidc_rp.errors import SessionStoreError
from oidc_rp.models.auth import ProviderConfig

logger = logging.getLogger(__name__)


def build_logout_url(
    config: ProviderConfig,
    id_token_hint: Optional[str],
    post_logout_redirect_uri: str,
) -> str:
    """RP-initiated logout URL at the IdP.

    Without a logout endpoint there is nothing to notify, so the browser goes
    straight to ``post_logout_redirect_uri``.
    """
    endpoint = config.endpoints.logout
    if not endpoint:
        return post_logout_redirect_uri

    params: dict[str, str] = {}
    if id_token_hint:
        params["id_token_hint"] = id_token_hint
    params["post_logout_redirect_uri"] = post_logout_redirect_uri
    params["client_id"] = config.client_id
    return append_query(endpoint, params)


class LogoutCoordinator:
    def __init__(
        self,
        config: ProviderConfig,
        store: SessionStore,
        post_logout_redirect_uri: str,
    ) -> None:
        self.config = config
        self.store = store
        self.post_logout_redirect_uri = post_logout_redirect_uri

    def logout(self, session_id: Optional[str]) -> str:
        """Destroy the local session, then return the IdP logout URL."""
        id_token_hint: Optional[str] = None
        if session_id:
            try:
                session = self.store.get(session_id)
            except SessionStoreError as exc:
                logger.warning(
                    "Could not read session %s before logout: %s",
                    mask_secret(session_id),
                    exc,
                )
                session = None
            if session is not None:
                id_token_hint = session.id_token

            self.store.destroy(session_id)
            logger.info("Session %s destroyed", mask_secret(session_id))

        return build_logout_url(
            self.config, id_token_hint, self.post_logout_redirect_uri
        )
