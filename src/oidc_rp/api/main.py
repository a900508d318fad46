"""FastAPI application factory.

Provider configuration is resolved once at startup; a ``ConfigError`` there
aborts startup instead of serving a half-configured login.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from oidc_rp import __version__
from oidc_rp.api import pages
from oidc_rp.api.auth import router as auth_router
from oidc_rp.api.services.discovery import ProviderConfigResolver
from oidc_rp.api.services.flow import build_auth_flow
from oidc_rp.api.services.sessions import SessionStore, create_session_store
from oidc_rp.api.services.state import PendingAttemptStore, create_pending_store
from oidc_rp.models.auth import ProviderConfig
from oidc_rp.settings import RPSettings, load_settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[RPSettings] = None,
    provider_config: Optional[ProviderConfig] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    pending_store: Optional[PendingAttemptStore] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """Build the app. Arguments left as ``None`` are created from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rp_settings = settings or load_settings()
        owns_client = http_client is None
        client = http_client or httpx.AsyncClient(
            timeout=rp_settings.http_timeout_seconds
        )
        try:
            config = provider_config
            if config is None:
                config = await ProviderConfigResolver(rp_settings, client).resolve()

            sessions = session_store or create_session_store(
                rp_settings.redis_url, rp_settings.session_ttl_seconds
            )
            app.state.settings = rp_settings
            app.state.provider_config = config
            app.state.session_store = sessions
            app.state.auth_flow = build_auth_flow(
                rp_settings,
                config,
                client,
                pending_store or create_pending_store(rp_settings.redis_url),
                sessions,
            )
            logger.info("Relying party ready (client_id=%s)", config.client_id)
            yield
        finally:
            if owns_client:
                await client.aclose()

    app = FastAPI(title="oidc-rp", version=__version__, lifespan=lifespan)
    app.include_router(auth_router.router)
    app.include_router(pages.router)
    return app


app = create_app()
