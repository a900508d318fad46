from __future__ import annotations

from typing import Optional

from fastapi import Request

from oidc_rp.api.services.flow import AuthFlow
from oidc_rp.api.services.sessions import SessionStore
from oidc_rp.models.auth import Session
from oidc_rp.settings import RPSettings


def get_settings(request: Request) -> RPSettings:
    return request.app.state.settings


def get_auth_flow(request: Request) -> AuthFlow:
    return request.app.state.auth_flow


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_session_id(request: Request) -> Optional[str]:
    settings = get_settings(request)
    return request.cookies.get(settings.session_cookie_name) or None


def get_current_session(request: Request) -> Optional[Session]:
    """The logged-in session for the request's cookie, if any.

    Store failures raise ``SessionStoreError``; an outage is not a logout.
    """
    session_id = get_session_id(request)
    if not session_id:
        return None
    session = get_session_store(request).get(session_id)
    if session is None or not session.logged_in:
        return None
    return session
