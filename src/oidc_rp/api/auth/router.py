from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from oidc_rp.api.auth.deps import get_auth_flow, get_session_id, get_settings
from oidc_rp.api.services.flow import AuthFlow
from oidc_rp.api.utils.logging import mask_secret
from oidc_rp.errors import SessionStoreError
from oidc_rp.models.auth import Failed
from oidc_rp.settings import RPSettings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

CALLBACK_PARAMS = ("code", "state", "error", "error_description")


@router.get("/login")
async def login(
    next: Optional[str] = None,
    flow: AuthFlow = Depends(get_auth_flow),
) -> RedirectResponse:
    try:
        outcome = flow.begin_login(return_to=next)
    except SessionStoreError as exc:
        logger.error("Could not start login: %s", exc)
        return RedirectResponse(flow.error_url(exc), status_code=302)
    return RedirectResponse(outcome.url, status_code=302)


@router.get("/callback")
async def callback(
    request: Request,
    flow: AuthFlow = Depends(get_auth_flow),
    settings: RPSettings = Depends(get_settings),
) -> RedirectResponse:
    params = {key: request.query_params.get(key) for key in CALLBACK_PARAMS}
    outcome = await flow.complete_login(params)

    if isinstance(outcome, Failed):
        return RedirectResponse(outcome.redirect_to, status_code=302)

    # Session fixation: a session that predates this login must not survive it.
    previous = get_session_id(request)
    if previous and previous != outcome.session.session_id:
        try:
            flow.discard_session(previous)
        except SessionStoreError as exc:
            logger.warning(
                "Could not destroy previous session %s: %s", mask_secret(previous), exc
            )

    response = RedirectResponse(outcome.redirect_to, status_code=302)
    response.set_cookie(
        settings.session_cookie_name,
        outcome.session.session_id,
        max_age=settings.session_ttl_seconds or None,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )
    return response


@router.get("/logout")
async def logout(
    request: Request,
    flow: AuthFlow = Depends(get_auth_flow),
    settings: RPSettings = Depends(get_settings),
) -> RedirectResponse:
    session_id = get_session_id(request)
    try:
        outcome = flow.logout(session_id)
    except SessionStoreError as exc:
        logger.error("Logout failed for session %s: %s", mask_secret(session_id), exc)
        response = RedirectResponse(flow.error_url(exc), status_code=302)
    else:
        response = RedirectResponse(outcome.url, status_code=302)

    response.delete_cookie(settings.session_cookie_name, path="/")
    return response
