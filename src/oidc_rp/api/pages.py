from __future__ import annotations

import html
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel

from oidc_rp.api.auth.deps import get_auth_flow, get_current_session
from oidc_rp.api.services.flow import AuthFlow
from oidc_rp.api.templates import (
    DASHBOARD_PAGE,
    ERROR_BLOCK,
    INFO_ITEM,
    WELCOME_PAGE,
)
from oidc_rp.errors import SessionStoreError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])

# Public error codes shown on the welcome page. Anything else gets the default.
ERROR_MESSAGES = {
    "access_denied": "Sign-in was cancelled.",
    "login_required": "Please sign in to continue.",
    "invalid_state": "Your sign-in link expired or was already used. Please try again.",
    "session_unavailable": "Sign-in is temporarily unavailable. Please try again later.",
    "temporarily_unavailable": "Sign-in is temporarily unavailable. Please try again later.",
}
DEFAULT_ERROR_MESSAGE = "Sign-in failed. Please try again."

PROFILE_FIELDS = (
    ("preferred_username", "Username"),
    ("name", "Full Name"),
    ("email", "Email"),
    ("email_verified", "Email Verified"),
    ("sub", "User ID (sub)"),
)


def error_message(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    return ERROR_MESSAGES.get(code, DEFAULT_ERROR_MESSAGE)


def _display_name(claims: dict[str, Any]) -> str:
    return str(claims.get("name") or claims.get("preferred_username") or "User")


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def render_dashboard(claims: dict[str, Any]) -> str:
    items = "".join(
        INFO_ITEM.format(label=label, value=html.escape(_format_value(claims[key])))
        for key, label in PROFILE_FIELDS
        if key in claims
    )
    return DASHBOARD_PAGE.format(
        display_name=html.escape(_display_name(claims)),
        info_items=items,
        raw_claims=html.escape(json.dumps(claims, indent=2, sort_keys=True, default=str)),
    )


@router.get("/", response_class=HTMLResponse)
async def home(error: Optional[str] = None) -> HTMLResponse:
    message = error_message(error)
    block = ERROR_BLOCK.format(message=html.escape(message)) if message else ""
    return HTMLResponse(WELCOME_PAGE.format(provider="organization", error=block))


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard(request: Request, flow: AuthFlow = Depends(get_auth_flow)):
    try:
        session = get_current_session(request)
    except SessionStoreError as exc:
        logger.error("Session lookup failed: %s", exc)
        return RedirectResponse(flow.error_url(exc), status_code=302)
    if session is None:
        return RedirectResponse("/auth/login?next=/dashboard", status_code=302)
    return HTMLResponse(render_dashboard(session.user_claims))


class HealthResponse(BaseModel):
    status: str


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")
