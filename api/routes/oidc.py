"""
api/routes/oidc.py -- Federated (OIDC) login and logout.

Routes:
  GET|POST /login/oidc           -- 302 to the provider's authorization endpoint
  GET      /login/oidc/callback  -- code exchange, provisioning, 302 to the web UI
  GET      /logout/oidc          -- 302 to the provider's end-session endpoint (bearer)

The callback hands the session token to the front end in the redirect
query string:
  <WEB_UI_BASE_URL>/oidc/callback?token=<jwt>&user=<url-encoded json>

All three routes answer 503 oidc_disabled when OIDC is not configured or
discovery failed at startup.

State: generated on every login. It is compared on callback only when
OIDC_VERIFY_STATE is on, using the signed session cookie.
"""

from __future__ import annotations

import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from api.models import UserPublic
from auth.dependencies import current_user_id, require_user_id
from auth.errors import ValidationError
from auth.service import AuthService
from core.config import Settings

router = APIRouter()

_STATE_SESSION_KEY = "oidc_state"


@router.api_route("/login/oidc", methods=["GET", "POST"])
async def oidc_login(request: Request) -> RedirectResponse:
    auth: AuthService = request.app.state.auth
    settings: Settings = request.app.state.settings
    oidc = auth.require_oidc()

    state = oidc.generate_state()
    if settings.oidc_verify_state:
        request.session[_STATE_SESSION_KEY] = state
    return RedirectResponse(await oidc.authorization_url(state), status_code=302)


@router.get("/login/oidc/callback")
async def oidc_callback(request: Request, code: str | None = None, state: str | None = None) -> RedirectResponse:
    """Finish federated login and send the browser back to the web UI.

    400 when the code is missing (or the state mismatches, if checked).
    502 when the provider rejects the code or the ID token fails verification.
    """
    auth: AuthService = request.app.state.auth
    settings: Settings = request.app.state.settings
    auth.require_oidc()

    if not code:
        raise ValidationError("Missing authorization code.")
    if settings.oidc_verify_state:
        expected = request.session.pop(_STATE_SESSION_KEY, None)
        if not expected or not state or not secrets.compare_digest(expected, state):
            raise ValidationError("OIDC state mismatch.")

    grant = await auth.federated_login(code)
    query = urlencode({"token": grant.token, "user": UserPublic.from_user(grant.user).model_dump_json()})
    return RedirectResponse(f"{settings.web_ui_base_url}/oidc/callback?{query}", status_code=302)


@router.get("/logout/oidc", dependencies=[Depends(require_user_id)])
async def oidc_logout(request: Request, user_id: int = Depends(current_user_id)) -> RedirectResponse:
    """500 id_token_missing when no live ID token is stored for the caller."""
    auth: AuthService = request.app.state.auth
    settings: Settings = request.app.state.settings
    url = auth.federated_logout(user_id, f"{settings.web_ui_base_url}/login")
    return RedirectResponse(url, status_code=302)
