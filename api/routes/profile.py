"""
api/routes/profile.py -- The authenticated user's own account.

Routes:
  GET /api/profile  -- current user (requires bearer token)
  PUT /api/profile  -- edit username, email, names, or password

The edit always targets the caller's own row; no user id is read from the
body. Existing session tokens stay valid after a username or password
change, since they carry only the user id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ProfileUpdate, UserPublic
from auth.dependencies import current_user_id, require_user_id
from auth.errors import AuthenticationError
from auth.service import AuthService

router = APIRouter(dependencies=[Depends(require_user_id)])


@router.get("/profile", response_model=UserPublic)
def get_profile(request: Request, user_id: int = Depends(current_user_id)) -> UserPublic:
    auth: AuthService = request.app.state.auth
    user = auth.directory.get_by_id(user_id)
    if user is None:
        # Valid token for an account that no longer exists.
        raise AuthenticationError("Invalid or expired token.")
    return UserPublic.from_user(user)


@router.put("/profile", response_model=UserPublic)
def update_profile(request: Request, body: ProfileUpdate, user_id: int = Depends(current_user_id)) -> UserPublic:
    """401 on a wrong current password, 409 when the username or email is taken."""
    auth: AuthService = request.app.state.auth
    user = auth.update_profile(user_id, **body.model_dump())
    return UserPublic.from_user(user)
