"""
api/routes/v1/users.py -- Profile endpoints for the authenticated user.

Routes:
  GET   /api/v1/users/me  -- profile plus owned-project, membership, and task counts
  PATCH /api/v1/users/me  -- update names; optionally change password

Password changes go through auth.tokens.change_password(), which raises
ValidationFailure (400) for OAuth-only accounts, a missing or wrong current
password, and a new password below the minimum length.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ProfileResponse, ProfileUpdate
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import change_password
from core.access import AccessEvaluator, Action, Resource
from projects.store import ProjectStore

router = APIRouter()


def _profile(user: User, project_store: ProjectStore) -> ProfileResponse:
    counts = project_store.user_summary_counts(user.id)
    return ProfileResponse(
        id=user.id,
        email=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        image=user.image,
        oauth_provider=user.oauth_provider,
        has_password=user.has_password,
        created_at=user.created_at or "",
        **counts,
    )


@router.get("/users/me", response_model=ProfileResponse)
def get_profile(request: Request, current_user: User = Depends(get_current_user)) -> ProfileResponse:
    return _profile(current_user, request.app.state.project_store)


@router.patch("/users/me", response_model=ProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    """Update the caller's own profile.

    Name changes and the password change are applied together in a single
    update_user() call, and only after every check has passed.
    """
    access: AccessEvaluator = request.app.state.access
    user_store: UserStore = request.app.state.user_store
    own = Resource(user_id=current_user.id)

    access.require(current_user.id, Action.UPDATE_PROFILE, own)
    updates: dict = body.model_dump(include={"first_name", "last_name"}, exclude_none=True)

    if body.new_password is not None:
        access.require(current_user.id, Action.CHANGE_PASSWORD, own)
        updates["hashed_password"] = change_password(current_user, body.current_password, body.new_password)

    if updates:
        user_store.update_user(current_user.id, **updates)

    refreshed = user_store.get_by_id(current_user.id) or current_user
    return _profile(refreshed, request.app.state.project_store)
