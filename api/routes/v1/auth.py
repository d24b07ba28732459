"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login                -- password login; sets JWT cookie
  POST /api/v1/auth/logout               -- clears cookie; 200
  POST /api/v1/auth/register             -- self-registration (STUDENT accounts)
  GET  /api/v1/auth/me                   -- current user info (requires auth)
  GET  /api/v1/auth/providers            -- list enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}     -- redirect to the provider's consent page
  GET  /api/v1/auth/callback/{provider}  -- OAuth callback; provisions or links the account

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [H1] OAuth identities are only accepted with a provider-verified email.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    OAuthProviderInfo,
    RegisterRequest,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.oauth import OAuthIdentity, get_enabled_providers, get_oauth_user_info
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    hash_password,
    set_auth_cookie,
)
from core.access import ValidationFailure
from core.config import get_settings
from core.models import UserRole

logger = logging.getLogger("capstone.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:               public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:              public -- clearing a cookie needs no prior auth
# - POST /api/v1/auth/register:            public, unless SELF_REGISTRATION_ENABLED=false
# - GET  /api/v1/auth/providers:           public -- clients call this to render OAuth buttons
# - GET  /api/v1/auth/oauth/{provider}:    public -- starts the OAuth flow
# - GET  /api/v1/auth/callback/{provider}: public -- authlib verifies the session state
# - GET  /api/v1/auth/me:                  requires auth (get_current_user)
router = APIRouter()


def _token_response(user: User, status_code: int = 200) -> JSONResponse:
    """Issue a JWT for user and return it in the body and as a cookie."""
    token = create_access_token(user.id, user.username, user.role)
    resp = JSONResponse(
        status_code=status_code,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            username=user.username,
            role=user.role,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Uses authenticate_user() which includes timing equalization [C1].
    Returns the same generic error for an unknown email, a wrong password,
    and an OAuth-only account so account existence does not leak.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        logger.info("Failed login attempt for %r", body.username.lower())
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    user_store.update_last_login(user.id)
    return _token_response(user)


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.post("/auth/register", response_model=MeResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> MeResponse:
    """Create a STUDENT account with a local password.

    Instructor accounts are provisioned out of band (python main.py create-user).
    """
    if not _settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    if len(body.password) < _settings.min_password_length:
        raise ValidationFailure(f"Password must be at least {_settings.min_password_length} characters long.")

    user_store: UserStore = request.app.state.user_store
    new_user = User(
        username=body.email,
        role=UserRole.STUDENT.value,
        first_name=body.first_name,
        last_name=body.last_name,
        hashed_password=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that email already exists."},
        ) from exc

    logger.info("Registered user id=%s", user_id)
    return _me(user_store.get_by_id(user_id))


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the list of configured OAuth providers.

    Returns an empty list if no OAuth env vars are set.
    """
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# OAuth flow
# ---------------------------------------------------------------------------


def _require_enabled(provider: str) -> None:
    """Reject provider names that are not configured.

    Prevents a crafted provider path segment from reaching the registry.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "OAuth provider not available."},
        )


def _oauth_failed() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "oauth_failed", "message": "OAuth authentication failed. Please try again."},
    )


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the client to the OAuth provider's authorization page."""
    _require_enabled(provider)
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> JSONResponse:
    """Handle the OAuth provider callback and issue a JWT cookie.

    Flow:
      1. Exchange authorization code for token (authlib handles CSRF via session state).
      2. Extract a verified identity -- raises ValueError if unverified [H1].
      3. Look up by (provider, subject) -- fast path for returning users.
      4. Otherwise resolve by email (see _resolve_oauth_user).
      5. Reject inactive accounts, issue JWT.
    """
    _require_enabled(provider)
    user_store: UserStore = request.app.state.user_store
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        raise _oauth_failed() from exc

    try:
        identity = await get_oauth_user_info(client, provider, token)
    except ValueError as exc:
        logger.warning("OAuth login rejected: unverified or missing email from %r", provider)
        raise _oauth_failed() from exc

    user = user_store.get_by_oauth(provider, identity.subject)
    if user is None:
        user = _resolve_oauth_user(user_store, provider, identity)

    if not user.is_active:
        raise HTTPException(
            status_code=403,
            detail={"code": "account_disabled", "message": "This account has been disabled."},
        )

    user_store.update_last_login(user.id)
    return _token_response(user)


def _resolve_oauth_user(user_store: UserStore, provider: str, identity: OAuthIdentity) -> User:
    """Link or provision the account for a first-time OAuth login.

    - Existing account with this email and no OAuth link: link it.
    - Existing account already linked to a different identity: refuse.
    - No account: provision an OAuth-only STUDENT from the provider profile.
    """
    existing = user_store.get_by_username(identity.email)
    if existing is not None:
        if existing.oauth_subject is not None:
            logger.warning("OAuth login rejected: %r is linked to another identity", identity.email)
            raise _oauth_failed()
        user_store.link_oauth(existing.id, provider, identity.subject)
        logger.info("Linked %s identity to user id=%s", provider, existing.id)
        return user_store.get_by_id(existing.id)

    new_user = User(
        username=identity.email,
        role=UserRole.STUDENT.value,
        first_name=identity.first_name,
        last_name=identity.last_name,
        image=identity.image,
        oauth_provider=provider,
        oauth_subject=identity.subject,
    )
    user_id = user_store.create_user(new_user)
    logger.info("Provisioned OAuth user id=%s via %s", user_id, provider)
    return user_store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return _me(current_user)


def _me(user: User | None) -> MeResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return MeResponse(
        user_id=user.id,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        oauth_provider=user.oauth_provider,
        image=user.image,
    )
