"""
auth/oauth.py -- Authlib OAuth provider configuration.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

Security notes:
  [H1] Email verification is mandatory. get_oauth_user_info() raises ValueError
       if the provider does not confirm the email is verified. An unverified
       GitHub email could belong to an attacker who added a victim's address
       without confirming it.

  OAuth state parameter (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Accounts provisioned from OAuth get the STUDENT role and no password hash.

Layer rule: no imports from api/ or projects/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("capstone.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user user:email"},
    )
    logger.info("GitHub OAuth provider registered")

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


@dataclass
class OAuthIdentity:
    """Normalized identity extracted from a provider token."""

    email: str
    subject: str
    first_name: str = ""
    last_name: str = ""
    image: str | None = None


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return metadata for every configured OAuth provider.

    Used by GET /api/v1/auth/providers and to validate the provider path
    parameter before redirecting. Returns list of {"name", "label"} dicts.
    """
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_user_info(client, provider: str, token: dict) -> OAuthIdentity:
    """Extract a verified OAuthIdentity from a provider token response.

    Raises:
        ValueError: If a verified email cannot be confirmed or the provider is unknown.
    """
    if provider == "github":
        return await _get_github_user_info(client, token)
    elif provider == "google":
        return _get_google_user_info(token)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


def _split_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


async def _get_github_user_info(client, token: dict) -> OAuthIdentity:
    """Extract the identity from a GitHub token.

    GitHub does not include the email in the access token. Two API calls are
    required: GET /user for the numeric ID and profile, GET /user/emails for
    the primary verified email [H1].
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    subject_id = str(profile["id"])

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    emails = emails_resp.json()

    email: str | None = None
    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )

    first, last = _split_name(profile.get("name") or "")
    return OAuthIdentity(
        email=email,
        subject=subject_id,
        first_name=first or profile.get("login", ""),
        last_name=last,
        image=profile.get("avatar_url"),
    )


def _get_google_user_info(token: dict) -> OAuthIdentity:
    """Extract the identity from a Google id_token.

    [H1] The email claim is only accepted when email_verified is True.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError("google OAuth: email is not verified.")

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    first = userinfo.get("given_name")
    last = userinfo.get("family_name")
    if first is None:
        first, last = _split_name(userinfo.get("name") or "")
    return OAuthIdentity(
        email=email,
        subject=subject_id,
        first_name=first or "",
        last_name=last or "",
        image=userinfo.get("picture"),
    )
