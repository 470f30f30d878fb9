"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

Reads configuration from core.config.get_settings() at module load. Google
is registered only when both client ID and secret are configured.

Security notes:
  [H1] Email verification is mandatory. get_oauth_user_info() raises ValueError
       if the provider does not confirm the email is verified.

  OAuth state (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware. When the caller passes a redirectUrl, the state value
  also carries it: base64 of "<random nonce>|<url>", so the state stays
  unguessable. decode_redirect_state() only returns URLs under
  Settings.client_url, so the callback cannot be turned into an open
  redirect.

Layer rule: no imports from api/ or rbac/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("gatekeeper.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Redirect state
# ---------------------------------------------------------------------------


_STATE_SEP = "|"


def encode_redirect_state(redirect_url: str | None) -> str | None:
    """Pack redirect_url behind a random nonce. None lets authlib pick the state."""
    if not redirect_url:
        return None
    raw = f"{secrets.token_urlsafe(16)}{_STATE_SEP}{redirect_url}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_redirect_state(state: str | None, client_url: str) -> str:
    """Return the redirect URL carried in `state`, or client_url.

    Anything that fails to decode or points outside client_url falls back to
    client_url.
    """
    if not state:
        return client_url
    try:
        raw = base64.urlsafe_b64decode(state.encode()).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return client_url
    nonce, sep, url = raw.partition(_STATE_SEP)
    if not (nonce and sep):
        return client_url
    if url == client_url or url.startswith(f"{client_url}/"):
        return url
    return client_url


# ---------------------------------------------------------------------------
# Email / subject extraction [H1]
# ---------------------------------------------------------------------------


async def get_oauth_user_info(client, provider: str, token: dict) -> tuple[str, str]:
    """Extract (email, subject_id) from a provider token response.

    Raises:
        ValueError: If a verified email cannot be confirmed.
    """
    if provider == "google":
        return _get_oidc_user_info(token, provider)
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


def _get_oidc_user_info(token: dict, provider: str) -> tuple[str, str]:
    """Extract (email, subject_id) from an OIDC id_token's userinfo claims.

    [H1] The email claim is only accepted when email_verified is True; a
    missing email_verified claim counts as unverified.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(f"{provider} OAuth: email is not verified.")

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")

    if not email or not subject_id:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return email, subject_id
