"""OAuth service for Microsoft and Google mailboxes.

Builds authorization URLs, exchanges codes, refreshes tokens and keeps the
encrypted tokens on EmailAccount up to date.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.core.encryption import decrypt_secret, encrypt_secret
from aris.db.enums import EmailProvider
from aris.db.models import EmailAccount
from aris.db.types import utcnow
from aris.services.http_service import request_with_retries
from aris.services.mail_clients import MailProviderAuthError, MailProviderError

logger = logging.getLogger(__name__)

# Refresh a little before the provider actually expires the token
EXPIRY_SKEW = timedelta(seconds=60)


class OAuthError(Exception):
    """OAuth exchange failed or the provider is not configured."""


class OAuthUnavailableError(OAuthError):
    """The provider token or profile endpoint could not be reached."""


def _is_expired(expires_at: datetime | None) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at - EXPIRY_SKEW <= utcnow()


# ============================================================================
# Microsoft
# ============================================================================

MICROSOFT_SCOPES = [
    "offline_access",
    "openid",
    "email",
    "https://graph.microsoft.com/User.Read",
    "https://graph.microsoft.com/Mail.ReadWrite",
    "https://graph.microsoft.com/Mail.Send",
]
MICROSOFT_PROFILE_URL = "https://graph.microsoft.com/v1.0/me"


def _microsoft_base() -> str:
    return f"https://login.microsoftonline.com/{settings.MICROSOFT_TENANT}/oauth2/v2.0"


# ============================================================================
# Google
# ============================================================================

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


def _provider_config(provider: EmailProvider) -> dict[str, Any]:
    if provider == EmailProvider.MICROSOFT:
        return {
            "auth_url": f"{_microsoft_base()}/authorize",
            "token_url": f"{_microsoft_base()}/token",
            "client_id": settings.MICROSOFT_CLIENT_ID,
            "client_secret": settings.MICROSOFT_CLIENT_SECRET,
            "redirect_uri": settings.MICROSOFT_REDIRECT_URI,
            "scopes": MICROSOFT_SCOPES,
            "extra": {"response_mode": "query", "prompt": "select_account"},
        }
    if provider == EmailProvider.GOOGLE:
        return {
            "auth_url": GOOGLE_AUTH_URL,
            "token_url": GOOGLE_TOKEN_URL,
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "redirect_uri": settings.GOOGLE_REDIRECT_URI,
            "scopes": GOOGLE_SCOPES,
            "extra": {"access_type": "offline", "prompt": "consent"},
        }
    raise OAuthError(f"OAuth is not available for provider '{provider.value}'")


def get_authorization_url(provider: EmailProvider, state: str) -> str:
    """Authorization URL the browser is sent to."""
    config = _provider_config(provider)
    if not config["client_id"]:
        raise OAuthError(f"{provider.value} OAuth is not configured")
    params = {
        "client_id": config["client_id"],
        "redirect_uri": config["redirect_uri"],
        "response_type": "code",
        "scope": " ".join(config["scopes"]),
        "state": state,
        **config["extra"],
    }
    return f"{config['auth_url']}?{urlencode(params)}"


async def _token_request(provider: EmailProvider, data: dict[str, str]) -> dict[str, Any]:
    config = _provider_config(provider)
    body = {
        "client_id": config["client_id"],
        "client_secret": config["client_secret"],
        **data,
    }
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await request_with_retries(lambda: client.post(config["token_url"], data=body))
    except httpx.RequestError as exc:
        raise OAuthUnavailableError(f"{provider.value} token endpoint unreachable: {type(exc).__name__}") from exc
    if response.status_code >= 400:
        logger.warning("%s token endpoint returned %s", provider.value, response.status_code)
        raise OAuthError(f"{provider.value} token request failed ({response.status_code})")
    return response.json()


async def exchange_code(provider: EmailProvider, code: str) -> dict[str, Any]:
    """Exchange an authorization code for tokens."""
    config = _provider_config(provider)
    return await _token_request(provider, {
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config["redirect_uri"],
    })


async def refresh_access_token(provider: EmailProvider, refresh_token: str) -> dict[str, Any]:
    return await _token_request(provider, {
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    })


async def fetch_mailbox_identity(provider: EmailProvider, access_token: str) -> tuple[str, str | None]:
    """Return (email, display_name) of the mailbox behind a token."""
    url = MICROSOFT_PROFILE_URL if provider == EmailProvider.MICROSOFT else GOOGLE_USERINFO_URL
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.get(url, headers={"Authorization": f"Bearer {access_token}"})
    except httpx.RequestError as exc:
        raise OAuthUnavailableError(f"{provider.value} profile endpoint unreachable: {type(exc).__name__}") from exc
    if response.status_code >= 400:
        raise OAuthError(f"Could not read {provider.value} profile ({response.status_code})")
    data = response.json()

    if provider == EmailProvider.MICROSOFT:
        email = data.get("mail") or data.get("userPrincipalName")
        name = data.get("displayName")
    else:
        email = data.get("email")
        name = data.get("name")
    if not email:
        raise OAuthError("Provider profile has no email address")
    return email.lower(), name


# ============================================================================
# Token storage
# ============================================================================

def store_tokens(account: EmailAccount, tokens: dict[str, Any]) -> None:
    """Write (encrypted) tokens onto the account. Caller commits."""
    account.access_token_encrypted = encrypt_secret(tokens["access_token"])
    if tokens.get("refresh_token"):
        account.refresh_token_encrypted = encrypt_secret(tokens["refresh_token"])
    expires_in = tokens.get("expires_in")
    account.token_expires_at = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None


async def get_valid_access_token(db: Session, account: EmailAccount) -> str:
    """
    Decrypted access token, refreshed first if it has expired.

    Raises:
        MailProviderAuthError: No token or the refresh was rejected
    """
    if not account.access_token_encrypted:
        raise MailProviderAuthError()

    if _is_expired(account.token_expires_at):
        if not account.refresh_token_encrypted:
            raise MailProviderAuthError()
        provider = EmailProvider(account.provider_type)
        try:
            tokens = await refresh_access_token(provider, decrypt_secret(account.refresh_token_encrypted))
        except OAuthUnavailableError as exc:
            raise MailProviderError(str(exc)) from exc
        except OAuthError as exc:
            logger.warning("Token refresh failed for account %s: %s", account.id, exc)
            raise MailProviderAuthError() from exc
        store_tokens(account, tokens)
        db.commit()

    return decrypt_secret(account.access_token_encrypted)
