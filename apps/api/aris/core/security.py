"""Signed tokens: session JWTs and mailbox OAuth state."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from aris.core.config import settings

ALGORITHM = "HS256"
OAUTH_STATE_MINUTES = 10
OAUTH_STATE_PURPOSE = "oauth_state"


def _sign(claims: dict, lifetime: timedelta) -> str:
    """Sign with the current secret; previous secrets only verify."""
    issued = datetime.now(timezone.utc)
    return jwt.encode({**claims, "iat": issued, "exp": issued + lifetime}, settings.JWT_SECRET, algorithm=ALGORITHM)


def create_session_token(user_id: UUID, org_id: UUID, role: str, token_version: int) -> str:
    claims = {"sub": str(user_id), "org_id": str(org_id), "role": role, "token_version": token_version}
    return _sign(claims, timedelta(hours=settings.JWT_EXPIRES_HOURS))


def decode_session_token(token: str) -> dict:
    """
    Verify against the current secret, then JWT_SECRET_PREVIOUS during rotation.

    Raises:
        jwt.InvalidTokenError: no configured secret accepts the token
    """
    error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=[ALGORITHM])
        except jwt.InvalidTokenError as exc:
            error = exc
    raise error or jwt.InvalidTokenError("No signing secret configured")


def create_oauth_state(user_id: UUID, provider: str) -> str:
    """Short-lived state for a mailbox OAuth round trip, bound to the user."""
    claims = {"sub": str(user_id), "provider": provider, "purpose": OAUTH_STATE_PURPOSE}
    return _sign(claims, timedelta(minutes=OAUTH_STATE_MINUTES))


def verify_oauth_state(state: str, provider: str) -> UUID:
    """
    Return the user the state was issued to.

    Raises:
        jwt.InvalidTokenError: bad signature, expired, or issued for another provider
    """
    claims = decode_session_token(state)
    if claims.get("purpose") != OAUTH_STATE_PURPOSE or claims.get("provider") != provider:
        raise jwt.InvalidTokenError("State does not match provider")
    return UUID(claims["sub"])
