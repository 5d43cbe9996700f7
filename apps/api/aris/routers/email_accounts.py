"""Email accounts router - connected mailboxes, connection tests and OAuth connect."""

import logging
from urllib.parse import urlencode
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.core.security import create_oauth_state, verify_oauth_state
from aris.core.structured_logging import mask_email
from aris.db.enums import EmailProvider
from aris.schemas.auth import UserSession
from aris.schemas.email import (
    ConnectionTestResponse,
    EmailAccountCreate,
    EmailAccountRead,
    EmailAccountSetup,
    EmailAccountUpdate,
)
from aris.services import email_account_service, oauth_service

logger = logging.getLogger(__name__)

router = APIRouter()

OAUTH_PROVIDERS = {EmailProvider.MICROSOFT.value, EmailProvider.GOOGLE.value}


def _get_or_404(db: Session, session: UserSession, account_id: UUID):
    account = email_account_service.get_account(db, session.org_id, session.user_id, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Email account not found")
    return account


def _oauth_provider(provider: str) -> EmailProvider:
    if provider not in OAUTH_PROVIDERS:
        raise HTTPException(status_code=400, detail=f"Unsupported OAuth provider '{provider}'")
    return EmailProvider(provider)


def _settings_redirect(**params: str) -> RedirectResponse:
    base = settings.FRONTEND_URL.rstrip("/")
    return RedirectResponse(url=f"{base}/settings/email?{urlencode(params)}", status_code=302)


# =============================================================================
# Accounts
# =============================================================================

@router.get("", response_model=list[EmailAccountRead])
def list_accounts(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return email_account_service.list_accounts(db, session.org_id, session.user_id)


@router.post(
    "",
    response_model=EmailAccountRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_account(
    data: EmailAccountCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Connect an IMAP mailbox."""
    try:
        return email_account_service.create_imap_account(db, session.org_id, session.user_id, data)
    except email_account_service.DuplicateEmailAccountError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/{account_id}", response_model=EmailAccountRead)
def get_account(
    account_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return _get_or_404(db, session, account_id)


@router.patch(
    "/{account_id}",
    response_model=EmailAccountRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_account(
    account_id: UUID,
    data: EmailAccountUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    account = _get_or_404(db, session, account_id)
    return email_account_service.update_account(db, account, data)


@router.delete("/{account_id}", status_code=204, dependencies=[Depends(require_csrf_header)])
def delete_account(
    account_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    account = _get_or_404(db, session, account_id)
    email_account_service.delete_account(db, account)


@router.post(
    "/{account_id}/test",
    response_model=ConnectionTestResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def test_account(
    account_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """IMAP login, or a profile fetch for OAuth mailboxes."""
    account = _get_or_404(db, session, account_id)
    success, message = await email_account_service.test_connection(db, account)
    return ConnectionTestResponse(success=success, message=message)


@router.post(
    "/{account_id}/setup",
    response_model=EmailAccountRead,
    dependencies=[Depends(require_csrf_header)],
)
def setup_account(
    account_id: UUID,
    data: EmailAccountSetup,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Store initial sync amounts and queue the initial sync job."""
    account = _get_or_404(db, session, account_id)
    return email_account_service.complete_setup(db, account, data.inbox_count, data.sent_count)


# =============================================================================
# OAuth connect
# =============================================================================

@router.get("/oauth/{provider}/start")
def oauth_start(
    provider: str,
    session: UserSession = Depends(get_current_session),
):
    """Authorization URL for the browser. The state is bound to the caller."""
    email_provider = _oauth_provider(provider)
    state = create_oauth_state(session.user_id, email_provider.value)
    try:
        url = oauth_service.get_authorization_url(email_provider, state)
    except oauth_service.OAuthError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"authorization_url": url}


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Exchange the code, resolve the mailbox and redirect back to settings."""
    email_provider = _oauth_provider(provider)
    if error:
        logger.info("OAuth %s denied: %s", provider, error)
        return _settings_redirect(error=error)
    if not code or not state:
        return _settings_redirect(error="missing_code")

    try:
        state_user_id = verify_oauth_state(state, email_provider.value)
    except jwt.InvalidTokenError:
        return _settings_redirect(error="invalid_state")
    if state_user_id != session.user_id:
        return _settings_redirect(error="invalid_state")

    try:
        tokens = await oauth_service.exchange_code(email_provider, code)
        email, display_name = await oauth_service.fetch_mailbox_identity(
            email_provider, tokens["access_token"]
        )
    except (oauth_service.OAuthError, KeyError) as exc:
        logger.warning("OAuth %s callback failed: %s", provider, exc)
        return _settings_redirect(error="oauth_failed")

    account = email_account_service.upsert_oauth_account(
        db, session.org_id, session.user_id, email_provider, email, display_name, tokens
    )
    logger.info("Connected %s mailbox %s", provider, mask_email(email))
    return _settings_redirect(connected=provider, account_id=str(account.id))
