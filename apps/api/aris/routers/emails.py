"""Emails router - the synced email index, cached content and AI analysis."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.schemas.auth import UserSession
from aris.schemas.email import AnalyzeRequest, EmailDetail, EmailListItem, EmailListResponse, EmailStats
from aris.services import ai_service, email_index_service
from aris.services.ai_provider import AIProviderError
from aris.services.mail_clients import MailProviderError
from aris.utils.ai_errors import to_http_exception
from aris.utils.pagination import PaginationParams, get_pagination

router = APIRouter()


def _get_or_404(db: Session, session: UserSession, email_id: UUID):
    email = email_index_service.get_email(db, session.org_id, session.user_id, email_id)
    if not email:
        raise HTTPException(status_code=404, detail="Email not found")
    return email


@router.get("", response_model=EmailListResponse)
def list_emails(
    account_id: UUID | None = None,
    folder: str | None = Query(None, max_length=100),
    pagination: PaginationParams = Depends(get_pagination),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Newest first, with derived email_status and opportunity_value."""
    items, total = email_index_service.list_emails(
        db,
        session.org_id,
        session.user_id,
        account_id=account_id,
        folder=folder,
        page=pagination.page,
        limit=pagination.limit,
    )
    return EmailListResponse(
        items=[email_index_service.to_list_item(e) for e in items],
        total=total,
        page=pagination.page,
        limit=pagination.limit,
        pages=pagination.pages(total),
    )


@router.get("/search", response_model=list[EmailListItem])
def search_emails(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    emails = email_index_service.search_emails(db, session.org_id, session.user_id, q, limit=limit)
    return [email_index_service.to_list_item(e) for e in emails]


@router.get("/stats", response_model=EmailStats)
def get_stats(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return email_index_service.get_stats(db, session.org_id, session.user_id)


@router.get("/unanalyzed", response_model=list[EmailListItem])
def list_unanalyzed(
    limit: int = Query(50, ge=1, le=200),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    emails = email_index_service.list_unanalyzed(db, session.org_id, session.user_id, limit=limit)
    return [email_index_service.to_list_item(e) for e in emails]


@router.get("/{email_id}", response_model=EmailDetail)
async def get_email(
    email_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Index row plus body, served from the content cache or refetched."""
    email = _get_or_404(db, session, email_id)
    try:
        return await email_index_service.get_email_detail(db, email)
    except MailProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post(
    "/{email_id}/replied",
    response_model=EmailListItem,
    dependencies=[Depends(require_csrf_header)],
)
def mark_replied(
    email_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    email = _get_or_404(db, session, email_id)
    return email_index_service.to_list_item(email_index_service.mark_replied(db, email))


@router.post(
    "/{email_id}/read",
    response_model=EmailListItem,
    dependencies=[Depends(require_csrf_header)],
)
def mark_read(
    email_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    email = _get_or_404(db, session, email_id)
    return email_index_service.to_list_item(email_index_service.mark_read(db, email))


@router.post(
    "/{email_id}/analyze",
    response_model=EmailDetail,
    dependencies=[Depends(require_csrf_header)],
)
async def analyze_email(
    email_id: UUID,
    data: AnalyzeRequest | None = None,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Run AI analysis. Already analysed emails are skipped unless force is set."""
    email = _get_or_404(db, session, email_id)
    force = data.force if data else False
    try:
        email = await email_index_service.analyze_email(
            db, session.org_id, session.user_id, email, force=force
        )
    except (ai_service.AIServiceError, AIProviderError) as e:
        raise to_http_exception(e)
    item = email_index_service.to_list_item(email)
    item["upsell_data"] = email.upsell_data
    item["content"] = None
    return item
