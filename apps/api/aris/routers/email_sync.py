"""Email sync router - inline sync and scheduled sync jobs."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_csrf_header
from aris.schemas.auth import UserSession
from aris.schemas.email import SyncRequest, SyncResponse
from aris.schemas.job import JobQueued
from aris.services import email_sync_service
from aris.services.mail_clients import MailProviderError

router = APIRouter()


@router.post("", response_model=SyncResponse, dependencies=[Depends(require_csrf_header)])
async def sync_now(
    data: SyncRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Run a sync inline for one of the caller's accounts.

    Provider auth failures surface as 401 ("reconnect your account"),
    permission failures as 403.
    """
    try:
        account = email_sync_service.get_syncable_account(db, session.org_id, session.user_id, data.account_id)
    except email_sync_service.EmailAccountNotFoundError:
        raise HTTPException(status_code=404, detail="Email account not found or inactive")

    try:
        outcome = await email_sync_service.sync_account(
            db, account, folders=data.folders, max_per_folder=data.max_emails
        )
    except MailProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return SyncResponse(
        success=True,
        message=f"Synced {outcome['total_saved']} new emails",
        results=outcome["results"],
        total_saved=outcome["total_saved"],
        synced_at=outcome["synced_at"],
    )


@router.post(
    "/schedule",
    response_model=JobQueued,
    status_code=202,
    dependencies=[Depends(require_csrf_header)],
)
def schedule_sync(
    data: SyncRequest,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Queue an email_sync job for the worker."""
    try:
        account = email_sync_service.get_syncable_account(db, session.org_id, session.user_id, data.account_id)
    except email_sync_service.EmailAccountNotFoundError:
        raise HTTPException(status_code=404, detail="Email account not found or inactive")

    job = email_sync_service.schedule_sync(db, account, folders=data.folders, max_emails=data.max_emails)
    return JobQueued(job_id=job.id, status=job.status)
