"""Jobs router - status of queued background work."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from aris.core.deps import get_current_session, get_db, require_roles
from aris.db.enums import JobStatus, JobType, Role
from aris.schemas.auth import UserSession
from aris.schemas.job import JobRead
from aris.services import job_service

router = APIRouter()


@router.get("", response_model=list[JobRead])
def list_jobs(
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = Query(50, ge=1, le=100),
    session: UserSession = Depends(require_roles([Role.ADMIN, Role.OWNER])),
    db: Session = Depends(get_db),
):
    """Recent jobs of the organization (admin only)."""
    return job_service.list_jobs(db, session.org_id, status=status, job_type=job_type, limit=limit)


@router.get("/{job_id}", response_model=JobRead)
def get_job(
    job_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Poll a job returned by a scheduling endpoint."""
    job = job_service.get_job(db, job_id, org_id=session.org_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
