"""Background job queue backed by the jobs table.

Jobs move pending -> running -> completed, or back to pending on failure
until max_attempts is used up, then failed.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aris.db.enums import JobStatus, JobType
from aris.db.models import Job
from aris.db.types import utcnow

MAX_ERROR_LENGTH = 2000


def _by_idempotency_key(db: Session, key: str) -> Job | None:
    return db.query(Job).filter(Job.idempotency_key == key).first()


def _save(db: Session, job: Job) -> Job:
    db.commit()
    db.refresh(job)
    return job


def schedule_job(
    db: Session,
    org_id: UUID,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> Job:
    """
    Enqueue a job, due now unless run_at says otherwise.

    A job already holding idempotency_key is returned unchanged.
    """
    if idempotency_key and (existing := _by_idempotency_key(db, idempotency_key)):
        return existing

    job = Job(
        organization_id=org_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or utcnow(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    try:
        return _save(db, job)
    except IntegrityError:
        # another writer inserted the same key first
        db.rollback()
        winner = _by_idempotency_key(db, idempotency_key) if idempotency_key else None
        if winner is None:
            raise
        return winner


def get_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    due = (Job.status == JobStatus.PENDING.value) & (Job.run_at <= utcnow())
    return db.query(Job).filter(due).order_by(Job.run_at.asc()).limit(limit).all()


def get_job(db: Session, job_id: UUID, org_id: UUID | None = None) -> Job | None:
    job = db.get(Job, job_id)
    if job is None or (org_id is not None and job.organization_id != org_id):
        return None
    return job


def list_jobs(
    db: Session,
    org_id: UUID,
    status: JobStatus | None = None,
    job_type: JobType | None = None,
    limit: int = 50,
) -> list[Job]:
    """Most recent jobs of an organization."""
    filters = [Job.organization_id == org_id]
    if status is not None:
        filters.append(Job.status == status.value)
    if job_type is not None:
        filters.append(Job.job_type == job_type.value)
    return db.query(Job).filter(*filters).order_by(Job.created_at.desc()).limit(limit).all()


def mark_job_running(db: Session, job: Job) -> Job:
    job.attempts += 1
    job.status = JobStatus.RUNNING.value
    return _save(db, job)


def mark_job_completed(db: Session, job: Job) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.last_error = None
    job.completed_at = utcnow()
    return _save(db, job)


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """Record the error; the job goes back to pending while attempts remain."""
    job.last_error = error[:MAX_ERROR_LENGTH]
    exhausted = job.attempts >= job.max_attempts
    job.status = (JobStatus.FAILED if exhausted else JobStatus.PENDING).value
    return _save(db, job)
