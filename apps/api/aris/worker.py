"""
Job worker process.

Run with ``aris-worker`` (or ``python -m aris.worker``) next to the API.
Each tick opens a session, runs one batch of due jobs and sleeps.
"""

import asyncio
import logging

from sqlalchemy.orm import Session

from aris.core.config import settings
from aris.db.models import Job
from aris.db.session import SessionLocal
from aris.jobs.registry import resolve_job_handler
from aris.services import job_service

logger = logging.getLogger("aris.worker")


async def _run_one(db: Session, job: Job) -> None:
    job_service.mark_job_running(db, job)
    logger.info("job started id=%s type=%s attempt=%s", job.id, job.job_type, job.attempts)
    try:
        handler = resolve_job_handler(job.job_type)
        await handler(db, job)
    except Exception as exc:
        db.rollback()
        job_service.mark_job_failed(db, job, str(exc) or type(exc).__name__)
        logger.error("job failed id=%s status=%s error=%s", job.id, job.status, type(exc).__name__)
        return
    job_service.mark_job_completed(db, job)
    logger.info("job completed id=%s", job.id)


async def run_pending_jobs(db: Session, limit: int | None = None) -> int:
    """Run one batch of due jobs and return how many were picked up."""
    jobs = job_service.get_pending_jobs(db, limit=limit or settings.WORKER_BATCH_SIZE)
    for job in jobs:
        await _run_one(db, job)
    return len(jobs)


async def worker_loop() -> None:
    logger.info(
        "worker starting poll_interval=%ss batch_size=%s",
        settings.WORKER_POLL_INTERVAL_SECONDS,
        settings.WORKER_BATCH_SIZE,
    )
    while True:
        with SessionLocal() as db:
            try:
                await run_pending_jobs(db)
            except Exception:
                logger.exception("worker tick failed")
        await asyncio.sleep(settings.WORKER_POLL_INTERVAL_SECONDS)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("worker stopped")


if __name__ == "__main__":
    main()
