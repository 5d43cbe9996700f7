"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from aris.db.enums import JobType
from aris.jobs.handlers import email, followups, metakocka

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.EMAIL_SYNC.value: email.process_email_sync,
    JobType.EMAIL_ANALYSIS.value: email.process_email_analysis,
    JobType.FOLLOWUP_REMINDERS.value: followups.process_followup_reminders,
    JobType.FOLLOWUP_AUTOMATION.value: followups.process_followup_automation,
    JobType.METAKOCKA_SYNC.value: metakocka.process_metakocka_sync,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
