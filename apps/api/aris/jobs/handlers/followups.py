"""Follow-up reminder and automation job handlers."""

from __future__ import annotations

import logging

from aris.services import followup_automation_service, followup_service

logger = logging.getLogger(__name__)


async def process_followup_reminders(db, job) -> None:
    result = followup_service.deliver_due_reminders(db)
    logger.info("Reminder job %s: %s", job.id, result)


async def process_followup_automation(db, job) -> None:
    """Run the automation sweep for the job's organization."""
    result = await followup_automation_service.run_sweep(db, org_id=job.organization_id)
    logger.info("Automation job %s: %s", job.id, result)
