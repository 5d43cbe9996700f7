"""Metakocka ERP sync job handler."""

from __future__ import annotations

import logging

from aris.services import metakocka_service

logger = logging.getLogger(__name__)


async def process_metakocka_sync(db, job) -> None:
    """Push every product and sales document of the org to Metakocka."""
    result = await metakocka_service.full_sync(db, job.organization_id)
    failed = result["products"]["failed"] + result["documents"]["failed"]
    logger.info(
        "Metakocka sync job %s: products=%s documents=%s",
        job.id,
        {k: v for k, v in result["products"].items() if k != "errors"},
        {k: v for k, v in result["documents"].items() if k != "errors"},
    )
    if failed:
        logger.warning("Metakocka sync job %s finished with %d failures", job.id, failed)
