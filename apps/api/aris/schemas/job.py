"""Pydantic schemas for background jobs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class JobRead(BaseModel):
    id: UUID
    job_type: str
    payload: dict
    status: str
    run_at: datetime
    attempts: int
    max_attempts: int
    last_error: str | None
    created_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class JobQueued(BaseModel):
    """Returned by endpoints that hand work to the worker."""
    job_id: UUID
    status: str
