"""Baseline migration - every ARIS table

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates the full schema from the ORM metadata: tenancy and auth, CRM
records, mailboxes and the email index, follow-ups and automation, AI
settings and usage, billing, suppliers, products and sales documents,
the Metakocka integration, notifications and jobs.
"""
from typing import Sequence, Union

from alembic import op

from aris.db.base import Base
import aris.db.models  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables, indexes and constraints."""
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    Base.metadata.drop_all(bind=op.get_bind())
