"""Add storage_locator to group_documents

Revision ID: 002
Revises: 001
Create Date: 2026-10-06

Documents uploaded before this revision only persisted access_url. The
column is nullable and is not backfilled; readers derive the locator from
access_url when it is missing, so the application also runs against
databases that have not applied this revision yet.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add storage_locator column."""
    op.add_column(
        "group_documents",
        sa.Column("storage_locator", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    """Drop storage_locator column."""
    op.drop_column("group_documents", "storage_locator")
