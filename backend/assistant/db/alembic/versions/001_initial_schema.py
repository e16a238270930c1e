"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-09-28

Creates:
- users, groups, group_members
- role_permissions, group_role_permissions, group_custom_permissions
- group_documents (without storage_locator; see 002)
- tasks, chat_messages
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
    )


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        _uuid_pk("user_id"),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("handle", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="employee"),
        _created_at(),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("handle", name="uq_users_handle"),
    )

    op.create_table(
        "groups",
        _uuid_pk("group_id"),
        sa.Column("name", sa.Text(), nullable=False),
        _created_at(),
    )

    op.create_table(
        "group_members",
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("groups.group_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
        _created_at("joined_at"),
    )
    op.create_index("idx_group_members_role", "group_members", ["group_id", "role"])

    op.create_table(
        "role_permissions",
        sa.Column("role", sa.Text(), primary_key=True),
        sa.Column("permission_name", sa.Text(), primary_key=True),
    )

    op.create_table(
        "group_role_permissions",
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("groups.group_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role", sa.Text(), primary_key=True),
        sa.Column("permission_name", sa.Text(), primary_key=True),
    )

    op.create_table(
        "group_custom_permissions",
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("groups.group_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role", sa.Text(), primary_key=True),
        sa.Column("custom_permission_text", sa.Text(), nullable=False),
    )

    op.create_table(
        "group_documents",
        _uuid_pk("doc_id"),
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("groups.group_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "uploader_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id"),
            nullable=True,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("mime_type", sa.Text(), nullable=True),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.Column("access_url", sa.Text(), nullable=True),
        sa.Column("is_inline", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("inline_text", sa.Text(), nullable=True),
        _created_at("uploaded_at"),
    )
    op.create_index(
        "idx_group_documents_group_uploaded", "group_documents", ["group_id", "uploaded_at"]
    )

    op.create_table(
        "tasks",
        _uuid_pk("task_id"),
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("groups.group_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "assigned_to_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id"),
            nullable=False,
        ),
        sa.Column(
            "assigned_by_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id"),
            nullable=False,
        ),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("priority", sa.Text(), nullable=False, server_default="medium"),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        _created_at(),
    )
    op.create_index("idx_tasks_group_status", "tasks", ["group_id", "status"])
    op.create_index("idx_tasks_assignee", "tasks", ["assigned_to_user_id", "status"])

    op.create_table(
        "chat_messages",
        _uuid_pk("message_id"),
        sa.Column(
            "group_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("groups.group_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.user_id"),
            nullable=False,
        ),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "idx_chat_messages_group_created", "chat_messages", ["group_id", "created_at"]
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("idx_chat_messages_group_created", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("idx_tasks_assignee", table_name="tasks")
    op.drop_index("idx_tasks_group_status", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("idx_group_documents_group_uploaded", table_name="group_documents")
    op.drop_table("group_documents")
    op.drop_table("group_custom_permissions")
    op.drop_table("group_role_permissions")
    op.drop_table("role_permissions")
    op.drop_index("idx_group_members_role", table_name="group_members")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")
