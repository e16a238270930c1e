"""Repository protocol interfaces for data access."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol
from uuid import UUID

from backend.assistant.models.context import ChatTurn, TaskPriority, TaskStatus
from backend.assistant.models.docs import DocumentRef


class LegacySchemaError(Exception):
    """Document store schema predates the storage_locator column."""

    pass


@dataclass
class UserRecord:
    """User data record."""

    user_id: UUID
    email: str
    handle: str | None
    name: str | None
    role: str


@dataclass
class GroupRecord:
    """Group data record."""

    group_id: UUID
    name: str


@dataclass
class MemberRecord:
    """Group membership record."""

    group_id: UUID
    user_id: UUID
    role: str


@dataclass
class NewTask:
    """Task to be created for a single assignee."""

    group_id: UUID
    title: str
    description: str
    assigned_to_user_id: UUID
    assigned_by_user_id: UUID
    due_date: date | None = None
    priority: TaskPriority = "medium"


@dataclass
class TaskRecord:
    """Task data record."""

    task_id: UUID
    group_id: UUID
    group_name: str
    title: str
    description: str
    assigned_to_user_id: UUID
    assigned_by_user_id: UUID
    due_date: date | None
    priority: TaskPriority
    status: TaskStatus
    created_at: datetime = field(default_factory=datetime.now)


class UserRepository(Protocol):
    """Repository for user lookups."""

    async def get_user(self, user_id: UUID) -> UserRecord | None:
        """Get user by ID."""
        ...

    async def find_by_identifier(self, identifier: str) -> UserRecord | None:
        """Find a user by exact email or handle.

        Args:
            identifier: Email address or handle, matched exactly

        Returns:
            UserRecord if found, None otherwise
        """
        ...


class GroupRepository(Protocol):
    """Repository for groups and memberships."""

    async def get_group(self, group_id: UUID) -> GroupRecord | None:
        """Get group by ID."""
        ...

    async def get_membership(self, group_id: UUID, user_id: UUID) -> MemberRecord | None:
        """Get a user's membership in a group, if any."""
        ...

    async def list_members(self, group_id: UUID, role: str | None = None) -> list[MemberRecord]:
        """List group members, optionally only those with a given group role.

        Args:
            group_id: Group ID
            role: Normalized group role to filter by (None for all members)

        Returns:
            Membership records
        """
        ...


class PermissionRepository(Protocol):
    """Repository for role and group permission grants."""

    async def get_role_permissions(self, role: str) -> list[str]:
        """Permission names enumerated for a global role."""
        ...

    async def get_group_role_permissions(self, group_id: UUID, role: str) -> list[str]:
        """Permission names granted to a group role within one group."""
        ...

    async def get_custom_permission_text(self, group_id: UUID, role: str) -> str | None:
        """Free-text permission override for a group role, if configured."""
        ...


class DocumentRepository(Protocol):
    """Repository for group documents."""

    async def find_inline(self, group_id: UUID, name: str) -> list[DocumentRef]:
        """Inline-content documents whose title equals or contains `name`.

        Matching is case-insensitive; results are most recent first.
        """
        ...

    async def search(self, group_id: UUID, name: str, limit: int) -> list[DocumentRef]:
        """Stored (non-inline) documents whose title equals or contains `name`.

        Args:
            group_id: Group ID
            name: Candidate name, matched case-insensitively
            limit: Maximum number of results

        Returns:
            Exact title matches first, then most recent first
        """
        ...

    async def list_recent(self, group_id: UUID, limit: int) -> list[DocumentRef]:
        """Documents in the group, most recent first."""
        ...


class TaskRepository(Protocol):
    """Repository for tasks."""

    async def list_open(
        self, group_id: UUID, limit: int, assignee_id: UUID | None = None
    ) -> list[TaskRecord]:
        """Open tasks in a group, optionally restricted to one assignee.

        Open means not completed and not cancelled. Ordered by due date
        (undated last), then most recent first.
        """
        ...

    async def create(self, task: NewTask) -> TaskRecord:
        """Create one task."""
        ...


class ChatRepository(Protocol):
    """Repository for the append-only chat log."""

    async def recent_turns(self, group_id: UUID, limit: int) -> list[ChatTurn]:
        """Most recent turns in a group, newest first."""
        ...

    async def append(self, turn: ChatTurn) -> None:
        """Append one turn."""
        ...


@dataclass
class Stores:
    """Bundle of repositories used by one request."""

    users: UserRepository
    groups: GroupRepository
    permissions: PermissionRepository
    documents: DocumentRepository
    tasks: TaskRepository
    chats: ChatRepository
