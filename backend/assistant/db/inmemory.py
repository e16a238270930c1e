"""In-memory implementations of repository interfaces."""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime

from backend.assistant.db.repositories import (
    GroupRecord,
    MemberRecord,
    NewTask,
    Stores,
    TaskRecord,
    UserRecord,
)
from backend.assistant.models.context import ChatTurn, TaskPriority, TaskStatus
from backend.assistant.models.docs import DocumentRef

_CLOSED_STATUSES = {"completed", "cancelled"}


@dataclass
class InMemoryDatabase:
    """Shared state behind the in-memory repositories, with seed helpers."""

    users: dict[uuid.UUID, UserRecord] = field(default_factory=dict)
    groups: dict[uuid.UUID, GroupRecord] = field(default_factory=dict)
    members: list[MemberRecord] = field(default_factory=list)
    role_permissions: dict[str, set[str]] = field(default_factory=dict)
    group_role_permissions: dict[tuple[uuid.UUID, str], set[str]] = field(default_factory=dict)
    custom_permissions: dict[tuple[uuid.UUID, str], str] = field(default_factory=dict)
    documents: list[DocumentRef] = field(default_factory=list)
    tasks: list[TaskRecord] = field(default_factory=list)
    turns: list[ChatTurn] = field(default_factory=list)

    def add_user(
        self,
        email: str,
        *,
        handle: str | None = None,
        name: str | None = None,
        role: str = "employee",
        user_id: uuid.UUID | None = None,
    ) -> UserRecord:
        user = UserRecord(
            user_id=user_id or uuid.uuid4(), email=email, handle=handle, name=name, role=role
        )
        self.users[user.user_id] = user
        return user

    def add_group(self, name: str, group_id: uuid.UUID | None = None) -> GroupRecord:
        group = GroupRecord(group_id=group_id or uuid.uuid4(), name=name)
        self.groups[group.group_id] = group
        return group

    def add_member(self, group_id: uuid.UUID, user_id: uuid.UUID, role: str = "member") -> None:
        self.members.append(MemberRecord(group_id=group_id, user_id=user_id, role=role))

    def grant_role_permission(self, role: str, permission: str) -> None:
        self.role_permissions.setdefault(role, set()).add(permission)

    def grant_group_permission(self, group_id: uuid.UUID, role: str, permission: str) -> None:
        self.group_role_permissions.setdefault((group_id, role), set()).add(permission)

    def set_custom_permission(self, group_id: uuid.UUID, role: str, text: str) -> None:
        self.custom_permissions[(group_id, role)] = text

    def add_document(
        self,
        group_id: uuid.UUID,
        title: str,
        *,
        media_type: str | None = None,
        storage_locator: str | None = None,
        access_url: str | None = None,
        inline_text: str | None = None,
        uploaded_at: datetime | None = None,
    ) -> DocumentRef:
        doc = DocumentRef(
            doc_id=uuid.uuid4(),
            group_id=group_id,
            title=title,
            media_type=media_type,
            storage_locator=storage_locator,
            access_url=access_url,
            uploaded_at=uploaded_at or datetime.now(),
            is_inline_content=inline_text is not None,
            inline_text=inline_text,
        )
        self.documents.append(doc)
        return doc

    def add_task(
        self,
        group_id: uuid.UUID,
        title: str,
        *,
        assigned_to: uuid.UUID,
        assigned_by: uuid.UUID,
        due_date: date | None = None,
        priority: TaskPriority = "medium",
        status: TaskStatus = "pending",
    ) -> TaskRecord:
        task = TaskRecord(
            task_id=uuid.uuid4(),
            group_id=group_id,
            group_name=self.groups[group_id].name,
            title=title,
            description="",
            assigned_to_user_id=assigned_to,
            assigned_by_user_id=assigned_by,
            due_date=due_date,
            priority=priority,
            status=status,
        )
        self.tasks.append(task)
        return task


def _title_matches(title: str, needle: str) -> bool:
    return needle in title.lower()


class InMemoryUserRepository:
    """In-memory implementation of UserRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        return self._db.users.get(user_id)

    async def find_by_identifier(self, identifier: str) -> UserRecord | None:
        for user in self._db.users.values():
            if identifier in (user.email, user.handle):
                return user
        return None


class InMemoryGroupRepository:
    """In-memory implementation of GroupRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def get_group(self, group_id: uuid.UUID) -> GroupRecord | None:
        return self._db.groups.get(group_id)

    async def get_membership(
        self, group_id: uuid.UUID, user_id: uuid.UUID
    ) -> MemberRecord | None:
        for member in self._db.members:
            if member.group_id == group_id and member.user_id == user_id:
                return member
        return None

    async def list_members(
        self, group_id: uuid.UUID, role: str | None = None
    ) -> list[MemberRecord]:
        return [
            m
            for m in self._db.members
            if m.group_id == group_id and (role is None or m.role == role)
        ]


class InMemoryPermissionRepository:
    """In-memory implementation of PermissionRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def get_role_permissions(self, role: str) -> list[str]:
        return sorted(self._db.role_permissions.get(role, set()))

    async def get_group_role_permissions(self, group_id: uuid.UUID, role: str) -> list[str]:
        return sorted(self._db.group_role_permissions.get((group_id, role), set()))

    async def get_custom_permission_text(self, group_id: uuid.UUID, role: str) -> str | None:
        return self._db.custom_permissions.get((group_id, role))


class InMemoryDocumentRepository:
    """In-memory implementation of DocumentRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def _newest_first(self, group_id: uuid.UUID) -> list[DocumentRef]:
        docs = [d for d in self._db.documents if d.group_id == group_id]
        return sorted(docs, key=lambda d: d.uploaded_at, reverse=True)

    async def find_inline(self, group_id: uuid.UUID, name: str) -> list[DocumentRef]:
        needle = name.lower()
        return [
            d
            for d in self._newest_first(group_id)
            if d.is_inline_content and _title_matches(d.title, needle)
        ]

    async def search(self, group_id: uuid.UUID, name: str, limit: int) -> list[DocumentRef]:
        needle = name.lower()
        matches = [
            d
            for d in self._newest_first(group_id)
            if not d.is_inline_content and _title_matches(d.title, needle)
        ]
        # Stable sort keeps recency order within each bucket
        matches.sort(key=lambda d: d.title.lower() != needle)
        return matches[:limit]

    async def list_recent(self, group_id: uuid.UUID, limit: int) -> list[DocumentRef]:
        return self._newest_first(group_id)[:limit]


class InMemoryTaskRepository:
    """In-memory implementation of TaskRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def list_open(
        self, group_id: uuid.UUID, limit: int, assignee_id: uuid.UUID | None = None
    ) -> list[TaskRecord]:
        tasks = [
            t
            for t in self._db.tasks
            if t.group_id == group_id
            and t.status not in _CLOSED_STATUSES
            and (assignee_id is None or t.assigned_to_user_id == assignee_id)
        ]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        tasks.sort(key=lambda t: (t.due_date is None, t.due_date or date.max))
        return tasks[:limit]

    async def create(self, task: NewTask) -> TaskRecord:
        group = self._db.groups[task.group_id]
        record = TaskRecord(
            task_id=uuid.uuid4(),
            group_id=task.group_id,
            group_name=group.name,
            title=task.title,
            description=task.description,
            assigned_to_user_id=task.assigned_to_user_id,
            assigned_by_user_id=task.assigned_by_user_id,
            due_date=task.due_date,
            priority=task.priority,
            status="pending",
        )
        self._db.tasks.append(record)
        return record


class InMemoryChatRepository:
    """In-memory implementation of ChatRepository."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def recent_turns(self, group_id: uuid.UUID, limit: int) -> list[ChatTurn]:
        turns = [t for t in self._db.turns if t.group_id == group_id]
        return list(reversed(turns))[:limit]

    async def append(self, turn: ChatTurn) -> None:
        self._db.turns.append(turn)


def build_inmemory_stores(db: InMemoryDatabase | None = None) -> Stores:
    """Wire every in-memory repository to one shared database."""
    db = db or InMemoryDatabase()
    return Stores(
        users=InMemoryUserRepository(db),
        groups=InMemoryGroupRepository(db),
        permissions=InMemoryPermissionRepository(db),
        documents=InMemoryDocumentRepository(db),
        tasks=InMemoryTaskRepository(db),
        chats=InMemoryChatRepository(db),
    )
