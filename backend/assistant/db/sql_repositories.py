"""SQL implementations of repository interfaces."""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import Select, Table, Text, case, column, func, select, table
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.assistant.blob.store import locator_from_access_url
from backend.assistant.db.models import (
    ChatMessage,
    Group,
    GroupCustomPermission,
    GroupDocument,
    GroupMember,
    GroupRolePermission,
    RolePermission,
    Task,
    User,
)
from backend.assistant.db.repositories import (
    GroupRecord,
    LegacySchemaError,
    MemberRecord,
    NewTask,
    Stores,
    TaskRecord,
    UserRecord,
)
from backend.assistant.models.context import ChatTurn
from backend.assistant.models.docs import DocumentRef

logger = logging.getLogger(__name__)

_CLOSED_STATUSES = ("completed", "cancelled")

_documents: Table = GroupDocument.__table__  # type: ignore[assignment]

# Pre-migration shape of group_documents: no storage_locator column
_legacy_documents = table(
    "group_documents",
    *(
        column(c.name, c.type)
        for c in _documents.columns
        if c.name != "storage_locator"
    ),
)


def _to_user(user: User) -> UserRecord:
    return UserRecord(
        user_id=user.user_id, email=user.email, handle=user.handle, name=user.name, role=user.role
    )


def _to_task(task: Task, group_name: str) -> TaskRecord:
    return TaskRecord(
        task_id=task.task_id,
        group_id=task.group_id,
        group_name=group_name,
        title=task.title,
        description=task.description,
        assigned_to_user_id=task.assigned_to_user_id,
        assigned_by_user_id=task.assigned_by_user_id,
        due_date=task.due_date,
        priority=task.priority,  # type: ignore[arg-type]
        status=task.status,  # type: ignore[arg-type]
        created_at=task.created_at,
    )


class SqlUserRepository:
    """SQL implementation of UserRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        user = await self._session.get(User, user_id)
        return _to_user(user) if user else None

    async def find_by_identifier(self, identifier: str) -> UserRecord | None:
        stmt = (
            select(User)
            .where((User.email == identifier) | (User.handle == identifier))
            .limit(1)
        )
        user = (await self._session.execute(stmt)).scalar_one_or_none()
        return _to_user(user) if user else None


class SqlGroupRepository:
    """SQL implementation of GroupRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_group(self, group_id: uuid.UUID) -> GroupRecord | None:
        group = await self._session.get(Group, group_id)
        return GroupRecord(group_id=group.group_id, name=group.name) if group else None

    async def get_membership(
        self, group_id: uuid.UUID, user_id: uuid.UUID
    ) -> MemberRecord | None:
        member = await self._session.get(GroupMember, (group_id, user_id))
        if member is None:
            return None
        return MemberRecord(group_id=member.group_id, user_id=member.user_id, role=member.role)

    async def list_members(
        self, group_id: uuid.UUID, role: str | None = None
    ) -> list[MemberRecord]:
        stmt = select(GroupMember).where(GroupMember.group_id == group_id)
        if role is not None:
            stmt = stmt.where(GroupMember.role == role)
        stmt = stmt.order_by(GroupMember.joined_at)

        members = (await self._session.execute(stmt)).scalars().all()
        return [
            MemberRecord(group_id=m.group_id, user_id=m.user_id, role=m.role) for m in members
        ]


class SqlPermissionRepository:
    """SQL implementation of PermissionRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_role_permissions(self, role: str) -> list[str]:
        stmt = (
            select(RolePermission.permission_name)
            .where(RolePermission.role == role)
            .order_by(RolePermission.permission_name)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_group_role_permissions(self, group_id: uuid.UUID, role: str) -> list[str]:
        stmt = (
            select(GroupRolePermission.permission_name)
            .where(
                GroupRolePermission.group_id == group_id,
                GroupRolePermission.role == role,
            )
            .order_by(GroupRolePermission.permission_name)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_custom_permission_text(self, group_id: uuid.UUID, role: str) -> str | None:
        stmt = select(GroupCustomPermission.custom_permission_text).where(
            GroupCustomPermission.group_id == group_id,
            GroupCustomPermission.role == role,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()


class SqlDocumentRepository:
    """SQL implementation of DocumentRepository.

    Works against both the current schema and the legacy one that lacks
    `storage_locator`; on the legacy schema the locator is derived from the
    persisted access URL. Detection happens on first failure and sticks for
    the lifetime of the repository.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._legacy = False

    async def _execute_current(self, stmt: Select) -> list[dict[str, Any]]:
        try:
            result = await self._session.execute(stmt)
        except (OperationalError, ProgrammingError) as e:
            if "storage_locator" in str(e):
                raise LegacySchemaError(str(e.orig)) from e
            raise
        return [dict(row) for row in result.mappings()]

    async def _fetch(self, build: Callable[[Any], Select]) -> list[DocumentRef]:
        if not self._legacy:
            try:
                rows = await self._execute_current(build(_documents.c))
                return [self._to_ref(row) for row in rows]
            except LegacySchemaError as e:
                logger.warning(
                    f"group_documents has no storage_locator column, using access_url: {e}"
                )
                await self._session.rollback()
                self._legacy = True

        result = await self._session.execute(build(_legacy_documents.c))
        return [self._to_ref(dict(row)) for row in result.mappings()]

    @staticmethod
    def _to_ref(row: dict[str, Any]) -> DocumentRef:
        locator = row.get("storage_locator") or locator_from_access_url(row.get("access_url"))
        return DocumentRef(
            doc_id=row["doc_id"],
            group_id=row["group_id"],
            title=row["title"],
            media_type=row["mime_type"],
            storage_locator=locator,
            access_url=row["access_url"],
            size_bytes=row["size_bytes"],
            uploaded_at=row["uploaded_at"],
            is_inline_content=bool(row["is_inline"]),
            inline_text=row["inline_text"],
        )

    async def find_inline(self, group_id: uuid.UUID, name: str) -> list[DocumentRef]:
        needle = name.lower()

        def build(c: Any) -> Select:
            return (
                select(*c)
                .where(
                    c.group_id == group_id,
                    c.is_inline.is_(True),
                    func.lower(c.title, type_=Text).contains(needle, autoescape=True),
                )
                .order_by(c.uploaded_at.desc())
            )

        return await self._fetch(build)

    async def search(self, group_id: uuid.UUID, name: str, limit: int) -> list[DocumentRef]:
        needle = name.lower()

        def build(c: Any) -> Select:
            lowered = func.lower(c.title, type_=Text)
            return (
                select(*c)
                .where(
                    c.group_id == group_id,
                    c.is_inline.is_(False),
                    lowered.contains(needle, autoescape=True),
                )
                .order_by(case((lowered == needle, 0), else_=1), c.uploaded_at.desc())
                .limit(limit)
            )

        return await self._fetch(build)

    async def list_recent(self, group_id: uuid.UUID, limit: int) -> list[DocumentRef]:
        def build(c: Any) -> Select:
            return (
                select(*c)
                .where(c.group_id == group_id)
                .order_by(c.uploaded_at.desc())
                .limit(limit)
            )

        return await self._fetch(build)


class SqlTaskRepository:
    """SQL implementation of TaskRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_open(
        self, group_id: uuid.UUID, limit: int, assignee_id: uuid.UUID | None = None
    ) -> list[TaskRecord]:
        stmt = (
            select(Task, Group.name)
            .join(Group, Group.group_id == Task.group_id)
            .where(Task.group_id == group_id, Task.status.not_in(_CLOSED_STATUSES))
        )
        if assignee_id is not None:
            stmt = stmt.where(Task.assigned_to_user_id == assignee_id)
        stmt = stmt.order_by(
            Task.due_date.is_(None), Task.due_date, Task.created_at.desc()
        ).limit(limit)

        rows = (await self._session.execute(stmt)).all()
        return [_to_task(task, group_name) for task, group_name in rows]

    async def create(self, task: NewTask) -> TaskRecord:
        row = Task(
            task_id=uuid.uuid4(),
            group_id=task.group_id,
            title=task.title,
            description=task.description,
            assigned_to_user_id=task.assigned_to_user_id,
            assigned_by_user_id=task.assigned_by_user_id,
            due_date=task.due_date,
            priority=task.priority,
            status="pending",
            created_at=datetime.now(),
        )
        group = await self._session.get(Group, task.group_id)
        record = _to_task(row, group.name if group else "")

        self._session.add(row)
        await self._session.commit()
        return record


class SqlChatRepository:
    """SQL implementation of ChatRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def recent_turns(self, group_id: uuid.UUID, limit: int) -> list[ChatTurn]:
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.group_id == group_id)
            .order_by(ChatMessage.created_at.desc())
            .limit(limit)
        )
        messages = (await self._session.execute(stmt)).scalars().all()
        return [
            ChatTurn(
                group_id=m.group_id,
                user_id=m.user_id,
                role=m.role,  # type: ignore[arg-type]
                content=m.content,
                created_at=m.created_at,
                metadata=m.metadata_,
            )
            for m in messages
        ]

    async def append(self, turn: ChatTurn) -> None:
        self._session.add(
            ChatMessage(
                message_id=uuid.uuid4(),
                group_id=turn.group_id,
                user_id=turn.user_id,
                role=turn.role,
                content=turn.content,
                metadata_=turn.metadata,
                created_at=turn.created_at,
            )
        )
        await self._session.commit()


def build_sql_stores(session: AsyncSession) -> Stores:
    """Wire every SQL repository to one session."""
    return Stores(
        users=SqlUserRepository(session),
        groups=SqlGroupRepository(session),
        permissions=SqlPermissionRepository(session),
        documents=SqlDocumentRepository(session),
        tasks=SqlTaskRepository(session),
        chats=SqlChatRepository(session),
    )

