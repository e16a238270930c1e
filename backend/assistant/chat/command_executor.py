"""Command executor - permission-gated execution of parsed commands."""

import logging
from uuid import UUID

from backend.assistant.db.repositories import NewTask, Stores
from backend.assistant.models.commands import CommandOutcome, TaskAssignmentCommand
from backend.assistant.models.context import PermissionSet
from backend.assistant.rbac import RBACService
from backend.assistant.utils.metrics import command_outcomes_total

logger = logging.getLogger(__name__)

# Role names as the model tends to write them -> stored group roles
ROLE_ALIASES = {
    "member": "member",
    "members": "member",
    "manager": "manager",
    "managers": "manager",
    "admin": "admin",
    "admins": "admin",
    "employee": "employee",
    "employees": "employee",
    "tech-lead": "tech-lead",
    "techlead": "tech-lead",
    "tech-leads": "tech-lead",
    "techleads": "tech-lead",
    "finance-manager": "finance-manager",
    "financemanager": "finance-manager",
    "finance-managers": "finance-manager",
}


def normalize_role(name: str) -> str:
    """Map a free-form role name onto a stored group role."""
    key = name.strip().lower().replace("_", "-").replace(" ", "-")
    return ROLE_ALIASES.get(key, key)


class CommandExecutor:
    """Executes task-assignment commands under the caller's permissions.

    Task creation is best-effort: the batch stops at the first failure and
    tasks already created are kept.
    """

    def __init__(self, stores: Stores, rbac: RBACService) -> None:
        self._stores = stores
        self._rbac = rbac

    async def execute(
        self,
        command: TaskAssignmentCommand,
        *,
        caller_id: UUID,
        group_id: UUID,
        permissions: PermissionSet,
    ) -> CommandOutcome:
        """Authorize, resolve recipients and create one task per recipient.

        Args:
            command: Validated command payload
            caller_id: User issuing the command (recorded as assigner)
            group_id: Request group; overrides any group in the payload
            permissions: Caller's permission set

        Returns:
            CommandOutcome whose response_text replaces the model's reply
        """
        if not self._rbac.can_assign_tasks(permissions):
            command_outcomes_total.labels(command=command.type, outcome="denied").inc()
            logger.info(f"User {caller_id} denied task assignment in group {group_id}")
            return CommandOutcome(
                response_text=(
                    "You don't have permission to assign tasks in this group. "
                    f"You need the '{self._rbac.assignment_permission}' permission "
                    "or a manager role. Please contact your group admin to request access."
                ),
                permission_denied=True,
            )

        recipients = await self.resolve_recipients(command, group_id)
        if not recipients:
            command_outcomes_total.labels(command=command.type, outcome="no_recipients").inc()
            return CommandOutcome(
                response_text=(
                    "I couldn't find any matching members in this group to assign "
                    f'"{command.title}" to.'
                )
            )

        created: list[UUID] = []
        for user_id in recipients:
            task = NewTask(
                group_id=group_id,
                title=command.title,
                description=command.description,
                assigned_to_user_id=user_id,
                assigned_by_user_id=caller_id,
                due_date=command.due_date,
                priority=command.priority,
            )
            try:
                record = await self._stores.tasks.create(task)
            except Exception as e:
                command_outcomes_total.labels(command=command.type, outcome="error").inc()
                logger.error(
                    f"Task creation failed after {len(created)} of {len(recipients)} "
                    f"in group {group_id}: {e}"
                )
                return CommandOutcome(
                    response_text=f"❌ Error creating tasks: {e}",
                    created_task_ids=created,
                    recipient_count=len(recipients),
                    failed=True,
                )
            created.append(record.task_id)

        command_outcomes_total.labels(command=command.type, outcome="success").inc()
        logger.info(f"Created {len(created)} task(s) for '{command.title}' in group {group_id}")
        return CommandOutcome(
            response_text=(
                f'✅ Task "{command.title}" has been assigned to {len(created)} user(s).'
            ),
            created_task_ids=created,
            recipient_count=len(recipients),
        )

    async def resolve_recipients(
        self, command: TaskAssignmentCommand, group_id: UUID
    ) -> list[UUID]:
        """Deduplicated recipient user IDs, in first-seen order.

        Sources, in order: every member (when flagged), members holding the
        named role, then each explicit email or handle. Explicit entries that
        match no user, or a user outside the group, are skipped.
        """
        found: list[UUID] = []

        if command.assign_to_all_members:
            found += [m.user_id for m in await self._stores.groups.list_members(group_id)]

        if command.assign_to_role:
            role = normalize_role(command.assign_to_role)
            found += [m.user_id for m in await self._stores.groups.list_members(group_id, role)]

        for entry in command.recipients:
            identifier = entry.strip() if isinstance(entry, str) else ""
            if not identifier:
                continue
            user = await self._stores.users.find_by_identifier(identifier)
            if user is None:
                logger.info(f"Recipient {identifier!r} not found, skipping")
                continue
            if await self._stores.groups.get_membership(group_id, user.user_id) is None:
                logger.info(f"Recipient {identifier!r} is not a member of {group_id}, skipping")
                continue
            found.append(user.user_id)

        return list(dict.fromkeys(found))
