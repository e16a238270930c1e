"""Role-based access control - permission sets and hard authorization checks."""

import logging
from uuid import UUID

from backend.assistant.config import Settings
from backend.assistant.db.repositories import Stores
from backend.assistant.models.context import PermissionSet

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "employee"

# Granted when the caller has no user row yet
DEFAULT_EMPLOYEE_PERMISSIONS = frozenset(
    {"notes:create", "notes:read", "task_assignment:read", "calendar:read"}
)


class RBACService:
    """Builds the caller's permission set and answers authorization questions.

    The free-text override travels with the permission set as model context
    only; none of the checks here consult it.
    """

    def __init__(self, stores: Stores, settings: Settings) -> None:
        self._stores = stores
        self._elevated_roles = {r.lower() for r in settings.elevated_roles}
        self._assignment_permission = settings.assignment_permission

    async def get_permissions(self, user_id: UUID, group_id: UUID) -> PermissionSet:
        """Load the two-tier permission set for a caller within a group.

        Args:
            user_id: Caller
            group_id: Group scope

        Returns:
            PermissionSet with global role grants, group role grants and the
            group's free-text override for the caller's group role
        """
        user = await self._stores.users.get_user(user_id)
        if user is None:
            logger.warning(f"User {user_id} not found, using default {DEFAULT_ROLE} permissions")
            return PermissionSet(role=DEFAULT_ROLE, enumerated=set(DEFAULT_EMPLOYEE_PERMISSIONS))

        enumerated = await self._stores.permissions.get_role_permissions(user.role)

        membership = await self._stores.groups.get_membership(group_id, user_id)
        if membership is None:
            return PermissionSet(role=user.role, enumerated=set(enumerated))

        group_permissions = await self._stores.permissions.get_group_role_permissions(
            group_id, membership.role
        )
        override = await self._stores.permissions.get_custom_permission_text(
            group_id, membership.role
        )

        return PermissionSet(
            role=user.role,
            group_role=membership.role,
            enumerated=set(enumerated),
            group_permissions=set(group_permissions),
            override=override.strip() if override and override.strip() else None,
        )

    def is_elevated(self, permissions: PermissionSet) -> bool:
        """Whether the caller holds an elevated group or global role."""
        roles = {permissions.role.lower()}
        if permissions.group_role:
            roles.add(permissions.group_role.lower())
        return bool(roles & self._elevated_roles)

    def can_assign_tasks(self, permissions: PermissionSet) -> bool:
        """Hard check for executing task-assignment commands."""
        return self.is_elevated(permissions) or permissions.grants(self._assignment_permission)

    @property
    def assignment_permission(self) -> str:
        return self._assignment_permission
