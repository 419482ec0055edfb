"""
Permission Service — static role → permission RBAC.

Roles travel in the access token (`role` claim) and map onto a fixed set of
permission codenames. Evaluation is deny-by-default: an unknown role grants
nothing.

Row-level rule:
  VOLUNTEER users may only read or change members assigned to them and list
  only their own tasks; see `can_access_member` / `restricts_to_assigned`.
"""

import logging

logger = logging.getLogger(__name__)


class Permission:
    STAGE_VIEW = "stage:view"
    STAGE_CREATE = "stage:create"
    STAGE_UPDATE = "stage:update"
    STAGE_DELETE = "stage:delete"

    MEMBER_VIEW = "member:view"
    MEMBER_CREATE = "member:create"
    MEMBER_UPDATE = "member:update"
    MEMBER_DELETE = "member:delete"
    MEMBER_ASSIGN = "member:assign"

    TASK_VIEW = "task:view"
    TASK_CREATE = "task:create"
    TASK_UPDATE = "task:update"
    TASK_DELETE = "task:delete"
    TASK_ASSIGN = "task:assign"

    AUTOMATION_VIEW = "automation:view"
    AUTOMATION_CREATE = "automation:create"
    AUTOMATION_UPDATE = "automation:update"
    AUTOMATION_DELETE = "automation:delete"


ALL_PERMISSIONS = frozenset(
    v for k, v in vars(Permission).items() if not k.startswith("_")
)

_STAGE_ALL = {p for p in ALL_PERMISSIONS if p.startswith("stage:")}
_MEMBER_ALL = {p for p in ALL_PERMISSIONS if p.startswith("member:")}
_TASK_ALL = {p for p in ALL_PERMISSIONS if p.startswith("task:")}
_AUTOMATION_ALL = {p for p in ALL_PERMISSIONS if p.startswith("automation:")}

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "SUPER_ADMIN": ALL_PERMISSIONS,
    "ADMIN": frozenset(_STAGE_ALL | _MEMBER_ALL | _TASK_ALL | _AUTOMATION_ALL),
    "TEAM_LEADER": frozenset({
        Permission.MEMBER_VIEW, Permission.MEMBER_CREATE,
        Permission.MEMBER_UPDATE, Permission.MEMBER_ASSIGN,
        Permission.TASK_VIEW, Permission.TASK_CREATE,
        Permission.TASK_UPDATE, Permission.TASK_ASSIGN,
        Permission.STAGE_VIEW, Permission.AUTOMATION_VIEW,
    }),
    "VOLUNTEER": frozenset({
        Permission.MEMBER_VIEW, Permission.MEMBER_CREATE, Permission.MEMBER_UPDATE,
        Permission.TASK_VIEW, Permission.TASK_CREATE, Permission.TASK_UPDATE,
        Permission.STAGE_VIEW,
    }),
}

ASSIGNED_ONLY_ROLES = {"VOLUNTEER"}


def get_role_permissions(role: str | None) -> frozenset[str]:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(role: str | None, codename: str) -> bool:
    return codename in get_role_permissions(role)


def has_any_permission(role: str | None, codenames) -> bool:
    perms = get_role_permissions(role)
    return any(c in perms for c in codenames)


def restricts_to_assigned(role: str | None) -> bool:
    """True when the role only sees members/tasks assigned to the caller."""
    return role in ASSIGNED_ONLY_ROLES


def can_access_member(role: str | None, user_id: int, member) -> bool:
    if not restricts_to_assigned(role):
        return True
    return member.assigned_to_id == user_id
