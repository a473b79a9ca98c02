from __future__ import annotations

from dataclasses import dataclass


ROLE_VIEWER = "viewer"
ROLE_EDITOR = "editor"
ROLE_ADMIN = "admin"

PERM_REPORTS_VIEW = "reports.view"
PERM_REPORTS_CREATE = "reports.create"
PERM_REPORTS_EDIT = "reports.edit"
PERM_REPORTS_DELETE = "reports.delete"
PERM_REPORTS_PUBLISH = "reports.publish"
PERM_USERS_MANAGE = "users.manage"
PERM_USERS_VIEW = "users.view"
PERM_CATEGORIES_MANAGE = "categories.manage"
PERM_CATEGORIES_VIEW = "categories.view"
PERM_AUTHORS_MANAGE = "authors.manage"
PERM_AUTHORS_VIEW = "authors.view"
PERM_AUDIT_VIEW = "audit.view"

PERMISSION_DESCRIPTIONS: dict[str, str] = {
    PERM_REPORTS_VIEW: "View published reports",
    PERM_REPORTS_CREATE: "Create new reports",
    PERM_REPORTS_EDIT: "Edit existing reports",
    PERM_REPORTS_DELETE: "Delete reports",
    PERM_REPORTS_PUBLISH: "Publish reports",
    PERM_USERS_MANAGE: "Create, edit, and delete users",
    PERM_USERS_VIEW: "View all users",
    PERM_CATEGORIES_MANAGE: "Create, edit, and delete categories",
    PERM_CATEGORIES_VIEW: "View all categories",
    PERM_AUTHORS_MANAGE: "Create, edit, and delete authors",
    PERM_AUTHORS_VIEW: "View all authors",
    PERM_AUDIT_VIEW: "View audit logs",
}


@dataclass(frozen=True)
class RoleInfo:
    name: str
    display_name: str
    description: str
    level: int
    permissions: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "level": self.level,
            "permissions": [
                {"name": perm, "description": PERMISSION_DESCRIPTIONS[perm]} for perm in self.permissions
            ],
        }


_VIEWER_PERMISSIONS = (PERM_REPORTS_VIEW, PERM_CATEGORIES_VIEW, PERM_AUTHORS_VIEW)
_EDITOR_PERMISSIONS = (
    PERM_REPORTS_VIEW,
    PERM_REPORTS_CREATE,
    PERM_REPORTS_EDIT,
    PERM_REPORTS_PUBLISH,
    PERM_CATEGORIES_VIEW,
    PERM_CATEGORIES_MANAGE,
    PERM_AUTHORS_VIEW,
    PERM_AUTHORS_MANAGE,
)
_ADMIN_PERMISSIONS = (
    PERM_REPORTS_VIEW,
    PERM_REPORTS_CREATE,
    PERM_REPORTS_EDIT,
    PERM_REPORTS_DELETE,
    PERM_REPORTS_PUBLISH,
    PERM_CATEGORIES_VIEW,
    PERM_CATEGORIES_MANAGE,
    PERM_AUTHORS_VIEW,
    PERM_AUTHORS_MANAGE,
    PERM_USERS_MANAGE,
    PERM_USERS_VIEW,
    PERM_AUDIT_VIEW,
)

# Static catalogue; never mutated at runtime.
ROLES: dict[str, RoleInfo] = {
    ROLE_VIEWER: RoleInfo(
        name=ROLE_VIEWER,
        display_name="Viewer",
        description="Read-only access to published content",
        level=1,
        permissions=_VIEWER_PERMISSIONS,
    ),
    ROLE_EDITOR: RoleInfo(
        name=ROLE_EDITOR,
        display_name="Editor",
        description="Can create and edit content",
        level=2,
        permissions=_EDITOR_PERMISSIONS,
    ),
    ROLE_ADMIN: RoleInfo(
        name=ROLE_ADMIN,
        display_name="Administrator",
        description="Full system access including user management",
        level=3,
        permissions=_ADMIN_PERMISSIONS,
    ),
}

# Roles that may see creator/updater ids and internal notes.
PRIVILEGED_ROLES = frozenset({ROLE_ADMIN, ROLE_EDITOR})


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for RBAC checks.
    normalized = role.strip().lower()
    if normalized not in ROLES:
        raise ValueError(f"Invalid role: {role}")
    return normalized


def is_valid_role(role: str | None) -> bool:
    return bool(role) and role in ROLES


def get_role_info(role: str) -> RoleInfo | None:
    return ROLES.get(role)


def role_level(role: str | None) -> int:
    info = ROLES.get(role or "")
    return info.level if info else 0


def has_permission(role: str | None, permission: str) -> bool:
    info = ROLES.get(role or "")
    return info is not None and permission in info.permissions


def role_allows(*, role: str, minimum_role: str) -> bool:
    # Compare roles using numeric ordering for least-privilege enforcement.
    return role_level(role) >= role_level(minimum_role)


def is_privileged(role: str | None) -> bool:
    return role in PRIVILEGED_ROLES
