from __future__ import annotations

import pytest

from marketcms.services.authz import (
    PERM_AUDIT_VIEW,
    PERM_REPORTS_DELETE,
    PERM_REPORTS_PUBLISH,
    PERM_REPORTS_VIEW,
    ROLES,
    has_permission,
    is_privileged,
    normalize_role,
    role_allows,
)


def test_role_levels_are_strictly_ordered() -> None:
    assert [ROLES[name].level for name in ("viewer", "editor", "admin")] == [1, 2, 3]
    assert role_allows(role="admin", minimum_role="editor")
    assert role_allows(role="editor", minimum_role="editor")
    assert not role_allows(role="viewer", minimum_role="editor")
    assert not role_allows(role="unknown", minimum_role="viewer")


def test_permission_catalogue() -> None:
    assert has_permission("viewer", PERM_REPORTS_VIEW)
    assert not has_permission("viewer", PERM_REPORTS_PUBLISH)
    assert has_permission("editor", PERM_REPORTS_PUBLISH)
    assert not has_permission("editor", PERM_REPORTS_DELETE)
    assert has_permission("admin", PERM_AUDIT_VIEW)
    assert not has_permission(None, PERM_REPORTS_VIEW)


def test_normalize_role() -> None:
    assert normalize_role(" Admin ") == "admin"
    with pytest.raises(ValueError):
        normalize_role("superuser")


def test_privileged_roles() -> None:
    assert is_privileged("admin")
    assert is_privileged("editor")
    assert not is_privileged("viewer")
    assert not is_privileged(None)


def test_role_info_serializes_permission_descriptions() -> None:
    payload = ROLES["viewer"].to_dict()
    assert payload["name"] == "viewer"
    assert {"name": PERM_REPORTS_VIEW, "description": "View published reports"} in payload["permissions"]
