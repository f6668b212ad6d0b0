"""Permission matrices for the default system roles and snapshot checks."""

from __future__ import annotations

import copy
from typing import Mapping

from .account import Account, PermissionMatrix
from .errors import PermissionDeniedError

CRUD_RESOURCES = ("jobs", "candidates", "interviews", "assessments", "employees", "workflows")

ADMIN_ROLE = "company_admin"


def _crud(create: bool, read: bool, update: bool, delete: bool) -> dict[str, bool]:
    return {"create": create, "read": read, "update": update, "delete": delete}


def empty_matrix() -> PermissionMatrix:
    """Return a matrix with every grant switched off."""
    matrix: PermissionMatrix = {resource: _crud(False, False, False, False) for resource in CRUD_RESOURCES}
    matrix["reports"] = {"read": False}
    matrix["settings"] = {"read": False, "update": False}
    return matrix


def _role(
    *,
    jobs: dict[str, bool],
    candidates: dict[str, bool],
    interviews: dict[str, bool],
    assessments: dict[str, bool],
    employees: dict[str, bool],
    workflows: dict[str, bool],
    reports: bool,
    settings_read: bool,
    settings_update: bool,
) -> PermissionMatrix:
    return {
        "jobs": jobs,
        "candidates": candidates,
        "interviews": interviews,
        "assessments": assessments,
        "employees": employees,
        "workflows": workflows,
        "reports": {"read": reports},
        "settings": {"read": settings_read, "update": settings_update},
    }


_FULL = _crud(True, True, True, True)
_NO_DELETE = _crud(True, True, True, False)
_READ_ONLY = _crud(False, True, False, False)
_READ_UPDATE = _crud(False, True, True, False)
_NONE = _crud(False, False, False, False)


# name -> (display name, description, matrix)
DEFAULT_ROLES: dict[str, tuple[str, str, PermissionMatrix]] = {
    ADMIN_ROLE: (
        "Company Admin",
        "Full access to all company features and settings",
        _role(
            jobs=_FULL, candidates=_FULL, interviews=_FULL, assessments=_FULL,
            employees=_FULL, workflows=_FULL,
            reports=True, settings_read=True, settings_update=True,
        ),
    ),
    "hr_manager": (
        "HR Manager",
        "Manage employees, candidates, and HR-related activities",
        _role(
            jobs=_NO_DELETE, candidates=_NO_DELETE, interviews=_NO_DELETE, assessments=_NO_DELETE,
            employees=_NO_DELETE, workflows=_NO_DELETE,
            reports=True, settings_read=True, settings_update=False,
        ),
    ),
    "recruiter": (
        "Recruiter",
        "Manage job postings, candidates, and recruitment process",
        _role(
            jobs=_NO_DELETE, candidates=_NO_DELETE, interviews=_NO_DELETE, assessments=_READ_ONLY,
            employees=_READ_ONLY, workflows=_READ_ONLY,
            reports=True, settings_read=False, settings_update=False,
        ),
    ),
    "interviewer": (
        "Interviewer",
        "Conduct interviews and provide feedback on candidates",
        _role(
            jobs=_READ_ONLY, candidates=_READ_UPDATE, interviews=_READ_UPDATE, assessments=_READ_ONLY,
            employees=_READ_ONLY, workflows=_NONE,
            reports=False, settings_read=False, settings_update=False,
        ),
    ),
    "hiring_manager": (
        "Hiring Manager",
        "Review candidates and make hiring decisions",
        _role(
            jobs=_NO_DELETE, candidates=_READ_UPDATE, interviews=_NO_DELETE, assessments=_READ_ONLY,
            employees=_READ_ONLY, workflows=_NO_DELETE,
            reports=True, settings_read=False, settings_update=False,
        ),
    ),
}


def default_permissions(role_name: str) -> PermissionMatrix:
    """Return a fresh copy of the grants for a system role, or an empty matrix."""
    entry = DEFAULT_ROLES.get(role_name)
    if entry is None:
        return empty_matrix()
    return copy.deepcopy(entry[2])


def has_permission(permissions: Mapping[str, Mapping[str, bool]], resource: str, action: str) -> bool:
    grants = permissions.get(resource) or {}
    return bool(grants.get(action, False))


def require_permission(account: Account, resource: str, action: str) -> None:
    """Raise ``PermissionDeniedError`` unless the account's snapshot grants ``resource:action``."""
    if not has_permission(account.permissions, resource, action):
        raise PermissionDeniedError(
            f"insufficient permissions for {resource}:{action}",
            details={"resource": resource, "action": action},
        )
