from __future__ import annotations

from enum import StrEnum
from threading import Lock
from typing import Protocol

from crmhub.crm.schemas import UserRole
from crmhub.platform.security.context import AuthContext


class ResourceAction(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


PermissionMatrix = dict[str, dict[str, bool]]

RESOURCES: tuple[str, ...] = (
    "dashboard",
    "leads",
    "deals",
    "projects",
    "accounts",
    "financials",
    "invoices",
    "users",
    "teams",
    "settings",
    "reports",
    "calendar",
)

# Page-level areas only carry a read flag.
READ_ONLY_RESOURCES = frozenset({"dashboard", "financials", "settings", "reports", "calendar"})

_C, _R, _U, _D = (ResourceAction.CREATE, ResourceAction.READ, ResourceAction.UPDATE, ResourceAction.DELETE)

_ROLE_GRANTS: dict[UserRole, dict[str, frozenset[ResourceAction]]] = {
    UserRole.ADMIN: {
        "dashboard": frozenset({_R}),
        "leads": frozenset({_C, _R, _U, _D}),
        "deals": frozenset({_C, _R, _U, _D}),
        "projects": frozenset({_C, _R, _U, _D}),
        "accounts": frozenset({_C, _R, _U, _D}),
        "financials": frozenset({_R}),
        "invoices": frozenset({_C, _R, _U, _D}),
        "users": frozenset({_C, _R, _U, _D}),
        "teams": frozenset({_C, _R, _U, _D}),
        "settings": frozenset({_R}),
        "reports": frozenset({_R}),
        "calendar": frozenset({_R}),
    },
    UserRole.MANAGER: {
        "dashboard": frozenset({_R}),
        "leads": frozenset({_R, _U}),
        "deals": frozenset({_R, _U}),
        "projects": frozenset({_R, _U}),
        "accounts": frozenset({_C, _R, _U}),
        "financials": frozenset({_R}),
        "invoices": frozenset({_R}),
        "users": frozenset({_R}),
        "teams": frozenset({_R, _U}),
        "settings": frozenset({_R}),
        "reports": frozenset({_R}),
        "calendar": frozenset({_R}),
    },
    UserRole.SALES: {
        "dashboard": frozenset({_R}),
        "leads": frozenset({_R, _U}),
        "deals": frozenset({_C, _R, _U}),
        "projects": frozenset({_R}),
        "accounts": frozenset({_C, _R, _U}),
        "financials": frozenset({_R}),
        "invoices": frozenset({_R}),
        "users": frozenset(),
        "teams": frozenset(),
        "settings": frozenset({_R}),
        "reports": frozenset({_R}),
        "calendar": frozenset({_R}),
    },
    UserRole.TELESALES: {
        "dashboard": frozenset(),
        "leads": frozenset({_C, _R, _U}),
        "deals": frozenset(),
        "projects": frozenset(),
        "accounts": frozenset({_R}),
        "financials": frozenset(),
        "invoices": frozenset(),
        "users": frozenset(),
        "teams": frozenset(),
        "settings": frozenset({_R}),
        "reports": frozenset({_R}),
        "calendar": frozenset({_R}),
    },
    UserRole.PROJECT_MANAGER: {
        "dashboard": frozenset({_R}),
        "leads": frozenset(),
        "deals": frozenset({_R}),
        "projects": frozenset({_C, _R, _U}),
        "accounts": frozenset({_R}),
        "financials": frozenset({_R}),
        "invoices": frozenset({_R}),
        "users": frozenset(),
        "teams": frozenset(),
        "settings": frozenset({_R}),
        "reports": frozenset({_R}),
        "calendar": frozenset({_R}),
    },
    UserRole.FINANCE: {
        "dashboard": frozenset({_R}),
        "leads": frozenset({_R}),
        "deals": frozenset({_R}),
        "projects": frozenset({_R}),
        "accounts": frozenset({_R}),
        "financials": frozenset({_R}),
        "invoices": frozenset({_C, _R, _U}),
        "users": frozenset(),
        "teams": frozenset(),
        "settings": frozenset({_R}),
        "reports": frozenset({_R}),
        "calendar": frozenset({_R}),
    },
}


def _verbs_for(resource: str) -> tuple[ResourceAction, ...]:
    if resource in READ_ONLY_RESOURCES:
        return (ResourceAction.READ,)
    return (ResourceAction.CREATE, ResourceAction.READ, ResourceAction.UPDATE, ResourceAction.DELETE)


def resolve_permissions(role: str | UserRole | None) -> PermissionMatrix:
    """Return a fresh permission matrix for ``role``; unknown roles get every flag false."""

    try:
        grants = _ROLE_GRANTS.get(UserRole(role), {}) if role is not None else {}
    except ValueError:
        grants = {}

    matrix: PermissionMatrix = {}
    for resource in RESOURCES:
        granted = grants.get(resource, frozenset())
        matrix[resource] = {action.value: action in granted for action in _verbs_for(resource)}
    return matrix


def is_allowed(matrix: PermissionMatrix, resource: str, action: ResourceAction | str) -> bool:
    return bool(matrix.get(resource, {}).get(str(action), False))


class PolicyBackend(Protocol):
    """Pluggable resource-level permission check."""

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        ...


class StaticPolicyBackend:
    """Resolves grants from the built-in role table, falling back to the matrix on the context."""

    def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
        matrix = ctx.permissions or resolve_permissions(ctx.role)
        return is_allowed(matrix, resource, action)


_policy_backend: PolicyBackend = StaticPolicyBackend()
_policy_backend_lock = Lock()


def get_policy_backend() -> PolicyBackend:
    with _policy_backend_lock:
        return _policy_backend


def set_policy_backend(backend: PolicyBackend) -> None:
    global _policy_backend
    with _policy_backend_lock:
        _policy_backend = backend
