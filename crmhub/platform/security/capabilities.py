"""Row-level capability predicates.

Each predicate combines the coarse role matrix with ownership: admins may act on
everything, owners on their own records, and managers on records owned by members
of their group. These checks gate UI affordances and orchestrator actions; the
backend remains the authority.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from crmhub.crm.schemas import Account, Deal, Group, Invoice, Lead, Project, Quote, Task, User, UserRole
from crmhub.platform.security.context import AuthContext
from crmhub.platform.security.errors import AuthorizationError
from crmhub.platform.security.policies import ResourceAction, get_policy_backend


def _index(users: Iterable[User] | Mapping[str, User]) -> Mapping[str, User]:
    if isinstance(users, Mapping):
        return users
    return {user.id: user for user in users}


def _allowed(resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
    return get_policy_backend().is_resource_allowed(resource, action, ctx)


def _owner_or_group_manager(owner_id: str | None, ctx: AuthContext, users: Mapping[str, User]) -> bool:
    if ctx.is_admin:
        return True
    if owner_id is not None and owner_id == ctx.user_id:
        return True
    if ctx.is_manager and ctx.group_id and owner_id is not None:
        owner = users.get(owner_id)
        return owner is not None and owner.group_id == ctx.group_id
    return False


def can_mutate_lead(
    lead: Lead,
    ctx: AuthContext,
    users: Iterable[User] | Mapping[str, User],
    action: ResourceAction = ResourceAction.UPDATE,
) -> bool:
    if action == ResourceAction.CREATE:
        return _allowed("leads", action, ctx)
    return _allowed("leads", action, ctx) and _owner_or_group_manager(lead.owner_id, ctx, _index(users))


def can_mutate_deal(
    deal: Deal,
    ctx: AuthContext,
    users: Iterable[User] | Mapping[str, User],
    action: ResourceAction = ResourceAction.UPDATE,
) -> bool:
    if action == ResourceAction.CREATE:
        return _allowed("deals", action, ctx)
    return _allowed("deals", action, ctx) and _owner_or_group_manager(deal.owner_id, ctx, _index(users))


def can_mutate_project(
    project: Project,
    ctx: AuthContext,
    users: Iterable[User] | Mapping[str, User],
    action: ResourceAction = ResourceAction.UPDATE,
) -> bool:
    """Project managers may only touch projects they manage."""

    if not _allowed("projects", action, ctx):
        return False
    if action == ResourceAction.CREATE:
        return True
    return _owner_or_group_manager(project.project_manager_id, ctx, _index(users))


def can_mutate_task(
    task: Task,
    ctx: AuthContext,
    users: Iterable[User] | Mapping[str, User],
    projects: Iterable[Project],
) -> bool:
    project = next((item for item in projects if item.id == task.project_id), None)
    if project is None:
        return ctx.is_admin
    return can_mutate_project(project, ctx, users, ResourceAction.UPDATE)


def can_mutate_invoice(
    invoice: Invoice,
    ctx: AuthContext,
    users: Iterable[User] | Mapping[str, User],
    action: ResourceAction = ResourceAction.UPDATE,
) -> bool:
    """Finance staff hold the invoice verbs but only for invoices they own."""

    if action == ResourceAction.CREATE:
        return _allowed("invoices", action, ctx)
    return _allowed("invoices", action, ctx) and _owner_or_group_manager(invoice.owner_id, ctx, _index(users))


def can_mutate_quote(
    quote: Quote,
    ctx: AuthContext,
    users: Iterable[User] | Mapping[str, User],
    deals: Iterable[Deal],
    action: ResourceAction = ResourceAction.UPDATE,
) -> bool:
    if not _allowed("invoices", action, ctx):
        return False
    if ctx.is_admin or ctx.role == UserRole.FINANCE:
        return True
    deal = next((item for item in deals if item.id == quote.deal_id), None)
    return deal is not None and _owner_or_group_manager(deal.owner_id, ctx, _index(users))


def can_mutate_account(account: Account, ctx: AuthContext, action: ResourceAction = ResourceAction.UPDATE) -> bool:
    return _allowed("accounts", action, ctx)


# Only an admin may change who a user is in the organisation, including for themselves.
SELF_LOCKED_USER_FIELDS = ("role", "scope", "group_id", "is_active")


def can_mutate_user(
    user: User,
    ctx: AuthContext,
    action: ResourceAction = ResourceAction.UPDATE,
    stored: User | None = None,
) -> bool:
    """Users may edit their own profile, but not the fields in ``SELF_LOCKED_USER_FIELDS``."""

    if action == ResourceAction.UPDATE and user.id == ctx.user_id and not ctx.is_admin:
        if stored is None:
            return False
        return all(getattr(user, name) == getattr(stored, name) for name in SELF_LOCKED_USER_FIELDS)
    return _allowed("users", action, ctx)


def can_mutate_group(group: Group, ctx: AuthContext, action: ResourceAction = ResourceAction.UPDATE) -> bool:
    if not _allowed("teams", action, ctx):
        return False
    if action == ResourceAction.DELETE:
        return ctx.is_admin
    if action == ResourceAction.CREATE:
        return True
    return ctx.is_admin or group.manager_id == ctx.user_id


def require(allowed: bool, resource: str, action: ResourceAction | str, entity_id: str | None = None) -> None:
    if not allowed:
        raise AuthorizationError(resource, str(action), entity_id)
