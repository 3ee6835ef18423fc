from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

from crmhub.crm.schemas import (
    Deal,
    Group,
    Invoice,
    Lead,
    Project,
    Quote,
    Task,
    User,
    UserRole,
)
from crmhub.platform.security.context import AuthContext

EntityT = TypeVar("EntityT")


def is_admin_bypass(ctx: AuthContext) -> bool:
    return ctx.is_admin


def is_finance_bypass(ctx: AuthContext) -> bool:
    return ctx.is_admin or ctx.role == UserRole.FINANCE


def in_scope(entity_scope: str | None, ctx: AuthContext) -> bool:
    """Geographic partition check; users scoped to ALL pass everything."""

    if ctx.has_global_scope:
        return True
    return entity_scope == ctx.scope


def group_member_ids(ctx: AuthContext, users: Iterable[User]) -> set[str]:
    """Ids whose records a manager may see: members of the manager's group and the manager."""

    member_ids = {ctx.user_id}
    if ctx.group_id:
        member_ids.update(user.id for user in users if user.group_id == ctx.group_id)
    return member_ids


def _owned(owner_id: str | None, ctx: AuthContext, manager_pool: set[str]) -> bool:
    if owner_id is None:
        return False
    if ctx.is_manager:
        return owner_id in manager_pool
    return owner_id == ctx.user_id


def _filter(entities: Iterable[EntityT], predicate: Callable[[EntityT], bool]) -> list[EntityT]:
    return [entity for entity in entities if predicate(entity)]


def visible_leads(leads: Iterable[Lead], ctx: AuthContext, users: Sequence[User]) -> list[Lead]:
    if is_admin_bypass(ctx):
        return list(leads)
    pool = group_member_ids(ctx, users)
    return _filter(leads, lambda lead: in_scope(lead.scope, ctx) and _owned(lead.owner_id, ctx, pool))


def visible_deals(deals: Iterable[Deal], ctx: AuthContext, users: Sequence[User]) -> list[Deal]:
    if is_admin_bypass(ctx):
        return list(deals)
    pool = group_member_ids(ctx, users)
    return _filter(deals, lambda deal: in_scope(deal.scope, ctx) and _owned(deal.owner_id, ctx, pool))


def visible_projects(
    projects: Iterable[Project],
    ctx: AuthContext,
    users: Sequence[User],
    deals: Sequence[Deal],
) -> list[Project]:
    """Projects are owned through the project manager, or reached through a visible linked deal."""

    if is_admin_bypass(ctx):
        return list(projects)
    pool = group_member_ids(ctx, users)
    visible_deal_ids = {deal.id for deal in visible_deals(deals, ctx, users)}

    def _keep(project: Project) -> bool:
        if not in_scope(project.scope, ctx):
            return False
        if _owned(project.project_manager_id, ctx, pool):
            return True
        return project.deal_id is not None and project.deal_id in visible_deal_ids

    return _filter(projects, _keep)


def visible_tasks(
    tasks: Iterable[Task],
    ctx: AuthContext,
    users: Sequence[User],
    projects: Sequence[Project],
    deals: Sequence[Deal],
) -> list[Task]:
    if is_admin_bypass(ctx):
        return list(tasks)
    project_ids = {project.id for project in visible_projects(projects, ctx, users, deals)}
    return _filter(tasks, lambda task: task.project_id in project_ids)


def visible_invoices(
    invoices: Iterable[Invoice],
    ctx: AuthContext,
    users: Sequence[User],
    deals: Sequence[Deal],
    projects: Sequence[Project],
) -> list[Invoice]:
    """Invoices chain through their deal or project; unlinked invoices fall back to direct ownership."""

    if is_finance_bypass(ctx):
        return list(invoices)
    deal_ids = {deal.id for deal in visible_deals(deals, ctx, users)}
    project_ids = {project.id for project in visible_projects(projects, ctx, users, deals)}

    def _keep(invoice: Invoice) -> bool:
        if not in_scope(invoice.scope, ctx):
            return False
        if invoice.deal_id and invoice.deal_id in deal_ids:
            return True
        if invoice.project_id and invoice.project_id in project_ids:
            return True
        return invoice.owner_id == ctx.user_id

    return _filter(invoices, _keep)


def visible_quotes(
    quotes: Iterable[Quote],
    ctx: AuthContext,
    users: Sequence[User],
    deals: Sequence[Deal],
) -> list[Quote]:
    if is_finance_bypass(ctx):
        return list(quotes)
    deal_ids = {deal.id for deal in visible_deals(deals, ctx, users)}
    return _filter(quotes, lambda quote: quote.deal_id in deal_ids)


def visible_groups(groups: Iterable[Group], ctx: AuthContext) -> list[Group]:
    if is_admin_bypass(ctx):
        return list(groups)
    if not ctx.is_manager:
        return []
    return _filter(groups, lambda group: in_scope(group.scope, ctx) and group.manager_id == ctx.user_id)
