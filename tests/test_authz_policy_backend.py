from __future__ import annotations

from collections.abc import Generator

import pytest

from crmhub.crm.errors import PermissionDeniedError
from crmhub.crm.schemas import Deal, Group, Invoice, Lead, Project, Quote, Task, User, UserRole
from crmhub.platform.security.capabilities import (
    can_mutate_deal,
    can_mutate_group,
    can_mutate_invoice,
    can_mutate_lead,
    can_mutate_project,
    can_mutate_quote,
    can_mutate_task,
    can_mutate_user,
    require,
)
from crmhub.platform.security.context import AuthContext
from crmhub.platform.security.errors import AuthorizationError
from crmhub.platform.security.policies import (
    RESOURCES,
    ResourceAction,
    StaticPolicyBackend,
    get_policy_backend,
    is_allowed,
    resolve_permissions,
    set_policy_backend,
)


@pytest.fixture(autouse=True)
def restore_policy_backend() -> Generator[None, None, None]:
    original = get_policy_backend()
    yield
    set_policy_backend(original)


def _user(user_id: str, role: UserRole, *, group_id: str | None = None) -> User:
    return User(id=user_id, name=user_id, email=f"{user_id}@example.com", role=role, scope="KSA", group_id=group_id)


def test_every_role_resolves_a_complete_matrix() -> None:
    for role in UserRole:
        matrix = resolve_permissions(role)
        assert set(matrix) == set(RESOURCES)


def test_page_areas_only_carry_a_read_flag() -> None:
    matrix = resolve_permissions(UserRole.ADMIN)
    assert matrix["dashboard"] == {"read": True}
    assert matrix["leads"] == {"create": True, "read": True, "update": True, "delete": True}


def test_role_grants_match_the_role_table() -> None:
    sales = resolve_permissions(UserRole.SALES)
    assert is_allowed(sales, "deals", ResourceAction.CREATE)
    assert not is_allowed(sales, "deals", ResourceAction.DELETE)
    assert not is_allowed(sales, "users", ResourceAction.READ)

    telesales = resolve_permissions(UserRole.TELESALES)
    assert is_allowed(telesales, "leads", ResourceAction.CREATE)
    assert not is_allowed(telesales, "dashboard", ResourceAction.READ)

    finance = resolve_permissions(UserRole.FINANCE)
    assert is_allowed(finance, "invoices", ResourceAction.UPDATE)
    assert not is_allowed(finance, "invoices", ResourceAction.DELETE)


@pytest.mark.parametrize("role", [None, "", "intern", "ADMIN"])
def test_unknown_roles_get_every_flag_false(role: str | None) -> None:
    matrix = resolve_permissions(role)
    assert all(not allowed for actions in matrix.values() for allowed in actions.values())


def test_resolved_matrices_are_independent_copies() -> None:
    first = resolve_permissions(UserRole.SALES)
    first["users"]["delete"] = True
    assert resolve_permissions(UserRole.SALES)["users"]["delete"] is False


def test_owner_and_group_manager_may_update_a_deal() -> None:
    users = [_user("mgr", UserRole.MANAGER, group_id="g1"), _user("s1", UserRole.SALES, group_id="g1"), _user("s2", UserRole.SALES)]
    deal = Deal(id="d1", title="Site", owner_id="s1", scope="KSA")

    assert can_mutate_deal(deal, AuthContext.from_user(users[1]), users)
    assert can_mutate_deal(deal, AuthContext.from_user(users[0]), users)
    assert not can_mutate_deal(deal, AuthContext.from_user(users[2]), users)


def test_create_checks_the_role_matrix_only() -> None:
    seller = _user("s1", UserRole.SALES)
    telesales = _user("t1", UserRole.TELESALES)
    lead = Lead(company_name="Acme", owner_id="someone-else", last_updated_at="2026-01-01T00:00:00Z")
    deal = Deal(title="New", owner_id="someone-else")

    assert can_mutate_deal(deal, AuthContext.from_user(seller), [seller], ResourceAction.CREATE)
    assert not can_mutate_lead(lead, AuthContext.from_user(seller), [seller], ResourceAction.CREATE)
    assert can_mutate_lead(lead, AuthContext.from_user(telesales), [telesales], ResourceAction.CREATE)


def test_project_managers_only_touch_their_projects() -> None:
    pm = _user("pm", UserRole.PROJECT_MANAGER)
    own = Project(id="p1", name="Mine", project_manager_id="pm", start_date="2026-01-01")
    other = Project(id="p2", name="Theirs", project_manager_id="pm-2", start_date="2026-01-01")
    ctx = AuthContext.from_user(pm)

    assert can_mutate_project(own, ctx, [pm])
    assert not can_mutate_project(other, ctx, [pm])
    assert can_mutate_task(Task(project_id="p1", title="x"), ctx, [pm], [own, other])
    assert not can_mutate_task(Task(project_id="p2", title="x"), ctx, [pm], [own, other])


def test_finance_and_quotes() -> None:
    finance = _user("fin", UserRole.FINANCE)
    seller = _user("s1", UserRole.SALES)
    deals = [Deal(id="d1", title="Site", owner_id="s1")]
    quote = Quote(deal_id="d1", issue_date="2026-01-01", expiry_date="2026-01-31")
    invoice = Invoice(id="i1", client_name="A", owner_id="other", issue_date="2026-01-01", due_date="2026-01-15")

    assert can_mutate_quote(quote, AuthContext.from_user(finance), [finance, seller], deals, ResourceAction.CREATE)
    assert not can_mutate_quote(quote, AuthContext.from_user(seller), [finance, seller], deals, ResourceAction.CREATE)
    assert can_mutate_invoice(invoice, AuthContext.from_user(finance), [finance], ResourceAction.CREATE)
    assert not can_mutate_invoice(invoice, AuthContext.from_user(finance), [finance], ResourceAction.UPDATE)


def test_users_may_update_themselves_and_only_admins_delete_groups() -> None:
    seller = _user("s1", UserRole.SALES)
    manager = _user("mgr", UserRole.MANAGER)
    admin = _user("root", UserRole.ADMIN)
    group = Group(id="g1", name="Team", manager_id="mgr")

    renamed = seller.model_copy(update={"name": "Top Seller"})
    promoted = seller.model_copy(update={"role": UserRole.ADMIN, "scope": "ALL"})

    assert can_mutate_user(renamed, AuthContext.from_user(seller), stored=seller)
    assert not can_mutate_user(promoted, AuthContext.from_user(seller), stored=seller)
    assert not can_mutate_user(seller.model_copy(update={"is_active": False}), AuthContext.from_user(seller), stored=seller)
    assert not can_mutate_user(renamed, AuthContext.from_user(seller))
    assert can_mutate_user(admin.model_copy(update={"scope": "KSA"}), AuthContext.from_user(admin), stored=admin)
    assert not can_mutate_user(manager, AuthContext.from_user(seller))
    assert can_mutate_group(group, AuthContext.from_user(manager))
    assert not can_mutate_group(group, AuthContext.from_user(manager), ResourceAction.DELETE)
    assert can_mutate_group(group, AuthContext.from_user(admin), ResourceAction.DELETE)


def test_require_raises_a_permission_error() -> None:
    with pytest.raises(PermissionDeniedError) as exc_info:
        require(False, "deals", ResourceAction.DELETE, "d1")
    assert isinstance(exc_info.value, AuthorizationError)
    assert exc_info.value.entity_id == "d1"
    require(True, "deals", ResourceAction.DELETE)


def test_policy_backend_can_be_replaced() -> None:
    class DenyAll:
        def is_resource_allowed(self, resource: str, action: ResourceAction, ctx: AuthContext) -> bool:
            return False

    admin = _user("root", UserRole.ADMIN)
    deal = Deal(id="d1", title="Site", owner_id="root")
    assert isinstance(get_policy_backend(), StaticPolicyBackend)
    set_policy_backend(DenyAll())
    assert not can_mutate_deal(deal, AuthContext.from_user(admin), [admin])
