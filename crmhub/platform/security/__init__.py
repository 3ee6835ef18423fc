from crmhub.platform.security.capabilities import (
    can_mutate_account,
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
    PermissionMatrix,
    PolicyBackend,
    ResourceAction,
    StaticPolicyBackend,
    get_policy_backend,
    is_allowed,
    resolve_permissions,
    set_policy_backend,
)
from crmhub.platform.security.rls import (
    in_scope,
    visible_deals,
    visible_groups,
    visible_invoices,
    visible_leads,
    visible_projects,
    visible_quotes,
    visible_tasks,
)

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "PermissionMatrix",
    "PolicyBackend",
    "ResourceAction",
    "StaticPolicyBackend",
    "get_policy_backend",
    "set_policy_backend",
    "is_allowed",
    "resolve_permissions",
    "in_scope",
    "visible_deals",
    "visible_groups",
    "visible_invoices",
    "visible_leads",
    "visible_projects",
    "visible_quotes",
    "visible_tasks",
    "can_mutate_account",
    "can_mutate_deal",
    "can_mutate_group",
    "can_mutate_invoice",
    "can_mutate_lead",
    "can_mutate_project",
    "can_mutate_quote",
    "can_mutate_task",
    "can_mutate_user",
    "require",
]
