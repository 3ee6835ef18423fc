from __future__ import annotations

from dataclasses import dataclass, field

from crmhub.crm.schemas import ALL_SCOPE, User, UserRole


@dataclass(slots=True)
class AuthContext:
    """Acting user as seen by permission, visibility and capability checks."""

    user_id: str
    role: str
    scope: str = ALL_SCOPE
    group_id: str | None = None
    correlation_id: str | None = None
    permissions: dict[str, dict[str, bool]] = field(default_factory=dict)

    @classmethod
    def from_user(cls, user: User, *, correlation_id: str | None = None) -> AuthContext:
        from crmhub.platform.security.policies import resolve_permissions

        return cls(
            user_id=user.id,
            role=str(user.role),
            scope=user.scope or ALL_SCOPE,
            group_id=user.group_id,
            correlation_id=correlation_id,
            permissions=resolve_permissions(user.role),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    @property
    def has_global_scope(self) -> bool:
        return self.scope == ALL_SCOPE
