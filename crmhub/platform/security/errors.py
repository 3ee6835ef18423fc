from __future__ import annotations

from crmhub.crm.errors import PermissionDeniedError


class AuthorizationError(PermissionDeniedError):
    """Raised when the acting user lacks a capability for an entity."""

    def __init__(self, resource: str, action: str, entity_id: str | None = None) -> None:
        self.entity_id = entity_id
        super().__init__(resource, action)
        if entity_id:
            self.message = f"Not allowed to {action} {resource} '{entity_id}'"
            self.args = (self.message,)
