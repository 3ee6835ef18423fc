from __future__ import annotations


class CRMError(Exception):
    """Base error for workspace operations; the message is user-facing."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(CRMError):
    """Field-level input errors detected before any backend call."""

    def __init__(self, fields: dict[str, str], message: str | None = None) -> None:
        self.fields = dict(fields)
        super().__init__(message or "; ".join(f"{name}: {text}" for name, text in sorted(self.fields.items())))


class PermissionDeniedError(CRMError):
    def __init__(self, resource: str, action: str) -> None:
        self.resource = resource
        self.action = action
        super().__init__(f"Not allowed to {action} {resource}")


class StateError(CRMError):
    """A workflow precondition does not hold for the current cache contents."""


class BackendError(CRMError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ConflictError(BackendError):
    pass


class NetworkError(BackendError):
    pass


class ServerError(BackendError):
    pass
