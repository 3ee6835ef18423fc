from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def get_operation() -> str | None:
    return operation_var.get()


@contextmanager
def operation_scope(operation: str, correlation_id: str | None = None) -> Iterator[str]:
    """Bind a fresh correlation id and operation name for one user-triggered action."""

    resolved = correlation_id or get_correlation_id() or str(uuid.uuid4())
    correlation_token = correlation_id_var.set(resolved)
    operation_token = operation_var.set(operation)
    try:
        yield resolved
    finally:
        operation_var.reset(operation_token)
        correlation_id_var.reset(correlation_token)
