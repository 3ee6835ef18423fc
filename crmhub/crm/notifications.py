from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone

from pydantic import ValidationError as PydanticValidationError

from crmhub.crm.client import CRMBackend
from crmhub.crm.errors import CRMError
from crmhub.crm.repository import EntityRepository
from crmhub.crm.schemas import ActivityLogEntry, Notification, NotificationType, User
from crmhub.crm.transforms import from_wire, to_wire
from crmhub.metrics import observe_activity_log_failure


logger = logging.getLogger("crmhub.activity")


class NotificationQueue:
    """Session-only toast queue, newest first. Nothing here is sent to the backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[Notification] = []

    def add(self, message: str, notification_type: NotificationType) -> Notification:
        notification = Notification(
            id=f"notif-{uuid.uuid4().hex[:12]}",
            message=message,
            type=notification_type,
            timestamp=datetime.now(timezone.utc),
        )
        with self._lock:
            self._items.insert(0, notification)
        return notification

    def items(self) -> list[Notification]:
        with self._lock:
            return list(self._items)

    def of_type(self, notification_type: NotificationType) -> list[Notification]:
        return [item for item in self.items() if item.type == notification_type]

    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for item in self._items if not item.is_read)

    def mark_read(self, notification_id: str) -> bool:
        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == notification_id:
                    self._items[index] = item.model_copy(update={"is_read": True})
                    return True
        return False

    def mark_all_read(self) -> None:
        with self._lock:
            self._items = [item.model_copy(update={"is_read": True}) for item in self._items]

    def dismiss(self, notification_id: str) -> None:
        with self._lock:
            self._items = [item for item in self._items if item.id != notification_id]

    def clear(self) -> None:
        with self._lock:
            self._items = []


class ActivityLogger:
    """Appends human-readable entries to the shared activity feed.

    A failed write is logged and counted, never raised: the feed is diagnostic and
    must not undo or fail the action it describes.
    """

    def __init__(self, backend: CRMBackend, repository: EntityRepository) -> None:
        self._backend = backend
        self._repository = repository

    async def log(self, actor: User | None, action: str) -> ActivityLogEntry | None:
        if actor is None:
            return None
        draft = ActivityLogEntry(
            user_id=actor.id,
            user_name=actor.name,
            user_avatar=actor.avatar_url,
            action=action,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            saved = from_wire(ActivityLogEntry, await self._backend.create_activity_log_entry(to_wire(draft, exclude={"id"})))
        except (CRMError, PydanticValidationError) as exc:
            observe_activity_log_failure()
            logger.warning("activity_log_write_failed", extra={"error": str(exc), "status": "dropped"})
            return None
        self._repository.prepend("activity_log", saved)
        return saved
