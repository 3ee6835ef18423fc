from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from crmhub.crm.schemas import (
    Account,
    ActivityLogEntry,
    CRMModel,
    Deal,
    DealStatus,
    Group,
    Invoice,
    Lead,
    Project,
    Quote,
    Task,
    User,
)
from crmhub.metrics import observe_optimistic_revert

T = TypeVar("T")

COLLECTIONS: dict[str, type[CRMModel]] = {
    "leads": Lead,
    "deals": Deal,
    "accounts": Account,
    "projects": Project,
    "tasks": Task,
    "invoices": Invoice,
    "quotes": Quote,
    "users": User,
    "groups": Group,
    "activity_log": ActivityLogEntry,
}


class EntityRepository:
    """Ordered in-memory collections of cached entities.

    All writes go through the named methods below and are serialized by one lock,
    so a read-modify-write on a collection is never interleaved with another.
    Reads return new lists; entities are replaced on update, never mutated in place.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: dict[str, list[Any]] = {name: [] for name in COLLECTIONS}

    def _items(self, collection: str) -> list[Any]:
        if collection not in self._collections:
            raise KeyError(f"Unknown collection '{collection}'")
        return self._collections[collection]

    def all(self, collection: str) -> list[Any]:
        with self._lock:
            return list(self._items(collection))

    def get(self, collection: str, entity_id: str) -> Any | None:
        with self._lock:
            return next((item for item in self._items(collection) if item.id == entity_id), None)

    def load(self, **collections: Iterable[Any]) -> None:
        with self._lock:
            for name, items in collections.items():
                self._items(name)
                self._collections[name] = list(items)

    def clear(self, *, keep: Iterable[str] = ()) -> None:
        kept = set(keep)
        with self._lock:
            for name in self._collections:
                if name not in kept:
                    self._collections[name] = []

    def prepend(self, collection: str, entity: Any) -> None:
        with self._lock:
            self._items(collection).insert(0, entity)

    def append(self, collection: str, entity: Any) -> None:
        with self._lock:
            self._items(collection).append(entity)

    def prepend_if_absent(self, collection: str, entity: Any) -> bool:
        with self._lock:
            items = self._items(collection)
            if any(item.id == entity.id for item in items):
                return False
            items.insert(0, entity)
            return True

    def replace(self, collection: str, entity: Any) -> bool:
        with self._lock:
            items = self._items(collection)
            for index, item in enumerate(items):
                if item.id == entity.id:
                    items[index] = entity
                    return True
            return False

    def remove(self, collection: str, entity_id: str) -> Any | None:
        with self._lock:
            items = self._items(collection)
            for index, item in enumerate(items):
                if item.id == entity_id:
                    return items.pop(index)
            return None

    def update_where(self, collection: str, predicate: Callable[[Any], bool], change: Callable[[Any], Any]) -> int:
        with self._lock:
            items = self._items(collection)
            changed = 0
            for index, item in enumerate(items):
                if predicate(item):
                    items[index] = change(item)
                    changed += 1
            return changed

    def apply(self, change: Callable[[EntityRepository], T]) -> T:
        """Run several writes as one step with respect to other writers."""

        with self._lock:
            return change(self)

    def snapshot(self, collection: str) -> list[Any]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._items(collection)]

    def restore(self, collection: str, snapshot: list[Any]) -> None:
        with self._lock:
            self._collections[collection] = list(snapshot)

    def move_deal(self, deal_id: str, target_status: DealStatus, before_deal_id: str | None) -> Deal | None:
        """Reposition a deal in the ordered list with its new stage.

        The deal lands before ``before_deal_id`` when that deal exists, else at the end.
        """

        with self._lock:
            deals = self._items("deals")
            current = next((deal for deal in deals if deal.id == deal_id), None)
            if current is None:
                return None
            moved = current.model_copy(update={"status": target_status})
            remaining = [deal for deal in deals if deal.id != deal_id]
            target_index = next(
                (index for index, deal in enumerate(remaining) if before_deal_id and deal.id == before_deal_id),
                None,
            )
            if target_index is None:
                remaining.append(moved)
            else:
                remaining.insert(target_index, moved)
            self._collections["deals"] = remaining
            return moved

    async def with_optimistic_update(
        self,
        collection: str,
        mutate: Callable[[], Any],
        call: Callable[[], Awaitable[T]],
        *,
        operation: str,
    ) -> T:
        """Apply ``mutate`` locally, await ``call`` and restore the whole collection if it raises."""

        before = self.snapshot(collection)
        mutate()
        try:
            return await call()
        except BaseException:
            self.restore(collection, before)
            observe_optimistic_revert(operation)
            raise
