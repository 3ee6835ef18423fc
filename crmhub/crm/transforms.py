"""Mapping between cached entities and the REST payload shapes.

Opportunities travel in snake_case with ``name`` standing in for the deal title;
every other entity is exchanged in camelCase as produced by its model aliases.
"""

from __future__ import annotations

from typing import Any, TypeVar

from crmhub.crm.schemas import CRMModel, Deal

ModelT = TypeVar("ModelT", bound=CRMModel)

_DEAL_FIELD_MAP: dict[str, str] = {
    "account_id": "account_id",
    "title": "name",
    "company_name": "company_name",
    "contact_person": "contact_person",
    "contact_email": "contact_email",
    "contact_phone": "contact_phone",
    "value": "value",
    "status": "status",
    "source": "source",
    "next_meeting_date": "next_meeting_date",
    "next_meeting_time": "next_meeting_time",
    "google_meet_link": "google_meet_link",
    "payment_status": "payment_status",
    "project_manager_id": "project_manager_id",
    "services": "services",
    "activity": "activity",
    "owner_id": "owner_id",
    "scope": "scope",
    "lost_reason": "lost_reason",
    "lost_reason_details": "lost_reason_details",
    "notes": "notes",
}


def _parse_amount(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def deal_from_wire(payload: dict[str, Any]) -> Deal:
    data: dict[str, Any] = {"id": str(payload.get("id") or "")}
    for attribute, wire_name in _DEAL_FIELD_MAP.items():
        if wire_name in payload and payload[wire_name] is not None:
            data[attribute] = payload[wire_name]
    data["value"] = _parse_amount(payload.get("value"))
    data["services"] = list(payload.get("services") or [])
    data["activity"] = list(payload.get("activity") or [])
    return Deal.model_validate(data)


def deal_to_wire(deal: Deal) -> dict[str, Any]:
    """Outbound opportunity payload; the id travels in the URL, not the body."""

    dumped = deal.model_dump(mode="json")
    dumped["activity"] = [entry.model_dump(mode="json", by_alias=True) for entry in deal.activity]
    return {wire_name: dumped[attribute] for attribute, wire_name in _DEAL_FIELD_MAP.items()}


def to_wire(model: CRMModel, *, exclude: set[str] | None = None) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude=exclude)


def from_wire(model_cls: type[ModelT], payload: dict[str, Any]) -> ModelT:
    return model_cls.model_validate(payload)


def many_from_wire(model_cls: type[ModelT], payload: list[dict[str, Any]] | None) -> list[ModelT]:
    return [model_cls.model_validate(item) for item in payload or []]
