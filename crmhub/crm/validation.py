from __future__ import annotations

import re

from crmhub.crm.errors import ValidationError
from crmhub.crm.schemas import Deal, DealStatus, Group, Invoice, Lead, LeadStatus, Project, Quote, Task, User

EMAIL_PATTERN = re.compile(r"\S+@\S+\.\S+")

LOST_REASONS: tuple[str, ...] = ("price", "competitor", "timeline", "scope", "unresponsive", "other")


def _required(errors: dict[str, str], field: str, value: str | None, label: str) -> None:
    if not (value or "").strip():
        errors[field] = f"{label} is required"


def _email(errors: dict[str, str], field: str, value: str | None) -> None:
    if value and not EMAIL_PATTERN.fullmatch(value.strip()):
        errors[field] = "Email address is invalid"


def _raise_if_any(errors: dict[str, str]) -> None:
    if errors:
        raise ValidationError(errors)


def validate_lead(lead: Lead) -> None:
    errors: dict[str, str] = {}
    _required(errors, "company_name", lead.company_name, "Company name")
    _required(errors, "contact_person", lead.contact_person, "Contact person")
    _email(errors, "email", lead.email)
    if lead.status == LeadStatus.NOT_INTERESTED:
        _required(errors, "not_interested_reason", lead.not_interested_reason, "Reason")
    _raise_if_any(errors)


def validate_deal(deal: Deal) -> None:
    """Form rules for a deal; a WON deal additionally needs a project manager and services."""

    errors: dict[str, str] = {}
    _required(errors, "title", deal.title, "Deal title")
    _required(errors, "company_name", deal.company_name, "Company name")
    _required(errors, "contact_person", deal.contact_person, "Contact person")
    if deal.value <= 0:
        errors["value"] = "Deal value must be greater than zero"
    _email(errors, "contact_email", deal.contact_email)
    if deal.status == DealStatus.WON:
        if not deal.project_manager_id:
            errors["project_manager_id"] = "A project manager is required for won deals"
        if not deal.services:
            errors["services"] = "Select at least one service for won deals"
    _raise_if_any(errors)


def validate_loss_reason(reason: str | None, details: str = "") -> None:
    errors: dict[str, str] = {}
    if reason not in LOST_REASONS:
        errors["lost_reason"] = "Select a reason for losing the deal"
    elif reason == "other" and not details.strip():
        errors["lost_reason_details"] = "Describe the reason"
    _raise_if_any(errors)


def validate_project(project: Project) -> None:
    errors: dict[str, str] = {}
    _required(errors, "name", project.name, "Project name")
    _required(errors, "client_name", project.client_name, "Client name")
    _raise_if_any(errors)


def validate_task(task: Task, existing: list[Task]) -> None:
    errors: dict[str, str] = {}
    _required(errors, "title", task.title, "Task title")
    if task.parent_id:
        parent = next((item for item in existing if item.id == task.parent_id), None)
        if parent is None:
            errors["parent_id"] = "Parent task does not exist"
        elif parent.parent_id:
            errors["parent_id"] = "Subtasks cannot have subtasks"
        elif parent.project_id != task.project_id:
            errors["parent_id"] = "Parent task belongs to another project"
    if task.start_date and task.due_date and task.due_date < task.start_date:
        errors["due_date"] = "Due date must not be before the start date"
    _raise_if_any(errors)


def validate_invoice(invoice: Invoice) -> None:
    errors: dict[str, str] = {}
    _required(errors, "client_name", invoice.client_name, "Client name")
    if invoice.amount < 0:
        errors["amount"] = "Amount must not be negative"
    if invoice.due_date < invoice.issue_date:
        errors["due_date"] = "Due date must not be before the issue date"
    _raise_if_any(errors)


def validate_quote(quote: Quote) -> None:
    errors: dict[str, str] = {}
    _required(errors, "deal_id", quote.deal_id, "Deal")
    if any(item.quantity < 0 or item.unit_price < 0 for item in quote.items):
        errors["items"] = "Quantities and prices must not be negative"
    if quote.expiry_date < quote.issue_date:
        errors["expiry_date"] = "Expiry date must not be before the issue date"
    _raise_if_any(errors)


def validate_user(user: User) -> None:
    errors: dict[str, str] = {}
    _required(errors, "name", user.name, "Name")
    _required(errors, "email", user.email, "Email")
    _email(errors, "email", user.email)
    _raise_if_any(errors)


def validate_group(group: Group, member_ids: list[str]) -> None:
    errors: dict[str, str] = {}
    _required(errors, "name", group.name, "Group name")
    _required(errors, "manager_id", group.manager_id, "Manager")
    if not member_ids:
        errors["members"] = "A group needs at least one member"
    _raise_if_any(errors)
