from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from crmhub.crm.schemas import (
    CLOSED_DEAL_STATUSES,
    DEAL_PIPELINE,
    Deal,
    DealStatus,
    Invoice,
    InvoiceStatus,
    Lead,
    LeadStatus,
    Quote,
    QuoteStatus,
    Task,
    TaskStatus,
)

STALE_LEAD_STATUSES = frozenset({LeadStatus.NEW, LeadStatus.CONTACTED})


@dataclass(frozen=True, slots=True)
class FunnelStage:
    status: DealStatus
    count: int
    value: float


@dataclass(frozen=True, slots=True)
class FinancialSummary:
    revenue: float
    outstanding: float
    overdue: float
    pending_quotes: float


@dataclass(frozen=True, slots=True)
class QuickStats:
    open_deals: int
    overdue_invoices: int
    tasks_due_today: int


@dataclass(frozen=True, slots=True)
class CalendarEvent:
    day: date
    kind: str
    title: str
    entity_id: str
    time: str | None = None


def kanban_columns(deals: Iterable[Deal]) -> dict[DealStatus, list[Deal]]:
    """Deals grouped by stage, keeping their relative order from the cache."""

    columns: dict[DealStatus, list[Deal]] = {status: [] for status in DEAL_PIPELINE}
    for deal in deals:
        columns[deal.status].append(deal)
    return columns


def sales_funnel(deals: Iterable[Deal]) -> list[FunnelStage]:
    columns = kanban_columns(deals)
    return [
        FunnelStage(status=status, count=len(items), value=sum(deal.value for deal in items))
        for status, items in columns.items()
    ]


def financial_summary(invoices: Iterable[Invoice], quotes: Iterable[Quote]) -> FinancialSummary:
    revenue = outstanding = overdue = 0.0
    for invoice in invoices:
        if invoice.status == InvoiceStatus.PAID:
            revenue += invoice.amount
        elif invoice.status == InvoiceStatus.OVERDUE:
            overdue += invoice.amount
        else:
            outstanding += invoice.amount
    pending = sum(quote.total for quote in quotes if quote.status in {QuoteStatus.DRAFT, QuoteStatus.SENT})
    return FinancialSummary(revenue=revenue, outstanding=outstanding, overdue=overdue, pending_quotes=pending)


def quick_stats(
    deals: Iterable[Deal],
    invoices: Iterable[Invoice],
    tasks: Iterable[Task],
    *,
    today: date | None = None,
) -> QuickStats:
    current_day = today or date.today()
    return QuickStats(
        open_deals=sum(1 for deal in deals if deal.status not in CLOSED_DEAL_STATUSES),
        overdue_invoices=sum(1 for invoice in invoices if invoice.status == InvoiceStatus.OVERDUE),
        tasks_due_today=sum(1 for task in tasks if task.status != TaskStatus.DONE and task.due_date == current_day),
    )


def stale_leads(leads: Iterable[Lead], *, days: int, now: datetime | None = None) -> list[Lead]:
    """NEW and CONTACTED leads untouched for more than ``days`` days."""

    reference = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    threshold = reference - timedelta(days=days)
    stale: list[Lead] = []
    for lead in leads:
        updated = lead.last_updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        if lead.status in STALE_LEAD_STATUSES and updated < threshold:
            stale.append(lead)
    return stale


def calendar_events(deals: Iterable[Deal], tasks: Iterable[Task], start: date, end: date) -> list[CalendarEvent]:
    events: list[CalendarEvent] = []
    for deal in deals:
        if deal.next_meeting_date and start <= deal.next_meeting_date <= end:
            events.append(
                CalendarEvent(deal.next_meeting_date, "meeting", deal.title, deal.id, deal.next_meeting_time or None)
            )
    for task in tasks:
        if task.due_date and task.status != TaskStatus.DONE and start <= task.due_date <= end:
            events.append(CalendarEvent(task.due_date, "task_due", task.title, task.id))
    return sorted(events, key=lambda event: (event.day, event.time or ""))
