from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import date, timedelta
from typing import Any

from crmhub.crm.schemas import Deal, Invoice, InvoiceStatus, Quote, QuoteItem, QuoteStatus, User

DEFAULT_QUOTE_TERMS = "- Payment: 50% upfront, 50% on delivery.\n- This quote is valid for 30 days from the issue date."
QUOTE_VALIDITY_DAYS = 30


def compute_totals(items: Iterable[QuoteItem], discount: float, tax_percent: float) -> tuple[float, float]:
    """Return ``(subtotal, total)``.

    ``total = subtotal - discount + (subtotal - discount) * tax / 100``; a discount larger
    than the subtotal yields a negative total, which is returned as is.
    """

    subtotal = sum(item.quantity * item.unit_price for item in items)
    taxable = subtotal - discount
    return subtotal, taxable + taxable * (tax_percent / 100)


def with_totals(quote: Quote) -> Quote:
    subtotal, total = compute_totals(quote.items, quote.discount, quote.tax)
    return quote.model_copy(update={"subtotal": subtotal, "total": total})


def _item_id() -> str:
    return f"item-{uuid.uuid4().hex[:8]}"


def draft_quote_for_deal(deal: Deal, *, tax_percent: float, today: date | None = None) -> Quote:
    """A new quote seeded with one line per deal service.

    With a single line and a positive deal value, that line is priced at the deal value.
    """

    issue_date = today or date.today()
    if deal.services:
        items = [QuoteItem(id=_item_id(), description=service, quantity=1, unit_price=0) for service in deal.services]
    else:
        items = [QuoteItem(id=_item_id())]
    if len(items) == 1 and deal.value > 0:
        items[0] = items[0].model_copy(update={"unit_price": deal.value})

    return with_totals(
        Quote(
            deal_id=deal.id,
            client_name=deal.company_name,
            issue_date=issue_date,
            expiry_date=issue_date + timedelta(days=QUOTE_VALIDITY_DAYS),
            status=QuoteStatus.DRAFT,
            items=items,
            terms=DEFAULT_QUOTE_TERMS,
            discount=0,
            tax=tax_percent,
        )
    )


def draft_invoice_from_quote(quote: Quote, owner: User, *, due_days: int, today: date | None = None) -> Invoice:
    issue_date = today or date.today()
    _, total = compute_totals(quote.items, quote.discount, quote.tax)
    return Invoice(
        client_name=quote.client_name,
        amount=total,
        status=InvoiceStatus.DRAFT,
        issue_date=issue_date,
        due_date=issue_date + timedelta(days=due_days),
        description=f"Invoice for quote #{quote.quote_number}",
        deal_id=quote.deal_id,
        owner_id=owner.id,
        scope=owner.scope,
    )


class QuoteEditor:
    """Working copy of a quote whose totals are recomputed on every edit.

    Moving the status into ACCEPTED from any other status calls ``on_accepted`` once
    with the freshly totalled quote; the callback decides whether to offer an invoice.
    """

    def __init__(self, deal: Deal, quote: Quote, on_accepted: Callable[[Quote], Any] | None = None) -> None:
        self.deal = deal
        self.quote = with_totals(quote)
        self._on_accepted = on_accepted

    @property
    def is_new(self) -> bool:
        return not self.quote.id

    def _update(self, **changes: Any) -> Quote:
        self.quote = with_totals(self.quote.model_copy(update=changes))
        return self.quote

    def update_item(
        self,
        index: int,
        *,
        description: str | None = None,
        quantity: float | None = None,
        unit_price: float | None = None,
    ) -> Quote:
        items = list(self.quote.items)
        changes: dict[str, Any] = {}
        if description is not None:
            changes["description"] = description
        if quantity is not None:
            changes["quantity"] = float(quantity)
        if unit_price is not None:
            changes["unit_price"] = float(unit_price)
        items[index] = items[index].model_copy(update=changes)
        return self._update(items=items)

    def add_item(self) -> Quote:
        return self._update(items=[*self.quote.items, QuoteItem(id=_item_id())])

    def remove_item(self, index: int) -> Quote:
        # The last remaining line cannot be removed.
        if len(self.quote.items) <= 1:
            return self.quote
        items = [item for position, item in enumerate(self.quote.items) if position != index]
        return self._update(items=items)

    def set_discount(self, discount: float) -> Quote:
        return self._update(discount=float(discount))

    def set_tax(self, tax_percent: float) -> Quote:
        return self._update(tax=float(tax_percent))

    def set_terms(self, terms: str) -> Quote:
        return self._update(terms=terms)

    def set_status(self, status: QuoteStatus | str) -> bool:
        """Change the status; returns True when an invoice offer was raised."""

        new_status = QuoteStatus(status)
        was_accepted = self.quote.status == QuoteStatus.ACCEPTED
        accepted = self._update(status=new_status)
        if new_status == QuoteStatus.ACCEPTED and not was_accepted:
            if self._on_accepted is not None:
                self._on_accepted(accepted)
            return True
        return False
