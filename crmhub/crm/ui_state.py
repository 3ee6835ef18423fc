from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, fields
from enum import StrEnum
from typing import Any, Generic, TypeVar

from crmhub.crm.schemas import Account, Deal, Group, Invoice, Lead, Project, User

T = TypeVar("T")


class Page(StrEnum):
    DASHBOARD = "dashboard"
    LEADS = "leads"
    DEALS = "deals"
    PROJECTS = "projects"
    ACCOUNTS = "accounts"
    FINANCIALS = "financials"
    USERS = "users"
    SETTINGS = "settings"
    REPORTS = "reports"
    CALENDAR = "calendar"
    TEAMS = "teams"


class ProjectTab(StrEnum):
    DETAILS = "details"
    TASKS = "tasks"
    TIMELINE = "timeline"
    FILES = "files"


@dataclass
class Editor(Generic[T]):
    """An editor slot: the record being edited and whether it is a new record."""

    payload: T | None = None
    is_creating: bool = False

    @property
    def is_open(self) -> bool:
        return self.payload is not None


@dataclass
class ProjectEditor(Editor[Project]):
    initial_tab: ProjectTab = ProjectTab.DETAILS


@dataclass(slots=True)
class SyncPrompt:
    project: Project
    deal: Deal


@dataclass(slots=True)
class PendingLoss:
    """A LOST save intercepted until the user supplies a reason."""

    deal: Deal


@dataclass(slots=True)
class Confirmation:
    title: str
    message: str
    on_confirm: Callable[[], Awaitable[Any] | Any]
    confirm_text: str = "Confirm"
    cancel_text: str = "Cancel"


@dataclass(slots=True)
class ModalState:
    """One optional payload per overlay. Slots are independent of each other."""

    deal: Editor[Deal] = field(default_factory=Editor)
    project: ProjectEditor = field(default_factory=ProjectEditor)
    sync: SyncPrompt | None = None
    lead: Editor[Lead] = field(default_factory=Editor)
    reassign_lead: Lead | None = None
    invoice: Editor[Invoice] = field(default_factory=Editor)
    user: Editor[User] = field(default_factory=Editor)
    group: Editor[Group] = field(default_factory=Editor)
    account: Editor[Account] = field(default_factory=Editor)
    account_details: Account | None = None
    confirmation: Confirmation | None = None
    reason_for_loss: PendingLoss | None = None
    forgot_password: bool = False
    scheduling: Deal | None = None
    email_composer: Lead | Deal | None = None
    quote_editor: Any = None

    def open_slots(self) -> list[str]:
        opened: list[str] = []
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, Editor):
                if value.is_open:
                    opened.append(item.name)
            elif value:
                opened.append(item.name)
        return opened

    def open_deal(self, deal: Deal | None, *, is_creating: bool = False) -> None:
        self.deal = Editor(deal, is_creating)

    def close_deal(self) -> None:
        self.deal = Editor()

    def open_project(
        self,
        project: Project | None,
        *,
        is_creating: bool = False,
        initial_tab: ProjectTab = ProjectTab.DETAILS,
    ) -> None:
        # New projects always start on the details tab.
        tab = ProjectTab.DETAILS if is_creating else initial_tab
        self.project = ProjectEditor(project, is_creating, tab)

    def close_project(self) -> None:
        self.project = ProjectEditor()

    def open_sync(self, project: Project, deal: Deal) -> None:
        self.sync = SyncPrompt(project, deal)

    def close_sync(self) -> None:
        self.sync = None

    def open_lead(self, lead: Lead | None, *, is_creating: bool = False) -> None:
        self.lead = Editor(lead, is_creating)

    def close_lead(self) -> None:
        self.lead = Editor()

    def open_reassign_lead(self, lead: Lead) -> None:
        self.reassign_lead = lead

    def close_reassign_lead(self) -> None:
        self.reassign_lead = None

    def open_invoice(self, invoice: Invoice | None, *, is_creating: bool = False) -> None:
        self.invoice = Editor(invoice, is_creating)

    def close_invoice(self) -> None:
        self.invoice = Editor()

    def open_user(self, user: User | None, *, is_creating: bool = False) -> None:
        self.user = Editor(user, is_creating)

    def close_user(self) -> None:
        self.user = Editor()

    def open_group(self, group: Group | None, *, is_creating: bool = False) -> None:
        self.group = Editor(group, is_creating)

    def close_group(self) -> None:
        self.group = Editor()

    def open_account(self, account: Account | None, *, is_creating: bool = False) -> None:
        self.account = Editor(account, is_creating)

    def close_account(self) -> None:
        self.account = Editor()

    def open_account_details(self, account: Account) -> None:
        self.account_details = account

    def close_account_details(self) -> None:
        self.account_details = None

    def open_confirmation(self, confirmation: Confirmation) -> None:
        self.confirmation = confirmation

    def close_confirmation(self) -> None:
        self.confirmation = None

    def open_reason_for_loss(self, deal: Deal) -> None:
        self.reason_for_loss = PendingLoss(deal)

    def close_reason_for_loss(self) -> None:
        self.reason_for_loss = None

    def open_forgot_password(self) -> None:
        self.forgot_password = True

    def close_forgot_password(self) -> None:
        self.forgot_password = False

    def open_scheduling(self, deal: Deal) -> None:
        self.scheduling = deal

    def close_scheduling(self) -> None:
        self.scheduling = None

    def open_email_composer(self, target: Lead | Deal) -> None:
        self.email_composer = target

    def close_email_composer(self) -> None:
        self.email_composer = None

    def open_quote_editor(self, editor: Any) -> None:
        self.quote_editor = editor

    def close_quote_editor(self) -> None:
        self.quote_editor = None


@dataclass(slots=True)
class NavigationFilter:
    page: Page
    filter: dict[str, Any]


class Navigator:
    """Active page plus a one-shot filter handed to the destination page."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active_page: Page = Page.DASHBOARD
        self.search_query = ""
        self.initial_filter: NavigationFilter | None = None

    def set_active_page(self, page: Page | str) -> None:
        with self._lock:
            self.active_page = Page(page)
            self.search_query = ""

    def navigate_with_filter(self, page: Page | str, filter_payload: dict[str, Any]) -> None:
        with self._lock:
            self.active_page = Page(page)
            self.initial_filter = NavigationFilter(Page(page), dict(filter_payload))
            self.search_query = ""

    def consume_filter(self, page: Page | str) -> dict[str, Any] | None:
        """Return the pending filter if it targets ``page`` and clear it."""

        with self._lock:
            pending = self.initial_filter
            if pending is None or pending.page != Page(page):
                return None
            self.initial_filter = None
            return pending.filter

    def clear_filter(self) -> None:
        with self._lock:
            self.initial_filter = None

    def set_search_query(self, query: str) -> None:
        with self._lock:
            self.search_query = query

    def reset(self) -> None:
        with self._lock:
            self.active_page = Page.DASHBOARD
            self.search_query = ""
            self.initial_filter = None
