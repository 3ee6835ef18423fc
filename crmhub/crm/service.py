from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import StrEnum
from inspect import isawaitable
from typing import Any

from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError

from crmhub import events
from crmhub.context import get_correlation_id, operation_scope
from crmhub.core.config import Settings, get_settings
from crmhub.crm.client import CRMBackend
from crmhub.crm.errors import BackendError, CRMError, StateError, ValidationError
from crmhub.crm.notifications import ActivityLogger, NotificationQueue
from crmhub.crm.quotes import QuoteEditor, draft_invoice_from_quote, draft_quote_for_deal, with_totals
from crmhub.crm.repository import EntityRepository
from crmhub.crm.schemas import (
    CLOSED_DEAL_STATUSES,
    Account,
    ActivityLogEntry,
    Deal,
    DealStatus,
    Group,
    Invoice,
    Lead,
    LeadStatus,
    MarketingDetails,
    Notification,
    NotificationType,
    Project,
    ProjectStatus,
    ProjectType,
    Quote,
    QuoteStatus,
    Task,
    TaskStatus,
    User,
    WebDevelopmentDetails,
)
from crmhub.crm.transforms import deal_from_wire, deal_to_wire, from_wire, many_from_wire, to_wire
from crmhub.crm.ui_state import Confirmation, ModalState, Navigator, ProjectTab
from crmhub.crm.validation import (
    validate_deal,
    validate_group,
    validate_invoice,
    validate_lead,
    validate_loss_reason,
    validate_project,
    validate_quote,
    validate_task,
    validate_user,
)
from crmhub.crm.views import stale_leads
from crmhub.metrics import observe_workflow
from crmhub.platform.security import rls
from crmhub.platform.security.capabilities import (
    can_mutate_account,
    can_mutate_deal,
    can_mutate_group,
    can_mutate_invoice,
    can_mutate_lead,
    can_mutate_project,
    can_mutate_quote,
    can_mutate_task,
    can_mutate_user,
    require,
)
from crmhub.platform.security.context import AuthContext
from crmhub.platform.security.policies import PermissionMatrix, ResourceAction, resolve_permissions


logger = logging.getLogger("crmhub.workspace")
tracer = trace.get_tracer("crmhub.crm.service")

# Failures of a backend round trip: transport/status errors and unparseable responses.
BACKEND_FAILURES = (CRMError, PydanticValidationError)

STAGE_LABELS: dict[DealStatus, str] = {
    DealStatus.NEW_OPPORTUNITY: "New opportunity",
    DealStatus.MEETING_SCHEDULED: "Meeting scheduled",
    DealStatus.PROPOSAL_SENT: "Proposal sent",
    DealStatus.NEGOTIATION: "Negotiation",
    DealStatus.WON: "Won",
    DealStatus.LOST: "Lost",
}

PROJECT_STATUS_LABELS: dict[ProjectStatus, str] = {
    ProjectStatus.PLANNING: "Planning",
    ProjectStatus.IN_PROGRESS: "In progress",
    ProjectStatus.COMPLETED: "Completed",
    ProjectStatus.ON_HOLD: "On hold",
    ProjectStatus.ARCHIVED: "Archived",
}


class SyncChoice(StrEnum):
    UPDATE_DEAL = "update_deal"
    CREATE_TASK = "create_task"
    IGNORE = "ignore"


@dataclass
class WorkspaceState:
    current_user: User | None = None
    permissions: PermissionMatrix | None = None
    is_loading: bool = False
    is_submitting: bool = False
    error: str | None = None


class CRMWorkspace:
    """Client-side CRM session: cached entities, UI state and the cross-entity workflows.

    Every workflow follows the same order: validate locally, call the backend, apply the
    response to the repository, append an activity-log entry, then queue a notification.
    Backend failures are reported through ``state.error`` and the method returns ``None``
    (or ``False``); local validation, permission and precondition failures raise.
    """

    def __init__(
        self,
        backend: CRMBackend,
        *,
        settings: Settings | None = None,
        repository: EntityRepository | None = None,
    ) -> None:
        self.backend = backend
        self.settings = settings or get_settings()
        self.repository = repository or EntityRepository()
        self.notifications = NotificationQueue()
        self.activity = ActivityLogger(backend, self.repository)
        self.modals = ModalState()
        self.navigation = Navigator()
        self.state = WorkspaceState()

    # -- plumbing ---------------------------------------------------------

    @contextmanager
    def _workflow(self, name: str, *, submitting: bool = True) -> Iterator[str]:
        with operation_scope(name) as correlation_id, tracer.start_as_current_span(f"crm.workflow.{name}") as span:
            span.set_attribute("correlation_id", correlation_id)
            if submitting:
                self.state.is_submitting = True
                self.state.error = None
            try:
                yield correlation_id
            finally:
                if submitting:
                    self.state.is_submitting = False

    def _fail(self, summary: str, exc: Exception, workflow: str) -> None:
        self.state.error = f"{summary}: {exc}"
        observe_workflow(workflow, "failure")
        logger.warning("workflow_failed", extra={"operation": workflow, "error": str(exc), "status": "failed"})

    def _succeed(self, workflow: str, entity_type: str, entity_id: str | None) -> None:
        observe_workflow(workflow, "success")
        logger.info(
            "workflow_completed",
            extra={"operation": workflow, "entity_type": entity_type, "entity_id": entity_id, "status": "ok"},
        )

    def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        actor = self.state.current_user
        events.publish(events.build_envelope(event_type, actor.id if actor else None, payload))

    async def _log(self, action: str) -> ActivityLogEntry | None:
        return await self.activity.log(self.state.current_user, action)

    def _actor(self) -> User:
        if self.state.current_user is None:
            raise StateError("No user is signed in")
        return self.state.current_user

    def auth_context(self) -> AuthContext:
        return AuthContext.from_user(self._actor(), correlation_id=get_correlation_id())

    def _users(self) -> list[User]:
        return self.repository.all("users")

    def _cached(self, collection: str, entity_id: str, label: str) -> Any:
        entity = self.repository.get(collection, entity_id)
        if entity is None:
            raise StateError(f"Unknown {label} '{entity_id}'")
        return entity

    def _require_mutation(
        self,
        collection: str,
        submitted: Any,
        allowed: Callable[[Any], bool],
        resource: str,
        action: ResourceAction,
        label: str,
    ) -> None:
        """Check an edit against the cached row and against the row as submitted.

        Ownership fields on the submitted copy are user-controlled, so an update must
        be allowed on the stored record and must not move the record out of reach.
        """

        if action == ResourceAction.CREATE:
            require(allowed(submitted), resource, action)
            return
        stored = self._cached(collection, submitted.id, label)
        require(allowed(stored) and allowed(submitted), resource, action, submitted.id)

    def _user_name(self, user_id: str | None) -> str:
        user = self.repository.get("users", user_id) if user_id else None
        return user.name if user else "unknown user"

    def _reset_session(self, *, keep_users: bool = False) -> None:
        self.repository.clear(keep=("users",) if keep_users else ())
        self.state.current_user = None
        self.state.permissions = None
        self.modals = ModalState()
        self.navigation.reset()

    # -- session ----------------------------------------------------------

    async def login(self, email: str, password: str) -> bool:
        with self._workflow("login"):
            try:
                await self.backend.get_csrf_cookie()
                await self.backend.login(email, password)
            except CRMError as exc:
                invalid_input = isinstance(exc, ValidationError) or getattr(exc, "status_code", None) == 422
                self.state.error = "The submitted data is invalid." if invalid_input else "Invalid email or password."
                observe_workflow("login", "failure")
                logger.warning("login_failed", extra={"operation": "login", "error": str(exc)})
                return False
        await self.load()
        return self.state.current_user is not None

    async def load(self) -> None:
        """Restore the session user and bulk-load every collection concurrently."""

        self.state.is_loading = True
        try:
            with self._workflow("load", submitting=False):
                try:
                    payload = await self.backend.fetch_current_user()
                    user = from_wire(User, payload) if payload else None
                    if user is None or not user.is_active:
                        self._reset_session()
                        return
                    self.state.current_user = user
                    self.state.permissions = resolve_permissions(user.role)

                    (
                        users,
                        leads,
                        opportunities,
                        accounts,
                        projects,
                        tasks,
                        invoices,
                        quotes,
                        activity_log,
                        groups,
                    ) = await asyncio.gather(
                        self.backend.list_users(),
                        self.backend.list_leads(),
                        self.backend.list_opportunities(),
                        self.backend.list_accounts(),
                        self.backend.list_projects(),
                        self.backend.list_tasks(),
                        self.backend.list_invoices(),
                        self.backend.list_quotes(),
                        self.backend.list_activity_log(),
                        self.backend.list_groups(),
                    )
                    self.repository.load(
                        users=many_from_wire(User, users),
                        leads=many_from_wire(Lead, leads),
                        deals=[deal_from_wire(item) for item in opportunities],
                        accounts=many_from_wire(Account, accounts),
                        projects=many_from_wire(Project, projects),
                        tasks=many_from_wire(Task, tasks),
                        invoices=many_from_wire(Invoice, invoices),
                        quotes=many_from_wire(Quote, quotes),
                        activity_log=many_from_wire(ActivityLogEntry, activity_log),
                        groups=many_from_wire(Group, groups),
                    )
                except BACKEND_FAILURES as exc:
                    logger.info("session_not_restored", extra={"operation": "load", "error": str(exc)})
                    self._reset_session()
                    return
                observe_workflow("load", "success")
            self.run_system_checks()
        finally:
            self.state.is_loading = False
            self.state.is_submitting = False

    async def logout(self) -> None:
        with self._workflow("logout", submitting=False):
            if self.state.current_user is not None:
                await self._log("Signed out")
            try:
                await self.backend.logout()
            except CRMError as exc:
                logger.warning("logout_failed", extra={"operation": "logout", "error": str(exc)})
            finally:
                self._reset_session(keep_users=True)

    def clear_error(self) -> None:
        self.state.error = None

    def run_system_checks(self, now: datetime | None = None) -> list[Notification]:
        """Queue one LEAD_STALE notification per lead idle past the stale threshold."""

        days = self.settings.stale_lead_days
        raised = [
            self.notifications.add(
                f'Lead "{lead.company_name}" has not been updated for more than {days} days.',
                NotificationType.LEAD_STALE,
            )
            for lead in stale_leads(self.repository.all("leads"), days=days, now=now)
        ]
        if raised:
            logger.info("stale_leads_detected count=%d", len(raised), extra={"operation": "system_checks"})
        return raised

    # -- visibility -------------------------------------------------------

    def visible_leads(self) -> list[Lead]:
        return rls.visible_leads(self.repository.all("leads"), self.auth_context(), self._users())

    def visible_deals(self) -> list[Deal]:
        return rls.visible_deals(self.repository.all("deals"), self.auth_context(), self._users())

    def visible_projects(self) -> list[Project]:
        return rls.visible_projects(
            self.repository.all("projects"), self.auth_context(), self._users(), self.repository.all("deals")
        )

    def visible_tasks(self) -> list[Task]:
        return rls.visible_tasks(
            self.repository.all("tasks"),
            self.auth_context(),
            self._users(),
            self.repository.all("projects"),
            self.repository.all("deals"),
        )

    def visible_invoices(self) -> list[Invoice]:
        return rls.visible_invoices(
            self.repository.all("invoices"),
            self.auth_context(),
            self._users(),
            self.repository.all("deals"),
            self.repository.all("projects"),
        )

    def visible_quotes(self) -> list[Quote]:
        return rls.visible_quotes(
            self.repository.all("quotes"), self.auth_context(), self._users(), self.repository.all("deals")
        )

    def visible_groups(self) -> list[Group]:
        return rls.visible_groups(self.repository.all("groups"), self.auth_context())

    # -- leads ------------------------------------------------------------

    async def save_lead(self, lead: Lead, *, is_new: bool) -> Lead | None:
        validate_lead(lead)
        action = ResourceAction.CREATE if is_new else ResourceAction.UPDATE
        ctx, users = self.auth_context(), self._users()
        self._require_mutation(
            "leads", lead, lambda row: can_mutate_lead(row, ctx, users, action), "leads", action, "lead"
        )

        with self._workflow("save_lead"):
            stamped = lead.model_copy(update={"last_updated_at": datetime.now(timezone.utc)})
            try:
                if is_new:
                    payload = await self.backend.create_lead(to_wire(stamped, exclude={"id"}))
                else:
                    payload = await self.backend.update_lead(lead.id, to_wire(stamped))
                saved = from_wire(Lead, payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save lead", exc, "save_lead")
                return None

            if is_new:
                self.repository.prepend("leads", saved)
            else:
                self.repository.replace("leads", saved)
            await self._log(f"Created lead: {saved.company_name}" if is_new else f"Updated lead: {saved.company_name}")
            if is_new:
                self.notifications.add(
                    f'New lead "{saved.company_name}" has been assigned to you.', NotificationType.NEW_LEAD_ASSIGNED
                )
            self._succeed("save_lead", "lead", saved.id)
            return saved

    async def reassign_lead(self, lead_id: str, new_owner_id: str) -> Lead | None:
        lead = self._cached("leads", lead_id, "lead")
        require(can_mutate_lead(lead, self.auth_context(), self._users()), "leads", ResourceAction.UPDATE, lead_id)

        with self._workflow("reassign_lead"):
            try:
                payload = await self.backend.update_lead(
                    lead_id,
                    {"ownerId": new_owner_id, "lastUpdatedAt": datetime.now(timezone.utc).isoformat()},
                )
                saved = from_wire(Lead, payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to reassign lead", exc, "reassign_lead")
                return None

            self.repository.replace("leads", saved)
            await self._log(f'Reassigned lead "{saved.company_name}" to {self._user_name(new_owner_id)}.')
            self._succeed("reassign_lead", "lead", lead_id)
            return saved

    async def convert_lead(self, lead_id: str) -> Deal | None:
        """Turn a QUALIFIED lead into an account and a deal.

        The backend call is the only step that can fail; the account merge, the new deal
        and the lead status change are applied together once it succeeds. An account that
        is already cached is not inserted twice.
        """

        lead: Lead = self._cached("leads", lead_id, "lead")
        if lead.status != LeadStatus.QUALIFIED:
            raise StateError(f"Only qualified leads can be converted (lead is {lead.status})")
        require(can_mutate_lead(lead, self.auth_context(), self._users()), "leads", ResourceAction.UPDATE, lead_id)

        with self._workflow("convert_lead"):
            try:
                payload = await self.backend.convert_lead(lead_id)
                account = from_wire(Account, payload["account"])
                deal = deal_from_wire(payload["opportunity"])
            except BACKEND_FAILURES as exc:
                self._fail("Failed to convert lead", exc, "convert_lead")
                return None
            except KeyError as exc:
                self._fail("Failed to convert lead", BackendError(f"missing {exc} in conversion response"), "convert_lead")
                return None

            def _apply(repo: EntityRepository) -> None:
                repo.prepend_if_absent("accounts", account)
                repo.prepend("deals", deal)
                repo.update_where(
                    "leads",
                    lambda item: item.id == lead_id,
                    lambda item: item.model_copy(update={"status": LeadStatus.CONVERTED}),
                )

            self.repository.apply(_apply)
            await self._log(f'Converted lead "{lead.company_name}" into an opportunity.')
            self.notifications.add(
                f'"{lead.company_name}" was converted into an opportunity.', NotificationType.DEAL_WON
            )
            self._publish(
                "crm.lead.converted",
                {"lead_id": lead_id, "account_id": account.id, "deal_id": deal.id},
            )
            self._succeed("convert_lead", "lead", lead_id)
            return deal

    # -- deals ------------------------------------------------------------

    def blank_deal(self) -> Deal:
        actor = self._actor()
        return Deal(title="", owner_id=actor.id, scope=actor.scope)

    async def save_deal(self, deal: Deal, *, is_creating: bool = False) -> Deal | None:
        """Save from the deal editor.

        Moving an existing deal into LOST does not persist anything: it opens the
        reason-for-loss step and returns ``None`` until ``confirm_deal_loss`` is called.
        Moving into WON goes through the dedicated win operation, which also creates
        the delivery project.
        """

        validate_deal(deal)
        action = ResourceAction.CREATE if is_creating else ResourceAction.UPDATE
        ctx, users = self.auth_context(), self._users()
        self._require_mutation(
            "deals", deal, lambda row: can_mutate_deal(row, ctx, users, action), "deals", action, "deal"
        )

        original: Deal | None = None if is_creating else self.repository.get("deals", deal.id)
        previous_status = original.status if original else None

        if not is_creating and deal.status == DealStatus.LOST and previous_status != DealStatus.LOST:
            self.modals.open_reason_for_loss(deal)
            return None
        if not is_creating and deal.status == DealStatus.WON and previous_status != DealStatus.WON:
            return await self._win_deal(deal)
        return await self._persist_deal(deal, is_creating=is_creating, workflow="save_deal")

    async def _persist_deal(self, deal: Deal, *, is_creating: bool, workflow: str) -> Deal | None:
        with self._workflow(workflow):
            try:
                if is_creating:
                    payload = await self.backend.create_opportunity(deal_to_wire(deal))
                else:
                    payload = await self.backend.update_opportunity(deal.id, deal_to_wire(deal))
                saved = deal_from_wire(payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save deal", exc, workflow)
                return None

            if is_creating:
                self.repository.prepend("deals", saved)
            else:
                self.repository.replace("deals", saved)
            await self._log(f"Created deal: {saved.title}" if is_creating else f"Updated deal: {saved.title}")
            self._succeed(workflow, "deal", saved.id)
            return saved

    async def _win_deal(self, deal: Deal) -> Deal | None:
        with self._workflow("deal_win"):
            try:
                payload = await self.backend.win_opportunity(deal.id, deal_to_wire(deal))
                won = deal_from_wire(payload["opportunity"])
                project = from_wire(Project, payload["project"])
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save deal", exc, "deal_win")
                return None
            except KeyError as exc:
                self._fail("Failed to save deal", BackendError(f"missing {exc} in win response"), "deal_win")
                return None

            def _apply(repo: EntityRepository) -> None:
                repo.replace("deals", won)
                repo.prepend("projects", project)

            self.repository.apply(_apply)
            await self._log(f"Won deal: {won.title}")
            self.notifications.add(
                f'Deal "{won.title}" was won and a linked project was created.', NotificationType.DEAL_WON
            )
            self._publish("crm.deal.won", {"deal_id": won.id, "project_id": project.id, "value": won.value})
            self._succeed("deal_win", "deal", won.id)
            return won

    async def confirm_deal_loss(self, reason: str, details: str = "") -> Deal | None:
        """Persist the pending LOST transition with its reason.

        ``details`` is required for the ``other`` reason and kept only for it.
        """

        pending = self.modals.reason_for_loss
        if pending is None:
            raise StateError("No deal is waiting for a loss reason")
        validate_loss_reason(reason, details)

        lost = pending.deal.model_copy(
            update={
                "status": DealStatus.LOST,
                "lost_reason": reason,
                "lost_reason_details": details.strip() if reason == "other" else "",
            }
        )
        self.modals.close_reason_for_loss()
        saved = await self._persist_deal(lost, is_creating=False, workflow="deal_loss")
        if saved is not None:
            self._publish("crm.deal.lost", {"deal_id": saved.id, "reason": reason})
        return saved

    def cancel_deal_loss(self) -> None:
        self.modals.close_reason_for_loss()

    async def move_deal(self, deal_id: str, target_status: DealStatus, before_deal_id: str | None = None) -> bool:
        """Kanban drop of a deal onto a stage, optionally before another deal.

        Entering WON opens the deal editor and entering LOST opens the reason step;
        neither persists. Other moves update the cache first and restore the previous
        deal list verbatim if the status update fails. Only the status is sent.
        """

        deal: Deal | None = self.repository.get("deals", deal_id)
        if deal is None:
            return False
        require(can_mutate_deal(deal, self.auth_context(), self._users()), "deals", ResourceAction.UPDATE, deal_id)

        target = DealStatus(target_status)
        if target == DealStatus.WON and deal.status != DealStatus.WON:
            self.modals.open_deal(deal.model_copy(update={"status": DealStatus.WON}))
            return False
        if target == DealStatus.LOST and deal.status != DealStatus.LOST:
            self.modals.open_reason_for_loss(deal)
            return False

        with self._workflow("move_deal", submitting=False):
            try:
                await self.repository.with_optimistic_update(
                    "deals",
                    lambda: self.repository.move_deal(deal_id, target, before_deal_id),
                    lambda: self.backend.update_opportunity(deal_id, {"status": target.value}),
                    operation="move_deal",
                )
            except BACKEND_FAILURES as exc:
                self._fail("Failed to update deal stage", exc, "move_deal")
                return False

            await self._log(f'Moved deal "{deal.title}" to stage "{STAGE_LABELS[target]}".')
            self._publish(
                "crm.deal.stage_changed",
                {"deal_id": deal_id, "from_status": deal.status.value, "to_status": target.value},
            )
            self._succeed("move_deal", "deal", deal_id)
            return True

    async def schedule_meeting(self, deal_id: str, meeting_at: datetime) -> Deal | None:
        with self._workflow("schedule_meeting"):
            try:
                saved = deal_from_wire(await self.backend.schedule_meeting(deal_id, meeting_at))
            except BACKEND_FAILURES as exc:
                self._fail("Failed to schedule meeting", exc, "schedule_meeting")
                return None

            self.repository.replace("deals", saved)
            self.notifications.add(
                f'A meeting for "{saved.title}" was scheduled.', NotificationType.MEETING_SCHEDULED
            )
            self._publish("crm.meeting.scheduled", {"deal_id": deal_id, "meeting_at": meeting_at.isoformat()})
            self._succeed("schedule_meeting", "deal", deal_id)
            return saved

    async def available_slots(self, day: date) -> list[str]:
        with self._workflow("available_slots", submitting=False):
            try:
                return await self.backend.available_slots(day)
            except CRMError as exc:
                self._fail("Failed to load available slots", exc, "available_slots")
                return []

    async def book_meeting(self, deal_id: str, client_name: str, client_email: str, meeting_at: datetime) -> bool:
        with self._workflow("book_meeting"):
            try:
                await self.backend.book_meeting(
                    {
                        "dealId": deal_id,
                        "clientName": client_name,
                        "clientEmail": client_email,
                        "meetingDateTime": meeting_at.isoformat(),
                    }
                )
            except CRMError as exc:
                self._fail("Failed to book meeting", exc, "book_meeting")
                return False
            self._succeed("book_meeting", "deal", deal_id)
            return True

    # -- projects and tasks -------------------------------------------------

    async def save_project(self, project: Project, *, is_creating: bool = False) -> Project | None:
        validate_project(project)
        action = ResourceAction.CREATE if is_creating else ResourceAction.UPDATE
        ctx, users = self.auth_context(), self._users()
        self._require_mutation(
            "projects", project, lambda row: can_mutate_project(row, ctx, users, action), "projects", action, "project"
        )

        with self._workflow("save_project"):
            try:
                if is_creating:
                    payload = await self.backend.create_project(to_wire(project, exclude={"id"}))
                else:
                    payload = await self.backend.update_project(project.id, to_wire(project))
                saved = from_wire(Project, payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save project", exc, "save_project")
                return None

            if is_creating:
                self.repository.prepend("projects", saved)
            else:
                self.repository.replace("projects", saved)
            await self._log(f"Created project: {saved.name}" if is_creating else f"Updated project: {saved.name}")
            self._succeed("save_project", "project", saved.id)
            return saved

    async def create_project_from_deal(self, deal: Deal) -> Project | None:
        project = Project(
            deal_id=deal.id,
            name=deal.title,
            client_name=deal.company_name,
            project_manager_id=deal.project_manager_id,
            status=ProjectStatus.PLANNING,
            start_date=date.today(),
            services=list(deal.services),
            project_type=ProjectType.GENERAL,
            scope=deal.scope,
            description=deal.notes,
            development_details=WebDevelopmentDetails(),
            marketing_details=MarketingDetails(),
        )
        saved = await self.save_project(project, is_creating=True)
        if saved is not None:
            self.notifications.add(
                f"A new project was created from won deal: {deal.title}", NotificationType.PROJECT_STATUS_CHANGED
            )
        return saved

    async def update_project_status(self, project_id: str, new_status: ProjectStatus) -> bool:
        """Status control on a project.

        Completing a project whose linked deal is still open raises the sync prompt; the
        status change itself is applied optimistically regardless of the prompt.
        """

        project: Project | None = self.repository.get("projects", project_id)
        if project is None:
            return False
        require(
            can_mutate_project(project, self.auth_context(), self._users()),
            "projects",
            ResourceAction.UPDATE,
            project_id,
        )

        status = ProjectStatus(new_status)
        if status == ProjectStatus.COMPLETED and project.deal_id:
            deal: Deal | None = self.repository.get("deals", project.deal_id)
            if deal is not None and deal.status not in CLOSED_DEAL_STATUSES:
                self.modals.open_sync(project, deal)

        updated = project.model_copy(update={"status": status})
        with self._workflow("update_project_status", submitting=False):
            try:
                await self.repository.with_optimistic_update(
                    "projects",
                    lambda: self.repository.replace("projects", updated),
                    lambda: self.backend.update_project(project_id, {"status": status.value}),
                    operation="update_project_status",
                )
            except BACKEND_FAILURES as exc:
                self._fail("Failed to update project status", exc, "update_project_status")
                return False

            await self._log(f'Changed project "{project.name}" status to "{PROJECT_STATUS_LABELS[status]}".')
            self._publish(
                "crm.project.status_changed",
                {"project_id": project_id, "from_status": project.status.value, "to_status": status.value},
            )
            self._succeed("update_project_status", "project", project_id)
            return True

    def resolve_sync_prompt(self, choice: SyncChoice | str) -> None:
        prompt = self.modals.sync
        if prompt is None:
            raise StateError("No project/deal sync prompt is open")
        selected = SyncChoice(choice)
        self.modals.close_sync()
        if selected == SyncChoice.UPDATE_DEAL:
            current = self.repository.get("deals", prompt.deal.id) or prompt.deal
            self.modals.open_deal(current)
        elif selected == SyncChoice.CREATE_TASK:
            current_project = self.repository.get("projects", prompt.project.id) or prompt.project
            self.modals.open_project(current_project, is_creating=False, initial_tab=ProjectTab.TASKS)

    async def add_task(self, task: Task) -> Task | None:
        validate_task(task, self.repository.all("tasks"))
        require(
            can_mutate_task(task, self.auth_context(), self._users(), self.repository.all("projects")),
            "projects",
            ResourceAction.UPDATE,
            task.project_id,
        )

        with self._workflow("add_task"):
            try:
                saved = from_wire(Task, await self.backend.create_task(to_wire(task, exclude={"id"})))
            except BACKEND_FAILURES as exc:
                self._fail("Failed to add task", exc, "add_task")
                return None

            self.repository.append("tasks", saved)
            await self._log(f'Added task: "{saved.title}"')
            self._succeed("add_task", "task", saved.id)
            return saved

    async def update_task(self, task: Task) -> bool:
        validate_task(task, self.repository.all("tasks"))
        ctx, users, projects = self.auth_context(), self._users(), self.repository.all("projects")
        self._require_mutation(
            "tasks",
            task,
            lambda row: can_mutate_task(row, ctx, users, projects),
            "projects",
            ResourceAction.UPDATE,
            "task",
        )

        with self._workflow("update_task", submitting=False):
            try:
                await self.repository.with_optimistic_update(
                    "tasks",
                    lambda: self.repository.replace("tasks", task),
                    lambda: self.backend.update_task(task.id, to_wire(task)),
                    operation="update_task",
                )
            except BACKEND_FAILURES as exc:
                self._fail("Failed to update task", exc, "update_task")
                return False

            if task.status == TaskStatus.DONE:
                await self._log(f'Completed task: "{task.title}"')
            self._succeed("update_task", "task", task.id)
            return True

    # -- finance ----------------------------------------------------------

    def blank_invoice(self) -> Invoice:
        actor = self._actor()
        today = date.today()
        return Invoice(
            client_name="",
            issue_date=today,
            due_date=today + timedelta(days=self.settings.invoice_due_days),
            owner_id=actor.id,
            scope=actor.scope,
        )

    def invoice_for_project(self, invoice: Invoice, project_id: str) -> Invoice:
        """Link an invoice to a project: the client name follows the project, the deal link is dropped."""

        project: Project = self._cached("projects", project_id, "project")
        return invoice.model_copy(update={"project_id": project.id, "deal_id": None, "client_name": project.client_name})

    def invoice_for_deal(self, invoice: Invoice, deal_id: str) -> Invoice:
        deal: Deal = self._cached("deals", deal_id, "deal")
        return invoice.model_copy(update={"deal_id": deal.id, "project_id": None, "client_name": deal.company_name})

    async def save_invoice(self, invoice: Invoice) -> Invoice | None:
        validate_invoice(invoice)
        is_new = not invoice.id
        action = ResourceAction.CREATE if is_new else ResourceAction.UPDATE
        ctx, users = self.auth_context(), self._users()
        self._require_mutation(
            "invoices", invoice, lambda row: can_mutate_invoice(row, ctx, users, action), "invoices", action, "invoice"
        )

        with self._workflow("save_invoice"):
            try:
                if is_new:
                    payload = await self.backend.create_invoice(to_wire(invoice, exclude={"id"}))
                else:
                    payload = await self.backend.update_invoice(invoice.id, to_wire(invoice))
                saved = from_wire(Invoice, payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save invoice", exc, "save_invoice")
                return None

            if is_new:
                self.repository.prepend("invoices", saved)
            else:
                self.repository.replace("invoices", saved)
            await self._log(f"Created invoice for {saved.client_name}" if is_new else f"Updated invoice #{saved.id}")
            self._succeed("save_invoice", "invoice", saved.id)
            return saved

    def open_quote_editor(self, deal: Deal, quote: Quote | None = None) -> QuoteEditor:
        draft = quote or draft_quote_for_deal(deal, tax_percent=self.settings.default_quote_tax_percent)
        editor = QuoteEditor(deal, draft, on_accepted=self._offer_invoice_from_quote)
        self.modals.open_quote_editor(editor)
        return editor

    def close_quote_editor(self) -> None:
        self.modals.close_quote_editor()

    def _offer_invoice_from_quote(self, quote: Quote) -> None:
        self.modals.open_confirmation(
            Confirmation(
                title="Create invoice?",
                message="The quote was accepted. Create an invoice from it now?",
                on_confirm=lambda: self.create_invoice_from_quote(quote),
                confirm_text="Yes, create the invoice",
                cancel_text="Later",
            )
        )

    async def accept_confirmation(self) -> Any:
        confirmation = self.modals.confirmation
        if confirmation is None:
            return None
        self.modals.close_confirmation()
        result = confirmation.on_confirm()
        if isawaitable(result):
            result = await result
        return result

    def dismiss_confirmation(self) -> None:
        self.modals.close_confirmation()

    def create_invoice_from_quote(self, quote: Quote) -> Invoice:
        """Open a draft invoice for an accepted quote in the invoice editor; nothing is saved."""

        invoice = draft_invoice_from_quote(quote, self._actor(), due_days=self.settings.invoice_due_days)
        self.modals.open_invoice(invoice, is_creating=True)
        return invoice

    async def save_quote(self, quote: Quote) -> Quote | None:
        validate_quote(quote)
        is_new = not quote.id
        action = ResourceAction.CREATE if is_new else ResourceAction.UPDATE
        ctx, users, deals = self.auth_context(), self._users(), self.repository.all("deals")
        self._require_mutation(
            "quotes", quote, lambda row: can_mutate_quote(row, ctx, users, deals, action), "invoices", action, "quote"
        )
        previous: Quote | None = None if is_new else self.repository.get("quotes", quote.id)
        totalled = with_totals(quote)

        with self._workflow("save_quote"):
            try:
                if is_new:
                    payload = await self.backend.create_quote(to_wire(totalled, exclude={"id", "quote_number"}))
                else:
                    payload = await self.backend.update_quote(quote.id, to_wire(totalled))
                saved = from_wire(Quote, payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save quote", exc, "save_quote")
                return None

            if is_new:
                self.repository.prepend("quotes", saved)
            else:
                self.repository.replace("quotes", saved)
            await self._log(
                f"Created quote for {saved.client_name}" if is_new else f"Updated quote #{saved.quote_number}"
            )
            was_accepted = previous is not None and previous.status == QuoteStatus.ACCEPTED
            if saved.status == QuoteStatus.ACCEPTED and not was_accepted:
                self._publish("crm.quote.accepted", {"quote_id": saved.id, "deal_id": saved.deal_id, "total": saved.total})
            self._succeed("save_quote", "quote", saved.id)
            return saved

    # -- accounts, users, groups -------------------------------------------

    async def save_account(self, account: Account, *, is_creating: bool) -> Account | None:
        action = ResourceAction.CREATE if is_creating else ResourceAction.UPDATE
        require(can_mutate_account(account, self.auth_context(), action), "accounts", action, account.id or None)

        with self._workflow("save_account"):
            try:
                if is_creating:
                    payload = await self.backend.create_account(to_wire(account, exclude={"id"}))
                else:
                    payload = await self.backend.update_account(account.id, to_wire(account))
                saved = from_wire(Account, payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save account", exc, "save_account")
                return None

            if is_creating:
                self.repository.prepend("accounts", saved)
            else:
                self.repository.replace("accounts", saved)
            await self._log(f"Created account: {saved.name}" if is_creating else f"Updated account: {saved.name}")
            self._succeed("save_account", "account", saved.id)
            return saved

    async def delete_account(self, account_id: str) -> bool:
        account: Account = self._cached("accounts", account_id, "account")
        require(can_mutate_account(account, self.auth_context(), ResourceAction.DELETE), "accounts", "delete", account_id)

        with self._workflow("delete_account"):
            try:
                await self.backend.delete_account(account_id)
            except CRMError as exc:
                self._fail("Failed to delete account", exc, "delete_account")
                return False
            self.repository.remove("accounts", account_id)
            await self._log(f"Deleted account: {account.name}")
            self._succeed("delete_account", "account", account_id)
            return True

    async def save_user(self, user: User) -> User | None:
        validate_user(user)
        is_new = not user.id
        action = ResourceAction.CREATE if is_new else ResourceAction.UPDATE
        stored: User | None = None if is_new else self._cached("users", user.id, "user")
        require(can_mutate_user(user, self.auth_context(), action, stored), "users", action, user.id or None)

        with self._workflow("save_user"):
            try:
                if is_new:
                    payload = await self.backend.create_user(to_wire(user, exclude={"id"}))
                else:
                    payload = await self.backend.update_user(user.id, to_wire(user))
                saved = from_wire(User, payload)
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save user", exc, "save_user")
                return None

            if is_new:
                self.repository.prepend("users", saved)
            else:
                self.repository.replace("users", saved)
            await self._log(f"Created user: {saved.name}" if is_new else f"Updated user: {saved.name}")
            self._succeed("save_user", "user", saved.id)
            return saved

    def update_current_user(self, user: User) -> None:
        self.state.current_user = user

    async def delete_user(self, user_id: str) -> bool:
        user: User = self._cached("users", user_id, "user")
        require(can_mutate_user(user, self.auth_context(), ResourceAction.DELETE), "users", "delete", user_id)

        with self._workflow("delete_user"):
            try:
                await self.backend.delete_user(user_id)
            except CRMError as exc:
                self._fail("Failed to delete user", exc, "delete_user")
                return False
            self.repository.remove("users", user_id)
            await self._log(f"Deleted user: {user.name}")
            self._succeed("delete_user", "user", user_id)
            return True

    async def save_group(self, group: Group, member_ids: list[str]) -> Group | None:
        validate_group(group, member_ids)
        is_new = not group.id
        action = ResourceAction.CREATE if is_new else ResourceAction.UPDATE
        ctx = self.auth_context()
        self._require_mutation("groups", group, lambda row: can_mutate_group(row, ctx, action), "teams", action, "group")

        with self._workflow("save_group"):
            try:
                payload = await self.backend.save_group(to_wire(group), list(member_ids))
                saved = from_wire(Group, payload["savedGroup"])
                updated_users = many_from_wire(User, payload.get("updatedUsers"))
            except BACKEND_FAILURES as exc:
                self._fail("Failed to save group", exc, "save_group")
                return None
            except KeyError as exc:
                self._fail("Failed to save group", BackendError(f"missing {exc} in group response"), "save_group")
                return None

            def _apply(repo: EntityRepository) -> None:
                if is_new:
                    repo.prepend("groups", saved)
                else:
                    repo.replace("groups", saved)
                for user in updated_users:
                    repo.replace("users", user)

            self.repository.apply(_apply)
            await self._log(f"Created team: {saved.name}" if is_new else f"Updated team: {saved.name}")
            self._succeed("save_group", "group", saved.id)
            return saved

    async def delete_group(self, group_id: str) -> bool:
        """Delete a group and detach its members; the member users themselves are kept."""

        group: Group = self._cached("groups", group_id, "group")
        require(can_mutate_group(group, self.auth_context(), ResourceAction.DELETE), "teams", "delete", group_id)

        with self._workflow("delete_group"):
            try:
                await self.backend.delete_group(group_id)
            except CRMError as exc:
                self._fail("Failed to delete group", exc, "delete_group")
                return False

            def _apply(repo: EntityRepository) -> None:
                repo.remove("groups", group_id)
                repo.update_where(
                    "users",
                    lambda user: user.group_id == group_id,
                    lambda user: user.model_copy(update={"group_id": None}),
                )

            self.repository.apply(_apply)
            await self._log(f"Deleted team: {group.name}")
            self._succeed("delete_group", "group", group_id)
            return True

    # -- password reset -----------------------------------------------------

    async def request_password_reset(self, email: str) -> bool:
        with self._workflow("request_password_reset"):
            try:
                payload = await self.backend.request_password_reset(email)
            except CRMError as exc:
                self.state.error = exc.message
                observe_workflow("request_password_reset", "failure")
                return False
            code = (payload or {}).get("code")
            if code:
                self.notifications.add(
                    f"For demonstration, the reset code for {email} is: {code}", NotificationType.MEETING_REMINDER
                )
            observe_workflow("request_password_reset", "success")
            return True

    async def reset_password(self, email: str, code: str, new_password: str) -> bool:
        with self._workflow("reset_password"):
            try:
                await self.backend.reset_password({"email": email, "token": code, "password": new_password})
            except CRMError as exc:
                self.state.error = exc.message
                observe_workflow("reset_password", "failure")
                return False
            observe_workflow("reset_password", "success")
            return True

    # -- assistant ----------------------------------------------------------

    async def summarize(self, text: str) -> str | None:
        with self._workflow("ai_summarize"):
            try:
                return await self.backend.summarize(text)
            except CRMError as exc:
                self._fail("Failed to summarize text", exc, "ai_summarize")
                return None

    async def generate_follow_up_email(self, target: Lead | Deal) -> dict[str, str] | None:
        wire_target = deal_to_wire(target) if isinstance(target, Deal) else to_wire(target)
        wire_user = to_wire(self._actor())
        with self._workflow("ai_generate_email"):
            try:
                return await self.backend.generate_email(wire_target, wire_user)
            except CRMError as exc:
                self._fail("Failed to generate email", exc, "ai_generate_email")
                return None

    async def chat(self, history: list[dict[str, Any]], message: str) -> str | None:
        with self._workflow("ai_chat", submitting=False):
            try:
                return await self.backend.chat(history, message)
            except CRMError as exc:
                self._fail("Failed to reach the assistant", exc, "ai_chat")
                return None
