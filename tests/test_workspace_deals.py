from __future__ import annotations

import asyncio
from collections.abc import Generator
from datetime import datetime
from typing import Any

import pytest

from crmhub import events
from crmhub.core.config import get_settings
from crmhub.crm.client import DemoCRMBackend
from crmhub.crm.errors import NetworkError, PermissionDeniedError, ServerError, StateError, ValidationError
from crmhub.crm.schemas import DealStatus, NotificationType
from crmhub.crm.service import CRMWorkspace


class FailingWinBackend(DemoCRMBackend):
    async def win_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("win_opportunity")
        raise ServerError("API Error: 500 Internal Server Error", status_code=500)


class RecordingStatusBackend(DemoCRMBackend):
    def __init__(self) -> None:
        super().__init__()
        self.status_payloads: list[dict[str, Any]] = []

    async def update_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.status_payloads.append(payload)
        return await super().update_opportunity(deal_id, payload)


class OfflineStatusBackend(DemoCRMBackend):
    async def update_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_opportunity")
        raise NetworkError("Connection failed: offline")


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()
    events.published_events.clear()


def _signed_in(backend: DemoCRMBackend | None = None, email: str = "admin@example.com") -> CRMWorkspace:
    workspace = CRMWorkspace(backend or DemoCRMBackend())
    assert asyncio.run(workspace.login(email, "123"))
    return workspace


def test_winning_a_deal_replaces_it_and_adds_exactly_one_linked_project() -> None:
    workspace = _signed_in()
    deal = workspace.repository.get("deals", "deal-1")
    projects_before = len(workspace.repository.all("projects"))

    won = asyncio.run(
        workspace.save_deal(deal.model_copy(update={"status": DealStatus.WON, "project_manager_id": "user-3"}))
    )

    assert won is not None
    assert won.status == DealStatus.WON
    deals = workspace.repository.all("deals")
    assert [item.id for item in deals].count("deal-1") == 1
    assert workspace.repository.get("deals", "deal-1").status == DealStatus.WON

    projects = workspace.repository.all("projects")
    assert len(projects) == projects_before + 1
    assert projects[0].deal_id == "deal-1"
    assert projects[0].project_manager_id == "user-3"

    assert workspace.notifications.of_type(NotificationType.DEAL_WON)
    assert workspace.repository.all("activity_log")[0].action == "Won deal: Website build"
    won_events = [event for event in events.published_events if event["event_type"] == "crm.deal.won"]
    assert len(won_events) == 1
    assert won_events[0]["payload"]["project_id"] == projects[0].id
    assert won_events[0]["meta"]["operation"] == "deal_win"


def test_failed_win_leaves_deals_and_projects_untouched() -> None:
    workspace = _signed_in(FailingWinBackend())
    deals_before = workspace.repository.all("deals")
    projects_before = workspace.repository.all("projects")
    deal = workspace.repository.get("deals", "deal-1")

    result = asyncio.run(
        workspace.save_deal(deal.model_copy(update={"status": DealStatus.WON, "project_manager_id": "user-3"}))
    )

    assert result is None
    assert workspace.repository.all("deals") == deals_before
    assert workspace.repository.all("projects") == projects_before
    assert workspace.state.error == "Failed to save deal: API Error: 500 Internal Server Error"
    assert workspace.state.is_submitting is False
    assert not events.published_events


def test_won_deal_needs_project_manager_and_services() -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend)
    deal = workspace.repository.get("deals", "deal-1")

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(workspace.save_deal(deal.model_copy(update={"status": DealStatus.WON, "services": []})))

    assert set(exc_info.value.fields) == {"project_manager_id", "services"}
    assert "win_opportunity" not in backend.calls
    assert workspace.state.error is None


def test_losing_a_deal_waits_for_a_reason() -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend)
    deal = workspace.repository.get("deals", "deal-1")

    result = asyncio.run(workspace.save_deal(deal.model_copy(update={"status": DealStatus.LOST})))

    assert result is None
    assert workspace.modals.reason_for_loss is not None
    assert workspace.modals.reason_for_loss.deal.id == "deal-1"
    assert workspace.repository.get("deals", "deal-1").status == DealStatus.NEGOTIATION
    assert "update_opportunity" not in backend.calls

    with pytest.raises(ValidationError):
        asyncio.run(workspace.confirm_deal_loss("other", "   "))
    assert workspace.modals.reason_for_loss is not None

    lost = asyncio.run(workspace.confirm_deal_loss("price", "ignored for price"))

    assert lost is not None
    assert lost.status == DealStatus.LOST
    assert lost.lost_reason == "price"
    assert lost.lost_reason_details == ""
    assert workspace.modals.reason_for_loss is None
    assert workspace.repository.get("deals", "deal-1").status == DealStatus.LOST
    assert [event["event_type"] for event in events.published_events] == ["crm.deal.lost"]


def test_other_loss_reason_keeps_details() -> None:
    workspace = _signed_in()
    deal = workspace.repository.get("deals", "deal-1")
    asyncio.run(workspace.save_deal(deal.model_copy(update={"status": DealStatus.LOST})))

    lost = asyncio.run(workspace.confirm_deal_loss("other", "Client paused the budget"))

    assert lost is not None
    assert lost.lost_reason_details == "Client paused the budget"


def test_cancelling_the_loss_keeps_the_deal_open() -> None:
    workspace = _signed_in()
    deal = workspace.repository.get("deals", "deal-1")
    asyncio.run(workspace.save_deal(deal.model_copy(update={"status": DealStatus.LOST})))

    workspace.cancel_deal_loss()

    assert workspace.modals.reason_for_loss is None
    assert workspace.repository.get("deals", "deal-1").status == DealStatus.NEGOTIATION
    with pytest.raises(StateError):
        asyncio.run(workspace.confirm_deal_loss("price"))


def test_kanban_move_repositions_the_deal_and_sends_only_the_status() -> None:
    backend = RecordingStatusBackend()
    workspace = _signed_in(backend)

    moved = asyncio.run(workspace.move_deal("deal-1", DealStatus.PROPOSAL_SENT, before_deal_id="deal-2"))

    assert moved is True
    assert [deal.id for deal in workspace.repository.all("deals")] == ["deal-1", "deal-2"]
    assert workspace.repository.get("deals", "deal-1").status == DealStatus.PROPOSAL_SENT
    assert backend.status_payloads == [{"status": "PROPOSAL_SENT"}]
    assert workspace.repository.all("activity_log")[0].action == 'Moved deal "Website build" to stage "Proposal sent".'


def test_kanban_move_without_anchor_appends_to_the_end() -> None:
    workspace = _signed_in()

    assert asyncio.run(workspace.move_deal("deal-1", DealStatus.MEETING_SCHEDULED))

    assert [deal.id for deal in workspace.repository.all("deals")] == ["deal-2", "deal-1"]


def test_failed_kanban_move_restores_the_previous_list() -> None:
    workspace = _signed_in(OfflineStatusBackend())
    before = workspace.repository.all("deals")

    moved = asyncio.run(workspace.move_deal("deal-1", DealStatus.PROPOSAL_SENT, before_deal_id="deal-2"))

    assert moved is False
    assert workspace.repository.all("deals") == before
    assert workspace.state.error == "Failed to update deal stage: Connection failed: offline"
    assert not [event for event in events.published_events if event["event_type"] == "crm.deal.stage_changed"]

    workspace.clear_error()
    assert workspace.state.error is None


def test_dropping_on_won_opens_the_deal_editor_instead_of_saving() -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend)
    before = workspace.repository.all("deals")

    assert asyncio.run(workspace.move_deal("deal-1", DealStatus.WON)) is False

    assert workspace.modals.deal.payload is not None
    assert workspace.modals.deal.payload.status == DealStatus.WON
    assert workspace.modals.deal.is_creating is False
    assert workspace.repository.all("deals") == before
    assert "update_opportunity" not in backend.calls


def test_dropping_on_lost_asks_for_a_reason() -> None:
    workspace = _signed_in()

    assert asyncio.run(workspace.move_deal("deal-1", DealStatus.LOST)) is False

    assert workspace.modals.reason_for_loss is not None
    assert workspace.repository.get("deals", "deal-1").status == DealStatus.NEGOTIATION


def test_sales_cannot_move_deals_they_do_not_own() -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend, email="sales@example.com")
    workspace.repository.replace(
        "deals", workspace.repository.get("deals", "deal-1").model_copy(update={"owner_id": "user-1"})
    )

    with pytest.raises(PermissionDeniedError) as exc_info:
        asyncio.run(workspace.move_deal("deal-1", DealStatus.PROPOSAL_SENT))

    assert exc_info.value.message == "Not allowed to update deals 'deal-1'"
    assert "update_opportunity" not in backend.calls


def test_scheduling_a_meeting_updates_the_deal_and_notifies() -> None:
    workspace = _signed_in()

    saved = asyncio.run(workspace.schedule_meeting("deal-1", datetime(2026, 5, 4, 10, 30)))

    assert saved is not None
    assert str(saved.next_meeting_date) == "2026-05-04"
    assert saved.next_meeting_time == "10:30"
    assert workspace.notifications.of_type(NotificationType.MEETING_SCHEDULED)
    assert events.published_events[-1]["event_type"] == "crm.meeting.scheduled"


def test_new_deal_starts_owned_by_the_seller_and_is_created() -> None:
    workspace = _signed_in(email="sales@example.com")
    draft = workspace.blank_deal()
    assert draft.owner_id == "user-2"

    saved = asyncio.run(
        workspace.save_deal(
            draft.model_copy(
                update={"title": "Brand refresh", "company_name": "Blue Dunes", "contact_person": "Lina", "value": 8000}
            ),
            is_creating=True,
        )
    )

    assert saved is not None
    assert saved.id
    assert workspace.repository.all("deals")[0].id == saved.id
    assert workspace.repository.all("activity_log")[0].action == "Created deal: Brand refresh"
