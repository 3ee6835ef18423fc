from __future__ import annotations

import asyncio
import copy
from collections.abc import Generator
from datetime import date, datetime, timezone
from typing import Any

import pytest

from crmhub import events
from crmhub.core.config import get_settings
from crmhub.crm.client import DemoCRMBackend, _demo_fixtures
from crmhub.crm.errors import NetworkError, PermissionDeniedError, StateError, ValidationError
from crmhub.crm.notifications import NotificationQueue
from crmhub.crm.schemas import Account, Group, NotificationType, UserRole
from crmhub.crm.service import CRMWorkspace


class UnreachableLeadsBackend(DemoCRMBackend):
    async def list_leads(self) -> list[dict[str, Any]]:
        raise NetworkError("Connection failed: leads")


class RejectingLoginBackend(DemoCRMBackend):
    async def login(self, email: str, password: str) -> None:
        raise ValidationError({"email": "The email field must be a valid email address."}, "The given data was invalid.")


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


def test_login_loads_the_user_permissions_and_collections() -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend, email="sales@example.com")

    assert workspace.state.current_user.id == "user-2"
    assert workspace.state.permissions["deals"]["create"] is True
    assert workspace.state.permissions["users"]["read"] is False
    assert backend.calls[:2] == ["csrf_cookie", "login"]
    assert len(workspace.repository.all("deals")) == 2
    assert workspace.repository.get("deals", "deal-1").value == 50000
    assert workspace.repository.get("deals", "deal-1").title == "Website build"
    assert workspace.state.is_loading is False
    assert workspace.state.is_submitting is False


def test_wrong_password_reports_invalid_credentials() -> None:
    workspace = CRMWorkspace(DemoCRMBackend())

    assert asyncio.run(workspace.login("admin@example.com", "wrong")) is False

    assert workspace.state.error == "Invalid email or password."
    assert workspace.state.current_user is None


def test_rejected_input_reports_invalid_data() -> None:
    workspace = CRMWorkspace(RejectingLoginBackend())

    assert asyncio.run(workspace.login("admin", "123")) is False

    assert workspace.state.error == "The submitted data is invalid."


def test_failed_bulk_load_resets_the_session() -> None:
    workspace = CRMWorkspace(UnreachableLeadsBackend())

    assert asyncio.run(workspace.login("admin@example.com", "123")) is False

    assert workspace.state.current_user is None
    assert workspace.state.permissions is None
    assert workspace.repository.all("users") == []
    assert workspace.state.is_loading is False


def test_inactive_user_is_not_signed_in() -> None:
    fixtures = _demo_fixtures()
    fixtures["users"][0]["isActive"] = False
    workspace = CRMWorkspace(DemoCRMBackend(fixtures))

    assert asyncio.run(workspace.login("admin@example.com", "123")) is False
    assert workspace.state.current_user is None


def test_logout_clears_everything_but_users() -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend)
    workspace.modals.open_forgot_password()

    asyncio.run(workspace.logout())

    assert workspace.state.current_user is None
    assert workspace.repository.all("leads") == []
    assert workspace.repository.all("deals") == []
    assert len(workspace.repository.all("users")) == 4
    assert workspace.modals.open_slots() == []
    assert "logout" in backend.calls
    with pytest.raises(StateError):
        workspace.visible_deals()


def test_visible_collections_follow_the_signed_in_user() -> None:
    admin = _signed_in()
    seller = _signed_in(email="sales@example.com")
    pm = _signed_in(email="pm@example.com")

    assert len(admin.visible_leads()) == 2
    assert len(seller.visible_deals()) == 2
    assert [project.id for project in pm.visible_projects()] == ["proj-1"]
    assert pm.visible_leads() == []
    assert [task.id for task in pm.visible_tasks()] == ["task-1", "task-2"]
    assert seller.visible_groups() == []
    assert len(admin.visible_invoices()) == 1


def test_saving_a_group_moves_its_members() -> None:
    workspace = _signed_in()

    saved = asyncio.run(workspace.save_group(Group(name="Delivery", manager_id="user-1", scope="KSA"), ["user-3"]))

    assert saved is not None
    assert workspace.repository.all("groups")[0].id == saved.id
    assert workspace.repository.get("users", "user-3").group_id == saved.id


def test_group_needs_members() -> None:
    workspace = _signed_in()

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(workspace.save_group(Group(name="Empty", manager_id="user-1"), []))

    assert "members" in exc_info.value.fields


def test_deleting_a_group_detaches_but_keeps_its_members() -> None:
    workspace = _signed_in()
    assert workspace.repository.get("users", "user-2").group_id == "group-1"

    assert asyncio.run(workspace.delete_group("group-1"))

    assert workspace.repository.all("groups") == []
    member = workspace.repository.get("users", "user-2")
    assert member is not None
    assert member.group_id is None
    assert len(workspace.repository.all("users")) == 4


def test_user_management() -> None:
    workspace = _signed_in()
    user = workspace.repository.get("users", "user-3")

    updated = asyncio.run(workspace.save_user(user.model_copy(update={"office_location": "Khobar"})))
    assert updated is not None
    assert workspace.repository.get("users", "user-3").office_location == "Khobar"

    assert asyncio.run(workspace.delete_user("user-3"))
    assert workspace.repository.get("users", "user-3") is None


def test_users_may_edit_their_own_profile_only() -> None:
    workspace = _signed_in(email="sales@example.com")
    me = workspace.state.current_user

    assert asyncio.run(workspace.save_user(me.model_copy(update={"name": "Top Seller"}))) is not None
    workspace.update_current_user(workspace.repository.get("users", "user-2"))
    assert workspace.state.current_user.name == "Top Seller"

    other = workspace.repository.get("users", "user-3").model_copy(update={"role": UserRole.ADMIN})
    with pytest.raises(PermissionDeniedError):
        asyncio.run(workspace.save_user(other))


@pytest.mark.parametrize(
    "changes",
    [
        {"role": UserRole.ADMIN, "scope": "ALL"},
        {"group_id": None},
        {"is_active": False},
    ],
)
def test_users_cannot_change_their_own_role_scope_team_or_status(changes: dict[str, Any]) -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend, email="sales@example.com")
    me = workspace.repository.get("users", "user-2")

    with pytest.raises(PermissionDeniedError):
        asyncio.run(workspace.save_user(me.model_copy(update=changes)))

    stored = workspace.repository.get("users", "user-2")
    assert stored.role == UserRole.SALES
    assert stored.group_id == "group-1"
    assert "update_user" not in backend.calls


def test_admins_may_change_roles() -> None:
    workspace = _signed_in()
    seller = workspace.repository.get("users", "user-2")

    promoted = asyncio.run(workspace.save_user(seller.model_copy(update={"role": UserRole.MANAGER})))

    assert promoted is not None
    assert workspace.repository.get("users", "user-2").role == UserRole.MANAGER


def test_password_reset_code_is_shown_as_a_notification() -> None:
    workspace = CRMWorkspace(DemoCRMBackend())

    assert asyncio.run(workspace.request_password_reset("sales@example.com"))

    notification = workspace.notifications.items()[0]
    assert "123456" in notification.message
    assert asyncio.run(workspace.reset_password("sales@example.com", "123456", "new-secret"))


def test_assistant_calls_return_text() -> None:
    workspace = _signed_in()
    deal = workspace.repository.get("deals", "deal-1")

    assert asyncio.run(workspace.summarize("Long meeting notes")) == "Demo summary of the provided text."
    email = asyncio.run(workspace.generate_follow_up_email(deal))
    assert email["subject"] == "Follow-up: Website build"
    assert asyncio.run(workspace.chat([], "hello"))


def test_notification_queue_is_newest_first_and_tracks_reads() -> None:
    queue = NotificationQueue()
    first = queue.add("first", NotificationType.TASK_ASSIGNED)
    second = queue.add("second", NotificationType.INVOICE_OVERDUE)

    assert [item.id for item in queue.items()] == [second.id, first.id]
    assert queue.unread_count() == 2
    assert queue.mark_read(first.id)
    assert queue.unread_count() == 1
    queue.dismiss(second.id)
    assert [item.id for item in queue.items()] == [first.id]
    queue.mark_all_read()
    assert queue.unread_count() == 0


def test_demo_fixtures_are_isolated_per_backend() -> None:
    fixtures = _demo_fixtures()
    backend = DemoCRMBackend(fixtures)
    asyncio.run(backend.delete_group("group-1"))

    assert fixtures["groups"] == copy.deepcopy(_demo_fixtures()["groups"])


def test_account_lifecycle() -> None:
    workspace = _signed_in()

    created = asyncio.run(workspace.save_account(Account(name="Blue Dunes", industry="Hospitality"), is_creating=True))
    assert created is not None
    assert workspace.repository.all("accounts")[0].id == created.id

    renamed = asyncio.run(workspace.save_account(created.model_copy(update={"name": "Blue Dunes Co"}), is_creating=False))
    assert workspace.repository.get("accounts", created.id).name == "Blue Dunes Co"
    assert renamed is not None

    assert asyncio.run(workspace.delete_account(created.id))
    assert workspace.repository.get("accounts", created.id) is None
    assert workspace.repository.all("activity_log")[0].action == "Deleted account: Blue Dunes Co"


def test_scheduling_pass_through() -> None:
    backend = DemoCRMBackend()
    workspace = _signed_in(backend)

    slots = asyncio.run(workspace.available_slots(date(2026, 5, 4)))
    booked = asyncio.run(
        workspace.book_meeting("deal-1", "Sara", "sara@horizon.example", datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc))
    )

    assert slots == ["09:00", "10:00", "14:00", "15:30"]
    assert booked is True
    assert "book_meeting" in backend.calls
