from __future__ import annotations

import copy
import logging
import time
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Protocol
from urllib.parse import unquote

import httpx
from opentelemetry import trace

from crmhub.context import get_correlation_id
from crmhub.crm.errors import BackendError, ConflictError, NetworkError, ServerError, ValidationError
from crmhub.metrics import observe_backend_call


logger = logging.getLogger("crmhub.backend")
tracer = trace.get_tracer("crmhub.crm.client")

CSRF_COOKIE_NAME = "XSRF-TOKEN"
CSRF_HEADER_NAME = "X-XSRF-TOKEN"
CORRELATION_HEADER_NAME = "X-Correlation-Id"


class CRMBackend(Protocol):
    """REST contract consumed by the workspace. Payloads are wire-shaped dicts."""

    async def get_csrf_cookie(self) -> None: ...

    async def login(self, email: str, password: str) -> None: ...

    async def logout(self) -> None: ...

    async def fetch_current_user(self) -> dict[str, Any] | None: ...

    async def list_users(self) -> list[dict[str, Any]]: ...

    async def list_leads(self) -> list[dict[str, Any]]: ...

    async def list_opportunities(self) -> list[dict[str, Any]]: ...

    async def list_accounts(self) -> list[dict[str, Any]]: ...

    async def list_projects(self) -> list[dict[str, Any]]: ...

    async def list_tasks(self) -> list[dict[str, Any]]: ...

    async def list_invoices(self) -> list[dict[str, Any]]: ...

    async def list_quotes(self) -> list[dict[str, Any]]: ...

    async def list_activity_log(self) -> list[dict[str, Any]]: ...

    async def list_groups(self) -> list[dict[str, Any]]: ...

    async def create_lead(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_lead(self, lead_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def convert_lead(self, lead_id: str) -> dict[str, Any]: ...

    async def create_account(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_account(self, account_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def delete_account(self, account_id: str) -> None: ...

    async def create_opportunity(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def win_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def schedule_meeting(self, deal_id: str, meeting_at: datetime) -> dict[str, Any]: ...

    async def available_slots(self, day: date) -> list[str]: ...

    async def book_meeting(self, payload: dict[str, Any]) -> None: ...

    async def create_project(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_project(self, project_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def create_invoice(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_invoice(self, invoice_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def create_quote(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_quote(self, quote_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def create_user(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_user(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def delete_user(self, user_id: str) -> None: ...

    async def save_group(self, payload: dict[str, Any], member_ids: list[str]) -> dict[str, Any]: ...

    async def delete_group(self, group_id: str) -> None: ...

    async def create_activity_log_entry(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def request_password_reset(self, email: str) -> dict[str, Any]: ...

    async def reset_password(self, payload: dict[str, Any]) -> None: ...

    async def summarize(self, text: str) -> str: ...

    async def generate_email(self, target: dict[str, Any], user: dict[str, Any]) -> dict[str, str]: ...

    async def chat(self, history: list[dict[str, Any]], message: str) -> str: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"API Error: {response.status_code} {response.reason_phrase}"


def _field_errors(response: httpx.Response) -> dict[str, str]:
    try:
        body = response.json()
    except ValueError:
        return {}
    raw = body.get("errors") if isinstance(body, dict) else None
    if not isinstance(raw, dict):
        return {}
    fields: dict[str, str] = {}
    for name, messages in raw.items():
        if isinstance(messages, list) and messages:
            fields[str(name)] = str(messages[0])
        elif messages:
            fields[str(name)] = str(messages)
    return fields


def raise_for_response(response: httpx.Response) -> None:
    if response.is_success:
        return
    message = _error_message(response)
    if response.status_code == 409:
        raise ConflictError(message, status_code=409)
    if response.status_code in {400, 422}:
        fields = _field_errors(response)
        if fields:
            raise ValidationError(fields, message)
    raise ServerError(message, status_code=response.status_code)


class HttpCRMBackend:
    """Session-cookie REST client with CSRF priming."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        entity_id: str | None = None,
    ) -> Any:
        headers: dict[str, str] = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers[CORRELATION_HEADER_NAME] = correlation_id
        csrf_token = self._client.cookies.get(CSRF_COOKIE_NAME)
        if csrf_token and method != "GET":
            headers[CSRF_HEADER_NAME] = unquote(csrf_token)

        with tracer.start_as_current_span(f"crm.backend.{operation}") as span:
            span.set_attribute("correlation_id", correlation_id or "")
            span.set_attribute("http.method", method)
            span.set_attribute("http.route", path)
            if entity_id:
                span.set_attribute("entity_id", entity_id)

            started = time.perf_counter()
            try:
                response = await self._client.request(method, path, json=json, params=params, headers=headers)
            except httpx.TimeoutException as exc:
                observe_backend_call(operation, "timeout", time.perf_counter() - started)
                logger.warning("backend_timeout", extra={"operation": operation, "method": method, "path": path})
                raise NetworkError(f"Request timed out: {exc}") from exc
            except httpx.TransportError as exc:
                observe_backend_call(operation, "network_error", time.perf_counter() - started)
                logger.warning(
                    "backend_unreachable",
                    extra={"operation": operation, "method": method, "path": path, "error": str(exc)},
                )
                raise NetworkError(f"Connection failed: {exc}") from exc

            duration = time.perf_counter() - started
            span.set_attribute("http.status_code", response.status_code)
            outcome = "success" if response.is_success else "error"
            observe_backend_call(operation, outcome, duration)
            logger.info(
                "backend_call",
                extra={
                    "operation": operation,
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration * 1000, 2),
                    "entity_id": entity_id,
                },
            )
            raise_for_response(response)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("backend_invalid_json", extra={"operation": operation, "path": path, "error": str(exc)})
            raise ServerError("Invalid JSON response", status_code=response.status_code) from exc

    async def get_csrf_cookie(self) -> None:
        await self._request("csrf_cookie", "GET", "/sanctum/csrf-cookie")

    async def login(self, email: str, password: str) -> None:
        await self._request("login", "POST", "/login", json={"email": email, "password": password})

    async def logout(self) -> None:
        await self._request("logout", "POST", "/logout")

    async def fetch_current_user(self) -> dict[str, Any] | None:
        return await self._request("current_user", "GET", "/api/user")

    async def _list(self, operation: str, path: str) -> list[dict[str, Any]]:
        return list(await self._request(operation, "GET", path) or [])

    async def list_users(self) -> list[dict[str, Any]]:
        return await self._list("list_users", "/api/users")

    async def list_leads(self) -> list[dict[str, Any]]:
        return await self._list("list_leads", "/api/leads")

    async def list_opportunities(self) -> list[dict[str, Any]]:
        return await self._list("list_opportunities", "/api/opportunities")

    async def list_accounts(self) -> list[dict[str, Any]]:
        return await self._list("list_accounts", "/api/accounts")

    async def list_projects(self) -> list[dict[str, Any]]:
        return await self._list("list_projects", "/api/projects")

    async def list_tasks(self) -> list[dict[str, Any]]:
        return await self._list("list_tasks", "/api/tasks")

    async def list_invoices(self) -> list[dict[str, Any]]:
        return await self._list("list_invoices", "/api/invoices")

    async def list_quotes(self) -> list[dict[str, Any]]:
        return await self._list("list_quotes", "/api/quotes")

    async def list_activity_log(self) -> list[dict[str, Any]]:
        return await self._list("list_activity_log", "/api/activity-log")

    async def list_groups(self) -> list[dict[str, Any]]:
        return await self._list("list_groups", "/api/groups")

    async def create_lead(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_lead", "POST", "/api/leads", json=payload)

    async def update_lead(self, lead_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("update_lead", "PUT", f"/api/leads/{lead_id}", json=payload, entity_id=lead_id)

    async def convert_lead(self, lead_id: str) -> dict[str, Any]:
        return await self._request("convert_lead", "POST", f"/api/leads/{lead_id}/convert", entity_id=lead_id)

    async def create_account(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_account", "POST", "/api/accounts", json=payload)

    async def update_account(self, account_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "update_account", "PUT", f"/api/accounts/{account_id}", json=payload, entity_id=account_id
        )

    async def delete_account(self, account_id: str) -> None:
        await self._request("delete_account", "DELETE", f"/api/accounts/{account_id}", entity_id=account_id)

    async def create_opportunity(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_opportunity", "POST", "/api/opportunities", json=payload)

    async def update_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "update_opportunity", "PUT", f"/api/opportunities/{deal_id}", json=payload, entity_id=deal_id
        )

    async def win_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "win_opportunity", "POST", f"/api/opportunities/{deal_id}/win", json=payload, entity_id=deal_id
        )

    async def schedule_meeting(self, deal_id: str, meeting_at: datetime) -> dict[str, Any]:
        return await self._request(
            "schedule_meeting",
            "POST",
            f"/api/deals/{deal_id}/schedule",
            json={"meetingDateTime": meeting_at.isoformat()},
            entity_id=deal_id,
        )

    async def available_slots(self, day: date) -> list[str]:
        slots = await self._request("available_slots", "GET", "/api/scheduling/slots", params={"date": day.isoformat()})
        return [str(slot) for slot in slots or []]

    async def book_meeting(self, payload: dict[str, Any]) -> None:
        await self._request("book_meeting", "POST", "/api/scheduling/book", json=payload)

    async def create_project(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_project", "POST", "/api/projects", json=payload)

    async def update_project(self, project_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "update_project", "PUT", f"/api/projects/{project_id}", json=payload, entity_id=project_id
        )

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_task", "POST", "/api/tasks", json=payload)

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("update_task", "PUT", f"/api/tasks/{task_id}", json=payload, entity_id=task_id)

    async def create_invoice(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_invoice", "POST", "/api/invoices", json=payload)

    async def update_invoice(self, invoice_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request(
            "update_invoice", "PUT", f"/api/invoices/{invoice_id}", json=payload, entity_id=invoice_id
        )

    async def create_quote(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_quote", "POST", "/api/quotes", json=payload)

    async def update_quote(self, quote_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("update_quote", "PUT", f"/api/quotes/{quote_id}", json=payload, entity_id=quote_id)

    async def create_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_user", "POST", "/api/users", json=payload)

    async def update_user(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("update_user", "PUT", f"/api/users/{user_id}", json=payload, entity_id=user_id)

    async def delete_user(self, user_id: str) -> None:
        await self._request("delete_user", "DELETE", f"/api/users/{user_id}", entity_id=user_id)

    async def save_group(self, payload: dict[str, Any], member_ids: list[str]) -> dict[str, Any]:
        body = {**payload, "members": list(member_ids)}
        group_id = payload.get("id") or None
        if group_id:
            return await self._request("save_group", "PUT", f"/api/groups/{group_id}", json=body, entity_id=group_id)
        return await self._request("save_group", "POST", "/api/groups", json=body)

    async def delete_group(self, group_id: str) -> None:
        await self._request("delete_group", "DELETE", f"/api/groups/{group_id}", entity_id=group_id)

    async def create_activity_log_entry(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("create_activity_log_entry", "POST", "/api/activity-log", json=payload)

    async def request_password_reset(self, email: str) -> dict[str, Any]:
        return await self._request("request_password_reset", "POST", "/forgot-password", json={"email": email}) or {}

    async def reset_password(self, payload: dict[str, Any]) -> None:
        await self._request("reset_password", "POST", "/reset-password", json=payload)

    async def summarize(self, text: str) -> str:
        body = await self._request("ai_summarize", "POST", "/api/ai/summarize", json={"text": text})
        return str((body or {}).get("summary", ""))

    async def generate_email(self, target: dict[str, Any], user: dict[str, Any]) -> dict[str, str]:
        body = await self._request("ai_generate_email", "POST", "/api/ai/generate-email", json={"target": target, "user": user})
        body = body or {}
        return {"subject": str(body.get("subject", "")), "body": str(body.get("body", ""))}

    async def chat(self, history: list[dict[str, Any]], message: str) -> str:
        body = await self._request("ai_chat", "POST", "/api/ai/chat", json={"history": history, "message": message})
        return str((body or {}).get("text", ""))


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


DEMO_PASSWORD = "123"


def _demo_fixtures() -> dict[str, list[dict[str, Any]]]:
    today = date.today()
    now = datetime.now(timezone.utc)
    return {
        "users": [
            {"id": "user-1", "name": "Admin User", "email": "admin@example.com", "role": "admin", "avatarUrl": "",
             "targets": {"monthlyDeals": 10, "monthlyCalls": 100, "monthlyRevenue": 500000},
             "officeLocation": "Riyadh", "isActive": True, "scope": "ALL", "groupId": None},
            {"id": "user-2", "name": "Sales Rep", "email": "sales@example.com", "role": "sales", "avatarUrl": "",
             "targets": {"monthlyDeals": 5, "monthlyCalls": 150, "monthlyRevenue": 200000},
             "officeLocation": "Jeddah", "isActive": True, "scope": "KSA", "groupId": "group-1"},
            {"id": "user-3", "name": "Project Manager", "email": "pm@example.com", "role": "pm", "avatarUrl": "",
             "targets": {"monthlyDeals": 0, "monthlyCalls": 0, "monthlyRevenue": 0},
             "officeLocation": "Dammam", "isActive": True, "scope": "KSA", "groupId": None},
            {"id": "user-4", "name": "Finance User", "email": "finance@example.com", "role": "finance", "avatarUrl": "",
             "targets": {"monthlyDeals": 0, "monthlyCalls": 0, "monthlyRevenue": 0},
             "officeLocation": "Riyadh", "isActive": True, "scope": "ALL", "groupId": None},
        ],
        "leads": [
            {"id": "lead-1", "companyName": "Horizon Co", "contactPerson": "Mohammed Ali", "email": "m.ali@horizon.example",
             "phone": "0501234567", "source": "Website", "status": "NEW", "ownerId": "user-2", "services": ["seo"],
             "activity": [], "lastUpdatedAt": now.isoformat(), "scope": "KSA"},
            {"id": "lead-2", "companyName": "Alnoor Est", "contactPerson": "Sara Ahmed", "email": "sara@alnoor.example",
             "phone": "0559876543", "source": "LinkedIn", "status": "CONTACTED", "ownerId": "user-2",
             "services": ["web_design_development"], "activity": [], "lastUpdatedAt": now.isoformat(), "scope": "KSA"},
        ],
        "opportunities": [
            {"id": "deal-1", "account_id": "acc-1", "name": "Website build", "company_name": "Horizon Co",
             "contact_person": "Mohammed Ali", "value": "50000", "status": "NEGOTIATION",
             "contact_email": "m.ali@horizon.example", "contact_phone": "0501234567", "source": "Website",
             "next_meeting_date": None, "payment_status": "PENDING", "project_manager_id": None,
             "services": ["web_design_development"], "activity": [], "owner_id": "user-2", "scope": "KSA"},
            {"id": "deal-2", "account_id": "acc-2", "name": "Marketing campaign", "company_name": "Alnoor Est",
             "contact_person": "Sara Ahmed", "value": "15000", "status": "WON", "contact_email": "sara@alnoor.example",
             "contact_phone": "0559876543", "source": "LinkedIn", "next_meeting_date": None, "payment_status": "PAID",
             "project_manager_id": "user-3", "services": ["social_media_management"], "activity": [],
             "owner_id": "user-2", "scope": "KSA"},
        ],
        "projects": [
            {"id": "proj-1", "dealId": "deal-2", "name": "Marketing campaign - Alnoor", "clientName": "Alnoor Est",
             "projectManagerId": "user-3", "status": "IN_PROGRESS", "startDate": (today - timedelta(days=30)).isoformat(),
             "services": ["social_media_management"], "projectType": "DIGITAL_MARKETING", "scope": "KSA"},
        ],
        "tasks": [
            {"id": "task-1", "projectId": "proj-1", "title": "Prepare content plan", "assignedTo": ["Sales Rep"],
             "status": "IN_PROGRESS", "startDate": (today - timedelta(days=28)).isoformat(),
             "dueDate": (today - timedelta(days=25)).isoformat(), "priority": "HIGH"},
            {"id": "task-2", "projectId": "proj-1", "title": "Design posts", "assignedTo": [], "status": "TODO",
             "startDate": (today - timedelta(days=24)).isoformat(), "dueDate": (today - timedelta(days=20)).isoformat(),
             "priority": "MEDIUM"},
        ],
        "invoices": [
            {"id": "inv-001", "clientName": "Alnoor Est", "amount": 15000, "status": "PAID",
             "issueDate": (today - timedelta(days=30)).isoformat(), "dueDate": (today - timedelta(days=16)).isoformat(),
             "description": "Full campaign payment", "projectId": "proj-1", "dealId": "deal-2", "ownerId": "user-2",
             "scope": "KSA"},
        ],
        "accounts": [
            {"id": "acc-1", "name": "Horizon Co", "website": "horizon.example", "industry": "Technology", "status": "Active"},
            {"id": "acc-2", "name": "Alnoor Est", "website": "alnoor.example", "industry": "Retail", "status": "Active"},
        ],
        "groups": [
            {"id": "group-1", "name": "Riyadh sales team", "managerId": "user-1", "scope": "KSA"},
        ],
        "activity_log": [
            {"id": "log-1", "userId": "user-2", "userName": "Sales Rep", "userAvatar": "", "action": "Signed in",
             "timestamp": now.isoformat()},
            {"id": "log-2", "userId": "user-2", "userName": "Sales Rep", "userAvatar": "",
             "action": "Added a new lead: Horizon Co", "timestamp": (now - timedelta(days=1)).isoformat()},
        ],
        "quotes": [
            {"id": "q-1", "quoteNumber": "Q-1001", "dealId": "deal-1", "clientName": "Horizon Co",
             "issueDate": (today - timedelta(days=10)).isoformat(), "expiryDate": (today + timedelta(days=20)).isoformat(),
             "status": "SENT", "items": [{"id": "qi-1", "description": "Website design and build", "quantity": 1,
                                          "unitPrice": 5000}],
             "terms": "Standard terms", "subtotal": 5000, "discount": 0, "tax": 15, "total": 5750},
        ],
    }


class DemoCRMBackend:
    """In-memory backend serving demo fixtures through the same contract as the REST client."""

    def __init__(self, fixtures: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._data = copy.deepcopy(fixtures) if fixtures is not None else _demo_fixtures()
        self._current_email: str | None = None
        self.calls: list[str] = []

    def _record(self, operation: str) -> None:
        self.calls.append(operation)

    def _collection(self, name: str) -> list[dict[str, Any]]:
        return self._data.setdefault(name, [])

    def _find(self, name: str, entity_id: str) -> dict[str, Any]:
        for item in self._collection(name):
            if item.get("id") == entity_id:
                return item
        raise ServerError(f"{name} '{entity_id}' not found", status_code=404)

    def _insert(self, name: str, payload: dict[str, Any], prefix: str, *, front: bool = False) -> dict[str, Any]:
        item = {**copy.deepcopy(payload), "id": _new_id(prefix)}
        if front:
            self._collection(name).insert(0, item)
        else:
            self._collection(name).append(item)
        return copy.deepcopy(item)

    def _merge(self, name: str, entity_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        item = self._find(name, entity_id)
        item.update({key: copy.deepcopy(value) for key, value in payload.items() if key != "id"})
        return copy.deepcopy(item)

    def _delete(self, name: str, entity_id: str) -> None:
        self._find(name, entity_id)
        self._data[name] = [item for item in self._collection(name) if item.get("id") != entity_id]

    async def get_csrf_cookie(self) -> None:
        self._record("csrf_cookie")

    async def login(self, email: str, password: str) -> None:
        self._record("login")
        known = {user["email"] for user in self._collection("users")}
        if email not in known or password != DEMO_PASSWORD:
            raise BackendError("Invalid email or password", status_code=401)
        self._current_email = email

    async def logout(self) -> None:
        self._record("logout")
        self._current_email = None

    async def fetch_current_user(self) -> dict[str, Any] | None:
        self._record("current_user")
        users = self._collection("users")
        match = next((user for user in users if user["email"] == self._current_email), None)
        if match is None and users:
            match = users[0]
        return copy.deepcopy(match) if match else None

    async def _list(self, operation: str, name: str) -> list[dict[str, Any]]:
        self._record(operation)
        return copy.deepcopy(self._collection(name))

    async def list_users(self) -> list[dict[str, Any]]:
        return await self._list("list_users", "users")

    async def list_leads(self) -> list[dict[str, Any]]:
        return await self._list("list_leads", "leads")

    async def list_opportunities(self) -> list[dict[str, Any]]:
        return await self._list("list_opportunities", "opportunities")

    async def list_accounts(self) -> list[dict[str, Any]]:
        return await self._list("list_accounts", "accounts")

    async def list_projects(self) -> list[dict[str, Any]]:
        return await self._list("list_projects", "projects")

    async def list_tasks(self) -> list[dict[str, Any]]:
        return await self._list("list_tasks", "tasks")

    async def list_invoices(self) -> list[dict[str, Any]]:
        return await self._list("list_invoices", "invoices")

    async def list_quotes(self) -> list[dict[str, Any]]:
        return await self._list("list_quotes", "quotes")

    async def list_activity_log(self) -> list[dict[str, Any]]:
        return await self._list("list_activity_log", "activity_log")

    async def list_groups(self) -> list[dict[str, Any]]:
        return await self._list("list_groups", "groups")

    async def create_lead(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_lead")
        return self._insert("leads", {"activity": [], "services": [], **payload}, "lead", front=True)

    async def update_lead(self, lead_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_lead")
        return self._merge("leads", lead_id, payload)

    async def convert_lead(self, lead_id: str) -> dict[str, Any]:
        self._record("convert_lead")
        lead = self._find("leads", lead_id)
        lead["status"] = "CONVERTED"
        account = self._insert("accounts", {"name": lead["companyName"], "status": "Active"}, "acc")
        opportunity = self._insert(
            "opportunities",
            {
                "name": f"New Deal - {lead['companyName']}",
                "company_name": lead["companyName"],
                "contact_person": lead.get("contactPerson", ""),
                "contact_email": lead.get("email", ""),
                "contact_phone": lead.get("phone", ""),
                "status": "NEW_OPPORTUNITY",
                "value": 0,
                "owner_id": lead.get("ownerId", ""),
                "scope": lead.get("scope", ""),
                "services": list(lead.get("services", [])),
                "account_id": account["id"],
                "payment_status": "PENDING",
                "activity": [],
            },
            "deal",
        )
        return {"account": account, "opportunity": opportunity}

    async def create_account(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_account")
        return self._insert("accounts", payload, "acc")

    async def update_account(self, account_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_account")
        return self._merge("accounts", account_id, payload)

    async def delete_account(self, account_id: str) -> None:
        self._record("delete_account")
        self._delete("accounts", account_id)

    async def create_opportunity(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_opportunity")
        return self._insert("opportunities", payload, "deal")

    async def update_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_opportunity")
        return self._merge("opportunities", deal_id, payload)

    async def win_opportunity(self, deal_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("win_opportunity")
        opportunity = self._merge("opportunities", deal_id, {**payload, "status": "WON"})
        project = self._insert(
            "projects",
            {
                "dealId": deal_id,
                "name": opportunity.get("name", ""),
                "clientName": opportunity.get("company_name", ""),
                "projectManagerId": opportunity.get("project_manager_id"),
                "status": "PLANNING",
                "startDate": date.today().isoformat(),
                "services": list(opportunity.get("services") or []),
                "projectType": "GENERAL",
                "scope": opportunity.get("scope", ""),
            },
            "proj",
        )
        return {"opportunity": opportunity, "project": project}

    async def schedule_meeting(self, deal_id: str, meeting_at: datetime) -> dict[str, Any]:
        self._record("schedule_meeting")
        return self._merge(
            "opportunities",
            deal_id,
            {"next_meeting_date": meeting_at.date().isoformat(), "next_meeting_time": meeting_at.strftime("%H:%M")},
        )

    async def available_slots(self, day: date) -> list[str]:
        self._record("available_slots")
        return ["09:00", "10:00", "14:00", "15:30"]

    async def book_meeting(self, payload: dict[str, Any]) -> None:
        self._record("book_meeting")

    async def create_project(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_project")
        return self._insert("projects", payload, "proj")

    async def update_project(self, project_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_project")
        return self._merge("projects", project_id, payload)

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_task")
        return self._insert("tasks", payload, "task")

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_task")
        return self._merge("tasks", task_id, payload)

    async def create_invoice(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_invoice")
        return self._insert("invoices", payload, "inv")

    async def update_invoice(self, invoice_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_invoice")
        return self._merge("invoices", invoice_id, payload)

    async def create_quote(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_quote")
        quote = self._insert("quotes", payload, "quote")
        number = f"Q-{1000 + len(self._collection('quotes'))}"
        self._find("quotes", quote["id"])["quoteNumber"] = number
        return {**quote, "quoteNumber": number}

    async def update_quote(self, quote_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_quote")
        return self._merge("quotes", quote_id, payload)

    async def create_user(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_user")
        return self._insert("users", payload, "user")

    async def update_user(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("update_user")
        return self._merge("users", user_id, payload)

    async def delete_user(self, user_id: str) -> None:
        self._record("delete_user")
        self._delete("users", user_id)

    async def save_group(self, payload: dict[str, Any], member_ids: list[str]) -> dict[str, Any]:
        self._record("save_group")
        group_id = payload.get("id") or ""
        if group_id:
            saved = self._merge("groups", group_id, payload)
        else:
            saved = self._insert("groups", payload, "group")
        updated_users = []
        for user in self._collection("users"):
            if user["id"] in member_ids and user.get("groupId") != saved["id"]:
                user["groupId"] = saved["id"]
                updated_users.append(copy.deepcopy(user))
        return {"savedGroup": saved, "updatedUsers": updated_users}

    async def delete_group(self, group_id: str) -> None:
        self._record("delete_group")
        self._delete("groups", group_id)
        for user in self._collection("users"):
            if user.get("groupId") == group_id:
                user["groupId"] = None

    async def create_activity_log_entry(self, payload: dict[str, Any]) -> dict[str, Any]:
        self._record("create_activity_log_entry")
        return self._insert("activity_log", payload, "log", front=True)

    async def request_password_reset(self, email: str) -> dict[str, Any]:
        self._record("request_password_reset")
        return {"code": "123456"}

    async def reset_password(self, payload: dict[str, Any]) -> None:
        self._record("reset_password")

    async def summarize(self, text: str) -> str:
        self._record("ai_summarize")
        return "Demo summary of the provided text."

    async def generate_email(self, target: dict[str, Any], user: dict[str, Any]) -> dict[str, str]:
        self._record("ai_generate_email")
        subject = target.get("name") or target.get("title") or target.get("companyName") or ""
        return {"subject": f"Follow-up: {subject}", "body": "Hello,\n\nI would like to follow up on our conversation.\n\nRegards."}

    async def chat(self, history: list[dict[str, Any]], message: str) -> str:
        self._record("ai_chat")
        return "The assistant is not available in demo mode."
