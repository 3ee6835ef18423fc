from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from crmhub.context import operation_scope
from crmhub.crm.client import HttpCRMBackend
from crmhub.crm.errors import ConflictError, NetworkError, ServerError, ValidationError
from crmhub.crm.schemas import Account
from crmhub.crm.service import CRMWorkspace
from crmhub.crm.transforms import deal_from_wire


def _fake_api(seen: list[dict[str, Any]]) -> FastAPI:
    app = FastAPI()

    @app.get("/sanctum/csrf-cookie")
    async def csrf_cookie() -> Response:
        response = Response(status_code=204)
        response.set_cookie("XSRF-TOKEN", "token%3D123")
        return response

    @app.post("/login")
    async def login(request: Request) -> Response:
        seen.append(
            {
                "path": "/login",
                "xsrf": request.headers.get("x-xsrf-token"),
                "correlation_id": request.headers.get("x-correlation-id"),
                "body": await request.json(),
            }
        )
        return Response(status_code=204)

    @app.get("/api/opportunities")
    async def opportunities(request: Request) -> list[dict[str, Any]]:
        seen.append({"path": "/api/opportunities", "xsrf": request.headers.get("x-xsrf-token")})
        return [
            {"id": 7, "name": "Website build", "company_name": "Horizon Co", "value": "1200.50", "status": "NEGOTIATION"},
            {"id": 8, "name": "Retainer", "value": None, "status": "NEW_OPPORTUNITY", "services": None},
        ]

    @app.put("/api/opportunities/{deal_id}")
    async def update_opportunity(deal_id: str) -> JSONResponse:
        return JSONResponse({"message": "The deal was changed by someone else."}, status_code=409)

    @app.post("/api/leads")
    async def create_lead() -> JSONResponse:
        return JSONResponse(
            {"message": "The given data was invalid.", "errors": {"email": ["The email field is required."]}},
            status_code=422,
        )

    @app.get("/api/users")
    async def users() -> JSONResponse:
        return JSONResponse({}, status_code=500)

    @app.get("/api/scheduling/slots")
    async def slots(date: str) -> list[str]:
        seen.append({"path": "/api/scheduling/slots", "date": date})
        return ["09:00", "13:30"]

    @app.post("/api/groups")
    async def create_group(request: Request) -> dict[str, Any]:
        body = await request.json()
        return {"savedGroup": {"id": "g9", **body}, "updatedUsers": []}

    @app.post("/logout")
    async def logout() -> Response:
        return Response(status_code=204)

    return app


def _backend(seen: list[dict[str, Any]]) -> HttpCRMBackend:
    return HttpCRMBackend("http://testserver", transport=httpx.ASGITransport(app=_fake_api(seen)))


def test_login_sends_csrf_header_and_correlation_id() -> None:
    seen: list[dict[str, Any]] = []

    async def scenario() -> None:
        backend = _backend(seen)
        try:
            with operation_scope("login", correlation_id="corr-login-1"):
                await backend.get_csrf_cookie()
                await backend.login("admin@example.com", "secret")
                await backend.list_opportunities()
        finally:
            await backend.aclose()

    asyncio.run(scenario())

    login = next(item for item in seen if item["path"] == "/login")
    assert login["xsrf"] == "token=123"
    assert login["correlation_id"] == "corr-login-1"
    assert login["body"] == {"email": "admin@example.com", "password": "secret"}
    listing = next(item for item in seen if item["path"] == "/api/opportunities")
    assert listing["xsrf"] is None


def test_opportunities_map_onto_deals() -> None:
    async def scenario() -> list[dict[str, Any]]:
        backend = _backend([])
        try:
            return await backend.list_opportunities()
        finally:
            await backend.aclose()

    deals = [deal_from_wire(item) for item in asyncio.run(scenario())]

    assert deals[0].id == "7"
    assert deals[0].title == "Website build"
    assert deals[0].value == 1200.5
    assert deals[1].value == 0
    assert deals[1].services == []
    assert deals[1].company_name == ""


def test_error_statuses_map_onto_error_kinds() -> None:
    async def scenario() -> list[Exception]:
        backend = _backend([])
        errors: list[Exception] = []
        try:
            for call in (
                lambda: backend.update_opportunity("7", {"status": "WON"}),
                lambda: backend.create_lead({"companyName": "Acme"}),
                lambda: backend.list_users(),
            ):
                try:
                    await call()
                except Exception as exc:
                    errors.append(exc)
        finally:
            await backend.aclose()
        return errors

    conflict, invalid, server = asyncio.run(scenario())

    assert isinstance(conflict, ConflictError)
    assert conflict.message == "The deal was changed by someone else."
    assert isinstance(invalid, ValidationError)
    assert invalid.fields == {"email": "The email field is required."}
    assert invalid.message == "The given data was invalid."
    assert isinstance(server, ServerError)
    assert server.status_code == 500
    assert server.message == "API Error: 500 Internal Server Error"


def test_query_params_bodies_and_empty_responses() -> None:
    seen: list[dict[str, Any]] = []

    async def scenario() -> tuple[list[str], dict[str, Any], None]:
        from datetime import date

        backend = _backend(seen)
        try:
            slots = await backend.available_slots(date(2026, 5, 4))
            group = await backend.save_group({"id": "", "name": "Delivery", "managerId": "u1"}, ["u2"])
            logged_out = await backend.logout()
        finally:
            await backend.aclose()
        return slots, group, logged_out

    slots, group, logged_out = asyncio.run(scenario())

    assert slots == ["09:00", "13:30"]
    assert seen[-1] == {"path": "/api/scheduling/slots", "date": "2026-05-04"}
    assert group["savedGroup"]["members"] == ["u2"]
    assert logged_out is None


@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (httpx.ConnectError("connection refused"), "Connection failed"),
        (httpx.ReadTimeout("read timed out"), "Request timed out"),
    ],
)
def test_transport_failures_become_network_errors(raised: Exception, expected: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise raised

    async def scenario() -> None:
        backend = HttpCRMBackend("http://testserver", transport=httpx.MockTransport(handler))
        try:
            await backend.list_leads()
        finally:
            await backend.aclose()

    with pytest.raises(NetworkError, match=expected):
        asyncio.run(scenario())


def _maintenance_page_api(request: httpx.Request) -> httpx.Response:
    if request.url.path in {"/sanctum/csrf-cookie", "/login"}:
        return httpx.Response(204)
    if request.url.path == "/api/user":
        return httpx.Response(
            200,
            json={"id": "user-1", "name": "Admin User", "email": "admin@example.com", "role": "admin", "scope": "ALL"},
        )
    if request.method == "GET":
        return httpx.Response(200, json=[])
    return httpx.Response(200, text="<html>Down for maintenance</html>", headers={"Content-Type": "text/html"})


def test_non_json_success_body_is_a_server_error() -> None:
    async def scenario() -> None:
        backend = HttpCRMBackend("http://testserver", transport=httpx.MockTransport(_maintenance_page_api))
        try:
            await backend.create_account({"name": "Blue Dunes"})
        finally:
            await backend.aclose()

    with pytest.raises(ServerError, match="Invalid JSON response") as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.status_code == 200


def test_non_json_success_body_surfaces_on_the_workspace_error() -> None:
    async def scenario() -> tuple[CRMWorkspace, Account | None]:
        backend = HttpCRMBackend("http://testserver", transport=httpx.MockTransport(_maintenance_page_api))
        workspace = CRMWorkspace(backend)
        try:
            assert await workspace.login("admin@example.com", "secret")
            saved = await workspace.save_account(Account(name="Blue Dunes"), is_creating=True)
        finally:
            await backend.aclose()
        return workspace, saved

    workspace, saved = asyncio.run(scenario())

    assert saved is None
    assert workspace.state.error == "Failed to save account: Invalid JSON response"
    assert workspace.repository.all("accounts") == []
