"""
End-to-end API tests for /api/wizard/*.

Tests the HTTP layer: headers and bodies → WizardService → error envelope.
The Redis slot and the PostgreSQL backend are replaced with the in-memory
fakes through app.dependency_overrides, so no docker services are needed
and the app lifespan (migrations, Redis pool) never runs.
"""
from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from onboarding.main import app
from onboarding.tests.conftest import FOUNDER_DATA, UPLOAD_DATA, VALID_SCORING, VENTURE_DATA
from onboarding.tests.fakes import InMemoryLocalStore, InMemorySessionBackend
from onboarding.wizard.routes import get_wizard_service
from onboarding.wizard.service import WizardService

HEADERS = {"X-Client-Id": "browser-profile-1"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(local: InMemoryLocalStore, backend: InMemorySessionBackend):
    """Async httpx client using ASGI transport, wired to the in-memory collaborators."""
    app.dependency_overrides[get_wizard_service] = lambda: WizardService(local, backend)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


async def _walk_to_analysis(client: AsyncClient) -> None:
    for key, data in [
        ("founder", FOUNDER_DATA),
        ("venture", VENTURE_DATA),
        ("team", {"members": []}),
        ("upload", UPLOAD_DATA),
        ("processing", VALID_SCORING),
    ]:
        response = await client.post(f"/api/wizard/steps/{key}", json=data, headers=HEADERS)
        assert response.status_code == 200, f"{key}: {response.text}"


# ---------------------------------------------------------------------------
# Test Group 1: Catalog and health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_list_steps(client: AsyncClient) -> None:
    response = await client.get("/api/wizard/steps")
    assert response.status_code == 200
    keys = [s["key"] for s in response.json()["steps"]]
    assert keys == ["founder", "venture", "team", "upload", "processing", "analysis"]


# ---------------------------------------------------------------------------
# Test Group 2: Bootstrap
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_bootstrap_fresh(client: AsyncClient) -> None:
    response = await client.post("/api/wizard/bootstrap", headers=HEADERS)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["mode"] == "fresh"
    assert body["stepIndex"] == 0
    assert body["session"]["completedSteps"] == []
    assert body["reservation"] is None


@pytest.mark.asyncio
async def test_bootstrap_with_expired_token_query(client: AsyncClient) -> None:
    response = await client.post("/api/wizard/bootstrap?resume=gone-token", headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "expired"
    assert body["stepIndex"] == 0
    assert body["notices"][0]["message"] == "Your previous session expired, starting fresh."


@pytest.mark.asyncio
async def test_bootstrap_token_in_body(client: AsyncClient, backend: InMemorySessionBackend) -> None:
    session = backend.add_session(completed_steps=["founder", "venture"])
    response = await client.post(
        "/api/wizard/bootstrap", json={"resumeToken": session.session_id}, headers=HEADERS
    )
    body = response.json()
    assert body["mode"] == "resumed"
    assert body["stepIndex"] == 2
    assert body["session"]["sessionId"] == session.session_id


@pytest.mark.asyncio
async def test_bootstrap_requires_client_id(client: AsyncClient) -> None:
    response = await client.post("/api/wizard/bootstrap")
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# ---------------------------------------------------------------------------
# Test Group 3: Steps
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_submit_step_advances(client: AsyncClient) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    response = await client.post("/api/wizard/steps/founder", json=FOUNDER_DATA, headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["stepIndex"] == 1
    assert body["session"]["stepData"]["founder"]["fullName"] == "Ada Lovelace"

    state = await client.get("/api/wizard/session", headers=HEADERS)
    assert state.json()["stepIndex"] == 1


@pytest.mark.asyncio
async def test_submit_unknown_step_is_400(client: AsyncClient) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    response = await client.post("/api/wizard/steps/billing", json={}, headers=HEADERS)
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_STEP_KEY"
    assert error["details"][0]["issue"].startswith("Use one of the keys")


@pytest.mark.asyncio
async def test_submit_invalid_data_is_422_with_details(client: AsyncClient) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    response = await client.post("/api/wizard/steps/founder", json={"email": "nope"}, headers=HEADERS)
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert {d["field"] for d in error["details"]} == {"fullName", "email"}


@pytest.mark.asyncio
async def test_submit_non_object_is_422(client: AsyncClient) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    response = await client.post("/api/wizard/steps/venture", json=["Acme"], headers=HEADERS)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_session_without_bootstrap_is_410(client: AsyncClient) -> None:
    response = await client.get("/api/wizard/session", headers=HEADERS)
    assert response.status_code == 410
    assert response.json()["error"]["code"] == "SESSION_EXPIRED"


@pytest.mark.asyncio
async def test_persist_failure_is_503(client: AsyncClient, backend: InMemorySessionBackend) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    backend.failing.add("persist_step_update")
    response = await client.post("/api/wizard/steps/founder", json=FOUNDER_DATA, headers=HEADERS)
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "TRANSIENT_IO_ERROR"


@pytest.mark.asyncio
async def test_back(client: AsyncClient) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    await client.post("/api/wizard/steps/founder", json=FOUNDER_DATA, headers=HEADERS)
    response = await client.post("/api/wizard/back", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["stepIndex"] == 0


# ---------------------------------------------------------------------------
# Test Group 4: Completion
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_complete_before_analysis_is_409(client: AsyncClient) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    response = await client.post("/api/wizard/complete", headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "PRECONDITION_FAILED"


@pytest.mark.asyncio
async def test_full_flow_completes(client: AsyncClient) -> None:
    await client.post("/api/wizard/bootstrap", headers=HEADERS)
    await _walk_to_analysis(client)

    response = await client.post("/api/wizard/complete", headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["stepIndex"] == 5
    assert body["session"]["isComplete"] is True

    after = await client.get("/api/wizard/session", headers=HEADERS)
    assert after.status_code == 410


# ---------------------------------------------------------------------------
# Test Group 5: Email resume
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_resume_by_email_not_found(client: AsyncClient) -> None:
    response = await client.post(
        "/api/wizard/resume-by-email", json={"email": "nobody@example.com"}, headers=HEADERS
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"


@pytest.mark.asyncio
async def test_resume_by_email_reservation(client: AsyncClient, backend: InMemorySessionBackend) -> None:
    backend.add_reservation("res-9", "grace@example.com")
    response = await client.post(
        "/api/wizard/resume-by-email", json={"email": "Grace@Example.com"}, headers=HEADERS
    )
    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "claimReservation"
    assert body["session"] is None
    assert body["reservation"] == {"token": "res-9", "email": "grace@example.com"}
