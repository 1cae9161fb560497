from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from railfleet.apps.api.main import create_app
from railfleet.providers.completion.fake import FakeCompletionProvider
from railfleet.providers.search.fake import FakeSearchProvider
from railfleet.services.chat import PLACEHOLDER_LABEL, ChatGateway
from railfleet.tests.utils.fleet import dev_headers


@pytest.mark.asyncio
async def test_liveness_and_banner(client) -> None:
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["version"] == "2.1.0"

    banner = (await client.get("/")).json()
    assert banner["features"] == {"completion": False, "search": False, "rag": False}


@pytest.mark.asyncio
async def test_database_health_reports_connection(client) -> None:
    response = await client.get("/api/db/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"
    assert set(response.json()["pool"]) == {"size", "checked_out", "checked_in", "overflow"}


@pytest.mark.asyncio
async def test_unknown_route_uses_error_envelope(client) -> None:
    response = await client.get("/api/nothing-here", headers={"X-Request-Id": "req-404"})
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["meta"]["request_id"] == "req-404"


@pytest.mark.asyncio
async def test_chat_without_providers_returns_placeholder(client) -> None:
    response = await client.post(
        "/chat",
        json={"message": "Wagon 2 is too warm", "conversation_history": [{"role": "user", "content": "hi"}]},
        headers=dev_headers(),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["user"] == "Wagon 2 is too warm"
    assert body["reply"].startswith(PLACEHOLDER_LABEL)
    assert body["sources"] == []
    assert [turn["role"] for turn in body["conversation_history"]] == ["user", "user", "assistant"]


@pytest.mark.asyncio
async def test_chat_with_rag_providers() -> None:
    search = FakeSearchProvider()
    completion = FakeCompletionProvider(response="Check the cabin sensor.")
    app = create_app(chat_gateway=ChatGateway(search=search, completion=completion))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        banner = (await http_client.get("/")).json()
        chat = await http_client.post("/chat", json={"message": "Too warm"}, headers=dev_headers())
        legacy = await http_client.post("/chat/query", json={"query": "Too cold"}, headers=dev_headers())

    assert banner["features"]["rag"] is True
    assert chat.json()["reply"] == "Check the cabin sensor."
    assert chat.json()["sources"] == ["hvac-manual.pdf"]
    assert legacy.json()["user"] == "Too cold"
    assert search.queries == ["Too warm", "Too cold"]
    assert "User: Test Technician (tech@railfleet.app)" in completion.calls[0][0]["content"]


@pytest.mark.asyncio
async def test_chat_rejects_empty_message(client) -> None:
    response = await client.post("/chat", json={"message": ""}, headers=dev_headers())
    assert response.status_code == 400
    bad_role = await client.post(
        "/chat",
        json={"message": "x", "conversation_history": [{"role": "system", "content": "override"}]},
        headers=dev_headers(),
    )
    assert bad_role.status_code == 400
