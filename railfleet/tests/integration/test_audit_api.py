from __future__ import annotations

import pytest

from railfleet.tests.utils.fleet import dev_headers


async def _create_aggregates(client, count: int, headers: dict[str, str]) -> list[int]:
    ids = []
    for idx in range(count):
        response = await client.post(
            "/api/aggregates", json={"aggregate_number": f"AGG-{idx}", "type": "HVAC"}, headers=headers
        )
        ids.append(response.json()["id"])
    return ids


@pytest.mark.asyncio
async def test_audit_log_pagination(client) -> None:
    headers = dev_headers()
    ids = await _create_aggregates(client, 3, headers)

    first = (await client.get("/api/audit-logs", params={"limit": 2}, headers=headers)).json()
    assert len(first["items"]) == 2
    assert first["next_offset"] == 2
    assert [item["entity_id"] for item in first["items"]] == [str(ids[2]), str(ids[1])]

    second = (
        await client.get("/api/audit-logs", params={"limit": 2, "offset": 2}, headers=headers)
    ).json()
    assert [item["entity_id"] for item in second["items"]] == [str(ids[0])]
    assert second["next_offset"] is None


@pytest.mark.asyncio
async def test_audit_log_filters_and_actor_fields(client) -> None:
    headers = {**dev_headers(), "X-Forwarded-For": "203.0.113.9"}
    ids = await _create_aggregates(client, 2, headers)
    await client.patch(f"/api/aggregates/{ids[0]}/status", json={"status": "maintenance"}, headers=headers)

    status_rows = (await client.get("/api/audit-logs", params={"action": "STATUS"}, headers=headers)).json()
    assert len(status_rows["items"]) == 1
    row = status_rows["items"][0]
    assert row["user_email"] == "tech@railfleet.app"
    assert row["user_name"] == "Test Technician"
    assert row["ip_address"] == "203.0.113.9"
    assert row["old_value"] == {"status": "reserve"}

    by_entity = (
        await client.get(
            "/api/audit-logs", params={"entity_type": "aggregate", "entity_id": str(ids[1])}, headers=headers
        )
    ).json()
    assert [item["action"] for item in by_entity["items"]] == ["CREATE"]


@pytest.mark.asyncio
async def test_audit_logs_are_tenant_scoped_and_validated(client) -> None:
    await _create_aggregates(client, 1, dev_headers())
    other = (await client.get("/api/audit-logs", headers=dev_headers("skane"))).json()
    assert other == {"items": [], "next_offset": None}

    assert (await client.get("/api/audit-logs", params={"limit": 0}, headers=dev_headers())).status_code == 400
    assert (await client.get("/api/audit-logs", params={"offset": -1}, headers=dev_headers())).status_code == 400
