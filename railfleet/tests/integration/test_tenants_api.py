from __future__ import annotations

import pytest

from railfleet.tests.utils.fleet import ADMIN_HEADERS, dev_headers, seed_tenant


@pytest.mark.asyncio
async def test_regular_user_sees_only_own_tenant(client) -> None:
    await seed_tenant("skane", "Skånetrafiken")
    tenants = (await client.get("/api/tenants", headers=dev_headers())).json()
    assert [tenant["tenant_id"] for tenant in tenants] == ["default"]
    assert tenants[0]["wagon_count"] == 5
    assert tenants[0]["wagon_types"][0] == "M43 Hytt"


@pytest.mark.asyncio
async def test_super_admin_sees_every_tenant(client) -> None:
    await seed_tenant("skane", "Skånetrafiken")
    tenants = (await client.get("/api/tenants", headers=ADMIN_HEADERS)).json()
    by_id = {tenant["tenant_id"]: tenant for tenant in tenants}
    assert set(by_id) == {"default", "skane"}
    assert by_id["skane"]["wagon_count"] is None


@pytest.mark.asyncio
async def test_configuration_round_trip(client) -> None:
    headers = dev_headers()
    current = (await client.get("/api/tenants/default/configuration", headers=headers)).json()
    assert current["tenant"]["name"] == "Öresundståg"
    assert current["configuration"]["wagon_count"] == 5

    updated = await client.put(
        "/api/tenants/default/configuration",
        json={"primary_color": "#10B981", "wagon_types": ["A", "B", "C"], "custom_labels": {"A": "Front"}},
        headers=headers,
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["success"] is True
    assert body["message"] == "Configuration updated"
    assert body["tenant"]["primary_color"] == "#10B981"
    assert body["tenant"]["name"] == "Öresundståg"
    assert body["configuration"]["wagon_types"] == ["A", "B", "C"]
    assert body["configuration"]["wagon_count"] == 3

    train = (
        await client.post("/api/trains", json={"train_number": "T-3", "name": "Short"}, headers=headers)
    ).json()
    wagons = (await client.get(f"/api/trains/{train['id']}", headers=headers)).json()["wagons"]
    assert [wagon["wagon_type"] for wagon in wagons] == ["A", "B", "C"]

    audit = (
        await client.get("/api/audit-logs", params={"entity_type": "tenant_config"}, headers=headers)
    ).json()
    assert len(audit["items"]) == 1


@pytest.mark.asyncio
async def test_configuration_created_when_missing(client) -> None:
    await seed_tenant("skane", "Skånetrafiken")
    headers = dev_headers("skane")
    assert (await client.get("/api/tenants/skane/configuration", headers=headers)).json()["configuration"] is None

    updated = await client.put("/api/tenants/skane/configuration", json={"language": "en"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["tenant"]["language"] == "en"
    assert updated.json()["configuration"]["wagon_count"] == 5


@pytest.mark.asyncio
async def test_configuration_access_and_validation(client) -> None:
    await seed_tenant("skane", "Skånetrafiken")

    forbidden = await client.get("/api/tenants/skane/configuration", headers=dev_headers())
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "AUTH_FORBIDDEN"

    as_admin = await client.get("/api/tenants/skane/configuration", headers=ADMIN_HEADERS)
    assert as_admin.status_code == 200

    bad_color = await client.put(
        "/api/tenants/default/configuration", json={"primary_color": "blue"}, headers=dev_headers()
    )
    assert bad_color.status_code == 400

    unknown = await client.get("/api/tenants/ghost/configuration", headers=ADMIN_HEADERS)
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_configuration_update_rejects_mismatched_count_and_audits_before_state(client) -> None:
    headers = dev_headers()
    mismatched = await client.put(
        "/api/tenants/default/configuration",
        json={"wagon_types": ["A", "B", "C"], "wagon_count": 7},
        headers=headers,
    )
    assert mismatched.status_code == 400
    assert mismatched.json()["error"]["code"] == "VALIDATION_FAILED"

    count_only = await client.put(
        "/api/tenants/default/configuration", json={"wagon_count": 4}, headers=headers
    )
    assert count_only.status_code == 400

    stored = (await client.get("/api/tenants/default/configuration", headers=headers)).json()
    assert stored["configuration"]["wagon_count"] == 5
    assert len(stored["configuration"]["wagon_types"]) == 5

    updated = await client.put(
        "/api/tenants/default/configuration",
        json={"name": "Öresundståg AB", "wagon_types": ["A", "B"], "wagon_count": 2},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["configuration"]["wagon_count"] == 2

    audit = (
        await client.get("/api/audit-logs", params={"entity_type": "tenant_config"}, headers=headers)
    ).json()
    assert len(audit["items"]) == 1
    entry = audit["items"][0]
    assert entry["old_value"]["name"] == "Öresundståg"
    assert entry["old_value"]["wagon_count"] == 5
    assert entry["new_value"]["name"] == "Öresundståg AB"
    assert entry["new_value"]["wagon_types"] == ["A", "B"]
