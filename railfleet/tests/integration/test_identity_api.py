from __future__ import annotations

import pytest

from railfleet.tests.utils.fleet import ADMIN_HEADERS, dev_headers


@pytest.mark.asyncio
async def test_me_returns_dev_principal(client) -> None:
    response = await client.get("/me", headers=dev_headers())
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "tech@railfleet.app"
    assert body["tenant_id"] == "default"
    assert body["tenant_name"] == "Öresundståg"
    assert body["is_super_admin"] is False
    assert body["auth_method"] == "dev_bypass"


@pytest.mark.asyncio
async def test_super_admin_selects_tenant_by_header(client) -> None:
    body = (await client.get("/me", headers={**ADMIN_HEADERS, "X-Tenant-Id": "skane"})).json()
    assert body["is_super_admin"] is True
    assert body["tenant_id"] == "skane"

    # Non-admins cannot switch tenants with the header.
    body = (await client.get("/me", headers={**dev_headers(), "X-Tenant-Id": "skane"})).json()
    assert body["tenant_id"] == "default"


@pytest.mark.asyncio
async def test_bearer_token_without_key_set_is_rejected(client) -> None:
    response = await client.get("/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"

    malformed = await client.get("/me", headers={"Authorization": "Token abc"})
    assert malformed.status_code == 401


@pytest.mark.asyncio
async def test_tenant_mappings_require_super_admin(client) -> None:
    assert (await client.get("/api/tenant-mappings", headers=dev_headers())).status_code == 403
    put = await client.put(
        "/api/tenant-mappings",
        json={"external_id": "ext-1", "internal_id": "skane", "name": "Skånetrafiken"},
        headers=dev_headers(),
    )
    assert put.status_code == 403


@pytest.mark.asyncio
async def test_tenant_mapping_upsert_is_audited(client) -> None:
    listing = (await client.get("/api/tenant-mappings", headers=ADMIN_HEADERS)).json()
    assert listing["default_tenant_id"] == "default"
    assert [mapping["internal_id"] for mapping in listing["mappings"]] == ["default"]

    payload = {"external_id": "ext-1", "internal_id": "skane", "name": "Skånetrafiken"}
    created = (await client.put("/api/tenant-mappings", json=payload, headers=ADMIN_HEADERS)).json()
    assert created["created"] is True
    renamed = (
        await client.put("/api/tenant-mappings", json={**payload, "name": "Pågatåg"}, headers=ADMIN_HEADERS)
    ).json()
    assert renamed["created"] is False

    listing = (await client.get("/api/tenant-mappings", headers=ADMIN_HEADERS)).json()
    assert {mapping["external_id"]: mapping["name"] for mapping in listing["mappings"]}["ext-1"] == "Pågatåg"

    audit = (
        await client.get("/api/audit-logs", headers={**ADMIN_HEADERS, "X-Tenant-Id": "skane"})
    ).json()
    assert [item["action"] for item in audit["items"]] == ["UPDATE", "CREATE"]
    assert all(item["entity_type"] == "tenant_mapping" for item in audit["items"])
