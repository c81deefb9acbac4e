from __future__ import annotations

from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from modulehub.apps.api.main import create_app
from modulehub.domain.models import AuditEvent
from modulehub.domain.permissions import MODULE_SIMPLE_TEXT
from modulehub.persistence.db import SessionLocal
from modulehub.tests.utils.auth import create_test_api_key
from modulehub.tests.utils.directory import (
    create_admin,
    create_member,
    create_tenant_with_owner,
    ensure_module,
    grant_tenant,
    set_member_permissions,
)


TEXTS = f"/v1/modules/{MODULE_SIMPLE_TEXT}/texts"


async def _tenant_with_simple_text(member_permissions: list[str] | None = None) -> dict[str, str]:
    # Seed a tenant holding simple-text, its owner key, and optionally a member key.
    module_id = await ensure_module(MODULE_SIMPLE_TEXT)
    tenant_id, owner_id = await create_tenant_with_owner()
    await grant_tenant(tenant_id, module_id)
    _raw, owner_headers, _key_id = await create_test_api_key(owner_id)
    seeded = {"tenant_id": tenant_id, "owner_id": owner_id, "module_id": module_id}
    seeded["owner_auth"] = owner_headers["Authorization"]
    member_id = await create_member(tenant_id)
    if member_permissions:
        await set_member_permissions(member_id, module_id, member_permissions)
    _raw, member_headers, _key_id = await create_test_api_key(member_id)
    seeded["member_id"] = member_id
    seeded["member_auth"] = member_headers["Authorization"]
    return seeded


def _headers(seeded: dict[str, str], who: str) -> dict[str, str]:
    return {"Authorization": seeded[f"{who}_auth"]}


@pytest.mark.asyncio
async def test_simple_text_requires_auth() -> None:
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(TEXTS)
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_owner_has_full_crud() -> None:
    seeded = await _tenant_with_simple_text()
    headers = _headers(seeded, "owner")

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post(TEXTS, headers=headers, json={"content": "first draft"})
        assert created.status_code == 201
        body = created.json()
        assert body["meta"]["api_version"] == "v1"
        text = body["data"]
        assert text["content"] == "first draft"
        assert text["created_by"] == seeded["owner_id"]

        listed = await client.get(TEXTS, headers=headers)
        assert listed.status_code == 200
        assert [item["id"] for item in listed.json()["data"]["items"]] == [text["id"]]

        updated = await client.patch(f"{TEXTS}/{text['id']}", headers=headers, json={"content": "second draft"})
        assert updated.status_code == 200
        assert updated.json()["data"]["content"] == "second draft"

        fetched = await client.get(f"{TEXTS}/{text['id']}", headers=headers)
        assert fetched.json()["data"]["content"] == "second draft"

        deleted = await client.delete(f"{TEXTS}/{text['id']}", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json()["data"] == {"id": text["id"], "deleted": True}

        missing = await client.get(f"{TEXTS}/{text['id']}", headers=headers)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_member_is_limited_to_granted_tokens() -> None:
    seeded = await _tenant_with_simple_text(["read", "write"])
    headers = _headers(seeded, "member")

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post(TEXTS, headers=headers, json={"content": "member note"})
        assert created.status_code == 201
        text_id = created.json()["data"]["id"]

        listed = await client.get(TEXTS, headers=headers)
        assert listed.status_code == 200

        denied = await client.delete(f"{TEXTS}/{text_id}", headers=headers)
        assert denied.status_code == 403
        assert denied.json()["error"]["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_member_without_permission_row_is_denied_module() -> None:
    seeded = await _tenant_with_simple_text()
    headers = _headers(seeded, "member")

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(TEXTS, headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "MODULE_ACCESS_DENIED"

    async with SessionLocal() as session:
        result = await session.execute(
            select(AuditEvent).where(
                AuditEvent.event_type == "authz.gate.denied",
                AuditEvent.actor_id == seeded["member_id"],
            )
        )
        events = list(result.scalars().all())
    assert len(events) == 1
    assert events[0].error_code == "MODULE_ACCESS_DENIED"
    assert events[0].resource_id == MODULE_SIMPLE_TEXT


@pytest.mark.asyncio
async def test_system_admin_never_reads_tenant_texts() -> None:
    await ensure_module(MODULE_SIMPLE_TEXT)
    admin_id = await create_admin()
    _raw, headers, _key_id = await create_test_api_key(admin_id)

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        listed = await client.get(TEXTS, headers=headers)
        assert listed.status_code == 403
        assert listed.json()["error"]["code"] == "BUSINESS_DATA_FORBIDDEN"

        created = await client.post(TEXTS, headers=headers, json={"content": "admin note"})
        assert created.status_code == 403
        assert created.json()["error"]["code"] == "BUSINESS_DATA_FORBIDDEN"

        fetched = await client.get(f"{TEXTS}/{uuid4().hex}", headers=headers)
        assert fetched.status_code == 403


@pytest.mark.asyncio
async def test_texts_are_isolated_between_tenants() -> None:
    first = await _tenant_with_simple_text()
    second = await _tenant_with_simple_text()

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        created = await client.post(TEXTS, headers=_headers(first, "owner"), json={"content": "tenant one"})
        text_id = created.json()["data"]["id"]

        listed = await client.get(TEXTS, headers=_headers(second, "owner"))
        assert listed.status_code == 200
        assert listed.json()["data"]["items"] == []

        for method in ("get", "delete"):
            response = await client.request(method.upper(), f"{TEXTS}/{text_id}", headers=_headers(second, "owner"))
            assert response.status_code == 404

        patched = await client.patch(
            f"{TEXTS}/{text_id}", headers=_headers(second, "owner"), json={"content": "hijack"}
        )
        assert patched.status_code == 404

        still_there = await client.get(f"{TEXTS}/{text_id}", headers=_headers(first, "owner"))
        assert still_there.json()["data"]["content"] == "tenant one"


@pytest.mark.asyncio
async def test_text_body_cannot_choose_tenant() -> None:
    seeded = await _tenant_with_simple_text()

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            TEXTS,
            headers=_headers(seeded, "owner"),
            json={"content": "spoof", "tenant_id": "someone-else"},
        )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "TENANT_ID_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_text_content_is_validated() -> None:
    seeded = await _tenant_with_simple_text()

    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        empty = await client.post(TEXTS, headers=_headers(seeded, "owner"), json={"content": ""})
        assert empty.status_code == 422

        oversized = await client.post(TEXTS, headers=_headers(seeded, "owner"), json={"content": "x" * 10_001})
        assert oversized.status_code == 422
        assert oversized.json()["error"]["code"] == "INVALID_REQUEST"
