"""Source + tool API tests.

Learn: Tests cover:
1. OpenAPI import → tool rows (risk, confirmation, spec hash)
2. Source reads hide spec_content, and auth_config from non-admins
3. Source update/delete (tools and agent links go with it)
4. Manual tools: create, defaults, update, delete, validation
5. Sync: tools reconciled by operation_id, unchanged specs are a no-op
6. Per-user credentials, shaped by auth_type and never echoed back
"""

import copy
import json
import uuid

import pytest
from sqlalchemy import select

from actionchat.db.models import AgentSource, SourceCredential, Tool
from actionchat.services import source_service
from actionchat.tools.openapi import spec_hash

from conftest import PETSTORE


async def _import_petstore(client, tenant, **extra):
    r = await client.post(
        "/api/v1/sources",
        json={
            "name": "Petstore",
            "spec_content": PETSTORE,
            "auth_type": "bearer",
            "auth_config": {"token_env": "PETSTORE_TOKEN"},
            **extra,
        },
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 201, r.text
    return r.json()["source"]


async def _manual_source(client, tenant):
    r = await client.post(
        "/api/v1/sources",
        json={"name": "Internal", "source_type": "manual", "base_url": "https://internal"},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 201, r.text
    return r.json()["source"]


# ═══════════════════════════════════════════════════════════
# OpenAPI sources
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_import_openapi_source(client, tenant):
    source = await _import_petstore(client, tenant)
    assert source["tool_count"] == 4
    assert source["has_spec"] is True
    assert "spec_content" not in source
    assert source["base_url"] == "https://petstore.example.com/v1"
    assert source["description"] == "Pets, mostly"
    assert source["spec_hash"] == spec_hash(PETSTORE)
    assert source["last_synced_at"] is not None


@pytest.mark.asyncio
async def test_import_accepts_json_string(client, tenant):
    source = await _import_petstore(client, tenant, spec_content=json.dumps(PETSTORE))
    assert source["tool_count"] == 4


@pytest.mark.asyncio
async def test_import_rejects_swagger_2(client, tenant):
    r = await client.post(
        "/api/v1/sources",
        json={"name": "Old", "spec_content": {"swagger": "2.0", "openapi": "2.0", "paths": {"/": {}}}},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Failed to parse OpenAPI spec"


@pytest.mark.asyncio
async def test_import_rejects_malformed_json(client, tenant):
    r = await client.post(
        "/api/v1/sources",
        json={"name": "Broken", "spec_content": "{not json"},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "paths",
    [
        ["/pets"],
        {"/x": {"get": "oops"}},
        {"/x": {"post": {"requestBody": "oops"}}},
        {"/x": {"post": {"requestBody": {"content": "oops"}}}},
    ],
)
async def test_import_rejects_wrong_node_types(client, tenant, paths):
    r = await client.post(
        "/api/v1/sources",
        json={"name": "Odd", "spec_content": {"openapi": "3.0.0", "paths": paths}},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Failed to parse OpenAPI spec"
    assert "must be" in body["details"]


@pytest.mark.asyncio
async def test_source_requires_name(client, tenant):
    r = await client.post(
        "/api/v1/sources", json={"name": ""}, headers=tenant.headers(tenant.admin)
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Name is required"


@pytest.mark.asyncio
async def test_member_cannot_create_source(client, tenant):
    r = await client.post(
        "/api/v1/sources", json={"name": "x"}, headers=tenant.headers(tenant.member)
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_imported_tools(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await client.get(
        f"/api/v1/sources/{source['id']}/tools", headers=tenant.headers(tenant.member)
    )
    assert r.status_code == 200
    tools = {(t["method"], t["path"]): t for t in r.json()["tools"]}
    # Ordered by method, then path.
    assert [(t["method"], t["path"]) for t in r.json()["tools"]] == [
        ("DELETE", "/pets/{petId}"),
        ("GET", "/pets"),
        ("GET", "/pets/{petId}"),
        ("POST", "/pets"),
    ]

    listing = tools[("GET", "/pets")]
    assert listing["operation_id"] == "listPets"
    assert listing["name"] == "List pets"
    assert listing["risk_level"] == "safe"
    assert listing["requires_confirmation"] is False
    assert listing["tags"] == ["pets"]
    assert listing["parameters"]["properties"]["limit"]["in"] == "query"

    create = tools[("POST", "/pets")]
    assert create["risk_level"] == "moderate"
    assert create["request_body"]["type"] == "object"
    assert create["request_body"]["properties"]["owner"]["type"] == "string"

    get_one = tools[("GET", "/pets/{petId}")]
    assert get_one["operation_id"] == "get_pets_petId"
    assert get_one["parameters"]["required"] == ["petId"]

    delete = tools[("DELETE", "/pets/{petId}")]
    assert delete["risk_level"] == "dangerous"
    assert delete["requires_confirmation"] is True


# ═══════════════════════════════════════════════════════════
# Source reads
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_auth_config_hidden_from_members(client, tenant):
    source = await _import_petstore(client, tenant)

    r = await client.get(f"/api/v1/sources/{source['id']}", headers=tenant.headers(tenant.member))
    assert r.status_code == 200
    assert r.json()["source"]["auth_config"] is None
    assert len(r.json()["tools"]) == 4

    r = await client.get(f"/api/v1/sources/{source['id']}", headers=tenant.headers(tenant.admin))
    assert r.json()["source"]["auth_config"] == {"token_env": "PETSTORE_TOKEN"}


@pytest.mark.asyncio
async def test_list_sources_counts_active_tools(client, db_session, tenant):
    source = await _import_petstore(client, tenant)
    result = await db_session.execute(
        select(Tool).where(Tool.source_id == uuid.UUID(source["id"]), Tool.method == "DELETE")
    )
    result.scalars().one().is_active = False
    await db_session.commit()

    r = await client.get("/api/v1/sources", headers=tenant.headers(tenant.member))
    [listed] = r.json()["sources"]
    assert listed["tool_count"] == 3
    assert listed["auth_config"] is None


@pytest.mark.asyncio
async def test_list_and_detail_agree_on_tool_count(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await client.get(
        f"/api/v1/sources/{source['id']}/tools", headers=tenant.headers(tenant.admin)
    )
    for tool in r.json()["tools"]:
        r = await client.put(
            f"/api/v1/sources/{source['id']}/tools",
            json={"tool_id": tool["id"], "is_active": False},
            headers=tenant.headers(tenant.admin),
        )
        assert r.status_code == 200

    r = await client.get("/api/v1/sources", headers=tenant.headers(tenant.member))
    assert r.json()["sources"][0]["tool_count"] == 0

    r = await client.get(f"/api/v1/sources/{source['id']}", headers=tenant.headers(tenant.member))
    detail = r.json()
    assert detail["source"]["tool_count"] == 0
    # Inactive tools are still listed, just not counted.
    assert len(detail["tools"]) == 4


@pytest.mark.asyncio
async def test_source_of_other_org_is_not_found(client, tenant, other_tenant):
    source = await _import_petstore(client, tenant)
    r = await client.get(
        f"/api/v1/sources/{source['id']}", headers=other_tenant.headers(other_tenant.owner)
    )
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Source update / delete
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_update_source(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await client.put(
        f"/api/v1/sources/{source['id']}",
        json={"name": "Pets v2", "is_active": False, "spec_hash": "forged"},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 200
    updated = r.json()["source"]
    assert updated["name"] == "Pets v2"
    assert updated["is_active"] is False
    assert updated["spec_hash"] == spec_hash(PETSTORE)


@pytest.mark.asyncio
async def test_update_source_empty(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await client.put(
        f"/api/v1/sources/{source['id']}", json={}, headers=tenant.headers(tenant.admin)
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_delete_source_cascades(client, db_session, tenant):
    source = await _import_petstore(client, tenant)
    headers = tenant.headers(tenant.admin)
    r = await client.post(
        "/api/v1/agents",
        json={"name": "Pet bot", "source_links": [{"source_id": source["id"]}]},
        headers=headers,
    )
    agent_id = r.json()["agent"]["id"]

    r = await client.delete(f"/api/v1/sources/{source['id']}", headers=headers)
    assert r.status_code == 200

    source_id = uuid.UUID(source["id"])
    tools = await db_session.execute(select(Tool).where(Tool.source_id == source_id))
    assert tools.scalars().first() is None
    links = await db_session.execute(
        select(AgentSource).where(AgentSource.source_id == source_id)
    )
    assert links.scalars().first() is None

    r = await client.get(f"/api/v1/agents/{agent_id}", headers=headers)
    assert r.json()["linked_sources"] == []


# ═══════════════════════════════════════════════════════════
# Manual tools
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_manual_tool_defaults(client, tenant):
    source = await _manual_source(client, tenant)
    url = f"/api/v1/sources/{source['id']}/tools"
    headers = tenant.headers(tenant.admin)

    r = await client.post(
        url, json={"name": "Lookup", "method": "get", "path": "/users/{id}"}, headers=headers
    )
    assert r.status_code == 201
    tool = r.json()["tool"]
    assert tool["method"] == "GET"
    assert tool["risk_level"] == "safe"
    assert tool["requires_confirmation"] is False

    r = await client.post(
        url, json={"name": "Wipe", "method": "POST", "path": "/wipe"}, headers=headers
    )
    tool = r.json()["tool"]
    assert tool["risk_level"] == "dangerous"
    assert tool["requires_confirmation"] is True


@pytest.mark.asyncio
async def test_create_manual_tool_explicit_risk(client, tenant):
    source = await _manual_source(client, tenant)
    r = await client.post(
        f"/api/v1/sources/{source['id']}/tools",
        json={
            "name": "Note",
            "method": "POST",
            "path": "/notes",
            "risk_level": "moderate",
            "tags": ["notes"],
        },
        headers=tenant.headers(tenant.admin),
    )
    tool = r.json()["tool"]
    assert tool["risk_level"] == "moderate"
    assert tool["requires_confirmation"] is False
    assert tool["tags"] == ["notes"]


@pytest.mark.asyncio
async def test_tools_only_on_manual_sources(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await client.post(
        f"/api/v1/sources/{source['id']}/tools",
        json={"name": "x", "method": "GET", "path": "/x"},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"method": "GET", "path": "/x"},
        {"name": "x", "method": "FETCH", "path": "/x"},
        {"name": "x", "method": "GET", "path": "/x", "risk_level": "extreme"},
    ],
)
async def test_create_manual_tool_validation(client, tenant, body):
    source = await _manual_source(client, tenant)
    r = await client.post(
        f"/api/v1/sources/{source['id']}/tools", json=body, headers=tenant.headers(tenant.admin)
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_update_and_delete_tool(client, tenant):
    source = await _manual_source(client, tenant)
    url = f"/api/v1/sources/{source['id']}/tools"
    headers = tenant.headers(tenant.admin)
    r = await client.post(
        url, json={"name": "Lookup", "method": "GET", "path": "/users"}, headers=headers
    )
    tool_id = r.json()["tool"]["id"]

    r = await client.put(
        url,
        json={"tool_id": tool_id, "description": "Find a user", "method": "patch"},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["tool"]["description"] == "Find a user"
    assert r.json()["tool"]["method"] == "PATCH"

    r = await client.put(url, json={"tool_id": tool_id}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "No valid fields to update"

    r = await client.request("DELETE", url, json={"tool_id": tool_id}, headers=headers)
    assert r.status_code == 200

    r = await client.get(url, headers=headers)
    assert r.json()["tools"] == []


@pytest.mark.asyncio
async def test_tool_requires_tool_id(client, tenant):
    source = await _manual_source(client, tenant)
    r = await client.request(
        "DELETE",
        f"/api/v1/sources/{source['id']}/tools",
        json={},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "tool_id is required"


@pytest.mark.asyncio
async def test_tool_from_other_source(client, tenant):
    first = await _manual_source(client, tenant)
    second = await _manual_source(client, tenant)
    headers = tenant.headers(tenant.admin)
    r = await client.post(
        f"/api/v1/sources/{first['id']}/tools",
        json={"name": "Lookup", "method": "GET", "path": "/users"},
        headers=headers,
    )
    tool_id = r.json()["tool"]["id"]

    r = await client.put(
        f"/api/v1/sources/{second['id']}/tools",
        json={"tool_id": tool_id, "name": "Moved"},
        headers=headers,
    )
    assert r.status_code == 404
    assert r.json()["error"] == "Tool not found"


# ═══════════════════════════════════════════════════════════
# Sync
# ═══════════════════════════════════════════════════════════


def _petstore_v2():
    doc = copy.deepcopy(PETSTORE)
    doc["info"]["version"] = "2.0.0"
    doc["paths"]["/pets"]["get"]["summary"] = "List all pets"
    del doc["paths"]["/pets/{petId}"]["delete"]
    doc["paths"]["/owners"] = {"get": {"operationId": "listOwners"}}
    return doc


async def _sync(client, tenant, source_id, body=None):
    return await client.post(
        f"/api/v1/sources/{source_id}/sync",
        json=body if body is not None else {},
        headers=tenant.headers(tenant.admin),
    )


@pytest.mark.asyncio
async def test_sync_unchanged_spec_is_noop(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await _sync(client, tenant, source["id"])
    assert r.status_code == 200
    body = r.json()
    assert body["changed"] is False
    assert body["message"] == "Spec unchanged, no sync needed"


@pytest.mark.asyncio
async def test_sync_reconciles_tools_by_operation_id(client, db_session, tenant):
    source = await _import_petstore(client, tenant)
    result = await db_session.execute(
        select(Tool).where(Tool.operation_id == "createPet")
    )
    result.scalars().one().is_active = False
    await db_session.commit()

    v2 = _petstore_v2()
    r = await _sync(client, tenant, source["id"], {"spec_content": v2})
    assert r.status_code == 200
    assert r.json() == {
        "ok": True,
        "changed": True,
        "message": None,
        "inserted": 1,
        "updated": 3,
        "removed": 1,
        "tool_count": 4,
    }

    r = await client.get(f"/api/v1/sources/{source['id']}", headers=tenant.headers(tenant.admin))
    detail = r.json()
    assert detail["source"]["spec_hash"] == spec_hash(v2)
    assert detail["source"]["tool_count"] == 4
    tools = {t["operation_id"]: t for t in detail["tools"]}
    assert tools["deletePet"]["is_active"] is False
    assert tools["createPet"]["is_active"] is True
    assert tools["listPets"]["name"] == "List all pets"
    assert tools["listOwners"]["risk_level"] == "safe"


@pytest.mark.asyncio
async def test_sync_fetches_spec_url(client, tenant, monkeypatch):
    source = await _import_petstore(client, tenant, spec_url="https://petstore.example.com/openapi.json")
    fetched = []

    async def fake_fetch(url):
        fetched.append(url)
        return _petstore_v2()

    monkeypatch.setattr(source_service, "fetch_spec", fake_fetch)
    r = await _sync(client, tenant, source["id"])
    assert r.status_code == 200
    assert r.json()["changed"] is True
    assert fetched == ["https://petstore.example.com/openapi.json"]


@pytest.mark.asyncio
async def test_sync_rejects_bad_spec(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await _sync(client, tenant, source["id"], {"spec_content": {"openapi": "3.0.0", "paths": ["/x"]}})
    assert r.status_code == 400
    assert r.json()["error"] == "Failed to parse OpenAPI spec"


@pytest.mark.asyncio
async def test_sync_only_openapi_sources(client, tenant):
    source = await _manual_source(client, tenant)
    r = await _sync(client, tenant, source["id"])
    assert r.status_code == 400
    assert r.json()["error"] == "Only OpenAPI sources can be synced"


@pytest.mark.asyncio
async def test_sync_without_any_spec(client, tenant):
    r = await client.post(
        "/api/v1/sources", json={"name": "Empty"}, headers=tenant.headers(tenant.admin)
    )
    r = await _sync(client, tenant, r.json()["source"]["id"])
    assert r.status_code == 400
    assert r.json()["error"].startswith("No spec content to sync")


@pytest.mark.asyncio
async def test_member_cannot_sync(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await client.post(
        f"/api/v1/sources/{source['id']}/sync", json={}, headers=tenant.headers(tenant.member)
    )
    assert r.status_code == 403


# ═══════════════════════════════════════════════════════════
# Per-user credentials
# ═══════════════════════════════════════════════════════════


async def _source_with_auth(client, tenant, auth_type):
    r = await client.post(
        "/api/v1/sources",
        json={"name": f"{auth_type} API", "source_type": "manual", "auth_type": auth_type},
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 201, r.text
    return r.json()["source"]


@pytest.mark.asyncio
async def test_credentials_lifecycle(client, db_session, tenant):
    source = await _import_petstore(client, tenant)  # bearer
    url = f"/api/v1/sources/{source['id']}/credentials"
    headers = tenant.headers(tenant.member)

    r = await client.get(url, headers=headers)
    assert r.status_code == 200
    assert r.json()["has_credentials"] is False
    assert r.json()["auth_type"] == "bearer"

    r = await client.post(url, json={}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "token is required for bearer auth"

    r = await client.post(url, json={"token": "tok-secret", "password": "ignored"}, headers=headers)
    assert r.status_code == 200

    r = await client.get(url, headers=headers)
    assert r.json()["has_credentials"] is True
    assert r.json()["credentials_updated_at"] is not None
    assert "tok-secret" not in r.text

    result = await db_session.execute(
        select(SourceCredential).where(SourceCredential.user_id == tenant.member.id)
    )
    assert result.scalars().one().credentials == {"token": "tok-secret"}

    # Credentials are per user.
    r = await client.get(url, headers=tenant.headers(tenant.admin))
    assert r.json()["has_credentials"] is False

    r = await client.request("DELETE", url, headers=headers)
    assert r.status_code == 200
    r = await client.get(url, headers=headers)
    assert r.json()["has_credentials"] is False


@pytest.mark.asyncio
async def test_credentials_overwrite(client, db_session, tenant):
    source = await _import_petstore(client, tenant)
    url = f"/api/v1/sources/{source['id']}/credentials"
    headers = tenant.headers(tenant.member)
    await client.post(url, json={"token": "old"}, headers=headers)
    await client.post(url, json={"token": "new"}, headers=headers)

    result = await db_session.execute(select(SourceCredential))
    [row] = result.scalars().all()
    assert row.credentials == {"token": "new"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "auth_type, body, expected",
    [
        ("api_key", {"api_key": "k"}, {"api_key": "k", "header_name": "X-API-Key"}),
        ("api_key", {"api_key": "k", "header_name": "X-Key"}, {"api_key": "k", "header_name": "X-Key"}),
        ("basic", {"username": "u", "password": "p"}, {"username": "u", "password": "p"}),
        ("header", {"header_name": "X-T", "header_value": "v"}, {"header_name": "X-T", "header_value": "v"}),
        ("none", {"token": "unused"}, {}),
        ("passthrough", {}, {}),
    ],
)
async def test_credentials_shape_follows_auth_type(client, db_session, tenant, auth_type, body, expected):
    source = await _source_with_auth(client, tenant, auth_type)
    r = await client.post(
        f"/api/v1/sources/{source['id']}/credentials", json=body, headers=tenant.headers(tenant.member)
    )
    assert r.status_code == 200, r.text
    result = await db_session.execute(select(SourceCredential))
    assert result.scalars().one().credentials == expected


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "auth_type, body, message",
    [
        ("api_key", {}, "api_key is required"),
        ("basic", {"username": "u"}, "username and password are required"),
        ("header", {"header_name": "X-T"}, "header_name and header_value are required"),
    ],
)
async def test_credentials_validation(client, tenant, auth_type, body, message):
    source = await _source_with_auth(client, tenant, auth_type)
    r = await client.post(
        f"/api/v1/sources/{source['id']}/credentials", json=body, headers=tenant.headers(tenant.member)
    )
    assert r.status_code == 400
    assert r.json()["error"] == message


@pytest.mark.asyncio
async def test_credentials_need_user_session(client, tenant):
    source = await _import_petstore(client, tenant)
    r = await client.post("/api/v1/api-keys", json={"name": "CI"}, headers=tenant.headers(tenant.admin))
    raw = r.json()["raw_key"]
    r = await client.get(
        f"/api/v1/sources/{source['id']}/credentials", headers={"X-API-Key": raw}
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_credentials_on_other_org_source(client, tenant, other_tenant):
    source = await _import_petstore(client, tenant)
    r = await client.post(
        f"/api/v1/sources/{source['id']}/credentials",
        json={"token": "x"},
        headers=other_tenant.headers(other_tenant.member),
    )
    assert r.status_code == 404
