"""Org settings: allowlisted merge, masking, and role gates."""

import pytest

from actionchat.services.settings_service import mask_key, masked_settings, merge_settings

OPENAI_KEY = "sk-proj-abcdefghijklmnop1234"


# ═══════════════════════════════════════════════════════════
# Pure helpers
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, ""),
        ("", ""),
        ("short", "***"),
        ("x" * 15, "***"),
        ("abcdefgh12345678", "abcdefgh...5678"),
        (OPENAI_KEY, "sk-proj-...1234"),
    ],
)
def test_mask_key(value, expected):
    assert mask_key(value) == expected


def test_masked_settings_absent():
    assert masked_settings({}) == {
        "openai_api_key": "",
        "anthropic_api_key": "",
        "ollama_base_url": "",
        "has_openai_key": False,
        "has_anthropic_key": False,
    }


def test_merge_ignores_unknown_and_deletes_empty():
    current = {"openai_api_key": "old", "anthropic_api_key": "keep", "legacy": 1}
    merged = merge_settings(
        current,
        {"openai_api_key": "", "ollama_base_url": "http://gpu:11434/v1", "evil": "x"},
    )
    assert merged == {
        "anthropic_api_key": "keep",
        "legacy": 1,
        "ollama_base_url": "http://gpu:11434/v1",
    }
    assert current["openai_api_key"] == "old"


# ═══════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_member_reads_masked_settings(client, db_session, tenant):
    tenant.org.settings = {"openai_api_key": OPENAI_KEY, "anthropic_api_key": "tiny"}
    await db_session.commit()

    r = await client.get("/api/v1/settings", headers=tenant.headers(tenant.member))
    assert r.status_code == 200
    body = r.json()
    assert body["org_name"] == "Acme"
    assert body["can_edit"] is False
    assert body["role"] == "member"
    assert body["settings"]["openai_api_key"] == "sk-proj-...1234"
    assert body["settings"]["anthropic_api_key"] == "***"
    assert body["settings"]["has_openai_key"] is True
    assert OPENAI_KEY not in r.text


@pytest.mark.asyncio
async def test_admin_can_edit_flag(client, tenant):
    r = await client.get("/api/v1/settings", headers=tenant.headers(tenant.admin))
    assert r.json()["can_edit"] is True
    assert r.json()["role"] == "admin"


@pytest.mark.asyncio
async def test_member_cannot_update_settings(client, tenant):
    r = await client.post(
        "/api/v1/settings",
        json={"settings": {"openai_api_key": OPENAI_KEY}},
        headers=tenant.headers(tenant.member),
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_non_member_cannot_read_settings(client, tenant):
    r = await client.get("/api/v1/settings", headers=tenant.headers(tenant.outsider))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_update_settings_allowlist(client, db_session, tenant):
    r = await client.post(
        "/api/v1/settings",
        json={
            "org_name": "  Acme Corp  ",
            "settings": {"openai_api_key": OPENAI_KEY, "billing_plan": "free"},
        },
        headers=tenant.headers(tenant.admin),
    )
    assert r.status_code == 200
    assert r.json() == {"ok": True, "message": "Settings updated"}

    await db_session.refresh(tenant.org)
    assert tenant.org.name == "Acme Corp"
    assert tenant.org.settings == {"openai_api_key": OPENAI_KEY}


@pytest.mark.asyncio
async def test_update_settings_clears_key(client, db_session, tenant):
    tenant.org.settings = {"openai_api_key": OPENAI_KEY, "ollama_base_url": "http://x"}
    await db_session.commit()

    r = await client.post(
        "/api/v1/settings",
        json={"settings": {"openai_api_key": None}},
        headers=tenant.headers(tenant.owner),
    )
    assert r.status_code == 200
    await db_session.refresh(tenant.org)
    assert tenant.org.settings == {"ollama_base_url": "http://x"}


@pytest.mark.asyncio
async def test_update_settings_nothing_to_do(client, tenant):
    r = await client.post("/api/v1/settings", json={}, headers=tenant.headers(tenant.admin))
    assert r.status_code == 400
    assert r.json()["error"] == "No fields to update"


@pytest.mark.asyncio
async def test_update_settings_blank_org_name(client, tenant):
    r = await client.post(
        "/api/v1/settings", json={"org_name": "   "}, headers=tenant.headers(tenant.admin)
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_settings_update_logs_key_names_only(client, tenant):
    await client.post(
        "/api/v1/settings",
        json={"settings": {"openai_api_key": OPENAI_KEY}},
        headers=tenant.headers(tenant.admin),
    )
    r = await client.get("/api/v1/activity", headers=tenant.headers(tenant.admin))
    [event] = r.json()["events"]
    assert event["type"] == "settings.updated"
    assert event["data"] == {"fields": ["openai_api_key"]}
    assert OPENAI_KEY not in r.text
