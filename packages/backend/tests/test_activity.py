"""Activity feed tests: org scoping, actor filtering for non-admins."""

import pytest

from actionchat.events.store import EventStore


@pytest.mark.asyncio
async def test_admin_sees_everything_member_sees_own(client, db_session, tenant):
    store = EventStore(db_session)
    await store.append(tenant.org.id, "org:x", "agent.created", {"n": 1}, actor=str(tenant.admin.id))
    await store.append(tenant.org.id, "org:x", "agent.updated", {"n": 2}, actor=str(tenant.member.id))
    await db_session.commit()

    r = await client.get("/api/v1/activity", headers=tenant.headers(tenant.admin))
    assert [e["type"] for e in r.json()["events"]] == ["agent.updated", "agent.created"]

    r = await client.get("/api/v1/activity", headers=tenant.headers(tenant.member))
    events = r.json()["events"]
    assert [e["type"] for e in events] == ["agent.updated"]
    assert events[0]["actor_id"] == str(tenant.member.id)


@pytest.mark.asyncio
async def test_activity_is_org_scoped(client, db_session, tenant, other_tenant):
    await EventStore(db_session).append(
        other_tenant.org.id, "org:y", "settings.updated", {}, actor=str(other_tenant.owner.id)
    )
    await db_session.commit()

    r = await client.get("/api/v1/activity", headers=tenant.headers(tenant.owner))
    assert r.json()["events"] == []


@pytest.mark.asyncio
async def test_activity_type_filter_and_limit(client, db_session, tenant):
    store = EventStore(db_session)
    for i in range(5):
        await store.append(tenant.org.id, "org:x", "agent.created", {"i": i})
    await store.append(tenant.org.id, "org:x", "settings.updated", {})
    await db_session.commit()

    headers = tenant.headers(tenant.owner)
    r = await client.get("/api/v1/activity", params={"type": "agent.created"}, headers=headers)
    assert len(r.json()["events"]) == 5

    r = await client.get("/api/v1/activity", params={"limit": 2}, headers=headers)
    assert [e["type"] for e in r.json()["events"]] == ["settings.updated", "agent.created"]

    r = await client.get("/api/v1/activity", params={"limit": 0}, headers=headers)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_activity_non_member(client, tenant):
    r = await client.get("/api/v1/activity", headers=tenant.headers(tenant.outsider))
    assert r.status_code == 403

