from uuid import uuid4

import pytest

from whisperwalls.core.config import settings

BASE = settings.API_V1_STR
PAYLOAD = {"content": "hello neighbours", "location": {"latitude": 48.2082, "longitude": 16.3738}}


async def _create(client, registry, headers, content="hello neighbours") -> str:
    resp = await client.post(f"{BASE}/messages", json={**PAYLOAD, "content": content}, headers=headers)
    assert resp.status_code == 201, resp.text
    await registry.scheduler.drain()
    return resp.json()["messageId"]


@pytest.mark.asyncio
async def test_report_is_accepted_and_queued(client, registry, user_headers, make_headers, moderator_headers):
    message_id = await _create(client, registry, user_headers)
    reporter = make_headers(uuid4())

    resp = await client.post(
        f"{BASE}/moderation/reports",
        json={"messageId": message_id, "reason": "spam", "description": "ads"},
        headers=reporter,
    )
    await registry.scheduler.drain()

    assert resp.status_code == 202
    assert resp.json()["status"] == "pending"

    queue = await client.get(f"{BASE}/moderation/queue", headers=moderator_headers)
    [record] = queue.json()
    assert record["messageId"] == message_id
    assert record["trigger"] == "report"
    assert record["priority"] == "high"

    reports = await client.get(f"{BASE}/moderation/messages/{message_id}/reports", headers=moderator_headers)
    assert [r["reason"] for r in reports.json()] == ["spam"]


@pytest.mark.asyncio
async def test_report_unknown_message(client, user_headers):
    resp = await client.post(
        f"{BASE}/moderation/reports", json={"messageId": str(uuid4()), "reason": "other"}, headers=user_headers
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_too_many_reports(client, registry, user_headers):
    message_id = await _create(client, registry, user_headers)
    body = {"messageId": message_id, "reason": "other"}
    for _ in range(settings.REPORT_RATE_LIMIT):
        assert (await client.post(f"{BASE}/moderation/reports", json=body, headers=user_headers)).status_code == 202

    resp = await client.post(f"{BASE}/moderation/reports", json=body, headers=user_headers)
    await registry.scheduler.drain()

    assert resp.status_code == 429
    assert resp.json()["code"] == "too_many_reports"
    assert "Retry-After" in resp.headers


@pytest.mark.asyncio
async def test_moderator_routes_are_forbidden_for_viewers(client, user_headers):
    resp = await client.get(f"{BASE}/moderation/queue", headers=user_headers)
    assert resp.status_code == 403

    resp = await client.get(f"{BASE}/moderation/stats")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_claim_and_review_flagged_message(client, registry, user_headers, moderator_headers, moderator_id):
    message_id = await _create(client, registry, user_headers, content="total scam, send money")

    [record] = (await client.get(f"{BASE}/moderation/queue", headers=moderator_headers)).json()
    claim_url = f"{BASE}/moderation/queue/{record['recordId']}/claim"

    claimed = await client.post(claim_url, headers=moderator_headers)
    assert claimed.status_code == 200
    assert claimed.json()["queueStatus"] == "reviewing"
    assert claimed.json()["reviewerId"] == str(moderator_id)

    again = await client.post(claim_url, headers=moderator_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "conflict"

    reviewed = await client.post(
        f"{BASE}/moderation/messages/{message_id}/review",
        json={"decision": "reject", "notes": "fraud"},
        headers=moderator_headers,
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["moderationStatus"] == "rejected"

    rejected = await client.get(
        f"{BASE}/moderation/queue", params={"status": "rejected"}, headers=moderator_headers
    )
    assert rejected.json()[0]["reviewNotes"] == "fraud"


@pytest.mark.asyncio
async def test_claim_unknown_record(client, moderator_headers):
    resp = await client.post(f"{BASE}/moderation/queue/{uuid4()}/claim", headers=moderator_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_rerun_and_stats(client, registry, user_headers, moderator_headers):
    message_id = await _create(client, registry, user_headers)
    await client.post(
        f"{BASE}/moderation/messages/{message_id}/review",
        json={"decision": "reject"},
        headers=moderator_headers,
    )

    rerun = await client.post(f"{BASE}/moderation/messages/{message_id}/rerun", headers=moderator_headers)
    assert rerun.status_code == 200
    assert rerun.json()["moderationStatus"] == "approved"

    stats = await client.get(f"{BASE}/moderation/stats", params={"timeframe": "week"}, headers=moderator_headers)
    assert stats.status_code == 200
    assert stats.json() == {"timeframe": "week", "total": 1, "approved": 1, "pending": 0, "rejected": 0}


@pytest.mark.asyncio
async def test_review_unknown_message(client, moderator_headers):
    resp = await client.post(
        f"{BASE}/moderation/messages/{uuid4()}/review", json={"decision": "approve"}, headers=moderator_headers
    )
    assert resp.status_code == 404
