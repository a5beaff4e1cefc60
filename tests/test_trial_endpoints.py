"""Tests for the trial, Telnyx voice and cron endpoints."""

from unittest.mock import patch

import pytest
from sqlalchemy import select

from app.models.phone_number import PhoneNumber, PhoneNumberStatus
from app.models.trial_usage import TrialUsage, TrialStatus


async def _trial(db, identifier="biz-1"):
    result = await db.execute(
        select(TrialUsage)
        .where(TrialUsage.identifier == identifier)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["service"] == "trial-engine"


@pytest.mark.asyncio
async def test_start_trial_sends_welcome_once(client, business, emails):
    resp = await client.post("/api/v1/trial/biz-1/start")
    assert resp.status_code == 201
    body = resp.json()
    assert body["identifier"] == "biz-1"
    assert body["calls_remaining"] == 10
    assert body["status"] == "active"

    resp = await client.post("/api/v1/trial/biz-1/start")
    assert resp.status_code == 201
    assert emails.count("welcome") == 1
    assert emails.sent[0][1].company == "Pizza Mario"


@pytest.mark.asyncio
async def test_start_trial_unknown_business(client):
    resp = await client.post("/api/v1/trial/nope/start")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_status_endpoint(client, business):
    resp = await client.get("/api/v1/trial/biz-1/status")
    assert resp.status_code == 200
    assert resp.json() == {
        "can_make_call": True,
        "calls_remaining": 10,
        "days_remaining": 15,
        "status": "active",
        "block_reason": None,
    }


@pytest.mark.asyncio
async def test_admission_allowed(client, business):
    resp = await client.get("/api/v1/trial/biz-1/admission")
    assert resp.status_code == 200
    assert resp.json() == {"allowed": True, "remainingCalls": 10, "remainingDays": 15}


@pytest.mark.asyncio
async def test_usage_until_limit_then_402(client, business, db, emails, telnyx):
    """Scenario: ten calls go through, the eleventh is refused with a 402."""
    for i in range(10):
        resp = await client.post("/api/v1/trial/biz-1/usage")
        assert resp.status_code == 200, i

    assert resp.json()["calls_remaining"] == 0
    assert resp.json()["can_make_call"] is False
    assert emails.count("warning") == 1
    assert emails.count("blocked") == 1
    assert len(telnyx.requests) == 2

    resp = await client.post("/api/v1/trial/biz-1/usage")
    assert resp.status_code == 402
    assert resp.headers["X-Trial-Limit-Exceeded"] == "true"
    assert resp.json()["reason"] == "call limit reached"

    trial = await _trial(db)
    assert trial.calls_used == 10
    assert trial.status == TrialStatus.BLOCKED

    resp = await client.get("/api/v1/trial/biz-1/admission")
    assert resp.status_code == 402
    assert resp.headers["X-Remaining-Calls"] == "0"

    resp = await client.get("/api/v1/trial/biz-1/limits")
    assert resp.status_code == 200
    assert resp.json()["limits"]["allowed"] is False
    assert resp.json()["notice"]["urgency"] == "high"


@pytest.mark.asyncio
async def test_limits_without_notice(client, business):
    resp = await client.get("/api/v1/trial/biz-1/limits")
    assert resp.json()["notice"] is None


@pytest.mark.asyncio
async def test_activate_paid_unblocks_numbers(client, business, db):
    for _ in range(10):
        await client.post("/api/v1/trial/biz-1/usage")

    resp = await client.post("/api/v1/trial/biz-1/activate-paid")
    assert resp.status_code == 200
    body = resp.json()
    assert body["trials_upgraded"] == 1
    assert body["unblock"]["success"] is True
    assert body["unblock"]["unblocked_numbers"] == 2

    trial = await _trial(db)
    assert trial.status == TrialStatus.PAID
    assert trial.is_blocked is False

    resp = await client.post("/api/v1/trial/biz-1/usage")
    assert resp.status_code == 200
    assert resp.json()["can_make_call"] is True


@pytest.mark.asyncio
async def test_numbers_endpoint(client, business):
    resp = await client.get("/api/v1/trial/biz-1/numbers")
    assert resp.status_code == 200
    numbers = {n["phone_number_id"]: n for n in resp.json()}
    assert set(numbers) == {"num-1", "num-2"}
    assert numbers["num-1"]["is_blocked"] is False


@pytest.mark.asyncio
async def test_blocked_call_webhook(client):
    resp = await client.post("/api/v1/telnyx/blocked-call-handler", json={
        "data": {"event_type": "call.initiated", "payload": {"to": "+33100000001"}},
    })
    assert resp.status_code == 200
    assert [a["type"] for a in resp.json()["actions"]] == ["answer", "speak", "hangup"]


@pytest.mark.asyncio
async def test_blocked_call_webhook_invalid_json(client):
    resp = await client.post(
        "/api/v1/telnyx/blocked-call-failover",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 200
    assert resp.json()["actions"][-1] == {"type": "hangup"}


@pytest.mark.asyncio
async def test_cron_disabled_without_secret(client):
    with patch("app.core.config.settings.CRON_SECRET", ""):
        resp = await client.post("/api/v1/cron/automated-emails", headers={"X-Cron-Secret": "anything"})
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_cron_rejects_wrong_secret(client):
    with patch("app.core.config.settings.CRON_SECRET", "s3cret"):
        missing = await client.post("/api/v1/cron/automated-emails")
        wrong = await client.get("/api/v1/cron/schedule", headers={"X-Cron-Secret": "guess"})
    assert missing.status_code == 401
    assert wrong.status_code == 401


@pytest.mark.asyncio
async def test_cron_sweep(client, business, db):
    trial = TrialUsage(identifier="biz-1", business_id="biz-1", calls_used=10, calls_remaining=0)
    db.add(trial)
    await db.commit()

    with patch("app.core.config.settings.CRON_SECRET", "s3cret"):
        resp = await client.post("/api/v1/cron/automated-emails", headers={"X-Cron-Secret": "s3cret"})
        schedule = await client.get("/api/v1/cron/schedule", headers={"X-Cron-Secret": "s3cret"})
        stats = await client.get("/api/v1/cron/trial-stats", headers={"X-Cron-Secret": "s3cret"})

    assert resp.status_code == 200
    assert resp.json()["warnings_sent"] == 1
    assert resp.json()["blockings_sent"] == 1
    assert resp.json()["numbers_blocked"] == 2

    assert schedule.status_code == 200
    assert schedule.json()["priority"] == "low"

    assert stats.json()["counts"]["blocked"] == 1

    blocked = (await db.execute(
        select(PhoneNumber)
        .where(PhoneNumber.status == PhoneNumberStatus.BLOCKED)
        .execution_options(populate_existing=True)
    )).scalars().all()
    assert len(blocked) == 2


@pytest.mark.asyncio
async def test_cron_report(client, business):
    with patch("app.core.config.settings.CRON_SECRET", "s3cret"):
        resp = await client.post("/api/v1/cron/report", headers={"X-Cron-Secret": "s3cret"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"]["processed"] == 0
    assert [a["action"] for a in body["next_actions"]] == [
        "warning emails to send", "trials to block", "scheduled deletions",
    ]
