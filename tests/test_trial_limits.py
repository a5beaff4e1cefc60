"""Tests for call admission and the 402 responses."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from app.models.business import Business
from app.models.trial_usage import TrialUsage, TrialStatus, BLOCK_REASON_CALL_LIMIT
from app.schemas.trial import TrialLimitsResult
from app.services.trial_limits import (
    TrialLimitsMiddleware,
    UPGRADE_URL,
    create_limit_exceeded_response,
    limit_exceeded_response,
)
from app.services.trial_usage import VERIFICATION_ERROR


@pytest.fixture
def limits(trials):
    return TrialLimitsMiddleware(trials)


async def _exhaust(db, trials, identifier="biz-1"):
    trial = await trials.get_or_create(identifier)
    trial.calls_used = 10
    trial.calls_remaining = 0
    await db.commit()
    return trial


@pytest.mark.asyncio
async def test_fresh_trial_is_allowed(limits, business):
    result = await limits.check_trial_limits("biz-1")

    assert result.allowed is True
    assert result.remaining_calls == 10
    assert result.remaining_days == 15
    assert result.reason is None


@pytest.mark.asyncio
async def test_exhausted_trial_is_refused(limits, trials, business, db):
    await _exhaust(db, trials)

    result = await limits.check_trial_limits("biz-1")

    assert result.allowed is False
    assert result.reason == BLOCK_REASON_CALL_LIMIT
    assert result.remaining_calls == 0


@pytest.mark.asyncio
async def test_check_fails_closed(limits):
    with patch.object(limits.trials, "check_status", AsyncMock(side_effect=RuntimeError("db down"))):
        result = await limits.check_trial_limits("biz-1")

    assert result.allowed is False
    assert result.reason == VERIFICATION_ERROR


@pytest.mark.asyncio
async def test_check_before_external_call_error_shape(limits, trials, business, db):
    await _exhaust(db, trials)

    admission = await limits.check_before_external_call("biz-1")

    assert admission.can_proceed is False
    assert admission.error["code"] == "TRIAL_LIMITS_EXCEEDED"
    assert admission.error["message"] == BLOCK_REASON_CALL_LIMIT
    assert admission.error["data"] == {
        "remainingCalls": 0,
        "remainingDays": 15,
        "upgradeUrl": UPGRADE_URL,
    }


@pytest.mark.asyncio
async def test_check_before_external_call_allows(limits, business):
    admission = await limits.check_before_external_call("biz-1")

    assert admission.can_proceed is True
    assert admission.error is None


@pytest.mark.asyncio
async def test_wrap_external_call_charges_after_success(limits, business):
    action = AsyncMock(return_value={"call_id": "c-1"})

    with patch.object(limits.trials, "record_usage", AsyncMock(return_value=True)) as record:
        result = await limits.wrap_external_call("biz-1", action)

    assert result.success is True
    assert result.data == {"call_id": "c-1"}
    action.assert_awaited_once()
    record.assert_awaited_once_with("biz-1")


@pytest.mark.asyncio
async def test_wrap_external_call_refused_never_runs_action(limits, trials, business, db):
    await _exhaust(db, trials)
    action = AsyncMock()

    with patch.object(limits.trials, "record_usage", AsyncMock()) as record:
        result = await limits.wrap_external_call("biz-1", action)

    assert result.success is False
    assert result.error["code"] == "TRIAL_LIMITS_EXCEEDED"
    action.assert_not_awaited()
    record.assert_not_awaited()


@pytest.mark.asyncio
async def test_wrap_external_call_failure_is_not_charged(limits, business):
    action = AsyncMock(side_effect=ConnectionError("provider unreachable"))

    with patch.object(limits.trials, "record_usage", AsyncMock()) as record:
        result = await limits.wrap_external_call("biz-1", action)

    assert result.success is False
    assert result.error["code"] == "EXTERNAL_CALL_FAILED"
    assert result.error["originalError"] == "provider unreachable"
    record.assert_not_awaited()


@pytest.mark.asyncio
async def test_record_successful_call_swallows_errors(limits):
    with patch.object(limits.trials, "record_usage", AsyncMock(side_effect=RuntimeError("boom"))):
        assert await limits.record_successful_call("biz-1") is False


@pytest.mark.asyncio
async def test_handle_request_lets_allowed_through(limits, business):
    assert await limits.handle_request("biz-1") is None


@pytest.mark.asyncio
async def test_handle_request_returns_402(limits, trials, business, db):
    await _exhaust(db, trials)

    response = await limits.handle_request("biz-1")

    assert response.status_code == 402
    assert response.headers["X-Trial-Limit-Exceeded"] == "true"
    assert response.headers["X-Remaining-Calls"] == "0"
    assert response.headers["X-Remaining-Days"] == "15"
    body = json.loads(response.body)
    assert body == {
        "error": "Trial limits exceeded",
        "reason": BLOCK_REASON_CALL_LIMIT,
        "remainingCalls": 0,
        "remainingDays": 15,
        "action": "upgrade_required",
    }


def test_limit_exceeded_response_defaults_missing_counters():
    response = limit_exceeded_response(TrialLimitsResult(allowed=False, reason=VERIFICATION_ERROR))

    assert response.headers["X-Remaining-Calls"] == "0"
    assert response.headers["X-Remaining-Days"] == "0"


def test_notice_for_exhausted_calls():
    notice = create_limit_exceeded_response(
        TrialLimitsResult(allowed=False, reason=BLOCK_REASON_CALL_LIMIT, remaining_calls=0, remaining_days=6)
    )

    assert notice["blocked"] is True
    assert notice["urgency"] == "high"
    assert "6 jours" in notice["message"]
    assert notice["actions"]["upgrade"]["url"] == f"{UPGRADE_URL}&urgency=high"


def test_notice_for_everything_exhausted():
    notice = create_limit_exceeded_response(
        TrialLimitsResult(allowed=False, remaining_calls=0, remaining_days=0)
    )

    assert notice["title"] == "🔒 Période d'essai terminée"


def test_notice_for_manual_suspension():
    notice = create_limit_exceeded_response(
        TrialLimitsResult(allowed=False, reason="blocked", remaining_calls=4, remaining_days=9)
    )

    assert notice["urgency"] == "medium"
    assert notice["message"] == "blocked"
    assert notice["actions"]["contact"]["url"] == "/support"


@pytest.mark.asyncio
async def test_has_paid_plan(limits, business, db):
    assert await limits.has_paid_plan("biz-1") is False

    biz = await db.get(Business, "biz-1")
    biz.subscription_status = "active"
    await db.commit()

    assert await limits.has_paid_plan("biz-1") is True
    assert await limits.has_paid_plan("unknown") is False


@pytest.mark.asyncio
async def test_paid_trial_is_always_allowed(limits, trials, business, db):
    trial = await _exhaust(db, trials)
    trial.status = TrialStatus.PAID
    await db.commit()

    result = await limits.check_trial_limits("biz-1")

    assert result.allowed is True
    assert (await db.get(TrialUsage, trial.id)).calls_remaining == 0
