"""Call admission for trial businesses.

Wraps TrialUsageService for the call-handling path: check before a billable
action, charge only after it succeeded, and answer HTTP callers with a 402
when the trial is exhausted.
"""

import logging
from typing import Any, Awaitable, Callable

from fastapi import status
from fastapi.responses import JSONResponse
from sqlalchemy import select

from app.models.business import Business
from app.schemas.trial import TrialLimitsResult, AdmissionCheck, ExternalCallResult
from app.services.trial_usage import TrialUsageService, VERIFICATION_ERROR

logger = logging.getLogger(__name__)

UPGRADE_URL = "/app/billing?upgrade=true&reason=trial_limit"
SUPPORT_URL = "/support"
PAID_SUBSCRIPTION_STATUSES = ("active", "trialing")


class TrialLimitsMiddleware:
    def __init__(self, trials: TrialUsageService):
        self.trials = trials

    async def check_trial_limits(self, business_id: str) -> TrialLimitsResult:
        """Admission decision for a business. Fails closed."""
        try:
            check = await self.trials.check_status(business_id)
        except Exception as e:
            logger.error("Trial limit verification failed for %s: %s", business_id, e)
            return TrialLimitsResult(allowed=False, reason=VERIFICATION_ERROR)

        if not check.can_make_call:
            return TrialLimitsResult(
                allowed=False,
                reason=check.block_reason or "trial limit reached",
                remaining_calls=check.calls_remaining,
                remaining_days=check.days_remaining,
            )

        return TrialLimitsResult(
            allowed=True,
            remaining_calls=check.calls_remaining,
            remaining_days=check.days_remaining,
        )

    async def check_before_external_call(self, business_id: str) -> AdmissionCheck:
        limits = await self.check_trial_limits(business_id)
        if limits.allowed:
            return AdmissionCheck(can_proceed=True)

        error = {
            "code": "TRIAL_LIMITS_EXCEEDED",
            "message": limits.reason,
            "data": {
                "remainingCalls": limits.remaining_calls,
                "remainingDays": limits.remaining_days,
                "upgradeUrl": UPGRADE_URL,
            },
        }
        logger.info("External call refused for %s: %s", business_id, limits.reason)
        return AdmissionCheck(can_proceed=False, error=error)

    async def record_successful_call(self, business_id: str) -> bool:
        try:
            return await self.trials.record_usage(business_id)
        except Exception as e:
            logger.error("Failed to record successful call for %s: %s", business_id, e)
            return False

    async def wrap_external_call(
        self,
        business_id: str,
        external_call: Callable[[], Awaitable[Any]],
    ) -> ExternalCallResult:
        """Run a billable external action under the trial quota.

        The quota is only consumed when the action actually ran and returned.

        Args:
            business_id: Business placing the call
            external_call: Zero-argument coroutine function performing the action

        Returns:
            ExternalCallResult with the action's return value or a structured error
        """
        admission = await self.check_before_external_call(business_id)
        if not admission.can_proceed:
            return ExternalCallResult(success=False, error=admission.error)

        try:
            data = await external_call()
        except Exception as e:
            logger.error("External call failed for %s: %s", business_id, e)
            return ExternalCallResult(
                success=False,
                error={
                    "code": "EXTERNAL_CALL_FAILED",
                    "message": "L'appel externe a échoué",
                    "originalError": str(e),
                },
            )

        await self.record_successful_call(business_id)
        return ExternalCallResult(success=True, data=data)

    async def handle_request(self, business_id: str) -> JSONResponse | None:
        """402 response for a request the trial no longer allows, None to let it through."""
        limits = await self.check_trial_limits(business_id)
        if limits.allowed:
            return None
        return limit_exceeded_response(limits)

    async def has_paid_plan(self, business_id: str) -> bool:
        try:
            result = await self.trials.db.execute(
                select(Business.subscription_status).where(Business.id == business_id)
            )
            return result.scalar_one_or_none() in PAID_SUBSCRIPTION_STATUSES
        except Exception as e:
            logger.error("Failed to check paid plan for %s: %s", business_id, e)
            return False


def limit_exceeded_response(limits: TrialLimitsResult) -> JSONResponse:
    """402 Payment Required carrying the remaining counters in headers and body."""
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content={
            "error": "Trial limits exceeded",
            "reason": limits.reason,
            "remainingCalls": limits.remaining_calls,
            "remainingDays": limits.remaining_days,
            "action": "upgrade_required",
        },
        headers={
            "X-Trial-Limit-Exceeded": "true",
            "X-Remaining-Calls": str(limits.remaining_calls or 0),
            "X-Remaining-Days": str(limits.remaining_days or 0),
        },
    )


def create_limit_exceeded_response(limits: TrialLimitsResult) -> dict:
    """User-facing summary of why the trial stopped and what to do next."""
    remaining_calls = limits.remaining_calls or 0
    remaining_days = limits.remaining_days or 0
    calls_exhausted = remaining_calls <= 0
    days_expired = remaining_days <= 0

    if calls_exhausted and days_expired:
        title = "🔒 Période d'essai terminée"
        message = "Votre essai gratuit et vos appels sont épuisés. Passez à un plan payant pour continuer."
        urgency = "high"
    elif calls_exhausted:
        title = "📞 Limite d'appels atteinte"
        message = (
            "Vous avez utilisé tous vos appels gratuits. "
            f"Il vous reste {remaining_days} jours pour passer à un plan payant."
        )
        urgency = "high"
    elif days_expired:
        title = "⏰ Période d'essai expirée"
        message = "Votre période d'essai est terminée. Activez un plan pour continuer à utiliser le service."
        urgency = "high"
    else:
        title = "⚠️ Service suspendu"
        message = limits.reason or "Votre service a été temporairement suspendu."
        urgency = "medium"

    return {
        "blocked": True,
        "title": title,
        "message": message,
        "urgency": urgency,
        "remainingCalls": remaining_calls,
        "remainingDays": remaining_days,
        "actions": {
            "upgrade": {
                "label": "Passer à un plan payant",
                "url": f"{UPGRADE_URL}&urgency={urgency}",
            },
            "contact": {"label": "Contacter le support", "url": SUPPORT_URL},
        },
    }
