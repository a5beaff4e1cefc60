"""Stripe webhook: paid subscriptions lift the trial restrictions."""

import logging
import stripe
from fastapi import APIRouter, Request, HTTPException, Depends

from app.core.config import settings
from app.core.deps import get_trial_service
from app.services.billing import (
    handle_subscription_status,
    handle_invoice_paid,
    handle_subscription_deleted,
)
from app.services.trial_usage import TrialUsageService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    trials: TrialUsageService = Depends(get_trial_service),
):
    """Handle Stripe webhook events.

    Subscription created/updated and paid invoices activate the paid plan;
    a deleted subscription marks the business canceled.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("Stripe webhook secret not configured — skipping verification")
        try:
            event_dict = await request.json()
        except ValueError:
            logger.error("Invalid webhook payload")
            raise HTTPException(status_code=400, detail="Invalid payload")
        event = stripe.Event.construct_from(event_dict, stripe.api_key)
    else:
        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError:
            logger.error("Invalid webhook payload")
            raise HTTPException(status_code=400, detail="Invalid payload")
        except stripe.SignatureVerificationError:
            logger.error("Invalid webhook signature")
            raise HTTPException(status_code=400, detail="Invalid signature")

    event_type = event["type"]
    data = event["data"]["object"]

    logger.info("Stripe webhook received: %s", event_type)

    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        await handle_subscription_status(
            subscription_id=data["id"],
            customer_id=data["customer"],
            status=data["status"],
            trials=trials,
        )

    elif event_type == "invoice.payment_succeeded":
        await handle_invoice_paid(customer_id=data["customer"], trials=trials)

    elif event_type == "customer.subscription.deleted":
        await handle_subscription_deleted(
            subscription_id=data["id"],
            customer_id=data["customer"],
            db=trials.db,
        )

    else:
        logger.info("Unhandled Stripe event type: %s", event_type)

    return {"status": "ok"}
