"""Stripe billing events that end or cancel a trial."""

import logging
import stripe
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.config import settings
from app.models.business import Business
from app.services.trial_usage import TrialUsageService

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_API_KEY

PAID_SUBSCRIPTION_STATUSES = ("active", "trialing")


async def _business_for_customer(customer_id: str, db: AsyncSession) -> Optional[Business]:
    result = await db.execute(
        select(Business).where(Business.stripe_customer_id == customer_id)
    )
    return result.scalar_one_or_none()


async def handle_subscription_status(
    subscription_id: str,
    customer_id: str,
    status: str,
    trials: TrialUsageService,
) -> bool:
    """Handle customer.subscription.created / updated webhooks from Stripe.

    Returns True when the subscription activated the business's paid plan.
    """
    business = await _business_for_customer(customer_id, trials.db)

    if not business:
        logger.warning("Business not found for Stripe customer %s", customer_id)
        return False

    business_id = business.id
    business.subscription_status = status
    await trials.db.commit()

    logger.info(
        "Subscription %s for business %s — status: %s",
        subscription_id, business_id, status
    )

    if status not in PAID_SUBSCRIPTION_STATUSES:
        return False

    await trials.activate_paid_plan(business_id)
    return True


async def handle_invoice_paid(customer_id: str, trials: TrialUsageService) -> bool:
    """Handle invoice.payment_succeeded: a successful payment always ends the trial."""
    business = await _business_for_customer(customer_id, trials.db)

    if not business:
        logger.warning("Business not found for Stripe customer %s", customer_id)
        return False

    await trials.activate_paid_plan(business.id)
    return True


async def handle_subscription_deleted(
    subscription_id: str,
    customer_id: str,
    db: AsyncSession,
) -> None:
    """Handle customer.subscription.deleted webhook from Stripe."""
    business = await _business_for_customer(customer_id, db)

    if not business:
        logger.warning("Business not found for Stripe customer %s", customer_id)
        return

    business_id = business.id
    business.subscription_status = "canceled"
    await db.commit()

    logger.info(
        "Subscription %s canceled for business %s",
        subscription_id, business_id
    )
