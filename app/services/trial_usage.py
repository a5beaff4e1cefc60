"""Trial state engine.

Owns the TrialUsage lifecycle: lazy creation, call and day accounting,
threshold emails, blocking, deletion scheduling and the upgrade to a paid
plan. Every status change is a conditional UPDATE guarded by the matching
*_email_sent flag and by ALLOWED_TRANSITIONS, so replaying any of these
operations never fires an effect twice.
"""

import logging
import math
from datetime import timedelta

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, ONE_DAY, days_between_ceil, system_clock
from app.core.config import settings
from app.models.activity_log import ActivityLog
from app.models.business import Business
from app.models.trial_usage import (
    TrialUsage,
    TrialStatus,
    BLOCK_REASON_CALL_LIMIT,
    BLOCK_REASON_EXPIRED,
    can_transition,
    sources_for,
)
from app.schemas.email import (
    WelcomeEmailData,
    TrialWarningEmailData,
    TrialBlockedEmailData,
    TrialDeletionWarningEmailData,
    AccountDeletedEmailData,
)
from app.schemas.trial import (
    TrialStatusCheck,
    ThresholdOutcome,
    PendingDeletionsResult,
    PaidPlanResult,
    TrialStats,
    TrialStatusCounts,
    TrialUsageOut,
    BlockingReason,
    ItemResult,
    ItemOutcome,
)
from app.services.email_service import EmailService, email_service
from app.services.telnyx_blocking import TelnyxBlockingService

logger = logging.getLogger(__name__)

VERIFICATION_ERROR = "verification error"
NO_BUSINESS_ERROR = "no business owner to notify"


class TrialUsageService:
    def __init__(
        self,
        db: AsyncSession,
        emails: EmailService | None = None,
        blocking: TelnyxBlockingService | None = None,
        clock: Clock | None = None,
    ):
        self.db = db
        self.emails = emails or email_service
        self.clock = clock or system_clock
        self.blocking = blocking or TelnyxBlockingService(db, clock=self.clock)

    # -- lookups -----------------------------------------------------------

    async def _find(self, identifier: str) -> TrialUsage | None:
        result = await self.db.execute(
            select(TrialUsage).where(TrialUsage.identifier == identifier)
        )
        return result.scalar_one_or_none()

    async def _reload(self, trial_id: str) -> TrialUsage | None:
        return await self.db.get(TrialUsage, trial_id, populate_existing=True)

    async def _business_of(self, trial: TrialUsage) -> Business | None:
        if not trial.business_id:
            return None
        return await self.db.get(Business, trial.business_id)

    def _days_remaining(self, trial: TrialUsage) -> int:
        if trial.trial_end_date is None:
            return trial.days_remaining
        return days_between_ceil(trial.trial_end_date, self.clock.now())

    # -- creation ----------------------------------------------------------

    async def get_or_create(
        self,
        identifier: str,
        identifier_type: str = "business_id",
        business_id: str | None = None,
    ) -> TrialUsage:
        """Return the trial for `identifier`, creating it on first touch.

        Args:
            identifier: Stable trial identity, usually the business id
            identifier_type: What the identifier is ("business_id", "phone", ...)
            business_id: Owning business; inferred from the identifier when omitted

        Returns:
            The persisted TrialUsage row
        """
        trial, _ = await self._get_or_create(identifier, identifier_type, business_id)
        return trial

    async def _get_or_create(
        self,
        identifier: str,
        identifier_type: str,
        business_id: str | None,
    ) -> tuple[TrialUsage, bool]:
        trial = await self._find(identifier)
        if trial:
            return trial, False

        if business_id is None and identifier_type == "business_id":
            if await self.db.get(Business, identifier) is not None:
                business_id = identifier

        now = self.clock.now()
        trial = TrialUsage(
            identifier=identifier,
            identifier_type=identifier_type,
            business_id=business_id,
            calls_used=0,
            calls_remaining=settings.TRIAL_CALLS_LIMIT,
            calls_limit=settings.TRIAL_CALLS_LIMIT,
            days_used=0,
            days_remaining=settings.TRIAL_DAYS_LIMIT,
            days_limit=settings.TRIAL_DAYS_LIMIT,
            trial_end_date=now + timedelta(days=settings.TRIAL_DAYS_LIMIT),
            status=TrialStatus.ACTIVE,
            is_blocked=False,
            last_activity_date=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(trial)

        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created the same identifier first
            await self.db.rollback()
            existing = await self._find(identifier)
            if existing is None:
                raise
            logger.info("Trial for %s created concurrently, using existing row", identifier)
            return existing, False

        logger.info("Trial created for %s (%s)", identifier, identifier_type)
        return trial, True

    async def start_trial(self, business_id: str) -> TrialUsage | None:
        """Create the business's trial and send the welcome email once."""
        try:
            business = await self.db.get(Business, business_id)
            if business is None:
                logger.warning("Cannot start trial: business %s not found", business_id)
                return None

            trial, created = await self._get_or_create(business_id, "business_id", business_id)
            if created:
                await self.emails.send_welcome_email(WelcomeEmailData(
                    first_name=business.owner_first_name,
                    last_name=business.owner_last_name,
                    email=business.owner_email or "",
                    company=business.name,
                    calls_limit=trial.calls_limit,
                    days_limit=trial.days_limit,
                    trial_end_date=trial.trial_end_date,
                ))
            return trial
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to start trial for %s: %s", business_id, e)
            return None

    # -- admission and usage -------------------------------------------------

    async def check_status(self, identifier: str) -> TrialStatusCheck:
        """Decide whether `identifier` may place a call right now.

        An explicit block wins over expiry, and expiry over call exhaustion.
        Fails closed on any error.
        """
        try:
            trial = await self.get_or_create(identifier)
            days_remaining = self._days_remaining(trial)

            if days_remaining != trial.days_remaining:
                await self.db.execute(
                    update(TrialUsage)
                    .where(TrialUsage.id == trial.id)
                    .values(
                        days_remaining=days_remaining,
                        days_used=max(0, trial.days_limit - days_remaining),
                    )
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                trial = await self._reload(trial.id)

            block_reason = None
            if trial.status == TrialStatus.PAID:
                pass
            elif trial.is_blocked:
                block_reason = trial.block_reason or "blocked"
            elif days_remaining <= 0:
                block_reason = BLOCK_REASON_EXPIRED
            elif trial.calls_remaining <= 0:
                block_reason = BLOCK_REASON_CALL_LIMIT

            return TrialStatusCheck(
                can_make_call=block_reason is None,
                calls_remaining=trial.calls_remaining,
                days_remaining=days_remaining,
                status=trial.status,
                block_reason=block_reason,
            )
        except Exception as e:
            await self.db.rollback()
            logger.error("Trial status check failed for %s: %s", identifier, e)
            return TrialStatusCheck(
                can_make_call=False,
                calls_remaining=0,
                days_remaining=0,
                status=TrialStatus.BLOCKED,
                block_reason=VERIFICATION_ERROR,
            )

    async def record_usage(self, identifier: str) -> bool:
        """Consume one trial call, then evaluate thresholds.

        Returns False without touching the counters when the call is not allowed.
        """
        try:
            status = await self.check_status(identifier)
            if not status.can_make_call:
                logger.info("Call refused for %s: %s", identifier, status.block_reason)
                return False

            trial = await self._find(identifier)
            now = self.clock.now()

            if trial.status == TrialStatus.PAID:
                await self.db.execute(
                    update(TrialUsage)
                    .where(TrialUsage.id == trial.id)
                    .values(last_call_date=now, last_activity_date=now)
                    .execution_options(synchronize_session=False)
                )
                await self.db.commit()
                return True

            result = await self.db.execute(
                update(TrialUsage)
                .where(TrialUsage.id == trial.id, TrialUsage.calls_remaining > 0)
                .values(
                    calls_used=TrialUsage.calls_used + 1,
                    calls_remaining=TrialUsage.calls_remaining - 1,
                    last_call_date=now,
                    last_activity_date=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()

            if result.rowcount == 0:
                logger.info("Call refused for %s: %s", identifier, BLOCK_REASON_CALL_LIMIT)
                return False

            trial = await self._reload(trial.id)
            logger.info("Call recorded for %s: %d/%d", identifier, trial.calls_used, trial.calls_limit)

            await self.evaluate_thresholds(trial)
            return True

        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to record call for %s: %s", identifier, e)
            return False

    # -- thresholds ----------------------------------------------------------

    async def _transition(self, trial_id: str, target: TrialStatus, flag, **values) -> bool:
        """Move to `target` only if `flag` is still unset and the status allows it."""
        result = await self.db.execute(
            update(TrialUsage)
            .where(
                TrialUsage.id == trial_id,
                flag.is_(False),
                TrialUsage.status.in_(sources_for(target)),
            )
            .values(status=target, updated_at=self.clock.now(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount > 0

    def _warning_due(self, trial: TrialUsage, days_remaining: int) -> bool:
        return (
            not trial.warning_email_sent
            and can_transition(trial.status, TrialStatus.WARNED)
            and (
                trial.calls_used >= settings.TRIAL_WARNING_CALLS_USED
                or days_remaining <= settings.TRIAL_WARNING_DAYS_REMAINING
            )
        )

    def _blocking_due(self, trial: TrialUsage, days_remaining: int) -> bool:
        return (
            not trial.blocked_email_sent
            and can_transition(trial.status, TrialStatus.BLOCKED)
            and (trial.calls_remaining <= 0 or days_remaining <= 0)
        )

    async def evaluate_thresholds(self, trial: TrialUsage) -> ThresholdOutcome:
        """Send the warning and/or blocking email for a trial and apply the transition.

        Both checks run in the same pass, warning first. An email failure leaves
        the flag unset so the next sweep retries; a blocking adapter failure is
        only logged and is retried by the pending-blocks catch-up.
        """
        outcome = ThresholdOutcome()
        trial_id = trial.id
        try:
            business = await self._business_of(trial)
            if business is None:
                logger.warning("Trial %s has no business, threshold emails skipped", trial.identifier)
                outcome.email_error = NO_BUSINESS_ERROR
                return outcome

            days_remaining = self._days_remaining(trial)

            if self._warning_due(trial, days_remaining):
                sent = await self.emails.send_trial_warning_email(TrialWarningEmailData(
                    first_name=business.owner_first_name,
                    last_name=business.owner_last_name,
                    email=business.owner_email or "",
                    restaurant_name=business.name,
                    calls_used=trial.calls_used,
                    calls_remaining=trial.calls_remaining,
                    days_remaining=days_remaining,
                ))
                if not sent:
                    outcome.email_error = "trial warning email not sent"
                elif await self._transition(
                    trial.id,
                    TrialStatus.WARNED,
                    TrialUsage.warning_email_sent,
                    warning_email_sent=True,
                    warning_email_date=self.clock.now(),
                ):
                    outcome.warning_sent = True
                    logger.info("Trial warning sent for %s", trial.identifier)
                trial = await self._reload(trial.id)

            if self._blocking_due(trial, days_remaining):
                sent = await self.emails.send_trial_blocked_email(TrialBlockedEmailData(
                    first_name=business.owner_first_name,
                    last_name=business.owner_last_name,
                    email=business.owner_email or "",
                    restaurant_name=business.name,
                    total_calls_used=trial.calls_used,
                ))
                if not sent:
                    outcome.email_error = "trial blocked email not sent"
                    return outcome

                # Same predicate picks the stored reason and the Telnyx reason
                calls_exhausted = trial.calls_remaining <= 0
                block_reason = BLOCK_REASON_CALL_LIMIT if calls_exhausted else BLOCK_REASON_EXPIRED
                business_id = business.id
                now = self.clock.now()
                blocked = await self._transition(
                    trial_id,
                    TrialStatus.BLOCKED,
                    TrialUsage.blocked_email_sent,
                    blocked_email_sent=True,
                    blocked_email_date=now,
                    is_blocked=True,
                    block_reason=block_reason,
                    scheduled_deletion_date=now + timedelta(days=settings.TRIAL_DELETION_DELAY_DAYS),
                )
                if not blocked:
                    return outcome

                outcome.blocked = True
                logger.info("Trial %s blocked (%s)", trial.identifier, block_reason)

                reason = BlockingReason.TRIAL_CALLS_EXHAUSTED if calls_exhausted else BlockingReason.TRIAL_EXPIRED
                blocking = await self.blocking.block(business_id, reason)
                outcome.numbers_blocked = blocking.blocked_numbers
                if not blocking.success:
                    outcome.block_error = blocking.error
                    logger.error("Automatic number blocking failed for %s: %s", business_id, blocking.error)

        except Exception as e:
            await self.db.rollback()
            logger.error("Threshold evaluation failed for trial %s: %s", trial_id, e)
        return outcome

    # -- deletion ------------------------------------------------------------

    async def process_pending_deletions(self) -> PendingDeletionsResult:
        """Send deletion warnings to trials blocked long enough, then finalize due deletions."""
        results = PendingDeletionsResult()
        now = self.clock.now()

        warning_cutoff = now - timedelta(days=settings.TRIAL_DELETION_WARNING_DELAY_DAYS)
        try:
            to_warn = (await self.db.execute(
                select(TrialUsage.id).where(
                    TrialUsage.status == TrialStatus.BLOCKED,
                    TrialUsage.blocked_email_date <= warning_cutoff,
                    TrialUsage.deletion_warning_email_sent.is_(False),
                )
            )).scalars().all()
        except Exception as e:
            await self.db.rollback()
            logger.error("Could not load trials due for a deletion warning: %s", e)
            results.errors.append(ItemResult(
                id="global", outcome=ItemOutcome.FAILURE, error=str(e), phase="deletion_warning",
            ))
            to_warn = []

        for trial_id in to_warn:
            try:
                trial = await self._reload(trial_id)
                business = await self._business_of(trial)
                if business is None:
                    logger.warning("Trial %s has no business, deletion warning skipped", trial.identifier)
                    results.errors.append(ItemResult(
                        id=trial_id, outcome=ItemOutcome.SKIPPED, error=NO_BUSINESS_ERROR, phase="deletion_warning",
                    ))
                    continue

                days_until_deletion = 1
                if trial.scheduled_deletion_date:
                    days_until_deletion = max(1, math.ceil((trial.scheduled_deletion_date - now) / ONE_DAY))

                sent = await self.emails.send_trial_deletion_warning_email(TrialDeletionWarningEmailData(
                    first_name=business.owner_first_name,
                    last_name=business.owner_last_name,
                    email=business.owner_email or "",
                    restaurant_name=business.name,
                    days_until_deletion=days_until_deletion,
                ))
                if not sent:
                    results.errors.append(ItemResult(
                        id=trial_id, outcome=ItemOutcome.FAILURE,
                        error="deletion warning email not sent", phase="deletion_warning",
                    ))
                    continue

                if await self._transition(
                    trial_id,
                    TrialStatus.PENDING_DELETION,
                    TrialUsage.deletion_warning_email_sent,
                    deletion_warning_email_sent=True,
                    deletion_warning_email_date=now,
                ):
                    results.pending_deletion += 1
                    logger.info("Deletion warning sent for %s (%d days left)", trial.identifier, days_until_deletion)

            except Exception as e:
                await self.db.rollback()
                logger.error("Deletion warning failed for trial %s: %s", trial_id, e)
                results.errors.append(ItemResult(
                    id=trial_id, outcome=ItemOutcome.FAILURE, error=str(e), phase="deletion_warning",
                ))

        try:
            to_delete = (await self.db.execute(
                select(TrialUsage.id).where(
                    TrialUsage.scheduled_deletion_date <= now,
                    TrialUsage.status.in_(sources_for(TrialStatus.DELETED)),
                    TrialUsage.deletion_email_sent.is_(False),
                )
            )).scalars().all()
        except Exception as e:
            await self.db.rollback()
            logger.error("Could not load trials due for deletion: %s", e)
            results.errors.append(ItemResult(
                id="global", outcome=ItemOutcome.FAILURE, error=str(e), phase="deletion",
            ))
            return results

        for trial_id in to_delete:
            try:
                trial = await self._reload(trial_id)
                business = await self._business_of(trial)
                if business is None:
                    logger.warning("Trial %s has no business, deletion skipped", trial.identifier)
                    results.errors.append(ItemResult(
                        id=trial_id, outcome=ItemOutcome.SKIPPED, error=NO_BUSINESS_ERROR, phase="deletion",
                    ))
                    continue

                sent = await self.emails.send_account_deleted_email(AccountDeletedEmailData(
                    first_name=business.owner_first_name,
                    last_name=business.owner_last_name,
                    email=business.owner_email or "",
                    restaurant_name=business.name,
                    deletion_date=now.strftime("%d/%m/%Y"),
                ))
                if not sent:
                    results.errors.append(ItemResult(
                        id=trial_id, outcome=ItemOutcome.FAILURE,
                        error="account deleted email not sent", phase="deletion",
                    ))
                    continue

                if await self._transition(
                    trial_id,
                    TrialStatus.DELETED,
                    TrialUsage.deletion_email_sent,
                    deletion_email_sent=True,
                    deletion_email_date=now,
                ):
                    results.deleted += 1
                    self.db.add(ActivityLog(
                        business_id=business.id,
                        type="TRIAL_AUTO_DELETION",
                        title="Compte d'essai supprimé",
                        description=f"Suppression automatique du compte {business.name} après expiration de l'essai",
                        details={"trialId": trial_id, "identifier": trial.identifier, "autoGenerated": True},
                    ))
                    await self.db.commit()
                    logger.info("Trial %s marked deleted", trial.identifier)
                    # TODO: trigger the business data purge job once it exists

            except Exception as e:
                await self.db.rollback()
                logger.error("Deletion failed for trial %s: %s", trial_id, e)
                results.errors.append(ItemResult(
                    id=trial_id, outcome=ItemOutcome.FAILURE, error=str(e), phase="deletion",
                ))

        return results

    # -- upgrade -------------------------------------------------------------

    async def activate_paid_plan(self, business_id: str) -> PaidPlanResult:
        """Move the business's trials to paid and restore its phone numbers.

        Unblock always runs, even when no trial was blocked.
        """
        upgraded = 0
        try:
            result = await self.db.execute(
                update(TrialUsage)
                .where(
                    TrialUsage.business_id == business_id,
                    TrialUsage.status.in_(sources_for(TrialStatus.PAID)),
                )
                .values(
                    status=TrialStatus.PAID,
                    is_blocked=False,
                    block_reason=None,
                    scheduled_deletion_date=None,
                    updated_at=self.clock.now(),
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            upgraded = result.rowcount
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to activate paid plan for %s: %s", business_id, e)

        unblock = await self.blocking.unblock(business_id)
        if unblock.success:
            logger.info("Paid plan active for %s: %d trials, %d numbers unblocked",
                        business_id, upgraded, unblock.unblocked_numbers)
        else:
            logger.error("Unblocking after upgrade failed for %s: %s", business_id, unblock.error)

        return PaidPlanResult(trials_upgraded=upgraded, unblock=unblock)

    # -- stats ---------------------------------------------------------------

    async def get_trial_stats(self) -> TrialStats:
        try:
            rows = (await self.db.execute(
                select(TrialUsage.status, func.count(TrialUsage.id)).group_by(TrialUsage.status)
            )).all()
            counts = TrialStatusCounts(**{TrialStatus(status).value: count for status, count in rows})

            since = self.clock.now() - timedelta(days=7)
            recent = (await self.db.execute(
                select(TrialUsage)
                .where(TrialUsage.created_at >= since)
                .order_by(TrialUsage.created_at.desc())
                .limit(10)
            )).scalars().all()

            return TrialStats(
                counts=counts,
                recent=[TrialUsageOut.model_validate(t) for t in recent],
            )
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to compute trial stats: %s", e)
            return TrialStats(counts=TrialStatusCounts(), recent=[])
