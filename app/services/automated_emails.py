"""Scheduled trial sweep.

Runs the phases in order: warnings, blockings, deletion warnings and
deletions, then the number-blocking and number-unblocking catch-ups.
Each subject is handled on its own and every failure is recorded in the
stats, so one tenant never stops the sweep for the others. Safe to
re-run: every effect is gated by a flag.
"""

import logging
from datetime import timedelta

from sqlalchemy import select, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.models.phone_number import PhoneNumber, PhoneNumberStatus
from app.models.trial_usage import TrialUsage, TrialStatus
from app.schemas.trial import (
    AutomatedEmailStats,
    ProcessingSchedule,
    ProcessingReport,
    ProcessingReportDetails,
    UpcomingAction,
    ItemResult,
    ItemOutcome,
)
from app.services.telnyx_blocking import TelnyxBlockingService
from app.services.trial_usage import TrialUsageService

logger = logging.getLogger(__name__)

HIGH_PRIORITY_DELAY = timedelta(minutes=5)
MEDIUM_PRIORITY_DELAY = timedelta(minutes=30)
LOW_PRIORITY_DELAY = timedelta(hours=4)
FALLBACK_DELAY = timedelta(hours=1)


class AutomatedEmailService:
    def __init__(
        self,
        db: AsyncSession,
        trials: TrialUsageService | None = None,
        blocking: TelnyxBlockingService | None = None,
        clock: Clock | None = None,
    ):
        self.db = db
        self.clock = clock or system_clock
        self.trials = trials or TrialUsageService(db, blocking=blocking, clock=self.clock)
        self.blocking = blocking or self.trials.blocking

    async def process_automated_emails(self) -> AutomatedEmailStats:
        """Run one full sweep and return what it actually did."""
        stats = AutomatedEmailStats()
        logger.info("Automated trial sweep started")

        try:
            await self._process_warnings(stats)
            await self._process_blockings(stats)
            await self._process_deletions(stats)
            await self._process_number_blockings(stats)
            await self._process_number_unblockings(stats)
        except Exception as e:
            await self.db.rollback()
            logger.error("Automated trial sweep failed: %s", e)
            stats.errors.append(ItemResult(id="global", outcome=ItemOutcome.FAILURE, error=str(e)))

        logger.info(
            "Automated trial sweep done: %d processed, %d warnings, %d blockings, "
            "%d deletion warnings, %d deletions, %d numbers blocked, %d numbers unblocked, %d errors",
            stats.processed,
            stats.warnings_sent,
            stats.blockings_sent,
            stats.deletion_warnings_sent,
            stats.deletions_sent,
            stats.numbers_blocked,
            stats.numbers_unblocked,
            len(stats.errors),
        )
        return stats

    async def _evaluate_each(self, stats: AutomatedEmailStats, trial_ids, phase: str) -> None:
        for trial_id in trial_ids:
            stats.processed += 1
            try:
                trial = await self.db.get(TrialUsage, trial_id, populate_existing=True)
                outcome = await self.trials.evaluate_thresholds(trial)
            except Exception as e:
                await self.db.rollback()
                logger.error("Trial %s failed in %s phase: %s", trial_id, phase, e)
                stats.errors.append(ItemResult(id=trial_id, outcome=ItemOutcome.FAILURE, error=str(e), phase=phase))
                continue

            if outcome.warning_sent:
                stats.warnings_sent += 1
            if outcome.blocked:
                stats.blockings_sent += 1
            stats.numbers_blocked += outcome.numbers_blocked

            if outcome.email_error:
                stats.errors.append(ItemResult(
                    id=trial_id, outcome=ItemOutcome.FAILURE, error=outcome.email_error, phase=phase,
                ))
            if outcome.block_error:
                stats.errors.append(ItemResult(
                    id=trial_id, outcome=ItemOutcome.FAILURE, error=outcome.block_error, phase="number_blocking",
                ))

    async def _process_warnings(self, stats: AutomatedEmailStats) -> None:
        try:
            now = self.clock.now()
            warning_horizon = now + timedelta(days=settings.TRIAL_WARNING_DAYS_REMAINING)
            trial_ids = (await self.db.execute(
                select(TrialUsage.id).where(
                    TrialUsage.status == TrialStatus.ACTIVE,
                    TrialUsage.warning_email_sent.is_(False),
                    or_(
                        TrialUsage.calls_used >= settings.TRIAL_WARNING_CALLS_USED,
                        TrialUsage.days_remaining <= settings.TRIAL_WARNING_DAYS_REMAINING,
                        TrialUsage.trial_end_date <= warning_horizon,
                        and_(TrialUsage.calls_remaining <= 2, TrialUsage.calls_used >= 5),
                    ),
                )
            )).scalars().all()
            await self._evaluate_each(stats, trial_ids, "warnings")
        except Exception as e:
            await self.db.rollback()
            logger.error("Warning phase failed: %s", e)
            stats.errors.append(ItemResult(id="warnings", outcome=ItemOutcome.FAILURE, error=str(e), phase="warnings"))

    async def _process_blockings(self, stats: AutomatedEmailStats) -> None:
        try:
            now = self.clock.now()
            trial_ids = (await self.db.execute(
                select(TrialUsage.id).where(
                    TrialUsage.status.in_([TrialStatus.ACTIVE, TrialStatus.WARNED]),
                    TrialUsage.is_blocked.is_(False),
                    or_(
                        TrialUsage.calls_remaining <= 0,
                        TrialUsage.days_remaining <= 0,
                        TrialUsage.trial_end_date <= now,
                    ),
                )
            )).scalars().all()
            await self._evaluate_each(stats, trial_ids, "blockings")
        except Exception as e:
            await self.db.rollback()
            logger.error("Blocking phase failed: %s", e)
            stats.errors.append(ItemResult(id="blockings", outcome=ItemOutcome.FAILURE, error=str(e), phase="blockings"))

    async def _process_deletions(self, stats: AutomatedEmailStats) -> None:
        try:
            result = await self.trials.process_pending_deletions()
            stats.deletion_warnings_sent += result.pending_deletion
            stats.deletions_sent += result.deleted
            stats.processed += result.pending_deletion + result.deleted
            stats.errors.extend(result.errors)
        except Exception as e:
            await self.db.rollback()
            logger.error("Deletion phase failed: %s", e)
            stats.errors.append(ItemResult(id="deletions", outcome=ItemOutcome.FAILURE, error=str(e), phase="deletion"))

    async def _process_number_blockings(self, stats: AutomatedEmailStats) -> None:
        try:
            result = await self.blocking.process_pending_blocks()
            stats.numbers_blocked += result.blocked
            stats.errors.extend(result.errors)
        except Exception as e:
            await self.db.rollback()
            logger.error("Number blocking phase failed: %s", e)
            stats.errors.append(ItemResult(
                id="number_blocking", outcome=ItemOutcome.FAILURE, error=str(e), phase="number_blocking",
            ))

    async def _process_number_unblockings(self, stats: AutomatedEmailStats) -> None:
        try:
            result = await self.blocking.process_pending_unblocks()
            stats.numbers_unblocked += result.unblocked
            stats.errors.extend(result.errors)
        except Exception as e:
            await self.db.rollback()
            logger.error("Number unblocking phase failed: %s", e)
            stats.errors.append(ItemResult(
                id="number_unblocking", outcome=ItemOutcome.FAILURE, error=str(e), phase="number_unblocking",
            ))

    async def _count(self, *criteria) -> int:
        result = await self.db.execute(select(func.count(TrialUsage.id)).where(*criteria))
        return result.scalar_one()

    async def get_processing_schedule(self) -> ProcessingSchedule:
        """When the next sweep should run, based on how urgent the pending work is."""
        now = self.clock.now()
        try:
            expired = await self._count(
                TrialUsage.is_blocked.is_(False),
                TrialUsage.status.not_in([TrialStatus.PAID, TrialStatus.DELETED]),
                or_(
                    TrialUsage.calls_remaining <= 0,
                    TrialUsage.days_remaining <= 0,
                    TrialUsage.trial_end_date <= now,
                ),
            )
            critical = await self._count(
                TrialUsage.status == TrialStatus.ACTIVE,
                or_(
                    TrialUsage.calls_remaining <= 2,
                    TrialUsage.days_remaining <= 1,
                    TrialUsage.trial_end_date <= now + timedelta(days=1),
                ),
            )
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to compute sweep schedule: %s", e)
            return ProcessingSchedule(
                next_run=now + FALLBACK_DELAY,
                delay_seconds=int(FALLBACK_DELAY.total_seconds()),
                priority="medium",
                reason="Schedule computation failed, running a safety check",
            )

        if expired:
            priority, delay, reason = "high", HIGH_PRIORITY_DELAY, f"{expired} expired trials need blocking"
        elif critical:
            priority, delay, reason = "medium", MEDIUM_PRIORITY_DELAY, f"{critical} critical trials to watch"
        else:
            priority, delay, reason = "low", LOW_PRIORITY_DELAY, "Routine check"

        return ProcessingSchedule(
            next_run=now + delay,
            delay_seconds=int(delay.total_seconds()),
            priority=priority,
            reason=reason,
        )

    async def generate_processing_report(self) -> ProcessingReport:
        """Run a sweep, then summarize the trial population and what comes next."""
        summary = await self.process_automated_emails()
        stats = await self.trials.get_trial_stats()

        now = self.clock.now()
        tomorrow = now + timedelta(days=1)

        upcoming_warnings = await self._count(
            TrialUsage.status == TrialStatus.ACTIVE,
            TrialUsage.warning_email_sent.is_(False),
            or_(
                TrialUsage.calls_remaining <= 3,
                TrialUsage.trial_end_date <= now + timedelta(days=settings.TRIAL_WARNING_DAYS_REMAINING + 1),
            ),
        )
        upcoming_blocks = await self._count(
            TrialUsage.status.in_([TrialStatus.ACTIVE, TrialStatus.WARNED]),
            TrialUsage.is_blocked.is_(False),
            or_(
                TrialUsage.calls_remaining <= 1,
                TrialUsage.trial_end_date <= tomorrow,
            ),
        )
        upcoming_deletions = await self._count(
            TrialUsage.status.in_([TrialStatus.BLOCKED, TrialStatus.PENDING_DELETION]),
            TrialUsage.scheduled_deletion_date <= tomorrow,
        )
        blocked_numbers = (await self.db.execute(
            select(func.count(PhoneNumber.id)).where(PhoneNumber.status == PhoneNumberStatus.BLOCKED)
        )).scalar_one()

        return ProcessingReport(
            summary=summary,
            details=ProcessingReportDetails(
                active_trials=stats.counts.active,
                warned_trials=stats.counts.warned,
                blocked_trials=stats.counts.blocked,
                pending_deletion=stats.counts.pending_deletion,
                blocked_numbers=blocked_numbers,
            ),
            next_actions=[
                UpcomingAction(action="warning emails to send", count=upcoming_warnings, deadline=now + timedelta(hours=2)),
                UpcomingAction(action="trials to block", count=upcoming_blocks, deadline=now + timedelta(hours=1)),
                UpcomingAction(action="scheduled deletions", count=upcoming_deletions, deadline=tomorrow),
            ],
        )
