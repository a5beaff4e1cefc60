"""Blocking and unblocking of a business's Telnyx numbers.

Blocking repoints every ACTIVE number's voice webhooks to the blocked-call
handler and records the previous metadata as `originalConfig` so unblocking
can put it back verbatim. Each number is its own Telnyx call and its own
row update: one failure never stops the others.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update, exists
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.models.activity_log import ActivityLog
from app.models.phone_number import PhoneNumber, PhoneNumberStatus
from app.models.trial_usage import TrialUsage, TrialStatus, BLOCK_REASON_CALL_LIMIT
from app.schemas.trial import (
    BlockingReason,
    BlockingResult,
    UnblockingResult,
    PendingBlocksResult,
    PendingUnblocksResult,
    NumberStatus,
    ItemResult,
    ItemOutcome,
)
from app.services.telnyx_client import TelnyxClient

logger = logging.getLogger(__name__)

# Keys the blocking service owns inside PhoneNumber.metadata
BLOCK_KEYS = frozenset({"blocked", "blockReason", "blockMessage", "blockedAt", "unblockedAt", "originalConfig"})

BLOCKED_CALL_MESSAGE = (
    "Bonjour, le service de ce restaurant est temporairement indisponible suite à la fin "
    "de sa période d'essai. Pour plus d'informations, veuillez contacter directement le "
    "restaurant. Merci de votre compréhension."
)
FAILOVER_CALL_MESSAGE = (
    "Ce service est temporairement indisponible. Veuillez rappeler plus tard "
    "ou contacter directement l'établissement."
)
VOICE = "alice"
VOICE_LANGUAGE = "fr-FR"


def build_block_message(reason: BlockingReason) -> str:
    """Owner-facing message stored with the block, specific to why it happened."""
    if reason == BlockingReason.TRIAL_EXPIRED:
        return (
            f"Votre période d'essai de {settings.TRIAL_DAYS_LIMIT} jours est terminée. Pour réactiver "
            "votre service immédiatement, connectez-vous à votre espace client et choisissez "
            "un plan adapté à votre restaurant."
        )
    return (
        f"Vous avez utilisé vos {settings.TRIAL_CALLS_LIMIT} appels gratuits. Pour continuer à "
        "utiliser notre service IA 24h/24, passez à un plan payant depuis votre espace client."
    )


def blocking_reason_for(block_reason: str | None) -> BlockingReason:
    """Map a trial's stored block_reason back to the Telnyx blocking reason."""
    if block_reason == BLOCK_REASON_CALL_LIMIT:
        return BlockingReason.TRIAL_CALLS_EXHAUSTED
    return BlockingReason.TRIAL_EXPIRED


def _strip_block_keys(metadata: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in metadata.items() if k not in BLOCK_KEYS}


def blocked_metadata(previous: dict[str, Any], reason: BlockingReason, message: str, now: datetime) -> dict[str, Any]:
    """Metadata for a number entering BLOCKED.

    The snapshot is only taken from unblocked metadata. If the bag already
    says blocked, its existing originalConfig is kept as is.
    """
    if previous.get("blocked") and "originalConfig" in previous:
        original = previous["originalConfig"]
    else:
        original = _strip_block_keys(previous)

    return {
        **previous,
        "blocked": True,
        "blockReason": reason.value,
        "blockMessage": message,
        "blockedAt": now.isoformat(),
        "originalConfig": original,
    }


def restored_metadata(current: dict[str, Any], now: datetime) -> dict[str, Any]:
    original = current.get("originalConfig")
    base = dict(original) if original else _strip_block_keys(current)
    return {**base, "blocked": False, "unblockedAt": now.isoformat()}


def _summarize(results: list[ItemResult]) -> str | None:
    failures = [r.error or r.id for r in results if r.outcome == ItemOutcome.FAILURE]
    return "; ".join(failures) if failures else None


class TelnyxBlockingService:
    def __init__(
        self,
        db: AsyncSession,
        telnyx: TelnyxClient | None = None,
        clock: Clock | None = None,
    ):
        self.db = db
        self.telnyx = telnyx or TelnyxClient()
        self.clock = clock or system_clock

    async def _numbers(self, business_id: str, status: PhoneNumberStatus) -> list[tuple[str, str, str, dict]]:
        """(id, phone_number, telnyx_number_id, metadata) for a business's numbers in `status`."""
        result = await self.db.execute(
            select(PhoneNumber).where(
                PhoneNumber.business_id == business_id,
                PhoneNumber.status == status,
            )
        )
        return [
            (n.id, n.phone_number, n.telnyx_number_id or "", dict(n.number_metadata or {}))
            for n in result.scalars().all()
        ]

    async def block(self, business_id: str, reason: BlockingReason | str) -> BlockingResult:
        """Point every ACTIVE number of the business at the blocked-call handler."""
        reason = BlockingReason(reason)
        logger.info("Blocking Telnyx numbers for business %s (%s)", business_id, reason.value)

        try:
            numbers = await self._numbers(business_id, PhoneNumberStatus.ACTIVE)
        except Exception as e:
            await self.db.rollback()
            logger.error("Could not load numbers for business %s: %s", business_id, e)
            return BlockingResult(success=False, error=str(e))

        if not numbers:
            return BlockingResult(success=True, blocked_numbers=0)

        message = build_block_message(reason)
        results: list[ItemResult] = []

        for number_id, e164, telnyx_id, metadata in numbers:
            try:
                await self.telnyx.update_number_webhooks(
                    telnyx_id,
                    settings.blocked_call_webhook_url,
                    settings.blocked_call_failover_url,
                )
                await self.db.execute(
                    update(PhoneNumber)
                    .where(
                        PhoneNumber.id == number_id,
                        PhoneNumber.status == PhoneNumberStatus.ACTIVE,
                    )
                    .values({
                        PhoneNumber.status: PhoneNumberStatus.BLOCKED,
                        PhoneNumber.number_metadata: blocked_metadata(metadata, reason, message, self.clock.now()),
                    })
                )
                await self.db.commit()
                results.append(ItemResult(id=number_id, outcome=ItemOutcome.SUCCESS))
                logger.info("Number %s blocked", e164)
            except Exception as e:
                await self.db.rollback()
                logger.error("Failed to block number %s: %s", e164, e)
                results.append(ItemResult(id=number_id, outcome=ItemOutcome.FAILURE, error=f"{e164}: {e}"))

        blocked = sum(1 for r in results if r.outcome == ItemOutcome.SUCCESS)
        await self._log_activity(
            business_id,
            "PHONE_BLOCKED",
            f"{blocked} numéro(s) Telnyx bloqué(s)",
            f"Blocage automatique suite à: {reason.value}",
            {"blockedCount": blocked, "total": len(numbers), "reason": reason.value},
        )

        error = _summarize(results)
        return BlockingResult(success=error is None, blocked_numbers=blocked, error=error, results=results)

    async def unblock(self, business_id: str) -> UnblockingResult:
        """Restore every BLOCKED number of the business. Safe when nothing is blocked."""
        logger.info("Unblocking Telnyx numbers for business %s", business_id)

        try:
            numbers = await self._numbers(business_id, PhoneNumberStatus.BLOCKED)
        except Exception as e:
            await self.db.rollback()
            logger.error("Could not load numbers for business %s: %s", business_id, e)
            return UnblockingResult(success=False, error=str(e))

        if not numbers:
            return UnblockingResult(success=True, unblocked_numbers=0)

        results: list[ItemResult] = []

        for number_id, e164, telnyx_id, metadata in numbers:
            original = metadata.get("originalConfig") or {}
            if not original:
                logger.warning("No original config stored for %s, restoring default webhooks", e164)
            try:
                await self.telnyx.update_number_webhooks(
                    telnyx_id,
                    original.get("webhook_url") or settings.default_webhook_url,
                    original.get("webhook_failover_url") or settings.default_failover_url,
                )
                await self.db.execute(
                    update(PhoneNumber)
                    .where(
                        PhoneNumber.id == number_id,
                        PhoneNumber.status == PhoneNumberStatus.BLOCKED,
                    )
                    .values({
                        PhoneNumber.status: PhoneNumberStatus.ACTIVE,
                        PhoneNumber.number_metadata: restored_metadata(metadata, self.clock.now()),
                    })
                )
                await self.db.commit()
                results.append(ItemResult(id=number_id, outcome=ItemOutcome.SUCCESS))
                logger.info("Number %s unblocked", e164)
            except Exception as e:
                await self.db.rollback()
                logger.error("Failed to unblock number %s: %s", e164, e)
                results.append(ItemResult(id=number_id, outcome=ItemOutcome.FAILURE, error=f"{e164}: {e}"))

        unblocked = sum(1 for r in results if r.outcome == ItemOutcome.SUCCESS)
        await self._log_activity(
            business_id,
            "PHONE_UNBLOCKED",
            f"{unblocked} numéro(s) Telnyx débloqué(s)",
            "Déblocage suite à l'activation d'un plan payant",
            {"unblockedCount": unblocked, "total": len(numbers)},
        )

        error = _summarize(results)
        return UnblockingResult(success=error is None, unblocked_numbers=unblocked, error=error, results=results)

    async def process_pending_blocks(self) -> PendingBlocksResult:
        """Catch-up for blocked trials whose business still has ACTIVE numbers."""
        results = PendingBlocksResult()

        try:
            has_active_number = exists().where(
                PhoneNumber.business_id == TrialUsage.business_id,
                PhoneNumber.status == PhoneNumberStatus.ACTIVE,
            )
            rows = (await self.db.execute(
                select(TrialUsage.id, TrialUsage.business_id, TrialUsage.block_reason).where(
                    TrialUsage.is_blocked.is_(True),
                    TrialUsage.status.in_([TrialStatus.BLOCKED, TrialStatus.PENDING_DELETION]),
                    TrialUsage.business_id.is_not(None),
                    has_active_number,
                )
            )).all()

            for trial_id, business_id, block_reason in rows:
                results.processed += 1
                outcome = await self.block(business_id, blocking_reason_for(block_reason))
                results.blocked += outcome.blocked_numbers
                if not outcome.success:
                    results.errors.append(ItemResult(
                        id=trial_id,
                        outcome=ItemOutcome.FAILURE,
                        error=f"Business {business_id}: {outcome.error}",
                        phase="number_blocking",
                    ))

        except Exception as e:
            await self.db.rollback()
            logger.error("Pending block processing failed: %s", e)
            results.errors.append(ItemResult(
                id="global", outcome=ItemOutcome.FAILURE, error=str(e), phase="number_blocking",
            ))

        if results.processed:
            logger.info(
                "Pending blocks: %d trials processed, %d numbers blocked, %d errors",
                results.processed,
                results.blocked,
                len(results.errors),
            )
        return results

    async def process_pending_unblocks(self) -> PendingUnblocksResult:
        """Catch-up for paid businesses whose numbers are still BLOCKED."""
        results = PendingUnblocksResult()

        try:
            has_blocked_number = exists().where(
                PhoneNumber.business_id == TrialUsage.business_id,
                PhoneNumber.status == PhoneNumberStatus.BLOCKED,
            )
            business_ids = (await self.db.execute(
                select(TrialUsage.business_id).distinct().where(
                    TrialUsage.status == TrialStatus.PAID,
                    TrialUsage.business_id.is_not(None),
                    has_blocked_number,
                )
            )).scalars().all()

            for business_id in business_ids:
                results.processed += 1
                outcome = await self.unblock(business_id)
                results.unblocked += outcome.unblocked_numbers
                if not outcome.success:
                    results.errors.append(ItemResult(
                        id=business_id,
                        outcome=ItemOutcome.FAILURE,
                        error=f"Business {business_id}: {outcome.error}",
                        phase="number_unblocking",
                    ))

        except Exception as e:
            await self.db.rollback()
            logger.error("Pending unblock processing failed: %s", e)
            results.errors.append(ItemResult(
                id="global", outcome=ItemOutcome.FAILURE, error=str(e), phase="number_unblocking",
            ))

        if results.processed:
            logger.info(
                "Pending unblocks: %d businesses processed, %d numbers unblocked, %d errors",
                results.processed,
                results.unblocked,
                len(results.errors),
            )
        return results

    async def get_numbers_status(self, business_id: str) -> list[NumberStatus]:
        try:
            result = await self.db.execute(
                select(PhoneNumber)
                .where(PhoneNumber.business_id == business_id)
                .execution_options(populate_existing=True)
            )
            statuses = []
            for phone in result.scalars().all():
                metadata = phone.number_metadata or {}
                blocked_at = metadata.get("blockedAt")
                statuses.append(NumberStatus(
                    phone_number_id=phone.id,
                    phone_number=phone.phone_number,
                    telnyx_number_id=phone.telnyx_number_id or "",
                    is_blocked=phone.status == PhoneNumberStatus.BLOCKED,
                    block_reason=metadata.get("blockReason"),
                    blocked_at=datetime.fromisoformat(blocked_at) if blocked_at else None,
                    business_id=business_id,
                ))
            return statuses
        except Exception as e:
            logger.error("Could not read number status for business %s: %s", business_id, e)
            return []

    async def _log_activity(self, business_id: str, type_: str, title: str, description: str, details: dict) -> None:
        # Never breaks the blocking flow
        try:
            self.db.add(ActivityLog(
                business_id=business_id,
                type=type_,
                title=title,
                description=description,
                details={**details, "businessId": business_id, "autoGenerated": True},
            ))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error("Failed to write %s activity log: %s", type_, e)


def _voice_actions(text: str) -> dict:
    return {
        "actions": [
            {"type": "answer"},
            {"type": "speak", "text": text, "voice": VOICE, "language": VOICE_LANGUAGE},
            {"type": "hangup"},
        ]
    }


def handle_blocked_call(event: Any) -> dict:
    """Voice response for an inbound call on a blocked number."""
    try:
        payload = (event or {}).get("data", {}).get("payload", {})
        logger.info(
            "Inbound call on blocked number: to=%s from=%s",
            payload.get("to"),
            payload.get("from"),
        )
        return _voice_actions(BLOCKED_CALL_MESSAGE)
    except Exception as e:
        logger.error("Blocked call handler failed: %s", e)
        return {"actions": [{"type": "hangup"}]}


def handle_blocked_call_failover(event: Any) -> dict:
    try:
        payload = (event or {}).get("data", {}).get("payload", {})
        logger.info("Failover call on blocked number: to=%s", payload.get("to"))
        return _voice_actions(FAILOVER_CALL_MESSAGE)
    except Exception as e:
        logger.error("Blocked call failover failed: %s", e)
        return {"actions": [{"type": "hangup"}]}
