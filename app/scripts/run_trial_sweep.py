"""Run the automated trial sweep.

Usage:
    python -m app.scripts.run_trial_sweep
    python -m app.scripts.run_trial_sweep --loop --max-runs=10

With --loop, the delay between sweeps comes from the processing schedule
(5 minutes when trials are waiting to be blocked, up to 4 hours otherwise).
"""

import argparse
import asyncio
import logging
from typing import Optional

from app.core.database import async_session
from app.services.automated_emails import AutomatedEmailService

logger = logging.getLogger(__name__)


async def run_once() -> int:
    """Run one sweep. Returns the delay in seconds before the next one."""
    async with async_session() as db:
        sweep = AutomatedEmailService(db)
        stats = await sweep.process_automated_emails()
        for error in stats.errors:
            logger.warning("Sweep error [%s] %s: %s", error.phase, error.id, error.error)

        schedule = await sweep.get_processing_schedule()
        logger.info(
            "Next sweep in %ds (%s priority): %s",
            schedule.delay_seconds, schedule.priority, schedule.reason,
        )
        return schedule.delay_seconds


async def run(loop: bool, max_runs: Optional[int]) -> None:
    runs = 0
    while True:
        delay = await run_once()
        runs += 1
        if not loop or (max_runs is not None and runs >= max_runs):
            return
        await asyncio.sleep(delay)


def main():
    parser = argparse.ArgumentParser(
        description="Send trial warning/blocking/deletion emails and block expired numbers"
    )
    parser.add_argument("--loop", action="store_true", help="Keep running on the adaptive schedule")
    parser.add_argument("--max-runs", type=int, default=None, help="Stop after N sweeps (with --loop)")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s — %(levelname)s — %(name)s — %(message)s",
    )
    asyncio.run(run(args.loop, args.max_runs))


if __name__ == "__main__":
    main()
