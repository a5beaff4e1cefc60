"""Time source for the trial engine.

Every service takes a Clock so tests can move time forward instead of
patching datetime. All timestamps are naive UTC, like the rest of the models.
"""

import math
from datetime import datetime, timedelta

ONE_DAY = timedelta(days=1)


class Clock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.utcnow()


def days_between_ceil(end: datetime | None, now: datetime) -> int:
    """Whole days left until `end`, rounded up, never negative."""
    if end is None:
        return 0
    return max(0, math.ceil((end - now) / ONE_DAY))


system_clock = Clock()
