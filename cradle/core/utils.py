import datetime
import logging
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24


class Clock:
    """Wall-clock source. All timestamps are naive UTC."""

    def now(self) -> datetime.datetime:
        return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)

    def days_since(self, moment: datetime.datetime) -> int:
        return days_between(moment, self.now())


class FrozenClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, now: datetime.datetime = None):
        self._now = now or Clock.now(self)

    def now(self) -> datetime.datetime:
        return self._now

    def set(self, now: datetime.datetime):
        self._now = now

    def advance(self, **delta):
        self._now += datetime.timedelta(**delta)
        return self._now


def naive_utc(moment):
    """`moment` as naive UTC, the form every stored timestamp takes."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(datetime.timezone.utc).replace(tzinfo=None)


def days_between(start: datetime.datetime, end: datetime.datetime) -> int:
    """Whole days elapsed from `start` to `end`, floored."""
    return int((end - start).total_seconds() // SECONDS_PER_DAY)


class CohortLocks:
    """Re-entrant locks keyed by (daycare_id, program_id).

    Capacity is shared by all programs of a daycare, so the engine locks
    at daycare scope (program_id None). Holders must keep the lock across
    commit so that a read-then-write is linearizable within this process.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = defaultdict(threading.RLock)

    def __call__(self, daycare_id, program_id=None):
        with self._guard:
            return self._locks[(daycare_id, program_id)]
