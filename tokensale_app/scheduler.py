"""
Calendar triggers (UTC).

    daily 00:00        price snapshot
    28th 23:00         final whale settlement (skipped while the pool is empty)
    1st 00:00          monthly vesting release

`tick(now)` is meant to be called once a minute; each job fires at most once
per matching minute even if ticks repeat.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from tokensale_app.errors import TokenSaleError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarRule:
    job: str
    minute: int
    hour: int
    day: Optional[int] = None  # day of month; None = every day

    def matches(self, now: datetime) -> bool:
        return (
            now.minute == self.minute
            and now.hour == self.hour
            and (self.day is None or now.day == self.day)
        )


DEFAULT_RULES = (
    CalendarRule(job="price_snapshot", minute=0, hour=0),
    CalendarRule(job="settlement", minute=0, hour=23, day=28),
    CalendarRule(job="vesting", minute=0, hour=0, day=1),
)


def due_jobs(now: datetime, rules=DEFAULT_RULES) -> List[str]:
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    return [rule.job for rule in rules if rule.matches(now)]


class Scheduler:
    def __init__(self, jobs: Dict[str, Callable[[], object]], rules=DEFAULT_RULES):
        self.jobs = jobs
        self.rules = rules
        self._fired: Set[str] = set()
        self._stop = threading.Event()

    def tick(self, now: datetime) -> List[str]:
        """Run every job due at `now`; return the names that ran."""
        slot = now.strftime("%Y-%m-%dT%H:%M")
        self._fired = {k for k in self._fired if k.endswith(slot)}
        ran = []
        for job in due_jobs(now, self.rules):
            key = f"{job}@{slot}"
            if key in self._fired or job not in self.jobs:
                continue
            self._fired.add(key)
            logger.info("[CRON_START] %s", job)
            try:
                self.jobs[job]()
            except TokenSaleError as exc:
                logger.critical("Scheduled %s failed: %s", job, exc)
            ran.append(job)
        return ran

    def run_forever(self, interval: float = 30.0, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        logger.info("Scheduler online (UTC): %s", ", ".join(r.job for r in self.rules))
        while not self._stop.wait(interval):
            self.tick(clock())

    def stop(self) -> None:
        self._stop.set()
