import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from tokensale_app.errors import RunInProgressError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    job: str
    holder: str
    expires_at: float


class RunLock:
    """At most one live lease per job name, shared by the scheduler, admin API and CLI in one process."""

    def __init__(self, lease_seconds: float = 3_600, clock: Callable[[], float] = time.monotonic):
        self.lease_seconds = lease_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._leases: Dict[str, Lease] = {}

    def acquire(self, job: str, holder: Optional[str] = None) -> Lease:
        holder = holder or uuid.uuid4().hex[:12]
        now = self._clock()
        with self._lock:
            current = self._leases.get(job)
            if current is not None and current.expires_at > now:
                raise RunInProgressError(job, current.holder)
            if current is not None:
                logger.warning("Taking over expired %s lease from %s", job, current.holder)
            lease = Lease(job=job, holder=holder, expires_at=now + self.lease_seconds)
            self._leases[job] = lease
            return lease

    def release(self, lease: Lease) -> None:
        with self._lock:
            # A lease taken over after expiry belongs to the new holder.
            if self._leases.get(lease.job) == lease:
                del self._leases[lease.job]

    def is_held(self, job: str) -> bool:
        with self._lock:
            current = self._leases.get(job)
            return current is not None and current.expires_at > self._clock()

    @contextmanager
    def hold(self, job: str, holder: Optional[str] = None) -> Iterator[Lease]:
        lease = self.acquire(job, holder)
        try:
            yield lease
        finally:
            self.release(lease)
