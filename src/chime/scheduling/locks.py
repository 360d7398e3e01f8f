"""Per-job claim/release on top of the job store.

A claim is a time-bounded lock written onto the job row itself. There is
no external mutex service and no leader election: a crashed holder's lock
simply expires after ``ttl`` and the next poller takes over.
"""

import logging
import os
import socket
import uuid
from datetime import datetime, timedelta

from chime.scheduling.store import JobStore
from chime.scheduling.types import Job

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = timedelta(seconds=60)


def make_instance_id(prefix: str = "chime") -> str:
    """Identifier unique to this process, used as the lock owner."""
    host = socket.gethostname().split(".", 1)[0] or "host"
    return f"{prefix}_{host}_{os.getpid()}_{uuid.uuid4().hex[:6]}"


class LockManager:
    """Claims jobs for one instance.

    The TTL must exceed the expected deliver-and-persist latency, otherwise
    a slow delivery could be claimed again by another instance.
    """

    def __init__(
        self,
        store: JobStore,
        instance_id: str,
        ttl: timedelta = DEFAULT_LOCK_TTL,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("Lock TTL must be positive")
        self._store = store
        self._instance_id = instance_id
        self._ttl = ttl

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def claim(self, job: Job, now: datetime | None = None) -> bool:
        """Try to take the job's lock. False means another holder won."""
        if not job.id:
            return False
        claimed = await self._store.conditional_claim(
            job.id,
            self._instance_id,
            self._ttl,
            job.policy.active_statuses,
            now=now,
        )
        if not claimed:
            logger.debug(
                "job_claim_lost",
                extra={"job.id": job.id, "lock.instance_id": self._instance_id},
            )
        return claimed

    async def release(self, job: Job) -> None:
        """Drop the lock if this instance still holds it."""
        if not job.id:
            return
        released = await self._store.conditional_release(job.id, self._instance_id)
        if not released:
            # Expired and reclaimed elsewhere, or the row is gone
            logger.debug(
                "job_release_skipped",
                extra={"job.id": job.id, "lock.instance_id": self._instance_id},
            )
