"""Job dispatcher: polls for due jobs, delivers them and reschedules.

One dispatcher runs per job family, each on its own timer. Every instance
of the service runs the same dispatchers against the shared store; the
per-job lock is what keeps a delivery from happening twice.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from chime.db.models import utc_now
from chime.scheduling.delivery import DeliveryGateway, build_delivery
from chime.scheduling.locks import LockManager
from chime.scheduling.recurrence import compute_next
from chime.scheduling.store import JobStore
from chime.scheduling.types import ERROR_STATUS, Job, JobFamily

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_BATCH_SIZE = 25
DEFAULT_RETRY_BACKOFF = timedelta(minutes=5)

# Heartbeat every 60 polls (~10 min at the default interval)
HEARTBEAT_INTERVAL = 60

Clock = Callable[[], datetime]


class JobDispatcher:
    """Delivers due jobs of one family.

    Example:
        dispatcher = JobDispatcher(JobFamily.REMINDER, store, gateway, locks)
        await dispatcher.start()
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        family: JobFamily,
        store: JobStore,
        gateway: DeliveryGateway,
        locks: LockManager,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_backoff: timedelta = DEFAULT_RETRY_BACKOFF,
        default_timezone: str = "UTC",
        clock: Clock = utc_now,
    ):
        self._family = family
        self._store = store
        self._gateway = gateway
        self._locks = locks
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._retry_backoff = retry_backoff
        self._default_timezone = default_timezone
        self._clock = clock
        self._running = False
        self._ticking = False
        self._task: asyncio.Task | None = None
        self._poll_count = 0

    @property
    def family(self) -> JobFamily:
        return self._family

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info(
            "dispatcher_started",
            extra={
                "job.family": self._family.value,
                "lock.instance_id": self._locks.instance_id,
                "poll.interval": self._poll_interval,
            },
        )
        self._task = asyncio.create_task(
            self._poll_loop(), name=f"dispatcher-{self._family.value}"
        )

    async def stop(self) -> None:
        """Stop polling. Locks held by an interrupted tick expire on their own."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("dispatcher_stopped", extra={"job.family": self._family.value})

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self._poll_count += 1
                if self._poll_count % HEARTBEAT_INTERVAL == 0:
                    logger.info(
                        "dispatcher_heartbeat",
                        extra={
                            "job.family": self._family.value,
                            "poll.count": self._poll_count,
                        },
                    )
                await self.tick()
            except Exception as e:
                logger.error(
                    "dispatcher_tick_error",
                    extra={"job.family": self._family.value, "error.message": str(e)},
                    exc_info=True,
                )
            await asyncio.sleep(self._poll_interval)

    async def tick(self) -> int:
        """Run one polling pass.

        Overlapping calls are skipped rather than queued.

        Returns:
            Number of jobs delivered.
        """
        if self._ticking:
            logger.debug("tick_skipped_overlap", extra={"job.family": self._family.value})
            return 0
        self._ticking = True
        try:
            now = self._clock()
            due = await self._store.find_due(
                self._family,
                self._family.policy.active_statuses,
                now,
                self._batch_size,
            )
            logger.debug(
                "dispatcher_tick",
                extra={
                    "job.family": self._family.value,
                    "tick.due_count": len(due),
                    "tick.now": now.isoformat(),
                },
            )

            delivered = 0
            for job in due:
                try:
                    if await self.process_job(job):
                        delivered += 1
                except Exception as e:
                    # One bad job must not halt the rest of the batch
                    logger.error(
                        "job_processing_error",
                        extra={"job.id": job.id, "error.message": str(e)},
                        exc_info=True,
                    )
            return delivered
        finally:
            self._ticking = False

    async def process_job(self, job: Job) -> bool:
        """Claim, deliver, reschedule and release one job.

        Returns:
            True if the job was delivered by this call.
        """
        now = self._clock()
        if not await self._locks.claim(job, now=now):
            return False
        try:
            # The batch may predate another instance's delivery of this job
            current = await self._store.get(job.id) if job.id else None
            if not self._still_due(current, now):
                logger.debug(
                    "job_no_longer_due",
                    extra={"job.id": job.id, "job.family": self._family.value},
                )
                return False
            assert current is not None
            return await self._deliver(current)
        finally:
            await self._locks.release(job)

    def _still_due(self, job: Job | None, now: datetime) -> bool:
        if job is None or not job.is_active:
            return False
        return job.next_run_at is not None and job.next_run_at <= now

    async def _deliver(self, job: Job) -> bool:
        assert job.id is not None
        policy = job.policy

        try:
            delivery = build_delivery(job)
        except ValueError:
            logger.warning(
                "job_missing_destination",
                extra={"job.id": job.id, "job.owner_id": job.owner_id},
            )
            await self._store.patch(job.id, status=ERROR_STATUS)
            return False

        try:
            message_id = await self._gateway.send(delivery)
        except Exception as e:
            retry_at = self._clock() + self._retry_backoff
            logger.warning(
                "job_delivery_failed",
                extra={
                    "job.id": job.id,
                    "messaging.chat_id": job.destination_id,
                    "job.retry_at": retry_at.isoformat(),
                    "error.message": str(e),
                },
            )
            await self._store.patch(job.id, next_run_at=retry_at)
            return False

        delivered_at = self._clock()
        next_run = compute_next(
            job.schedule, job.timezone or self._default_timezone, delivered_at
        )
        if next_run is not None:
            await self._store.patch(
                job.id,
                next_run_at=next_run,
                last_run_at=delivered_at,
                status=policy.rescheduled_status,
            )
        else:
            fields: dict[str, object] = {
                "status": policy.terminal_status,
                "last_run_at": delivered_at,
            }
            if policy.clear_next_on_terminal:
                fields["next_run_at"] = None
            await self._store.patch(job.id, **fields)

        logger.info(
            "job_delivered",
            extra={
                "job.id": job.id,
                "job.family": job.family.value,
                "messaging.chat_id": job.destination_id,
                "messaging.message_id": message_id,
                "job.next_run_at": next_run.isoformat() if next_run else None,
            },
        )
        return True
