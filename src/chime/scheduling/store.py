"""Job store: the persistence boundary for the scheduler.

Every mutation is a single-row statement. Claims and releases are
conditional updates whose WHERE clause carries the whole check, so the
database's row-level atomicity is the only cross-instance synchronization.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update

from chime.db.engine import Database
from chime.db.models import HabitLog, JobRecord, utc_now
from chime.scheduling.types import (
    HabitPayload,
    Job,
    JobFamily,
    JobLock,
    ReminderPayload,
    Schedule,
    parse_payload,
    parse_schedule,
    schedule_to_dict,
)

logger = logging.getLogger(__name__)

# Fields callers may change through patch()
PATCHABLE_FIELDS = frozenset(
    {
        "status",
        "next_run_at",
        "last_run_at",
        "schedule",
        "timezone",
        "payload",
        "destination_id",
    }
)


class JobStore(ABC):
    """Abstract job persistence used by the dispatcher and ack handlers."""

    @abstractmethod
    async def create(self, job: Job) -> Job:
        """Persist a new job, assigning its id."""
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Job | None: ...

    @abstractmethod
    async def list_jobs(
        self,
        family: JobFamily | None = None,
        *,
        owner_id: int | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Job]: ...

    @abstractmethod
    async def find_due(
        self,
        family: JobFamily,
        statuses: Iterable[str],
        now: datetime,
        limit: int,
    ) -> list[Job]:
        """Jobs with an eligible status and ``next_run_at <= now``.

        Ordered ascending by ``next_run_at`` and bounded by ``limit``.
        """
        ...

    @abstractmethod
    async def conditional_claim(
        self,
        job_id: str,
        instance_id: str,
        ttl: timedelta,
        statuses: Iterable[str],
        now: datetime | None = None,
    ) -> bool:
        """Lock the job if it is eligible and unlocked (or the lock expired).

        Returns:
            True if this call took the lock, False otherwise (no side effect).
        """
        ...

    @abstractmethod
    async def conditional_release(self, job_id: str, instance_id: str) -> bool:
        """Clear the lock only if ``instance_id`` still holds it."""
        ...

    @abstractmethod
    async def patch(self, job_id: str, **fields: Any) -> bool:
        """Update fields of one job. Returns False if the job is gone."""
        ...

    @abstractmethod
    async def add_habit_log(
        self,
        job_id: str,
        user_id: int,
        amount: float,
        unit: str,
        logged_at: datetime | None = None,
    ) -> str: ...


class SqlJobStore(JobStore):
    """SQLAlchemy-backed job store."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(self, job: Job) -> Job:
        if not job.id:
            job.id = uuid.uuid4().hex
        now = utc_now()
        record = JobRecord(
            id=job.id,
            family=job.family.value,
            owner_id=job.owner_id,
            destination_id=job.destination_id,
            status=job.status,
            payload=job.payload.to_dict(),
            schedule=schedule_to_dict(job.schedule),
            timezone=job.timezone,
            next_run_at=job.next_run_at,
            last_run_at=job.last_run_at,
            created_at=job.created_at or now,
            updated_at=now,
        )
        async with self._db.session() as session:
            session.add(record)
        job.updated_at = now
        logger.info(
            "job_created",
            extra={
                "job.id": job.id,
                "job.family": job.family.value,
                "job.next_run_at": job.next_run_at.isoformat()
                if job.next_run_at
                else None,
            },
        )
        return job

    async def get(self, job_id: str) -> Job | None:
        async with self._db.session() as session:
            record = await session.get(JobRecord, job_id)
            return _to_job(record) if record else None

    async def list_jobs(
        self,
        family: JobFamily | None = None,
        *,
        owner_id: int | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Job]:
        stmt = select(JobRecord)
        if family is not None:
            stmt = stmt.where(JobRecord.family == family.value)
        if owner_id is not None:
            stmt = stmt.where(JobRecord.owner_id == owner_id)
        if statuses is not None:
            stmt = stmt.where(JobRecord.status.in_(list(statuses)))
        stmt = stmt.order_by(JobRecord.next_run_at.is_(None), JobRecord.next_run_at)
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_to_job(r) for r in result.scalars()]

    async def find_due(
        self,
        family: JobFamily,
        statuses: Iterable[str],
        now: datetime,
        limit: int,
    ) -> list[Job]:
        stmt = (
            select(JobRecord)
            .where(
                JobRecord.family == family.value,
                JobRecord.status.in_(list(statuses)),
                JobRecord.next_run_at.is_not(None),
                JobRecord.next_run_at <= now,
            )
            .order_by(JobRecord.next_run_at)
            .limit(limit)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_to_job(r) for r in result.scalars()]

    async def conditional_claim(
        self,
        job_id: str,
        instance_id: str,
        ttl: timedelta,
        statuses: Iterable[str],
        now: datetime | None = None,
    ) -> bool:
        now = now or utc_now()
        stmt = (
            update(JobRecord)
            .where(
                JobRecord.id == job_id,
                JobRecord.status.in_(list(statuses)),
                or_(
                    JobRecord.lock_expires_at.is_(None),
                    JobRecord.lock_expires_at <= now,
                ),
            )
            .values(
                locked_at=now,
                lock_expires_at=now + ttl,
                locked_by=instance_id,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def conditional_release(self, job_id: str, instance_id: str) -> bool:
        stmt = (
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.locked_by == instance_id)
            .values(locked_at=None, lock_expires_at=None, locked_by=None)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def patch(self, job_id: str, **fields: Any) -> bool:
        unknown = set(fields) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch job fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        values = dict(fields)
        if "schedule" in values:
            values["schedule"] = _schedule_value(values["schedule"])
        if "payload" in values:
            values["payload"] = _payload_value(values["payload"])
        values["updated_at"] = utc_now()

        stmt = (
            update(JobRecord)
            .where(JobRecord.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def add_habit_log(
        self,
        job_id: str,
        user_id: int,
        amount: float,
        unit: str,
        logged_at: datetime | None = None,
    ) -> str:
        log_id = uuid.uuid4().hex
        async with self._db.session() as session:
            session.add(
                HabitLog(
                    id=log_id,
                    job_id=job_id,
                    user_id=user_id,
                    amount=amount,
                    unit=unit,
                    logged_at=logged_at or utc_now(),
                )
            )
        return log_id

    async def list_habit_logs(self, job_id: str) -> list[HabitLog]:
        stmt = (
            select(HabitLog)
            .where(HabitLog.job_id == job_id)
            .order_by(HabitLog.logged_at.desc())
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars())


def _schedule_value(value: Schedule | dict[str, Any]) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return schedule_to_dict(value)


def _payload_value(value: ReminderPayload | HabitPayload | dict[str, Any]) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return value.to_dict()


def _to_job(record: JobRecord) -> Job:
    family = JobFamily(record.family)
    lock = None
    if record.locked_by and record.lock_expires_at and record.locked_at:
        lock = JobLock(
            locked_at=record.locked_at,
            lock_expires_at=record.lock_expires_at,
            locked_by=record.locked_by,
        )
    return Job(
        id=record.id,
        family=family,
        owner_id=record.owner_id,
        destination_id=record.destination_id,
        status=record.status,
        payload=parse_payload(family, record.payload or {}),
        schedule=parse_schedule(record.schedule),
        timezone=record.timezone,
        next_run_at=record.next_run_at,
        last_run_at=record.last_run_at,
        lock=lock,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
