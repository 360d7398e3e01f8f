"""Pending force-reply prompts (custom snooze, habit log amount).

A prompt pairs "we asked this user a question about job X" with the
user's free-text answer. It lives in the shared database with a short
expiry so the answer can be handled by whichever instance receives it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete

from chime.db.engine import Database
from chime.db.models import PendingPrompt, utc_now

DEFAULT_PROMPT_TTL = timedelta(minutes=2)

SNOOZE_PROMPT_KIND = "snooze"
LOG_PROMPT_KIND = "log"


@dataclass(frozen=True)
class PendingPromptEntry:
    user_id: int
    chat_id: int
    kind: str
    job_id: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class PendingPromptStore:
    """One pending prompt per user; opening a new one replaces the old."""

    def __init__(self, database: Database, ttl: timedelta = DEFAULT_PROMPT_TTL) -> None:
        self._db = database
        self._ttl = ttl

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def open(
        self,
        user_id: int,
        chat_id: int,
        kind: str,
        job_id: str,
        now: datetime | None = None,
    ) -> PendingPromptEntry:
        now = now or utc_now()
        entry = PendingPromptEntry(
            user_id=user_id,
            chat_id=chat_id,
            kind=kind,
            job_id=job_id,
            expires_at=now + self._ttl,
        )
        async with self._db.session() as session:
            await session.merge(
                PendingPrompt(
                    user_id=user_id,
                    chat_id=chat_id,
                    kind=kind,
                    job_id=job_id,
                    expires_at=entry.expires_at,
                    created_at=now,
                )
            )
        return entry

    async def get(self, user_id: int) -> PendingPromptEntry | None:
        async with self._db.session() as session:
            row = await session.get(PendingPrompt, user_id)
            if row is None:
                return None
            return PendingPromptEntry(
                user_id=row.user_id,
                chat_id=row.chat_id,
                kind=row.kind,
                job_id=row.job_id,
                expires_at=row.expires_at,
            )

    async def clear(self, user_id: int) -> None:
        async with self._db.session() as session:
            await session.execute(
                delete(PendingPrompt).where(PendingPrompt.user_id == user_id)
            )

    async def purge_expired(self, now: datetime | None = None) -> int:
        now = now or utc_now()
        async with self._db.session() as session:
            result = await session.execute(
                delete(PendingPrompt).where(PendingPrompt.expires_at <= now)
            )
            return result.rowcount or 0
