"""Acknowledgment handlers for delivered jobs.

Two ingress paths reach this module:

- ``handle_action``: an interactive control was pressed; the control's
  token names the verb and the job.
- ``handle_reply``: the user typed free text in reply to one of our
  force-reply prompts (custom snooze duration, habit log amount).

Handlers talk to the job store directly. A vanished job, or one owned by
someone else, yields a short reply rather than an exception.
"""

import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from chime.db.models import utc_now
from chime.scheduling.actions import (
    DELETE,
    DONE,
    LOG,
    SNOOZE,
    SNOOZE_CUSTOM,
    parse_token,
)
from chime.scheduling.prompts import (
    LOG_PROMPT_KIND,
    SNOOZE_PROMPT_KIND,
    PendingPromptStore,
)
from chime.scheduling.recurrence import compute_next, format_local
from chime.scheduling.store import JobStore
from chime.scheduling.types import (
    DELETED_STATUS,
    HabitPayload,
    Job,
    JobFamily,
)

logger = logging.getLogger(__name__)

SNOOZE_PROMPT = (
    "Type a snooze duration like:\n"
    "- 10m\n"
    "- 2h\n"
    "- 1d\n"
    "(You can also just type a number for minutes.)"
)
LOG_PROMPT = "Enter the amount you did ({unit})."

# Replies only count when the message they answer carries the marker
PROMPT_MARKERS = {
    SNOOZE_PROMPT_KIND: "Type a snooze duration",
    LOG_PROMPT_KIND: "Enter the amount you did",
}

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([mhd])?$")
_UNIT_MINUTES = {"m": 1, "h": 60, "d": 1440}
# Longest accepted snooze: one year
MAX_SNOOZE_MINUTES = 365 * 1440


def parse_duration_to_minutes(text: str | None) -> int | None:
    """Parse ``<number>[m|h|d]`` into whole minutes.

    A bare number means minutes. Decimals are allowed ("1.5h" is 90).
    Returns None for anything unparseable, not strictly positive, or longer
    than ``MAX_SNOOZE_MINUTES``.
    """
    if not text:
        return None
    match = _DURATION_RE.match(text.strip().lower())
    if not match:
        return None
    total = float(match.group(1)) * _UNIT_MINUTES[match.group(2) or "m"]
    if total > MAX_SNOOZE_MINUTES:
        return None
    minutes = math.floor(total + 0.5)
    return minutes if minutes > 0 else None


def parse_amount(text: str | None) -> float | None:
    """Parse a positive number, accepting a decimal comma ("1,5")."""
    if not text:
        return None
    try:
        value = float(text.strip().replace(",", "."))
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def _format_amount(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


@dataclass(frozen=True)
class AckReply:
    """What to tell the user after an acknowledgment."""

    text: str
    # Ask the client to open a reply box (custom snooze, habit log)
    force_reply: bool = False


class AcknowledgmentHandler:
    """Applies user acknowledgments to stored jobs."""

    def __init__(
        self,
        store: JobStore,
        prompts: PendingPromptStore,
        clock: Callable[[], datetime] = utc_now,
        default_timezone: str = "UTC",
    ) -> None:
        self._store = store
        self._prompts = prompts
        self._clock = clock
        self._default_timezone = default_timezone

    async def _owned_job(
        self, job_id: str, user_id: int, fallback_noun: str
    ) -> tuple[Job | None, str]:
        """Look up a job the user may act on.

        Returns:
            The job (None if gone, deleted or not theirs) and the noun to
            use in replies.
        """
        job = await self._store.get(job_id)
        if job is None:
            return None, fallback_noun
        noun = job.family.noun
        if job.status == DELETED_STATUS:
            return None, noun
        if job.owner_id != user_id:
            logger.info(
                "ack_owner_mismatch",
                extra={"job.id": job_id, "user.id": user_id},
            )
            return None, noun
        return job, noun

    def _tz(self, job: Job) -> str:
        return job.timezone or self._default_timezone

    async def handle_action(self, token: str, user_id: int, chat_id: int) -> AckReply:
        """Handle a pressed control."""
        action = parse_token(token)
        if action is None:
            logger.debug("ack_unknown_token", extra={"ack.token": token})
            return AckReply("That button is no longer valid.")

        job, noun = await self._owned_job(
            action.job_id, user_id, "habit" if action.verb == LOG else "reminder"
        )
        if job is None:
            return AckReply(f"That {noun} no longer exists.")

        logger.info(
            "ack_action",
            extra={"job.id": job.id, "ack.verb": action.verb, "user.id": user_id},
        )

        if action.verb == DONE:
            return await self._done(job)
        if action.verb == SNOOZE:
            try:
                minutes = int(action.param or "")
            except ValueError:
                minutes = 0
            if not 0 < minutes <= MAX_SNOOZE_MINUTES:
                return AckReply("That button is no longer valid.")
            return await self._snooze(job, minutes)
        if action.verb == SNOOZE_CUSTOM:
            await self._prompts.open(
                user_id, chat_id, SNOOZE_PROMPT_KIND, job.id or "", now=self._clock()
            )
            return AckReply(SNOOZE_PROMPT, force_reply=True)
        if action.verb == DELETE:
            await self._store.patch(job.id or "", status=DELETED_STATUS)
            return AckReply("Deleted.")
        if action.verb == LOG:
            if not isinstance(job.payload, HabitPayload):
                return AckReply("Only habits can be logged.")
            await self._prompts.open(
                user_id, chat_id, LOG_PROMPT_KIND, job.id or "", now=self._clock()
            )
            unit = job.payload.unit or "number"
            return AckReply(LOG_PROMPT.format(unit=unit), force_reply=True)

        return AckReply("That button is no longer valid.")

    async def handle_reply(
        self,
        user_id: int,
        chat_id: int,
        text: str | None,
        replied_to_bot: bool,
        replied_text: str | None,
    ) -> AckReply | None:
        """Handle free text that may answer a pending prompt.

        Returns:
            None when the message is not an answer to one of our prompts,
            so other handlers may process it.
        """
        if not replied_to_bot:
            return None
        pending = await self._prompts.get(user_id)
        if pending is None:
            return None
        marker = PROMPT_MARKERS.get(pending.kind)
        if marker is None or marker not in (replied_text or ""):
            return None

        now = self._clock()
        if pending.is_expired(now):
            await self._prompts.clear(user_id)
            if pending.kind == LOG_PROMPT_KIND:
                return AckReply(
                    "Log timed out. Tap Log again if you still want to record a session."
                )
            return AckReply(
                "Custom snooze timed out. Tap Custom again if you still want to snooze."
            )

        job, noun = await self._owned_job(
            pending.job_id,
            user_id,
            "habit" if pending.kind == LOG_PROMPT_KIND else "reminder",
        )
        if job is None:
            await self._prompts.clear(user_id)
            return AckReply(f"That {noun} no longer exists.")

        if pending.kind == LOG_PROMPT_KIND:
            amount = parse_amount(text)
            if amount is None:
                return AckReply("I couldn’t read that number. Try again (like 10 or 1.5).")
            await self._prompts.clear(user_id)
            return await self._log(job, user_id, amount)

        minutes = parse_duration_to_minutes(text)
        if minutes is None:
            return AckReply("I couldn’t read that. Try something like 10m, 2h, or 1d.")
        await self._prompts.clear(user_id)
        return await self._snooze(job, minutes)

    async def _done(self, job: Job) -> AckReply:
        assert job.id is not None
        now = self._clock()
        policy = job.policy
        next_run = (
            compute_next(job.schedule, self._tz(job), now) if job.is_recurring else None
        )
        if next_run is not None:
            await self._store.patch(
                job.id,
                next_run_at=next_run,
                status=policy.rescheduled_status,
                last_run_at=now,
            )
            return AckReply(f"Marked done. Next: {format_local(next_run, self._tz(job))}")

        fields: dict[str, object] = {"status": policy.terminal_status, "last_run_at": now}
        if policy.clear_next_on_terminal:
            fields["next_run_at"] = None
        await self._store.patch(job.id, **fields)
        return AckReply("Marked done.")

    async def _snooze(self, job: Job, minutes: int) -> AckReply:
        assert job.id is not None
        next_run = self._clock() + timedelta(minutes=minutes)
        await self._store.patch(
            job.id, next_run_at=next_run, status=job.policy.rescheduled_status
        )
        logger.info(
            "job_snoozed",
            extra={"job.id": job.id, "snooze.minutes": minutes},
        )
        label = "habit reminder" if job.family is JobFamily.HABIT else "reminder"
        return AckReply(f"Snoozed. Next {label}: {format_local(next_run, self._tz(job))}")

    async def _log(self, job: Job, user_id: int, amount: float) -> AckReply:
        assert job.id is not None
        assert isinstance(job.payload, HabitPayload)
        unit = job.payload.unit
        await self._store.add_habit_log(
            job.id, user_id, amount, unit, logged_at=self._clock()
        )
        suffix = f" {unit}" if unit else ""
        return AckReply(
            f'Logged: {_format_amount(amount)}{suffix} for "{job.payload.name}".'
        )
