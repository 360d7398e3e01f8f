"""Tests for acknowledgment handlers."""

from datetime import UTC, datetime, timedelta

import pytest

from chime.scheduling.acks import (
    LOG_PROMPT,
    SNOOZE_PROMPT,
    AcknowledgmentHandler,
    parse_amount,
    parse_duration_to_minutes,
)
from chime.scheduling.actions import ActionToken
from chime.scheduling.prompts import LOG_PROMPT_KIND, SNOOZE_PROMPT_KIND, PendingPromptStore
from chime.scheduling.store import SqlJobStore
from chime.scheduling.types import Daily, HabitPayload, JobFamily, Once
from tests.conftest import CHAT_ID, OWNER_ID, T0, FakeClock


@pytest.fixture
def acks(store: SqlJobStore, prompts: PendingPromptStore, clock: FakeClock):
    return AcknowledgmentHandler(store, prompts, clock=clock, default_timezone="UTC")


def token(verb: str, job_id: str, param: str | None = None) -> str:
    return ActionToken(verb, job_id, param).encode()


class TestParsing:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("15", 15),
            ("15m", 15),
            ("2h", 120),
            ("1d", 1440),
            ("1.5h", 90),
            (" 10 M ", 10),
            ("0.5", 1),
            ("365d", 525600),
        ],
    )
    def test_durations(self, text, expected):
        assert parse_duration_to_minutes(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["0", "-5", "abc", "", None, "10 minutes", "0.2", "366d", "3000000d", "9" * 400],
    )
    def test_rejected_durations(self, text):
        assert parse_duration_to_minutes(text) is None

    def test_amounts(self):
        assert parse_amount("10") == 10.0
        assert parse_amount("1,5") == 1.5
        assert parse_amount(" 2.25 ") == 2.25

    @pytest.mark.parametrize("text", ["0", "-1", "abc", "", None, "inf", "nan"])
    def test_rejected_amounts(self, text):
        assert parse_amount(text) is None


class TestActions:
    @pytest.mark.asyncio
    async def test_done_on_recurring_computes_next_from_now(
        self, acks: AcknowledgmentHandler, store: SqlJobStore, make_job
    ):
        job = await make_job(schedule=Daily(time_of_day="10:00"))

        reply = await acks.handle_action(token("done", job.id), OWNER_ID, CHAT_ID)

        loaded = await store.get(job.id)
        assert loaded.next_run_at == datetime(2026, 3, 4, 16, 0, tzinfo=UTC)
        assert loaded.status == "scheduled"
        assert loaded.last_run_at == T0
        assert reply.text == "Marked done. Next: Wed, Mar 4 at 10:00 AM"
        assert reply.force_reply is False

    @pytest.mark.asyncio
    async def test_done_on_once_retires(
        self, acks: AcknowledgmentHandler, store: SqlJobStore, make_job
    ):
        job = await make_job(schedule=Once())

        reply = await acks.handle_action(token("done", job.id), OWNER_ID, CHAT_ID)

        assert reply.text == "Marked done."
        loaded = await store.get(job.id)
        assert loaded.status == "sent"
        assert loaded.next_run_at == T0

    @pytest.mark.asyncio
    async def test_done_on_finished_habit_clears_next(
        self, acks: AcknowledgmentHandler, store: SqlJobStore, make_job
    ):
        job = await make_job(family=JobFamily.HABIT, schedule=Once())

        await acks.handle_action(token("done", job.id), OWNER_ID, CHAT_ID)

        loaded = await store.get(job.id)
        assert loaded.status == "paused"
        assert loaded.next_run_at is None

    @pytest.mark.asyncio
    async def test_fixed_snooze(
        self, acks: AcknowledgmentHandler, store: SqlJobStore, make_job
    ):
        job = await make_job(schedule=Daily(time_of_day="10:00"), status="sent")

        reply = await acks.handle_action(token("snooze", job.id, "10"), OWNER_ID, CHAT_ID)

        loaded = await store.get(job.id)
        assert loaded.next_run_at == T0 + timedelta(minutes=10)
        assert loaded.status == "scheduled"
        assert reply.text == "Snoozed. Next reminder: Tue, Mar 3 at 10:10 AM"

    @pytest.mark.asyncio
    async def test_habit_snooze_label(self, acks: AcknowledgmentHandler, make_job):
        job = await make_job(family=JobFamily.HABIT, schedule=Daily(time_of_day="10:00"))

        reply = await acks.handle_action(token("snooze", job.id, "15"), OWNER_ID, CHAT_ID)

        assert reply.text.startswith("Snoozed. Next habit reminder: ")

    @pytest.mark.asyncio
    async def test_bad_snooze_param(self, acks: AcknowledgmentHandler, make_job):
        job = await make_job()
        reply = await acks.handle_action(token("snooze", job.id, "x"), OWNER_ID, CHAT_ID)
        assert reply.text == "That button is no longer valid."

    @pytest.mark.asyncio
    async def test_oversized_snooze_param(
        self, acks: AcknowledgmentHandler, store: SqlJobStore, make_job
    ):
        job = await make_job()
        reply = await acks.handle_action(
            token("snooze", job.id, "9" * 20), OWNER_ID, CHAT_ID
        )
        assert reply.text == "That button is no longer valid."
        assert (await store.get(job.id)).next_run_at == T0

    @pytest.mark.asyncio
    async def test_delete(self, acks: AcknowledgmentHandler, store: SqlJobStore, make_job):
        job = await make_job()

        reply = await acks.handle_action(token("delete", job.id), OWNER_ID, CHAT_ID)

        assert reply.text == "Deleted."
        assert (await store.get(job.id)).status == "deleted"

        # Acting on a deleted job reports it as gone
        again = await acks.handle_action(token("done", job.id), OWNER_ID, CHAT_ID)
        assert again.text == "That reminder no longer exists."

    @pytest.mark.asyncio
    async def test_invalid_token(self, acks: AcknowledgmentHandler):
        reply = await acks.handle_action("garbage", OWNER_ID, CHAT_ID)
        assert reply.text == "That button is no longer valid."

    @pytest.mark.asyncio
    async def test_missing_job(self, acks: AcknowledgmentHandler):
        reply = await acks.handle_action(token("done", "missing"), OWNER_ID, CHAT_ID)
        assert reply.text == "That reminder no longer exists."

        reply = await acks.handle_action(token("log", "missing"), OWNER_ID, CHAT_ID)
        assert reply.text == "That habit no longer exists."

    @pytest.mark.asyncio
    async def test_other_owner_cannot_act(
        self, acks: AcknowledgmentHandler, store: SqlJobStore, make_job
    ):
        job = await make_job()

        reply = await acks.handle_action(token("delete", job.id), 9999, CHAT_ID)

        assert reply.text == "That reminder no longer exists."
        assert (await store.get(job.id)).status == "scheduled"

    @pytest.mark.asyncio
    async def test_log_requires_habit(self, acks: AcknowledgmentHandler, make_job):
        job = await make_job()
        reply = await acks.handle_action(token("log", job.id), OWNER_ID, CHAT_ID)
        assert reply.text == "Only habits can be logged."


class TestCustomSnooze:
    @pytest.mark.asyncio
    async def test_prompt_then_reply(
        self,
        acks: AcknowledgmentHandler,
        store: SqlJobStore,
        prompts: PendingPromptStore,
        clock: FakeClock,
        make_job,
    ):
        job = await make_job(schedule=Daily(time_of_day="10:00"))

        reply = await acks.handle_action(token("snooze_custom", job.id), OWNER_ID, CHAT_ID)

        assert reply.text == SNOOZE_PROMPT
        assert reply.force_reply is True
        pending = await prompts.get(OWNER_ID)
        assert pending.kind == SNOOZE_PROMPT_KIND
        assert pending.job_id == job.id
        assert pending.expires_at == T0 + timedelta(minutes=2)

        clock.advance(seconds=30)
        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "2h", True, SNOOZE_PROMPT)

        assert result.text.startswith("Snoozed. Next reminder: ")
        loaded = await store.get(job.id)
        assert loaded.next_run_at == T0 + timedelta(seconds=30, hours=2)
        assert await prompts.get(OWNER_ID) is None

    @pytest.mark.asyncio
    async def test_unreadable_reply_keeps_prompt(
        self, acks: AcknowledgmentHandler, prompts: PendingPromptStore, make_job
    ):
        job = await make_job()
        await acks.handle_action(token("snooze_custom", job.id), OWNER_ID, CHAT_ID)

        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "later", True, SNOOZE_PROMPT)

        assert result.text == "I couldn’t read that. Try something like 10m, 2h, or 1d."
        assert await prompts.get(OWNER_ID) is not None

    @pytest.mark.asyncio
    async def test_oversized_reply_is_rejected(
        self,
        acks: AcknowledgmentHandler,
        prompts: PendingPromptStore,
        store: SqlJobStore,
        make_job,
    ):
        job = await make_job()
        await acks.handle_action(token("snooze_custom", job.id), OWNER_ID, CHAT_ID)

        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "3000000d", True, SNOOZE_PROMPT)

        assert result.text == "I couldn’t read that. Try something like 10m, 2h, or 1d."
        assert await prompts.get(OWNER_ID) is not None
        assert (await store.get(job.id)).next_run_at == T0

    @pytest.mark.asyncio
    async def test_expired_prompt_times_out(
        self,
        acks: AcknowledgmentHandler,
        store: SqlJobStore,
        prompts: PendingPromptStore,
        clock: FakeClock,
        make_job,
    ):
        job = await make_job()
        await acks.handle_action(token("snooze_custom", job.id), OWNER_ID, CHAT_ID)

        clock.advance(minutes=2)
        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "10m", True, SNOOZE_PROMPT)

        assert result.text == (
            "Custom snooze timed out. Tap Custom again if you still want to snooze."
        )
        assert await prompts.get(OWNER_ID) is None
        assert (await store.get(job.id)).next_run_at == T0

    @pytest.mark.asyncio
    async def test_reply_not_to_bot_is_ignored(
        self, acks: AcknowledgmentHandler, prompts: PendingPromptStore, make_job
    ):
        job = await make_job()
        await acks.handle_action(token("snooze_custom", job.id), OWNER_ID, CHAT_ID)

        assert await acks.handle_reply(OWNER_ID, CHAT_ID, "10m", False, SNOOZE_PROMPT) is None
        assert await prompts.get(OWNER_ID) is not None

    @pytest.mark.asyncio
    async def test_reply_to_other_message_is_ignored(
        self, acks: AcknowledgmentHandler, make_job
    ):
        job = await make_job()
        await acks.handle_action(token("snooze_custom", job.id), OWNER_ID, CHAT_ID)

        result = await acks.handle_reply(
            OWNER_ID, CHAT_ID, "10m", True, "Water the plants"
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_reply_without_pending_prompt(self, acks: AcknowledgmentHandler):
        assert await acks.handle_reply(OWNER_ID, CHAT_ID, "10m", True, SNOOZE_PROMPT) is None

    @pytest.mark.asyncio
    async def test_job_deleted_while_prompt_open(
        self,
        acks: AcknowledgmentHandler,
        store: SqlJobStore,
        prompts: PendingPromptStore,
        make_job,
    ):
        job = await make_job()
        await acks.handle_action(token("snooze_custom", job.id), OWNER_ID, CHAT_ID)
        await store.patch(job.id, status="deleted")

        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "10m", True, SNOOZE_PROMPT)

        assert result.text == "That reminder no longer exists."
        assert await prompts.get(OWNER_ID) is None


class TestHabitLog:
    @pytest.mark.asyncio
    async def test_log_flow(
        self,
        acks: AcknowledgmentHandler,
        store: SqlJobStore,
        prompts: PendingPromptStore,
        make_job,
    ):
        habit = await make_job(family=JobFamily.HABIT, schedule=Daily(time_of_day="10:00"))

        reply = await acks.handle_action(token("log", habit.id), OWNER_ID, CHAT_ID)

        assert reply.text == LOG_PROMPT.format(unit="minutes")
        assert reply.force_reply is True
        assert (await prompts.get(OWNER_ID)).kind == LOG_PROMPT_KIND

        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "25", True, reply.text)

        assert result.text == 'Logged: 25 minutes for "Read".'
        logs = await store.list_habit_logs(habit.id)
        assert [(log.amount, log.unit) for log in logs] == [(25.0, "minutes")]
        assert logs[0].logged_at == T0
        assert await prompts.get(OWNER_ID) is None

    @pytest.mark.asyncio
    async def test_log_default_unit(self, acks: AcknowledgmentHandler, make_job):
        habit = await make_job(
            family=JobFamily.HABIT,
            payload=HabitPayload(name="Stretch"),
        )

        reply = await acks.handle_action(token("log", habit.id), OWNER_ID, CHAT_ID)
        assert reply.text == "Enter the amount you did (sessions)."

        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "1,5", True, reply.text)
        assert result.text == 'Logged: 1.5 sessions for "Stretch".'

    @pytest.mark.asyncio
    async def test_bad_amount_keeps_prompt(
        self, acks: AcknowledgmentHandler, prompts: PendingPromptStore, make_job
    ):
        habit = await make_job(family=JobFamily.HABIT)
        reply = await acks.handle_action(token("log", habit.id), OWNER_ID, CHAT_ID)

        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "lots", True, reply.text)

        assert result.text == "I couldn’t read that number. Try again (like 10 or 1.5)."
        assert await prompts.get(OWNER_ID) is not None

    @pytest.mark.asyncio
    async def test_log_timeout(
        self, acks: AcknowledgmentHandler, clock: FakeClock, make_job
    ):
        habit = await make_job(family=JobFamily.HABIT)
        reply = await acks.handle_action(token("log", habit.id), OWNER_ID, CHAT_ID)

        clock.advance(minutes=3)
        result = await acks.handle_reply(OWNER_ID, CHAT_ID, "10", True, reply.text)

        assert result.text == (
            "Log timed out. Tap Log again if you still want to record a session."
        )

    @pytest.mark.asyncio
    async def test_snooze_marker_does_not_answer_log_prompt(
        self, acks: AcknowledgmentHandler, make_job
    ):
        habit = await make_job(family=JobFamily.HABIT)
        await acks.handle_action(token("log", habit.id), OWNER_ID, CHAT_ID)

        assert await acks.handle_reply(OWNER_ID, CHAT_ID, "10", True, SNOOZE_PROMPT) is None
