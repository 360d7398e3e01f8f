"""Job inspection commands and schedule preview."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer

from chime.cli.console import (
    console,
    create_table,
    dim,
    error,
    format_countdown,
    success,
    warning,
)


def _load_schedule(raw: str):
    from chime.scheduling.types import parse_schedule

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        error(f"Schedule is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(data, dict):
        error("Schedule must be a JSON object")
        raise typer.Exit(1)
    try:
        return parse_schedule(data, strict=True)
    except ValueError as e:
        error(str(e))
        raise typer.Exit(1) from None


def _parse_instant(value: str | None) -> datetime:
    if value is None:
        return datetime.now(UTC)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        error(f"Not an ISO timestamp: {value}")
        raise typer.Exit(1) from None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def register(app: typer.Typer) -> None:
    """Register the jobs command group and the next command."""
    jobs_app = typer.Typer(help="Inspect and manage stored jobs")

    @jobs_app.command("list")
    def jobs_list(
        family: Annotated[
            str | None,
            typer.Option("--family", "-f", help="reminder or habit"),
        ] = None,
        owner: Annotated[
            int | None,
            typer.Option("--owner", help="Only jobs owned by this user id"),
        ] = None,
        show_all: Annotated[
            bool,
            typer.Option("--all", "-a", help="Include inactive jobs"),
        ] = False,
        config_path: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """List stored jobs, soonest first."""
        from chime.config import load_config
        from chime.scheduling.recurrence import describe_schedule, format_local
        from chime.scheduling.store import SqlJobStore
        from chime.scheduling.types import JobFamily
        from chime.service import create_database

        try:
            job_family = JobFamily(family) if family else None
        except ValueError:
            error(f"Unknown family: {family}")
            raise typer.Exit(1) from None

        chime_config = load_config(config_path)
        database = create_database(chime_config)

        async def fetch():
            await database.connect()
            try:
                return await SqlJobStore(database).list_jobs(job_family, owner_id=owner)
            finally:
                await database.disconnect()

        jobs = asyncio.run(fetch())
        if not show_all:
            jobs = [j for j in jobs if j.is_active]
        if not jobs:
            warning("No jobs found")
            return

        table = create_table(
            "Jobs",
            [
                ("ID", "dim"),
                ("Family", ""),
                ("Status", ""),
                ("Schedule", ""),
                ("Next run", ""),
                ("", "cyan"),
                ("Locked by", "dim"),
            ],
        )
        now = datetime.now(UTC)
        for job in jobs:
            tz = job.timezone or chime_config.timezone
            locked = job.lock.locked_by if job.lock and job.lock.is_live(now) else ""
            table.add_row(
                (job.id or "")[:8],
                job.family.value,
                job.status,
                describe_schedule(job.schedule),
                format_local(job.next_run_at, tz) if job.next_run_at else "-",
                format_countdown(job.next_run_at, now),
                locked,
            )
        console.print(table)
        dim(f"{len(jobs)} job(s)")

    @jobs_app.command("add")
    def jobs_add(
        owner: Annotated[int, typer.Option("--owner", help="Owner user id")],
        text: Annotated[
            str,
            typer.Option("--text", "-t", help="Reminder text or habit name"),
        ],
        chat: Annotated[
            int | None,
            typer.Option("--chat", help="Destination chat id (default: owner)"),
        ] = None,
        family: Annotated[
            str,
            typer.Option("--family", "-f", help="reminder or habit"),
        ] = "reminder",
        schedule: Annotated[
            str,
            typer.Option("--schedule", "-s", help="Schedule as JSON"),
        ] = '{"kind": "once"}',
        tz: Annotated[
            str | None,
            typer.Option("--tz", help="IANA timezone (default: config timezone)"),
        ] = None,
        at: Annotated[
            str | None,
            typer.Option("--at", help="First run, ISO timestamp (default: next occurrence)"),
        ] = None,
        config_path: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Create a job."""
        from chime.config import load_config
        from chime.scheduling.recurrence import compute_next, format_local
        from chime.scheduling.store import SqlJobStore
        from chime.scheduling.types import HabitPayload, Job, JobFamily, ReminderPayload
        from chime.service import create_database

        try:
            job_family = JobFamily(family)
        except ValueError:
            error(f"Unknown family: {family}")
            raise typer.Exit(1) from None

        parsed = _load_schedule(schedule)
        chime_config = load_config(config_path)
        timezone = tz or chime_config.timezone

        first_run = (
            _parse_instant(at)
            if at
            else compute_next(parsed, timezone, datetime.now(UTC))
        )
        if first_run is None:
            error("Schedule has no upcoming occurrence; pass --at")
            raise typer.Exit(1)

        job = Job(
            family=job_family,
            owner_id=owner,
            destination_id=chat if chat is not None else owner,
            payload=ReminderPayload(text=text)
            if job_family is JobFamily.REMINDER
            else HabitPayload(name=text),
            schedule=parsed,
            timezone=timezone,
            status=job_family.policy.rescheduled_status,
            next_run_at=first_run,
        )

        database = create_database(chime_config)

        async def create():
            await database.connect()
            try:
                return await SqlJobStore(database).create(job)
            finally:
                await database.disconnect()

        created = asyncio.run(create())
        success(f"Created {job_family.noun} {created.id}")
        dim(f"First run: {format_local(first_run, timezone)} ({timezone})")

    @jobs_app.command("delete")
    def jobs_delete(
        job_id: Annotated[str, typer.Argument(help="Job id")],
        config_path: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Soft-delete a job."""
        from chime.config import load_config
        from chime.scheduling.store import SqlJobStore
        from chime.scheduling.types import DELETED_STATUS
        from chime.service import create_database

        database = create_database(load_config(config_path))

        async def delete() -> bool:
            await database.connect()
            try:
                return await SqlJobStore(database).patch(job_id, status=DELETED_STATUS)
            finally:
                await database.disconnect()

        if asyncio.run(delete()):
            success(f"Deleted {job_id}")
        else:
            error(f"No job with id {job_id}")
            raise typer.Exit(1)

    app.add_typer(jobs_app, name="jobs")

    @app.command("next")
    def next_occurrences(
        schedule: Annotated[
            str,
            typer.Option("--schedule", "-s", help="Schedule as JSON"),
        ],
        tz: Annotated[
            str,
            typer.Option("--tz", help="IANA timezone"),
        ] = "UTC",
        start: Annotated[
            str | None,
            typer.Option("--from", help="Reference instant, ISO (default: now)"),
        ] = None,
        count: Annotated[
            int,
            typer.Option("--count", "-n", help="Number of occurrences"),
        ] = 5,
    ) -> None:
        """Preview the next occurrences of a schedule.

        Examples:
            chime next -s '{"kind": "daily", "time_of_day": "09:00"}' --tz America/Chicago
            chime next -s '{"kind": "interval", "minutes": 90}' -n 3
        """
        from chime.scheduling.recurrence import compute_next, describe_schedule, format_local

        parsed = _load_schedule(schedule)
        reference = _parse_instant(start)

        console.print(f"[bold]{describe_schedule(parsed)}[/bold] [dim]({tz})[/dim]")
        for _ in range(max(count, 0)):
            upcoming = compute_next(parsed, tz, reference)
            if upcoming is None:
                dim("No further occurrences")
                return
            console.print(f"  {format_local(upcoming, tz)}  [dim]{upcoming.isoformat()}[/dim]")
            reference = upcoming
