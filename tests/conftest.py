"""Shared test fixtures and factories."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from chime.config.models import ChimeConfig
from chime.db.engine import Database
from chime.scheduling.delivery import Delivery, DeliveryGateway
from chime.scheduling.locks import LockManager
from chime.scheduling.prompts import PendingPromptStore
from chime.scheduling.store import SqlJobStore
from chime.scheduling.types import (
    HabitPayload,
    Job,
    JobFamily,
    Once,
    ReminderPayload,
    Schedule,
)

# Tuesday 2026-03-03 10:00 America/Chicago (CST, UTC-6)
T0 = datetime(2026, 3, 3, 16, 0, tzinfo=UTC)

OWNER_ID = 1001
CHAT_ID = 1001


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def minimal_config() -> ChimeConfig:
    """Minimal valid configuration."""
    return ChimeConfig()


@pytest.fixture
def config_toml_content() -> str:
    """Valid TOML config content."""
    return """
timezone = "Europe/Berlin"

[telegram]
bot_token = "123456789:ABCdefGHIjklMNOpqrSTUvwxYZ0123456789"
allowed_users = ["@alice", "42"]

[scheduler]
poll_interval = 5
lock_ttl = 30
batch_size = 10
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Create a temporary test database."""
    db = Database(database_path=tmp_path / "test.db")
    await db.connect()
    await db.create_all()

    yield db

    await db.disconnect()


@pytest.fixture
async def store(database: Database) -> SqlJobStore:
    return SqlJobStore(database)


@pytest.fixture
async def prompts(database: Database) -> PendingPromptStore:
    return PendingPromptStore(database)


# =============================================================================
# Clock and Gateway Fakes
# =============================================================================


class FakeClock:
    """Settable clock; call it to read the current instant."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeGateway(DeliveryGateway):
    """Records deliveries; raises ``error`` instead when set."""

    def __init__(self) -> None:
        self.sent: list[Delivery] = []
        self.error: Exception | None = None

    async def send(self, delivery: Delivery) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append(delivery)
        return str(len(self.sent))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def locks(store: SqlJobStore) -> LockManager:
    return LockManager(store, "test-instance", ttl=timedelta(seconds=60))


# =============================================================================
# Job Factories
# =============================================================================

JobFactory = Callable[..., Awaitable[Job]]


@pytest.fixture
def make_job(store: SqlJobStore) -> JobFactory:
    """Create and persist a job; keyword arguments override defaults."""

    async def factory(
        family: JobFamily = JobFamily.REMINDER,
        schedule: Schedule | None = None,
        next_run_at: datetime | None = T0,
        timezone: str = "America/Chicago",
        **overrides: Any,
    ) -> Job:
        payload = (
            HabitPayload(name="Read", unit="minutes", target_amount=20)
            if family is JobFamily.HABIT
            else ReminderPayload(text="Water the plants")
        )
        fields: dict[str, Any] = {
            "family": family,
            "owner_id": OWNER_ID,
            "destination_id": CHAT_ID,
            "payload": payload,
            "schedule": schedule or Once(),
            "timezone": timezone,
            "status": family.policy.rescheduled_status,
            "next_run_at": next_run_at,
        }
        fields.update(overrides)
        return await store.create(Job(**fields))

    return factory


# =============================================================================
# CLI Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})


@pytest.fixture
def cli_config(tmp_path: Path) -> Path:
    """Config file pointing the job store at a temporary SQLite file."""
    config_path = tmp_path / "cli.toml"
    config_path.write_text(
        f'timezone = "America/Chicago"\n\n[database]\npath = "{tmp_path / "cli.db"}"\n'
    )
    return config_path
