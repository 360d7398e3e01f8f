"""Process runtime: wires the store, gateway, dispatchers and Telegram."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from chime.config.models import ChimeConfig
from chime.db.engine import Database
from chime.db.models import utc_now
from chime.scheduling.acks import AcknowledgmentHandler
from chime.scheduling.delivery import DeliveryGateway
from chime.scheduling.dispatcher import JobDispatcher
from chime.scheduling.locks import LockManager, make_instance_id
from chime.scheduling.prompts import PendingPromptStore
from chime.scheduling.store import SqlJobStore
from chime.scheduling.types import JobFamily

logger = logging.getLogger(__name__)


def create_database(config: ChimeConfig) -> Database:
    return Database(
        database_url=config.database.url,
        database_path=config.database.path,
    )


class SchedulerService:
    """Runs both job families against one store for one process.

    Several processes may run this service against the same database;
    the per-job lock keeps deliveries exactly-once.

    Example:
        service = SchedulerService(config)
        await service.start()
        ...
        await service.stop()
    """

    def __init__(
        self,
        config: ChimeConfig,
        database: Database | None = None,
        gateway: DeliveryGateway | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._config = config
        self._database = database or create_database(config)
        self._clock = clock
        self._store = SqlJobStore(self._database)
        self._prompts = PendingPromptStore(
            self._database, ttl=config.scheduler.snooze_prompt_ttl_delta
        )
        self._acks = AcknowledgmentHandler(
            self._store,
            self._prompts,
            clock=clock,
            default_timezone=config.timezone,
        )
        self._instance_id = config.scheduler.instance_id or make_instance_id()
        self._locks = LockManager(
            self._store, self._instance_id, ttl=config.scheduler.lock_ttl_delta
        )

        self._telegram = None
        if gateway is None:
            from chime.providers.telegram import (
                TelegramBot,
                TelegramGateway,
                create_ack_router,
            )

            allowed = config.telegram.allowed_users if config.telegram else []
            self._telegram = TelegramBot(
                config.require_bot_token(),
                routers=[create_ack_router(self._acks, allowed)],
            )
            gateway = TelegramGateway(self._telegram.bot)
        self._gateway = gateway

        self._dispatchers = [
            self._make_dispatcher(family) for family in self._enabled_families()
        ]
        self._polling_task: asyncio.Task | None = None
        self._started = False

    def _enabled_families(self) -> list[JobFamily]:
        families = []
        if self._config.scheduler.reminders_enabled:
            families.append(JobFamily.REMINDER)
        if self._config.scheduler.habits_enabled:
            families.append(JobFamily.HABIT)
        return families

    def _make_dispatcher(self, family: JobFamily) -> JobDispatcher:
        scheduler = self._config.scheduler
        return JobDispatcher(
            family,
            self._store,
            self._gateway,
            self._locks,
            poll_interval=scheduler.poll_interval,
            batch_size=scheduler.batch_size,
            retry_backoff=scheduler.retry_backoff,
            default_timezone=self._config.timezone,
            clock=self._clock,
        )

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def store(self) -> SqlJobStore:
        return self._store

    @property
    def acks(self) -> AcknowledgmentHandler:
        return self._acks

    @property
    def polling_enabled(self) -> bool:
        """Whether this process receives Telegram updates."""
        telegram = self._config.telegram
        return self._telegram is not None and (telegram is None or telegram.polling)

    @property
    def dispatchers(self) -> list[JobDispatcher]:
        return list(self._dispatchers)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._database.connect()
        purged = await self._prompts.purge_expired(self._clock())
        if purged:
            logger.debug("prompts_purged", extra={"prompts.purged": purged})
        logger.info(
            "service_starting",
            extra={
                "lock.instance_id": self._instance_id,
                "job.families": [d.family.value for d in self._dispatchers],
            },
        )
        for dispatcher in self._dispatchers:
            await dispatcher.start()
        if self._telegram is not None:
            if self.polling_enabled:
                self._polling_task = asyncio.create_task(
                    self._telegram.start(), name="telegram-polling"
                )
            else:
                logger.info(
                    "telegram_polling_disabled",
                    extra={"lock.instance_id": self._instance_id},
                )

    async def wait(self) -> None:
        """Block until Telegram polling ends, or forever if this process only sends."""
        if self._polling_task is not None:
            await self._polling_task
        else:
            await asyncio.Event().wait()

    async def stop(self) -> None:
        """Stop dispatchers and polling, then close the database.

        A tick in flight is cancelled; any lock it held expires on its own.
        """
        if not self._started:
            return
        self._started = False
        for dispatcher in self._dispatchers:
            await dispatcher.stop()
        if self._telegram is not None:
            await self._telegram.stop()
        if self._polling_task is not None:
            self._polling_task.cancel()
            try:
                await self._polling_task
            except asyncio.CancelledError:
                pass
            self._polling_task = None
        await self._database.disconnect()
        logger.info("service_stopped", extra={"lock.instance_id": self._instance_id})
