"""aiogram bot and polling lifecycle."""

from __future__ import annotations

import logging

from aiogram import Bot, Dispatcher, Router

logger = logging.getLogger("telegram")


class TelegramBot:
    """Owns the aiogram ``Bot`` and ``Dispatcher`` for one process."""

    def __init__(self, bot_token: str, routers: list[Router] | None = None):
        self._bot = Bot(token=bot_token)
        self._dp = Dispatcher()
        for router in routers or []:
            self._dp.include_router(router)
        self._running = False
        self._closed = False
        self._bot_username: str | None = None

    @property
    def bot(self) -> Bot:
        return self._bot

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dp

    @property
    def bot_username(self) -> str | None:
        return self._bot_username

    def include_router(self, router: Router) -> None:
        self._dp.include_router(router)

    async def start(self) -> None:
        """Resolve the bot identity and poll for updates until stopped."""
        try:
            bot_info = await self._bot.get_me()
            self._bot_username = bot_info.username
            logger.info(
                "bot_username_resolved",
                extra={"telegram.bot_username": self._bot_username},
            )
        except Exception as e:
            logger.warning("bot_info_failed", extra={"error.message": str(e)})

        self._running = True
        logger.info("telegram_bot_starting")
        await self._bot.delete_webhook(drop_pending_updates=False)
        # The service owns SIGINT/SIGTERM handling
        await self._dp.start_polling(
            self._bot,
            handle_signals=False,
            close_bot_session=False,
        )

    async def stop(self) -> None:
        """Stop polling if it runs, then close the HTTP session."""
        if self._closed:
            return
        self._closed = True

        if self._running:
            self._running = False
            try:
                await self._dp.stop_polling()
            except Exception as e:
                logger.debug("polling_stop_failed", extra={"error.message": str(e)})

        try:
            await self._bot.session.close()
        except Exception as e:
            logger.debug("bot_session_close_failed", extra={"error.message": str(e)})

        logger.info("telegram_bot_stopped")
