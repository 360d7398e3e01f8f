"""Telegram provider."""

from chime.providers.telegram.bot import TelegramBot
from chime.providers.telegram.gateway import TelegramGateway, build_keyboard
from chime.providers.telegram.router import create_ack_router

__all__ = [
    "TelegramBot",
    "TelegramGateway",
    "build_keyboard",
    "create_ack_router",
]
