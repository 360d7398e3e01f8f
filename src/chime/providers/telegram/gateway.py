"""Telegram delivery gateway."""

from __future__ import annotations

import logging
from typing import Any

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, MessageEntity

from chime.scheduling.delivery import Delivery, DeliveryGateway, InteractiveControl

logger = logging.getLogger("telegram")


def build_keyboard(
    controls: list[list[InteractiveControl]],
) -> InlineKeyboardMarkup | None:
    """Render control rows as an inline keyboard, or None when empty."""
    rows = [
        [InlineKeyboardButton(text=c.label, callback_data=c.token) for c in row]
        for row in controls
        if row
    ]
    if not rows:
        return None
    return InlineKeyboardMarkup(inline_keyboard=rows)


def to_entities(raw: list[dict[str, Any]]) -> list[MessageEntity] | None:
    """Convert stored entity dicts into aiogram entities.

    Malformed entries are dropped rather than failing the delivery.
    """
    entities: list[MessageEntity] = []
    for item in raw:
        try:
            entities.append(MessageEntity.model_validate(item))
        except ValueError:
            logger.debug("entity_dropped", extra={"telegram.entity": item})
    return entities or None


class TelegramGateway(DeliveryGateway):
    """Sends deliveries with aiogram's ``Bot.send_message``."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, delivery: Delivery) -> str:
        reply_markup = build_keyboard(delivery.controls)
        entities = to_entities(delivery.entities)
        try:
            sent = await self._bot.send_message(
                chat_id=delivery.destination_id,
                text=delivery.text,
                entities=entities,
                parse_mode=None,
                reply_markup=reply_markup,
            )
        except TelegramBadRequest as e:
            if "can't parse" not in str(e).lower() or entities is None:
                raise
            logger.debug(
                "entities_rejected_plain_retry", extra={"error.message": str(e)}
            )
            sent = await self._bot.send_message(
                chat_id=delivery.destination_id,
                text=delivery.text,
                parse_mode=None,
                reply_markup=reply_markup,
            )
        return str(sent.message_id)
