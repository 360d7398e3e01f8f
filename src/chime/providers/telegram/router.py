"""Telegram ingress for acknowledgments.

Button presses arrive as callback queries carrying an action token;
free-text answers to force-reply prompts arrive as replies to one of the
bot's own messages.
"""

from __future__ import annotations

import logging

from aiogram import F, Router
from aiogram.types import CallbackQuery, ForceReply, Message, User

from chime.scheduling.acks import AckReply, AcknowledgmentHandler

logger = logging.getLogger("telegram")


def is_user_allowed(user: User | None, allowed_users: set[str]) -> bool:
    """Empty allow-list means everyone; entries are ids or @usernames."""
    if user is None:
        return False
    if not allowed_users:
        return True
    return str(user.id) in allowed_users or (
        user.username is not None and f"@{user.username}" in allowed_users
    )


def _reply_markup(reply: AckReply) -> ForceReply | None:
    if reply.force_reply:
        return ForceReply(selective=True)
    return None


def create_ack_router(
    acks: AcknowledgmentHandler,
    allowed_users: list[str] | None = None,
) -> Router:
    """Build the router that feeds Telegram updates to the ack handler."""
    router = Router(name="acks")
    allowed = set(allowed_users or [])

    @router.callback_query(F.data)
    async def handle_action(callback: CallbackQuery) -> None:
        if not is_user_allowed(callback.from_user, allowed):
            await callback.answer()
            return
        if callback.message is None:
            await callback.answer("This message is too old to act on.")
            return

        chat_id = callback.message.chat.id
        try:
            reply = await acks.handle_action(
                callback.data or "", callback.from_user.id, chat_id
            )
        except Exception:
            logger.exception("Error handling callback query")
            await callback.answer("Error processing your selection", show_alert=True)
            return

        await callback.answer()
        if callback.bot is not None:
            await callback.bot.send_message(
                chat_id=chat_id,
                text=reply.text,
                reply_markup=_reply_markup(reply),
            )

    @router.message(F.text, F.reply_to_message)
    async def handle_reply(message: Message) -> None:
        if not is_user_allowed(message.from_user, allowed):
            return
        assert message.from_user is not None
        replied = message.reply_to_message
        assert replied is not None

        replied_to_bot = (
            replied.from_user is not None
            and message.bot is not None
            and replied.from_user.id == message.bot.id
        )
        try:
            reply = await acks.handle_reply(
                user_id=message.from_user.id,
                chat_id=message.chat.id,
                text=message.text,
                replied_to_bot=replied_to_bot,
                replied_text=replied.text,
            )
        except Exception:
            logger.exception("Error handling reply")
            await message.answer("Something went wrong. Please try again.")
            return
        if reply is None:
            return
        await message.answer(reply.text, reply_markup=_reply_markup(reply))

    return router
