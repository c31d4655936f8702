"""Bridge to run the command router from aiogram 3.

Builds a ``CommandInvocation`` from an aiogram Message and wraps the aiogram
bot in an object exposing ``reply_text`` so that cardlab.infra.messaging
(safe_send_text) works unchanged. PTB keyboards are converted on send.
"""

from __future__ import annotations

import logging
from typing import Any

from telegram import InlineKeyboardMarkup, ReplyKeyboardMarkup

from cardlab.bot.routing import CommandInvocation

LOGGER = logging.getLogger(__name__)


def _ptb_inline_to_aiogram(ptb_markup: InlineKeyboardMarkup):  # noqa: ANN201
    from aiogram.types import InlineKeyboardButton as AioButton
    from aiogram.types import InlineKeyboardMarkup as AioMarkup

    rows = []
    for row in ptb_markup.inline_keyboard:
        buttons = []
        for btn in row:
            if getattr(btn, "url", None):
                buttons.append(AioButton(text=btn.text, url=btn.url))
            else:
                buttons.append(AioButton(text=btn.text, callback_data=btn.callback_data or ""))
        rows.append(buttons)
    return AioMarkup(inline_keyboard=rows)


def _ptb_reply_keyboard_to_aiogram(ptb_markup: ReplyKeyboardMarkup):  # noqa: ANN201
    from aiogram.types import KeyboardButton as AioButton
    from aiogram.types import ReplyKeyboardMarkup as AioMarkup

    rows = [[AioButton(text=btn.text) for btn in row] for row in ptb_markup.keyboard]
    return AioMarkup(
        keyboard=rows,
        resize_keyboard=ptb_markup.resize_keyboard,
        one_time_keyboard=ptb_markup.one_time_keyboard,
    )


def convert_markup(markup: Any):  # noqa: ANN201
    if markup is None:
        return None
    if isinstance(markup, InlineKeyboardMarkup):
        return _ptb_inline_to_aiogram(markup)
    if isinstance(markup, ReplyKeyboardMarkup):
        return _ptb_reply_keyboard_to_aiogram(markup)
    return markup


class AiogramReplyTarget:
    """Mimics the PTB ``Message.reply_text`` call for an aiogram chat."""

    def __init__(self, aiogram_bot: Any, chat_id: int) -> None:
        self._bot = aiogram_bot
        self.chat_id = chat_id

    async def reply_text(
        self,
        text: str,
        parse_mode: str | None = None,
        reply_markup: Any = None,
        **kwargs: Any,
    ) -> Any:
        return await self._bot.send_message(
            chat_id=self.chat_id,
            text=text or "(resposta vazia)",
            parse_mode=parse_mode,
            reply_markup=convert_markup(reply_markup),
            **kwargs,
        )


def invocation_from_message(message: Any) -> CommandInvocation:
    """Build an invocation from an aiogram Message (or equivalent)."""
    user = getattr(message, "from_user", None)
    chat = getattr(message, "chat", None)
    return CommandInvocation.from_text(
        getattr(message, "text", None) or "",
        user_id=user.id if user else 0,
        message_id=message.message_id,
        chat_id=chat.id if chat else 0,
        first_name=getattr(user, "first_name", None) if user else None,
    )
