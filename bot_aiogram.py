"""Entry point for running the bot on aiogram 3.x.

Uses the same router and handlers as the PTB entry (cardlab.main); every text
message is turned into a CommandInvocation and replies go through
AiogramReplyTarget.
Run: python bot_aiogram.py
"""

from __future__ import annotations

import asyncio
import logging

from aiogram import Bot, Dispatcher, F
from aiogram.types import Message

from cardlab.bot.aiogram_bridge import AiogramReplyTarget, invocation_from_message
from cardlab.bot.routing import CommandRouter
from cardlab.core.texts import GENERIC_ERROR_TEXT
from cardlab.infra.config import load_settings
from cardlab.infra.logging_config import configure_logging
from cardlab.infra.messaging import safe_send_text

# Build PTB application (and bot_data) without running PTB polling
from cardlab.main import build_ptb_application

LOGGER = logging.getLogger(__name__)


async def _on_message(message: Message, bot: Bot, command_router: CommandRouter) -> None:
    target = AiogramReplyTarget(bot, message.chat.id)
    try:
        await command_router.route(invocation_from_message(message), target)
    except Exception as exc:
        LOGGER.exception("Message handling failed: %s", exc)
        await safe_send_text(target, GENERIC_ERROR_TEXT)


def main() -> None:
    configure_logging()
    try:
        settings = load_settings()
    except RuntimeError as exc:
        LOGGER.exception("Startup failed: %s", exc)
        raise SystemExit(str(exc)) from exc
    application, settings = build_ptb_application(settings)
    bot_data = application.bot_data
    router: CommandRouter = bot_data["router"]

    if settings.dry_run:
        LOGGER.info("DRY_RUN enabled; aiogram polling skipped")
        bot_data["services"].user_store.close()
        asyncio.run(bot_data["http_client"].aclose())
        return

    bot = Bot(token=settings.bot_token)
    dp = Dispatcher()
    dp["command_router"] = router

    async def _on_startup() -> None:
        bot_data["guard_scheduler"].start()

    async def _on_shutdown() -> None:
        bot_data["guard_scheduler"].shutdown()
        await bot_data["http_client"].aclose()
        bot_data["services"].user_store.close()

    dp.startup.register(_on_startup)
    dp.shutdown.register(_on_shutdown)
    dp.message.register(_on_message, F.text)

    LOGGER.info("Aiogram bot started")
    asyncio.run(dp.start_polling(bot, handle_as_tasks=True))


if __name__ == "__main__":
    main()
