from __future__ import annotations

import asyncio
import logging
import sys

import httpx
from telegram import Update
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from cardlab.bot.handlers import Services, build_handlers
from cardlab.bot.routing import CommandInvocation, CommandRouter
from cardlab.core.texts import GENERIC_ERROR_TEXT
from cardlab.infra.config import Settings, load_settings, resolve_env_label, validate_startup_env
from cardlab.infra.guard import CommandGuard
from cardlab.infra.logging_config import configure_logging
from cardlab.infra.messaging import safe_send_text
from cardlab.infra.providers import (
    BinlistProvider,
    BintableProvider,
    IpLookupProvider,
    LookupResolver,
    TaxpayerRegistryProvider,
    VehicleRegistryProvider,
)
from cardlab.infra.request_context import log_event
from cardlab.infra.resilience import RetryPolicy
from cardlab.infra.scheduler import GuardScheduler
from cardlab.infra.temp_mail import TempMailClient
from cardlab.infra.user_store import UserRecordStore

LOGGER = logging.getLogger(__name__)


def build_bin_providers(settings: Settings) -> list[BinlistProvider | BintableProvider]:
    single = RetryPolicy(max_attempts=1, timeout_seconds=settings.lookup_timeout_seconds)
    providers: list[BinlistProvider | BintableProvider] = [
        BinlistProvider(settings.binlist_base_url, policy=single),
    ]
    if settings.bintable_api_key:
        providers.append(BintableProvider(settings.bintable_base_url, settings.bintable_api_key, policy=single))
    return providers


def build_services(
    settings: Settings, *, client: httpx.AsyncClient | None = None
) -> tuple[Services, httpx.AsyncClient]:
    # Per-phase limits match the per-attempt deadline enforced by fetch_with_retry.
    http_client = client or httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.lookup_timeout_seconds),
    )
    retrying = RetryPolicy(timeout_seconds=settings.lookup_timeout_seconds)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    return Services(
        settings=settings,
        user_store=UserRecordStore(settings.db_path),
        bin_resolver=LookupResolver(http_client, build_bin_providers(settings)),
        registry_resolver=LookupResolver(
            http_client,
            [
                TaxpayerRegistryProvider(
                    settings.registry_base_url,
                    user_agent=settings.registry_user_agent,
                    policy=retrying,
                )
            ],
        ),
        vehicle_resolver=LookupResolver(
            http_client,
            [
                VehicleRegistryProvider(
                    settings.vehicle_base_url,
                    user_agent=settings.registry_user_agent,
                    policy=retrying,
                )
            ],
        ),
        ip_resolver=LookupResolver(http_client, [IpLookupProvider(settings.ip_lookup_base_url, policy=retrying)]),
        mail_client=TempMailClient(http_client, settings.temp_mail_base_url, policy=retrying),
    ), http_client


def build_router(settings: Settings, services: Services) -> tuple[CommandRouter, CommandGuard]:
    guard = CommandGuard(
        cooldown_seconds=settings.cooldown_ms / 1000,
        retention_seconds=settings.dedup_retention_seconds,
    )
    return CommandRouter(guard, build_handlers(), services), guard


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    user = update.effective_user
    if message is None or user is None or not message.text:
        return
    invocation = CommandInvocation.from_text(
        message.text,
        user_id=user.id,
        message_id=message.message_id,
        chat_id=message.chat_id,
        first_name=user.first_name,
    )
    router: CommandRouter = context.application.bot_data["router"]
    await router.route(invocation, message)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    LOGGER.exception("Unhandled exception", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        await safe_send_text(update.effective_message, GENERIC_ERROR_TEXT)


def build_ptb_application(settings: Settings | None = None) -> tuple[Application, Settings]:
    if settings is None:
        try:
            settings = load_settings()
        except RuntimeError as exc:
            LOGGER.exception("Startup failed: %s", exc)
            raise SystemExit(str(exc)) from exc
    validate_startup_env(settings, logger=LOGGER)

    services, http_client = build_services(settings)
    router, guard = build_router(settings, services)
    guard_scheduler = GuardScheduler(guard, interval_seconds=settings.guard_purge_interval_seconds)

    application = Application.builder().token(settings.bot_token).concurrent_updates(True).build()
    application.bot_data["settings"] = settings
    application.bot_data["services"] = services
    application.bot_data["router"] = router
    application.bot_data["guard"] = guard
    application.bot_data["guard_scheduler"] = guard_scheduler
    application.bot_data["http_client"] = http_client

    async def _post_init(app: Application) -> None:
        app.bot_data["guard_scheduler"].start()

    async def _post_shutdown(app: Application) -> None:
        app.bot_data["guard_scheduler"].shutdown()
        await app.bot_data["http_client"].aclose()
        app.bot_data["services"].user_store.close()

    application.post_init = _post_init
    application.post_shutdown = _post_shutdown

    application.add_handler(MessageHandler(filters.TEXT, on_text))
    application.add_error_handler(error_handler)
    return application, settings


def main() -> None:
    configure_logging()
    try:
        settings = load_settings()
    except RuntimeError as exc:
        LOGGER.exception("Startup failed: %s", exc)
        raise SystemExit(str(exc)) from exc
    application, settings = build_ptb_application(settings)
    log_event(
        LOGGER,
        None,
        component="startup",
        event="startup.check",
        status="ok",
        python_version=sys.version.split()[0],
        app_env=resolve_env_label(),
        dry_run=settings.dry_run,
        commands=application.bot_data["router"].commands,
        bin_providers=application.bot_data["services"].bin_resolver.provider_names,
    )
    if settings.dry_run:
        LOGGER.info("DRY_RUN enabled; polling skipped")
        application.bot_data["services"].user_store.close()
        asyncio.run(application.bot_data["http_client"].aclose())
        return

    LOGGER.info("Bot started")
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())
    application.run_polling()


if __name__ == "__main__":
    main()
