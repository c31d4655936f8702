import asyncio

from cardlab.infra.config import load_settings
from cardlab.main import build_ptb_application


def _dry_run_settings(tmp_path, **extra: str):
    env = {"DRY_RUN": "1", "BOT_DB_PATH": str(tmp_path / "db" / "records.db")}
    env.update(extra)
    return load_settings(env)


def test_dry_run_application_wires_services(tmp_path) -> None:
    application, settings = build_ptb_application(_dry_run_settings(tmp_path))
    bot_data = application.bot_data

    try:
        assert settings.dry_run is True
        assert (tmp_path / "db").is_dir()
        assert {"settings", "services", "router", "guard", "guard_scheduler", "http_client"} <= set(bot_data)
        assert "gen" in bot_data["router"].commands
        assert "eliminarbin" in bot_data["router"].commands
        assert bot_data["services"].bin_resolver.provider_names == ["binlist"]
        assert bot_data["guard"].cooldown_seconds == 2.0
    finally:
        bot_data["services"].user_store.close()
        asyncio.run(bot_data["http_client"].aclose())


def test_secondary_bin_provider_enabled_by_key(tmp_path) -> None:
    application, _ = build_ptb_application(_dry_run_settings(tmp_path, BINTABLE_API_KEY="key"))
    bot_data = application.bot_data

    try:
        assert bot_data["services"].bin_resolver.provider_names == ["binlist", "bintable"]
    finally:
        bot_data["services"].user_store.close()
        asyncio.run(bot_data["http_client"].aclose())


def test_lifecycle_hooks_start_and_stop_scheduler(tmp_path) -> None:
    application, _ = build_ptb_application(_dry_run_settings(tmp_path))
    scheduler = application.bot_data["guard_scheduler"]

    async def _run() -> tuple[bool, bool]:
        await application.post_init(application)
        started = scheduler.running
        await application.post_shutdown(application)
        return started, scheduler.running

    assert asyncio.run(_run()) == (True, False)
    assert application.bot_data["http_client"].is_closed


def test_shared_client_timeout_follows_lookup_setting(tmp_path) -> None:
    application, settings = build_ptb_application(_dry_run_settings(tmp_path, LOOKUP_TIMEOUT_SECONDS="12"))
    bot_data = application.bot_data
    client = bot_data["http_client"]

    try:
        assert settings.lookup_timeout_seconds == 12.0
        assert client.timeout.connect == 12.0
        assert client.timeout.read == 12.0
        assert client.timeout.pool == 12.0
    finally:
        bot_data["services"].user_store.close()
        asyncio.run(client.aclose())


def test_lookup_requests_carry_the_configured_read_timeout(tmp_path) -> None:
    application, _ = build_ptb_application(_dry_run_settings(tmp_path, LOOKUP_TIMEOUT_SECONDS="8"))
    bot_data = application.bot_data
    client = bot_data["http_client"]

    try:
        request = client.build_request("GET", "https://lookup.binlist.net/431940")
        assert request.extensions["timeout"]["read"] == 8.0
        assert request.extensions["timeout"]["connect"] == 8.0
    finally:
        bot_data["services"].user_store.close()
        asyncio.run(client.aclose())
