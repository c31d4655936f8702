from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

LOGGER = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/cardlab.db")
DEFAULT_BINLIST_BASE_URL = "https://lookup.binlist.net"
DEFAULT_BINTABLE_BASE_URL = "https://api.bintable.com/v1"
DEFAULT_REGISTRY_BASE_URL = (
    "https://srienlinea.sri.gob.ec/movil-servicios/api/v1.0/deudas/porIdentificacion"
)
DEFAULT_VEHICLE_BASE_URL = (
    "https://srienlinea.sri.gob.ec/movil-servicios/api/v1.0/matriculacion/valor"
)
DEFAULT_IP_LOOKUP_BASE_URL = "http://ip-api.com/json"
DEFAULT_TEMP_MAIL_BASE_URL = "https://api.mail.tm"
DRY_RUN_TOKEN = "000000:DRY_RUN_TOKEN"


@dataclass(frozen=True)
class Settings:
    bot_token: str
    dry_run: bool
    db_path: Path
    cooldown_ms: int
    dedup_retention_seconds: float
    guard_purge_interval_seconds: int
    binlist_base_url: str
    bintable_base_url: str
    bintable_api_key: str | None
    registry_base_url: str
    vehicle_base_url: str
    ip_lookup_base_url: str
    temp_mail_base_url: str
    lookup_timeout_seconds: float
    registry_user_agent: str


_DEV_ENVS = {"dev", "development", "local"}


def resolve_env_label(raw_env: dict[str, str] | None = None) -> str:
    source = raw_env if raw_env is not None else os.environ
    env = source.get("APP_ENV", "prod").strip().lower()
    return "dev" if env in _DEV_ENVS else "prod"


def validate_startup_env(settings: Settings, *, logger: logging.Logger | None = None) -> None:
    log = logger or LOGGER
    if not settings.dry_run and (not settings.bot_token or settings.bot_token == DRY_RUN_TOKEN):
        log.error("startup.env invalid: BOT_TOKEN missing")
        raise SystemExit("BOT_TOKEN is not set")
    if settings.cooldown_ms < 0:
        log.error("startup.env invalid: COOLDOWN_MS=%s", settings.cooldown_ms)
        raise SystemExit("COOLDOWN_MS must not be negative")
    if not settings.bintable_api_key:
        log.warning("startup.env bintable disabled: BINTABLE_API_KEY missing, BIN lookups use one provider")


def load_settings(raw_env: dict[str, str] | None = None) -> Settings:
    if raw_env is None:
        _load_dotenv()
    env = raw_env if raw_env is not None else os.environ
    dry_run = _parse_optional_bool(env.get("DRY_RUN")) is True

    token = env.get("BOT_TOKEN")
    if not token:
        if dry_run:
            # DRY_RUN never talks to Telegram; keep a non-empty placeholder.
            token = DRY_RUN_TOKEN
        else:
            raise RuntimeError("BOT_TOKEN is not set")

    db_path = Path(env.get("BOT_DB_PATH", DEFAULT_DB_PATH))
    return Settings(
        bot_token=token,
        dry_run=dry_run,
        db_path=db_path,
        cooldown_ms=_parse_int_with_default(env.get("COOLDOWN_MS"), 2000),
        dedup_retention_seconds=_parse_optional_float(env.get("DEDUP_RETENTION_SECONDS"), 60.0),
        guard_purge_interval_seconds=_parse_int_with_default(env.get("GUARD_PURGE_INTERVAL_SECONDS"), 300),
        binlist_base_url=env.get("BINLIST_BASE_URL", DEFAULT_BINLIST_BASE_URL).rstrip("/"),
        bintable_base_url=env.get("BINTABLE_BASE_URL", DEFAULT_BINTABLE_BASE_URL).rstrip("/"),
        bintable_api_key=env.get("BINTABLE_API_KEY") or None,
        registry_base_url=env.get("REGISTRY_BASE_URL", DEFAULT_REGISTRY_BASE_URL).rstrip("/"),
        vehicle_base_url=env.get("VEHICLE_BASE_URL", DEFAULT_VEHICLE_BASE_URL).rstrip("/"),
        ip_lookup_base_url=env.get("IP_LOOKUP_BASE_URL", DEFAULT_IP_LOOKUP_BASE_URL).rstrip("/"),
        temp_mail_base_url=env.get("TEMP_MAIL_BASE_URL", DEFAULT_TEMP_MAIL_BASE_URL).rstrip("/"),
        lookup_timeout_seconds=_parse_optional_float(env.get("LOOKUP_TIMEOUT_SECONDS"), 8.0),
        registry_user_agent=env.get("REGISTRY_USER_AGENT", "Mozilla/5.0"),
    )


def _load_dotenv() -> None:
    if load_dotenv():
        LOGGER.debug(".env loaded")


def _parse_optional_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return float(trimmed)


def _parse_optional_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    trimmed = value.strip().lower()
    if not trimmed:
        return None
    return trimmed in {"1", "true", "yes", "on"}


def _parse_int_with_default(value: str | None, default: int) -> int:
    if value is None:
        return default
    trimmed = value.strip()
    if not trimmed:
        return default
    return int(trimmed)
