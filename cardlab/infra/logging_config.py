"""Process-wide logging setup for cardlab.

``configure_logging()`` installs a stderr handler and, when ``LOG_FILE`` is
set, a rotating file handler. Every handler carries ``CredentialMaskFilter``:
provider URLs embed the bintable ``api_key``, mail.tm calls carry bearer
tokens and Telegram URLs embed the bot token.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MASK = "***"

_ROTATE_BYTES = 5 * 1024 * 1024
_ROTATE_BACKUPS = 3

_THIRD_PARTY_LEVELS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "telegram": logging.WARNING,
    "telegram.ext": logging.WARNING,
    "aiogram": logging.WARNING,
    "apscheduler": logging.WARNING,
}

_CREDENTIAL_PATTERNS = (
    re.compile(r"(api_key=)[^&\s\"']+"),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"(/bot)\d+:[A-Za-z0-9_\-]+"),
)


def mask_credentials(text: str) -> str:
    for pattern in _CREDENTIAL_PATTERNS:
        text = pattern.sub(lambda match: match.group(1) + MASK, text)
    return text


class CredentialMaskFilter(logging.Filter):
    """Renders the record once and replaces credentials in the result."""

    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        masked = mask_credentials(rendered)
        if masked != rendered:
            record.msg = masked
            record.args = None
        return True


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _file_from_env() -> str | None:
    return os.environ.get("LOG_FILE", "").strip() or None


def _rotating_file_handler(log_file: str) -> logging.Handler | None:
    path = Path(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_BACKUPS, encoding="utf-8")
    except OSError as exc:
        logging.getLogger(__name__).warning("LOG_FILE %s unusable (%s); stderr only", log_file, exc)
        return None


def configure_logging(*, level: int | None = None, log_file: str | None = None) -> None:
    """Call once at startup; ``level`` and ``log_file`` override the env."""
    level = _level_from_env() if level is None else level
    log_file = _file_from_env() if log_file is None else log_file

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.setLevel(level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        file_handler = _rotating_file_handler(log_file)
        if file_handler is not None:
            handlers.append(file_handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    credential_filter = CredentialMaskFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(credential_filter)
        root.addHandler(handler)

    for name, third_party_level in _THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(third_party_level)
