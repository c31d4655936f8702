import json
import logging
from datetime import datetime, timezone

import pytest

from cardlab.infra.logging_config import configure_logging, mask_credentials
from cardlab.infra.request_context import RequestContext, log_event, log_request, safe_log_payload


def _context(env: str = "prod") -> RequestContext:
    return RequestContext(
        correlation_id="cid-1",
        user_id=1,
        chat_id=1,
        message_id=1,
        ts=datetime.now(timezone.utc),
        env=env,
        command="gen",
        trigger="slash",
    )


def test_configure_logging_with_file(tmp_path) -> None:
    log_file = tmp_path / "logs" / "bot.log"

    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    try:
        configure_logging(level=logging.INFO, log_file=str(log_file))
        logging.getLogger("cardlab.test").info("hello file")
        logging.getLogger("httpx").warning(
            "HTTP Request: GET %s %s",
            "https://api.bintable.com/v1/431940?api_key=abc123",
            "https://api.telegram.org/bot123456:AAH-secret_token/getMe",
        )
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)

    content = log_file.read_text(encoding="utf-8")
    assert "hello file" in content
    assert "api_key=***" in content
    assert "/bot***/getMe" in content
    assert "abc123" not in content
    assert "AAH-secret_token" not in content
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("apscheduler").level == logging.WARNING


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("GET /v1/431940?api_key=k1&x=1", "GET /v1/431940?api_key=***&x=1"),
        ("Authorization: Bearer eyJ0.abc-def", "Authorization: Bearer ***"),
        ("nothing secret here", "nothing secret here"),
    ],
)
def test_mask_credentials(raw: str, expected: str) -> None:
    assert mask_credentials(raw) == expected


def test_safe_log_payload_redacts_secrets_and_hashes_text() -> None:
    payload = safe_log_payload(_context(), {"api_key": "secret", "text": "477349002646|05|27", "provider": "binlist"})

    assert payload["api_key"] == "***"
    assert payload["provider"] == "binlist"
    assert "text_sha256" in payload["text"]
    assert "text_preview" not in payload["text"]


def test_log_event_levels(caplog) -> None:
    logger = logging.getLogger("cardlab.test.events")
    with caplog.at_level(logging.DEBUG, logger="cardlab.test.events"):
        log_event(logger, _context(), component="router", event="guard.denied", status="denied")
        log_event(logger, _context(), component="lookup", event="provider.skipped", status="failed")
        log_request(logger, _context())

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.INFO, logging.WARNING, logging.INFO]
    summary = json.loads(caplog.records[-1].getMessage())
    assert summary["event"] == "trace.summary"
    assert summary["command"] == "gen"
    assert summary["correlation_id"] == "cid-1"
