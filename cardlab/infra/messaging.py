from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

from telegram.error import BadRequest

from cardlab.infra.request_context import RequestContext, add_response_size

LOGGER = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 3500
FALLBACK_CHUNK_SIZE = 2000
EMPTY_MESSAGE_PLACEHOLDER = "(resposta vazia)"


class ReplyTarget(Protocol):
    async def reply_text(self, text: str, **kwargs: Any) -> Any:
        ...


def chunk_text(text: str, max_len: int = MAX_CHUNK_SIZE) -> list[str]:
    chunks: list[str] = []
    remaining = text or ""
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, max_len + 1)
        if split_at == -1:
            split_at = remaining.rfind(" ", 0, max_len + 1)
        if split_at <= 0:
            split_at = max_len
        chunk = remaining[:split_at].rstrip()
        if not chunk:
            chunk = remaining[:max_len]
            split_at = max_len
        chunks.append(chunk)
        remaining = remaining[split_at:].lstrip("\n ")
    return chunks


async def _send_chunks(message: ReplyTarget, chunks: Iterable[str], **kwargs: Any) -> None:
    first = True
    for chunk in chunks:
        options = dict(kwargs)
        if not first:
            options.pop("reply_markup", None)
        try:
            await message.reply_text(chunk, **options)
        except BadRequest as exc:
            if "Message is too long" in str(exc):
                LOGGER.warning("Telegram rejected message chunk as too long; splitting further.")
                options.pop("reply_markup", None)
                for subchunk in chunk_text(chunk, max_len=FALLBACK_CHUNK_SIZE):
                    await message.reply_text(subchunk, **options)
                continue
            LOGGER.exception("Failed to send message chunk: %s", exc)
            break
        first = False


async def safe_send_text(
    message: ReplyTarget | None,
    text: str | None,
    *,
    request_context: RequestContext | None = None,
    parse_mode: str | None = None,
    reply_markup: Any = None,
) -> int:
    if message is None:
        return 0
    payload = text if text and text.strip() else EMPTY_MESSAGE_PLACEHOLDER
    options: dict[str, Any] = {}
    if parse_mode is not None:
        options["parse_mode"] = parse_mode
    if reply_markup is not None:
        options["reply_markup"] = reply_markup
    await _send_chunks(message, chunk_text(payload, max_len=MAX_CHUNK_SIZE), **options)
    add_response_size(request_context, len(payload))
    return len(payload)
