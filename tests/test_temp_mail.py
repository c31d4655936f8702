import asyncio
import json

import httpx
import pytest

from cardlab.core.errors import NotFoundError, SessionExpiredError, TransientProviderError
from cardlab.core.lookup import MAIL_CONTENT_LIMIT, NO_SUBJECT, MailMessage
from cardlab.core.user_record import TempMailbox
from cardlab.infra.resilience import RetryPolicy
from cardlab.infra.temp_mail import TempMailClient

BASE_URL = "https://mail.test"
MAILBOX = TempMailbox(address="abc@mail.test", password="pw", token="old-token")


async def _no_sleep(delay: float) -> None:
    return None


def _with_client(handler, action, **kwargs):
    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            mail_client = TempMailClient(
                client,
                BASE_URL,
                policy=RetryPolicy(max_attempts=2, timeout_seconds=1),
                sleep=_no_sleep,
                local_part_factory=lambda: "abc",
                password_factory=lambda: "pw",
                **kwargs,
            )
            return await action(mail_client)

    return asyncio.run(_run())


def test_create_mailbox_registers_account_and_fetches_token() -> None:
    requests: list[tuple[str, str, dict | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        requests.append((request.method, request.url.path, body))
        if request.url.path == "/domains":
            return httpx.Response(
                200,
                json={"hydra:member": [{"domain": "old.test", "isActive": False}, {"domain": "mail.test", "isActive": True}]},
            )
        if request.url.path == "/accounts":
            return httpx.Response(201, json={"id": "acc-1", "address": "abc@mail.test"})
        return httpx.Response(200, json={"token": "fresh-token"})

    mailbox = _with_client(handler, lambda client: client.create_mailbox())

    assert mailbox == TempMailbox(address="abc@mail.test", password="pw", token="fresh-token")
    credentials = {"address": "abc@mail.test", "password": "pw"}
    assert requests == [
        ("GET", "/domains", None),
        ("POST", "/accounts", credentials),
        ("POST", "/token", credentials),
    ]


def test_create_mailbox_without_active_domain() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"hydra:member": [{"domain": "old.test", "isActive": False}]})

    with pytest.raises(NotFoundError):
        _with_client(handler, lambda client: client.create_mailbox())


def test_account_creation_is_not_retried() -> None:
    account_calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/domains":
            return httpx.Response(200, json=[{"domain": "mail.test"}])
        account_calls.append(request.url.path)
        return httpx.Response(503)

    with pytest.raises(TransientProviderError):
        _with_client(handler, lambda client: client.create_mailbox())

    assert account_calls == ["/accounts"]


def test_read_inbox_sends_bearer_and_limits_details() -> None:
    seen: list[tuple[str, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, request.headers.get("Authorization")))
        if request.url.path == "/messages":
            members = [{"id": f"m{index}", "subject": f"s{index}"} for index in range(4)]
            return httpx.Response(200, json={"hydra:member": members})
        message_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json={
                "id": message_id,
                "from": {"address": "shop@example.com"},
                "to": [{"address": "abc@mail.test"}],
                "subject": f"detail {message_id}",
                "createdAt": "2026-03-01T12:00:00+00:00",
                "html": ["<p>Olá&nbsp;<b>mundo</b></p>"],
            },
        )

    mailbox, messages = _with_client(handler, lambda client: client.read_inbox(MAILBOX), message_limit=2)

    assert mailbox == MAILBOX
    assert [message.subject for message in messages] == ["detail m0", "detail m1"]
    assert messages[0].content == "Olá mundo"
    assert messages[0].sender == "shop@example.com"
    assert {auth for _, auth in seen} == {"Bearer old-token"}
    assert [path for path, _ in seen] == ["/messages", "/messages/m0", "/messages/m1"]


def test_read_inbox_renews_token_once_on_unauthorized() -> None:
    tokens: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            return httpx.Response(200, json={"token": "new-token"})
        tokens.append(request.headers.get("Authorization"))
        if request.headers.get("Authorization") == "Bearer old-token":
            return httpx.Response(401, json={"message": "Expired JWT Token"})
        return httpx.Response(200, json={"hydra:member": []})

    mailbox, messages = _with_client(handler, lambda client: client.read_inbox(MAILBOX))

    assert mailbox.token == "new-token"
    assert mailbox.address == MAILBOX.address
    assert messages == []
    assert tokens == ["Bearer old-token", "Bearer new-token"]


def test_failed_renewal_is_session_expired() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Invalid credentials"})

    with pytest.raises(SessionExpiredError) as excinfo:
        _with_client(handler, lambda client: client.read_inbox(MAILBOX))

    assert excinfo.value.provider == "mail"


def test_unavailable_detail_keeps_listing_preview() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/messages":
            return httpx.Response(
                200,
                json={"hydra:member": [{"id": "m1", "from": {"address": "a@b.c"}, "intro": "prévia"}]},
            )
        return httpx.Response(500)

    _, messages = _with_client(handler, lambda client: client.read_inbox(MAILBOX))

    assert len(messages) == 1
    assert messages[0].content == "prévia"
    assert messages[0].subject == NO_SUBJECT
    assert messages[0].recipient == MAILBOX.address


def test_long_message_content_is_truncated() -> None:
    message = MailMessage.from_payload({"id": "m1", "text": "x" * (MAIL_CONTENT_LIMIT + 50)}, default_recipient="r@x")

    assert message.content.startswith("x" * MAIL_CONTENT_LIMIT)
    assert message.content.endswith("(conteúdo truncado)")
    assert message.created_at is None
