"""mail.tm disposable mailboxes over the shared httpx client.

Account creation and token requests are POSTs and get a single attempt;
reads follow the client's retry policy.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import replace
from typing import Any, Awaitable, Callable

import httpx

from cardlab.core.errors import CommandError, ProviderError, SessionExpiredError
from cardlab.core.lookup import MailMessage, auth_token, first_active_domain, hydra_members
from cardlab.core.user_record import TempMailbox
from cardlab.infra.request_context import RequestContext, log_event
from cardlab.infra.resilience import RetryPolicy, fetch_with_retry, interpret_response

LOGGER = logging.getLogger(__name__)

MAIL_MESSAGE_LIMIT = 5
_UNAUTHORIZED = 401


def _random_local_part() -> str:
    return secrets.token_hex(5)


def _random_password() -> str:
    return secrets.token_urlsafe(12)


class TempMailClient:
    name = "mail"

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        policy: RetryPolicy | None = None,
        message_limit: int = MAIL_MESSAGE_LIMIT,
        logger: logging.Logger = LOGGER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        local_part_factory: Callable[[], str] = _random_local_part,
        password_factory: Callable[[], str] = _random_password,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self.policy = policy or RetryPolicy()
        self._single = replace(self.policy, max_attempts=1)
        self._message_limit = max(1, message_limit)
        self._logger = logger
        self._sleep = sleep
        self._local_part_factory = local_part_factory
        self._password_factory = password_factory

    async def _call(
        self,
        method: str,
        path: str,
        *,
        policy: RetryPolicy,
        token: str | None = None,
        json: Any = None,
        request_context: RequestContext | None = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        response = await fetch_with_retry(
            self._client,
            f"{self._base_url}{path}",
            method=method,
            json=json,
            policy=policy,
            name=self.name,
            headers=headers,
            logger=self._logger,
            request_context=request_context,
            sleep=self._sleep,
        )
        return interpret_response(response, provider=self.name, logger=self._logger, request_context=request_context)

    async def create_mailbox(self, *, request_context: RequestContext | None = None) -> TempMailbox:
        domains = await self._call("GET", "/domains", policy=self.policy, request_context=request_context)
        address = f"{self._local_part_factory()}@{first_active_domain(domains)}"
        password = self._password_factory()
        credentials = {"address": address, "password": password}
        await self._call("POST", "/accounts", policy=self._single, json=credentials, request_context=request_context)
        token_payload = await self._call(
            "POST", "/token", policy=self._single, json=credentials, request_context=request_context
        )
        return TempMailbox(address=address, password=password, token=auth_token(token_payload))

    async def renew_token(
        self, mailbox: TempMailbox, *, request_context: RequestContext | None = None
    ) -> TempMailbox:
        try:
            payload = await self._call(
                "POST",
                "/token",
                policy=self._single,
                json={"address": mailbox.address, "password": mailbox.password},
                request_context=request_context,
            )
            return replace(mailbox, token=auth_token(payload))
        except CommandError as exc:
            raise SessionExpiredError(f"mail: token renewal failed ({exc.kind})", provider=self.name) from exc

    async def fetch_messages(
        self, mailbox: TempMailbox, *, request_context: RequestContext | None = None
    ) -> list[MailMessage]:
        listing = await self._call(
            "GET", "/messages", policy=self.policy, token=mailbox.token, request_context=request_context
        )
        messages: list[MailMessage] = []
        for summary in hydra_members(listing)[: self._message_limit]:
            preview = MailMessage.from_payload(summary, default_recipient=mailbox.address)
            if not preview.message_id:
                messages.append(preview)
                continue
            try:
                detail = await self._call(
                    "GET",
                    f"/messages/{preview.message_id}",
                    policy=self.policy,
                    token=mailbox.token,
                    request_context=request_context,
                )
            except CommandError as exc:
                # The listing already carries sender, subject and intro.
                log_event(
                    self._logger,
                    request_context,
                    component="mail",
                    event="mail.detail_unavailable",
                    status="failed",
                    provider=self.name,
                    reason=exc.kind,
                )
                messages.append(preview)
                continue
            messages.append(MailMessage.from_payload(detail, default_recipient=mailbox.address))
        return messages

    async def read_inbox(
        self, mailbox: TempMailbox, *, request_context: RequestContext | None = None
    ) -> tuple[TempMailbox, list[MailMessage]]:
        """Fetch messages, renewing the token once when mail.tm answers 401.

        Returns the mailbox actually used so callers can persist a new token.
        """
        try:
            return mailbox, await self.fetch_messages(mailbox, request_context=request_context)
        except ProviderError as exc:
            if exc.status_code != _UNAUTHORIZED:
                raise
        log_event(
            self._logger,
            request_context,
            component="mail",
            event="mail.token_renewal",
            status="ok",
            provider=self.name,
        )
        renewed = await self.renew_token(mailbox, request_context=request_context)
        return renewed, await self.fetch_messages(renewed, request_context=request_context)
