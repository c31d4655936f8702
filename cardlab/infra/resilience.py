from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Mapping

import httpx

from cardlab.core.errors import NotFoundError, ParseError, ProviderError, TransientProviderError
from cardlab.infra.request_context import RequestContext, add_trace, log_event

LOGGER = logging.getLogger(__name__)

StatusClass = Literal["ok", "not_found", "transient", "failed"]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    timeout_seconds: float = 8.0
    rate_limited_backoff_ms: int = 1200
    server_error_backoff_ms: int = 800
    network_backoff_ms: int = 700


SINGLE_ATTEMPT = RetryPolicy(max_attempts=1)


class AttemptState(enum.Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    EXHAUSTED_TRANSIENT = "exhausted_transient"
    FAILED_PERMANENT = "failed_permanent"


def classify_status(status_code: int) -> StatusClass:
    if 200 <= status_code < 300:
        return "ok"
    if status_code == 404:
        return "not_found"
    if status_code == 429 or 500 <= status_code < 600:
        return "transient"
    return "failed"


def is_timeout_error(exc: BaseException) -> bool:
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException))


def is_network_error(exc: BaseException) -> bool:
    return isinstance(exc, httpx.TransportError) or is_timeout_error(exc)


def _transient_reason(status_code: int) -> Literal["rate_limited", "server_error"]:
    return "rate_limited" if status_code == 429 else "server_error"


def _status_backoff_ms(policy: RetryPolicy, status_code: int) -> int:
    if status_code == 429:
        return policy.rate_limited_backoff_ms
    return policy.server_error_backoff_ms


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    policy: RetryPolicy,
    name: str,
    method: str = "GET",
    json: Any = None,
    params: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None = None,
    headers: Mapping[str, str] | None = None,
    logger: logging.Logger = LOGGER,
    request_context: RequestContext | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """Send ``method`` to ``url`` under ``policy``, with an optional JSON body.

    Returns the last response received, which may still carry a 429 or 5xx
    status when attempts ran out. Raises ``TransientProviderError`` when the
    final attempt failed without any response (timeout or transport error).
    ``params`` may be a callable so every attempt gets fresh values.
    """
    attempts = max(1, policy.max_attempts)
    attempt = 0
    wait_ms = 0
    response: httpx.Response | None = None
    last_exc: BaseException | None = None
    state = AttemptState.ATTEMPTING

    while True:
        if state is AttemptState.ATTEMPTING:
            attempt += 1
            started = asyncio.get_running_loop().time()
            query = params() if callable(params) else params
            try:
                response = await asyncio.wait_for(
                    client.request(method, url, params=query, headers=headers, json=json),
                    timeout=policy.timeout_seconds,
                )
            except Exception as exc:
                if not is_network_error(exc):
                    raise
                last_exc = exc
                response = None
                if attempt < attempts:
                    wait_ms = policy.network_backoff_ms
                    state = AttemptState.BACKOFF
                else:
                    state = AttemptState.EXHAUSTED_TRANSIENT
                add_trace(request_context, step="http.attempt", component="resilience", name=name, status="error")
                continue
            duration = (asyncio.get_running_loop().time() - started) * 1000
            status_class = classify_status(response.status_code)
            add_trace(
                request_context,
                step="http.attempt",
                component="resilience",
                name=name,
                status=status_class,
                duration_ms=round(duration, 2),
            )
            if status_class == "transient":
                if attempt < attempts:
                    wait_ms = _status_backoff_ms(policy, response.status_code)
                    state = AttemptState.BACKOFF
                else:
                    state = AttemptState.EXHAUSTED_TRANSIENT
            elif status_class == "ok":
                state = AttemptState.SUCCEEDED
            else:
                state = AttemptState.FAILED_PERMANENT
        elif state is AttemptState.BACKOFF:
            log_event(
                logger,
                request_context,
                component="resilience",
                event="retry.attempt",
                status="ok",
                provider=name,
                attempt=attempt + 1,
                wait_ms=wait_ms,
                status_code=response.status_code if response is not None else None,
                exc_type=type(last_exc).__name__ if response is None and last_exc else None,
            )
            await sleep(wait_ms / 1000)
            state = AttemptState.ATTEMPTING
        elif state is AttemptState.EXHAUSTED_TRANSIENT and response is None:
            reason = "timeout" if last_exc is not None and is_timeout_error(last_exc) else "network"
            log_event(
                logger,
                request_context,
                component="resilience",
                event="retry.exhausted",
                status="failed",
                provider=name,
                attempts=attempt,
                reason=reason,
            )
            raise TransientProviderError(
                f"{name}: {reason} after {attempt} attempt(s)",
                provider=name,
                reason=reason,
            ) from last_exc
        elif response is None:
            raise RuntimeError(f"{name}: no response in state {state.value}")
        else:
            if state is AttemptState.EXHAUSTED_TRANSIENT:
                log_event(
                    logger,
                    request_context,
                    component="resilience",
                    event="retry.exhausted",
                    status="failed",
                    provider=name,
                    attempts=attempt,
                    status_code=response.status_code,
                )
            return response


def interpret_response(
    response: httpx.Response,
    *,
    provider: str,
    logger: logging.Logger = LOGGER,
    request_context: RequestContext | None = None,
) -> Any:
    """Map a final response to its JSON payload or to the matching error."""
    status_code = response.status_code
    status_class = classify_status(status_code)
    if status_class == "not_found":
        raise NotFoundError(f"{provider}: not found", provider=provider)
    if status_class == "transient":
        raise TransientProviderError(
            f"{provider}: status {status_code}",
            provider=provider,
            status_code=status_code,
            reason=_transient_reason(status_code),
        )
    if status_class == "failed":
        log_event(
            logger,
            request_context,
            component="resilience",
            event="provider.failed",
            status="failed",
            provider=provider,
            status_code=status_code,
        )
        raise ProviderError(f"{provider}: status {status_code}", provider=provider, status_code=status_code)
    try:
        return response.json()
    except ValueError as exc:
        log_event(
            logger,
            request_context,
            component="resilience",
            event="provider.parse_error",
            status="error",
            provider=provider,
            status_code=status_code,
            content_type=response.headers.get("content-type", ""),
            body_len=len(response.content),
        )
        raise ParseError(f"{provider}: invalid JSON", provider=provider, status_code=status_code) from exc

