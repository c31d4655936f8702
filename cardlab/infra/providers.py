from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Mapping, Protocol, Sequence, TypeVar

import httpx

from cardlab.core.errors import CommandError, NotFoundError, ProviderError
from cardlab.core.lookup import BinlistPayload, BintablePayload, IpInfo, LookupResult, TaxpayerRecord, VehicleRecord
from cardlab.infra.request_context import RequestContext, log_event
from cardlab.infra.resilience import SINGLE_ATTEMPT, RetryPolicy, fetch_with_retry, interpret_response

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


@dataclass(frozen=True)
class ProviderRequest:
    url: str
    params: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None = None
    headers: Mapping[str, str] = field(default_factory=dict)


class Provider(Protocol[T_co]):
    name: str
    policy: RetryPolicy

    def build_request(self, key: str) -> ProviderRequest:
        ...

    def parse(self, key: str, payload: Any) -> T_co:
        ...


class LookupResolver(Generic[T]):
    """Queries providers in order; the first parsed payload wins.

    A provider is skipped on any provider error (non-2xx after its retry
    policy, transport failure, invalid JSON) or not-found. When every
    provider failed, the last provider's error is raised.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        providers: Sequence[Provider[T]],
        *,
        logger: logging.Logger = LOGGER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not providers:
            raise ValueError("LookupResolver needs at least one provider")
        self._client = client
        self._providers = list(providers)
        self._logger = logger
        self._sleep = sleep

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    async def resolve(self, key: str, *, request_context: RequestContext | None = None) -> T:
        last_error: CommandError | None = None
        for provider in self._providers:
            request = provider.build_request(key)
            try:
                response = await fetch_with_retry(
                    self._client,
                    request.url,
                    policy=provider.policy,
                    name=provider.name,
                    params=request.params,
                    headers=request.headers,
                    logger=self._logger,
                    request_context=request_context,
                    sleep=self._sleep,
                )
                payload = interpret_response(
                    response,
                    provider=provider.name,
                    logger=self._logger,
                    request_context=request_context,
                )
                result = provider.parse(key, payload)
            except (NotFoundError, ProviderError) as exc:
                last_error = exc
                log_event(
                    self._logger,
                    request_context,
                    component="lookup",
                    event="provider.skipped",
                    status="failed",
                    provider=provider.name,
                    reason=exc.kind,
                    status_code=getattr(exc, "status_code", None),
                )
                continue
            log_event(
                self._logger,
                request_context,
                component="lookup",
                event="provider.resolved",
                status="ok",
                provider=provider.name,
            )
            return result
        if last_error is None:
            raise NotFoundError(f"no provider answered for {key}")
        raise last_error


class BinlistProvider:
    name = "binlist"

    def __init__(self, base_url: str, *, policy: RetryPolicy = SINGLE_ATTEMPT) -> None:
        self._base_url = base_url.rstrip("/")
        self.policy = policy

    def build_request(self, key: str) -> ProviderRequest:
        return ProviderRequest(url=f"{self._base_url}/{key}", headers={"Accept-Version": "3"})

    def parse(self, key: str, payload: Any) -> LookupResult:
        return BinlistPayload.from_payload(payload).to_result()


class BintableProvider:
    name = "bintable"

    def __init__(self, base_url: str, api_key: str, *, policy: RetryPolicy = SINGLE_ATTEMPT) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.policy = policy

    def build_request(self, key: str) -> ProviderRequest:
        return ProviderRequest(url=f"{self._base_url}/{key}", params={"api_key": self._api_key})

    def parse(self, key: str, payload: Any) -> LookupResult:
        return BintablePayload.from_payload(payload).to_result()


def _cache_buster() -> dict[str, Any]:
    return {"tipoPersona": "N", "_": str(int(time.time() * 1000))}


class TaxpayerRegistryProvider:
    name = "registry"

    def __init__(self, base_url: str, *, user_agent: str, policy: RetryPolicy | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self.policy = policy or RetryPolicy()

    def build_request(self, key: str) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self._base_url}/{key}/",
            params=_cache_buster,
            headers={"User-Agent": self._user_agent},
        )

    def parse(self, key: str, payload: Any) -> TaxpayerRecord:
        return TaxpayerRecord.from_payload(key, payload)


class VehicleRegistryProvider:
    name = "vehicle"

    def __init__(self, base_url: str, *, user_agent: str, policy: RetryPolicy | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self.policy = policy or RetryPolicy()

    def build_request(self, key: str) -> ProviderRequest:
        return ProviderRequest(url=f"{self._base_url}/{key}", headers={"User-Agent": self._user_agent})

    def parse(self, key: str, payload: Any) -> VehicleRecord:
        return VehicleRecord.from_payload(key, payload)


class IpLookupProvider:
    name = "ip"
    fields = "status,message,country,city,isp,org,as,timezone,proxy,hosting,mobile"

    def __init__(self, base_url: str, *, policy: RetryPolicy | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self.policy = policy or RetryPolicy()

    def build_request(self, key: str) -> ProviderRequest:
        return ProviderRequest(url=f"{self._base_url}/{key}", params={"fields": self.fields})

    def parse(self, key: str, payload: Any) -> IpInfo:
        return IpInfo.from_payload(key, payload)
