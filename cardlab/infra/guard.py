from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Hashable, Literal

DenialReason = Literal["cooldown", "duplicate"]


@dataclass(frozen=True)
class Admission:
    allowed: bool
    reason: DenialReason | None = None
    retry_after: float | None = None


ADMITTED = Admission(True)


class CommandGuard:
    """Per-user cooldown plus an in-flight set of dedup keys.

    In-flight entries carry no expiry while their handler runs; ``release``
    stamps them with ``now + retention`` so late redeliveries of the same
    update are still dropped. Expired entries are ignored on lookup and
    removed by ``purge_expired``.
    """

    def __init__(
        self,
        *,
        cooldown_seconds: float = 2.0,
        retention_seconds: float = 60.0,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._cooldown = max(0.0, cooldown_seconds)
        self._retention = max(0.0, retention_seconds)
        self._clock = clock or time.monotonic
        self._last_command: dict[int, float] = {}
        self._in_flight: dict[Hashable, float | None] = {}
        self._lock = asyncio.Lock()

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown

    @property
    def cooldown_size(self) -> int:
        return len(self._last_command)

    @property
    def in_flight_size(self) -> int:
        return len(self._in_flight)

    async def admit(self, user_id: int, dedup_key: Hashable | None = None) -> Admission:
        async with self._lock:
            now = self._clock()
            if dedup_key is not None and self._is_in_flight(dedup_key, now):
                return Admission(False, "duplicate")
            last = self._last_command.get(user_id)
            if last is not None and now - last < self._cooldown:
                return Admission(False, "cooldown", max(0.0, self._cooldown - (now - last)))
            self._last_command[user_id] = now
            if dedup_key is not None:
                self._in_flight[dedup_key] = None
            return ADMITTED

    async def is_allowed(self, user_id: int) -> bool:
        admission = await self.admit(user_id)
        return admission.allowed

    async def release(self, dedup_key: Hashable) -> None:
        async with self._lock:
            if dedup_key in self._in_flight:
                self._in_flight[dedup_key] = self._clock() + self._retention

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, expires_at in self._in_flight.items() if expires_at is not None and expires_at <= now
            ]
            for key in expired_keys:
                del self._in_flight[key]
            stale_users = [user_id for user_id, last in self._last_command.items() if now - last >= self._cooldown]
            for user_id in stale_users:
                del self._last_command[user_id]
            return len(expired_keys) + len(stale_users)

    def _is_in_flight(self, dedup_key: Hashable, now: float) -> bool:
        if dedup_key not in self._in_flight:
            return False
        expires_at = self._in_flight[dedup_key]
        if expires_at is not None and expires_at <= now:
            del self._in_flight[dedup_key]
            return False
        return True
