"""APScheduler job that keeps the command guard's tables bounded."""

from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cardlab.infra.guard import CommandGuard

LOGGER = logging.getLogger(__name__)

PURGE_JOB_ID = "guard:purge"


async def _run_purge_job(guard: CommandGuard) -> int:
    removed = await guard.purge_expired()
    if removed:
        LOGGER.info(
            "Guard purge removed=%s in_flight=%s cooldown=%s",
            removed,
            guard.in_flight_size,
            guard.cooldown_size,
        )
    return removed


class GuardScheduler:
    def __init__(self, guard: CommandGuard, *, interval_seconds: float = 300.0) -> None:
        self._guard = guard
        self._interval = max(1.0, interval_seconds)
        self._scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if self._scheduler.running:
            LOGGER.info("GuardScheduler already started, skipping")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
        self._scheduler._eventloop = loop
        self._scheduler.add_job(
            _run_purge_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=PURGE_JOB_ID,
            replace_existing=True,
            kwargs={"guard": self._guard},
        )
        self._scheduler.start()
        LOGGER.info("GuardScheduler started interval=%ss", self._interval)

    def shutdown(self, wait: bool = False) -> None:
        if not self._scheduler.running:
            return
        try:
            self._scheduler.shutdown(wait=wait)
            LOGGER.info("GuardScheduler shutdown")
        except Exception:
            LOGGER.exception("GuardScheduler shutdown error")
