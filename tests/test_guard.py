import asyncio

from cardlab.infra.guard import CommandGuard


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_cooldown_denies_second_command_within_window() -> None:
    clock = FakeClock()
    guard = CommandGuard(cooldown_seconds=2.0, clock=clock)

    async def _run() -> tuple:
        first = await guard.admit(1)
        clock.now += 1.5
        second = await guard.admit(1)
        clock.now += 0.5
        third = await guard.admit(1)
        return first, second, third

    first, second, third = asyncio.run(_run())

    assert first.allowed
    assert not second.allowed
    assert second.reason == "cooldown"
    assert second.retry_after == 0.5
    assert third.allowed


def test_cooldown_is_per_user() -> None:
    guard = CommandGuard(cooldown_seconds=2.0, clock=FakeClock())

    async def _run() -> tuple[bool, bool]:
        return await guard.is_allowed(1), await guard.is_allowed(2)

    assert asyncio.run(_run()) == (True, True)


def test_duplicate_key_is_dropped_before_cooldown() -> None:
    clock = FakeClock()
    guard = CommandGuard(cooldown_seconds=2.0, clock=clock)
    key = (1, 10, "slash")

    async def _run():
        first = await guard.admit(1, key)
        clock.now += 5
        duplicate = await guard.admit(1, key)
        return first, duplicate

    first, duplicate = asyncio.run(_run())

    assert first.allowed
    assert duplicate.reason == "duplicate"


def test_cooldown_denial_does_not_mark_in_flight() -> None:
    clock = FakeClock()
    guard = CommandGuard(cooldown_seconds=2.0, clock=clock)

    async def _run():
        await guard.admit(1, (1, 10, "slash"))
        denied = await guard.admit(1, (1, 11, "slash"))
        clock.now += 3
        retried = await guard.admit(1, (1, 11, "slash"))
        return denied, retried

    denied, retried = asyncio.run(_run())

    assert denied.reason == "cooldown"
    assert retried.allowed


def test_released_key_expires_after_retention() -> None:
    clock = FakeClock()
    guard = CommandGuard(cooldown_seconds=0.0, retention_seconds=60.0, clock=clock)
    key = (1, 10, "slash")

    async def _run():
        await guard.admit(1, key)
        await guard.release(key)
        clock.now += 59
        still_blocked = await guard.admit(1, key)
        clock.now += 2
        admitted_again = await guard.admit(1, key)
        return still_blocked, admitted_again

    still_blocked, admitted_again = asyncio.run(_run())

    assert still_blocked.reason == "duplicate"
    assert admitted_again.allowed


def test_purge_removes_expired_entries_only() -> None:
    clock = FakeClock()
    guard = CommandGuard(cooldown_seconds=2.0, retention_seconds=10.0, clock=clock)

    async def _run() -> int:
        await guard.admit(1, "released")
        await guard.release("released")
        await guard.admit(2, "running")
        clock.now += 11
        return await guard.purge_expired()

    removed = asyncio.run(_run())

    assert removed == 3
    assert guard.in_flight_size == 1
    assert guard.cooldown_size == 0


def test_concurrent_admits_for_same_key_admit_once() -> None:
    guard = CommandGuard(cooldown_seconds=0.0, clock=FakeClock())
    key = (7, 99, "slash")

    async def _run():
        return await asyncio.gather(*(guard.admit(7, key) for _ in range(5)))

    results = asyncio.run(_run())

    assert sum(1 for result in results if result.allowed) == 1
