import asyncio
from types import SimpleNamespace

import pytest

from conftest import DummyMessage

from cardlab.bot.routing import CommandInvocation, CommandRouter, match_command, normalize_command
from cardlab.core.errors import NotFoundError, ValidationError
from cardlab.core.texts import COOLDOWN_TEXT, GENERIC_ERROR_TEXT, INVALID_BIN_TEXT, NOT_FOUND_TEXT
from cardlab.infra.guard import CommandGuard

COMMANDS = ["gen", "bin", "agregarbin", "help"]


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _invocation(text: str, *, user_id: int = 1, message_id: int = 10) -> CommandInvocation:
    return CommandInvocation.from_text(text, user_id=user_id, message_id=message_id, chat_id=user_id)


def _router(handlers, *, clock=None, cooldown: float = 2.0) -> CommandRouter:
    guard = CommandGuard(cooldown_seconds=cooldown, clock=clock or FakeClock())
    return CommandRouter(guard, handlers, SimpleNamespace(), buttons={"🛠 Tools": "help"})


def test_normalize_command_strips_bot_suffix() -> None:
    assert normalize_command("/GEN@cardlab_bot 431940") == "/gen"
    assert normalize_command("gen") == ""


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("/gen 431940|05|27", ("gen", "431940|05|27")),
        ("/gen@cardlab_bot 431940", ("gen", "431940")),
        (".GEN 431940", ("gen", "431940")),
        (".gen431940", None),
        (".agregarbin 431940 05", ("agregarbin", "431940 05")),
        (".bin", ("bin", "")),
        ("/unknown 1", None),
        ("gen 431940", None),
    ],
)
def test_match_command(text: str, expected) -> None:
    assert match_command(text, sorted(COMMANDS, key=len, reverse=True)) == expected


def test_dot_args_keep_multiline_text() -> None:
    assert match_command(".gen 431940\n05", ["gen"]) == ("gen", "431940\n05")


def test_dedup_key_identity() -> None:
    invocation = _invocation("/gen 431940", user_id=5, message_id=42)

    assert invocation.trigger_form == "slash"
    assert invocation.dedup_key == (5, 42, "slash")
    assert _invocation(".gen 1").trigger_form == "dot"


def test_unmatched_text_is_not_handled_and_skips_guard() -> None:
    calls: list[str] = []
    clock = FakeClock()
    router = _router({"gen": lambda ctx: calls.append("gen")}, clock=clock)
    message = DummyMessage()

    async def _run() -> tuple[bool, bool]:
        first = await router.route(_invocation("hello there"), message)
        second = await router.route(_invocation("/nope"), message)
        return first, second

    assert asyncio.run(_run()) == (False, False)
    assert message.replies == []
    assert calls == []


def test_cooldown_second_command_gets_single_notice() -> None:
    calls: list[str] = []

    async def gen(ctx) -> None:
        calls.append(ctx.args)
        await ctx.reply("cards")

    router = _router({"gen": gen})
    message = DummyMessage()

    async def _run() -> None:
        await router.route(_invocation("/gen 431940", message_id=1), message)
        await router.route(_invocation(".gen 431941", message_id=2), message)

    asyncio.run(_run())

    assert calls == ["431940"]
    assert message.replies == ["cards", COOLDOWN_TEXT]


def test_concurrent_duplicate_slash_runs_handler_once() -> None:
    calls: list[int] = []

    async def gen(ctx) -> None:
        calls.append(ctx.invocation.message_id)
        await asyncio.sleep(0.01)
        await ctx.reply("cards")

    router = _router({"gen": gen}, cooldown=0.0)
    message = DummyMessage()
    invocation = _invocation("/gen 431940", message_id=77)

    async def _run() -> None:
        await asyncio.gather(router.route(invocation, message), router.route(invocation, message))

    asyncio.run(_run())

    assert calls == [77]
    assert message.replies == ["cards"]


def test_dot_form_is_not_deduplicated() -> None:
    calls: list[int] = []

    async def gen(ctx) -> None:
        calls.append(1)

    router = _router({"gen": gen}, cooldown=0.0)

    async def _run() -> None:
        await router.route(_invocation(".gen 431940", message_id=5), DummyMessage())
        await router.route(_invocation(".gen 431940", message_id=5), DummyMessage())

    asyncio.run(_run())

    assert calls == [1, 1]


def test_command_errors_become_one_reply() -> None:
    async def bad_bin(ctx) -> None:
        raise ValidationError("bin")

    async def missing(ctx) -> None:
        raise NotFoundError("nothing", provider="binlist")

    router = _router({"gen": bad_bin, "bin": missing}, cooldown=0.0)
    message = DummyMessage()

    async def _run() -> None:
        await router.route(_invocation("/gen 12", message_id=1), message)
        await router.route(_invocation("/bin 431940", message_id=2), message)

    asyncio.run(_run())

    assert message.replies == [INVALID_BIN_TEXT, NOT_FOUND_TEXT]


def test_unexpected_error_is_answered_and_key_released() -> None:
    clock = FakeClock()

    async def boom(ctx) -> None:
        raise RuntimeError("kaboom")

    guard = CommandGuard(cooldown_seconds=0.0, retention_seconds=60.0, clock=clock)
    router = CommandRouter(guard, {"gen": boom}, SimpleNamespace())
    message = DummyMessage()
    invocation = _invocation("/gen 431940", message_id=3)

    async def _run():
        handled = await router.route(invocation, message)
        clock.now += 61
        return handled, await guard.admit(invocation.user_id, invocation.dedup_key)

    handled, admission = asyncio.run(_run())

    assert handled is True
    assert message.replies == [GENERIC_ERROR_TEXT]
    assert admission.allowed


def test_menu_button_routes_to_command() -> None:
    async def help_command(ctx) -> None:
        await ctx.reply(f"help:{ctx.command}")

    router = _router({"help": help_command})
    message = DummyMessage()

    handled = asyncio.run(router.route(_invocation("🛠 Tools"), message))

    assert handled is True
    assert message.replies == ["help:help"]
