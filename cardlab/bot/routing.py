from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Hashable, Literal, Mapping

from cardlab.bot import menu
from cardlab.core.errors import CommandError, ValidationError
from cardlab.core.texts import COOLDOWN_TEXT, GENERIC_ERROR_TEXT, map_error_text
from cardlab.infra.guard import CommandGuard
from cardlab.infra.messaging import ReplyTarget, safe_send_text
from cardlab.infra.request_context import log_error, log_event, log_request, start_request

if TYPE_CHECKING:
    from cardlab.bot.handlers import Services
    from cardlab.infra.request_context import RequestContext

LOGGER = logging.getLogger(__name__)

TriggerForm = Literal["slash", "dot", "plain"]
Handler = Callable[["CommandContext"], Awaitable[None]]

_DOT_ARGS_RE = re.compile(r"^\.\w+\s*(.*)", re.DOTALL)


def detect_trigger(text: str) -> TriggerForm:
    if text.startswith("/"):
        return "slash"
    if text.startswith("."):
        return "dot"
    return "plain"


@dataclass(frozen=True)
class CommandInvocation:
    user_id: int
    message_id: int
    trigger_form: TriggerForm
    raw_text: str
    chat_id: int = 0
    first_name: str | None = None

    @property
    def dedup_key(self) -> Hashable:
        return (self.user_id, self.message_id, self.trigger_form)

    @staticmethod
    def from_text(
        text: str | None,
        *,
        user_id: int,
        message_id: int,
        chat_id: int = 0,
        first_name: str | None = None,
    ) -> CommandInvocation:
        raw_text = text or ""
        return CommandInvocation(
            user_id=user_id,
            message_id=message_id,
            trigger_form=detect_trigger(raw_text),
            raw_text=raw_text,
            chat_id=chat_id,
            first_name=first_name,
        )


@dataclass
class CommandContext:
    invocation: CommandInvocation
    command: str
    args: str
    services: Services
    message: ReplyTarget | None
    request_context: RequestContext | None = None

    @property
    def user_id(self) -> int:
        return self.invocation.user_id

    async def reply(self, text: str, *, parse_mode: str | None = None, reply_markup: Any = None) -> int:
        return await safe_send_text(
            self.message,
            text,
            request_context=self.request_context,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
        )


def normalize_command(text: str) -> str:
    trimmed = (text or "").strip()
    if not trimmed.startswith("/"):
        return ""
    command = trimmed.split(maxsplit=1)[0]
    if "@" in command:
        command = command.split("@", maxsplit=1)[0]
    return command.lower()


def match_command(text: str, commands: Mapping[str, Any] | set[str]) -> tuple[str, str] | None:
    """Return ``(command, args)`` for a slash or dot trigger, else None."""
    trigger = detect_trigger(text or "")
    if trigger == "slash":
        name = normalize_command(text).lstrip("/")
        if name not in commands:
            return None
        parts = text.split(maxsplit=1)
        args = parts[1] if len(parts) > 1 else ""
        return name, args.strip()
    if trigger == "dot":
        for name in commands:
            if re.match(rf"^\.{re.escape(name)}\b", text, re.IGNORECASE):
                args_match = _DOT_ARGS_RE.match(text)
                args = args_match.group(1) if args_match else ""
                return name, args.strip()
    return None


class CommandRouter:
    """Matches a trigger, runs the guard, then the handler.

    Every matched command produces at most one error reply; unmatched
    text is left to the caller and never touches the guard.
    """

    def __init__(
        self,
        guard: CommandGuard,
        handlers: Mapping[str, Handler],
        services: Services,
        *,
        buttons: Mapping[str, str] | None = None,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self._guard = guard
        self._handlers = dict(handlers)
        self._services = services
        self._buttons = dict(buttons if buttons is not None else menu.BUTTON_COMMANDS)
        self._logger = logger

    @property
    def commands(self) -> list[str]:
        return sorted(self._handlers)

    def resolve(self, invocation: CommandInvocation) -> tuple[str, str] | None:
        text = invocation.raw_text.strip()
        if invocation.trigger_form == "plain":
            command = self._buttons.get(text)
            if command and command in self._handlers:
                return command, ""
            return None
        # Longer names first so ".agregarbin" never matches a shorter prefix command.
        ordered = sorted(self._handlers, key=len, reverse=True)
        return match_command(text, ordered)

    async def route(self, invocation: CommandInvocation, message: ReplyTarget | None) -> bool:
        matched = self.resolve(invocation)
        if matched is None:
            return False
        command, args = matched
        dedup_key = invocation.dedup_key if invocation.trigger_form == "slash" else None

        admission = await self._guard.admit(invocation.user_id, dedup_key)
        if not admission.allowed:
            log_event(
                self._logger,
                None,
                component="router",
                event="guard.denied",
                status="denied",
                reason=admission.reason,
                command=command,
                trigger=invocation.trigger_form,
                user_id=invocation.user_id,
                message_id=invocation.message_id,
            )
            if admission.reason == "cooldown":
                await safe_send_text(message, COOLDOWN_TEXT)
            return True

        request_context = start_request(invocation, command=command)
        context = CommandContext(
            invocation=invocation,
            command=command,
            args=args,
            services=self._services,
            message=message,
            request_context=request_context,
        )
        try:
            await self._handlers[command](context)
        except ValidationError as exc:
            request_context.status = "refused"
            self._logger.debug("validation failed command=%s field=%s", command, exc.field)
            await context.reply(map_error_text(exc))
        except CommandError as exc:
            request_context.status = "failed"
            log_event(
                self._logger,
                request_context,
                component="handler",
                event="command.failed",
                status="failed",
                handler=command,
                reason=exc.kind,
                provider=exc.provider,
            )
            await context.reply(map_error_text(exc))
        except Exception as exc:
            request_context.status = "error"
            log_error(self._logger, request_context, component="handler", where=f"command.{command}", exc=exc)
            await context.reply(GENERIC_ERROR_TEXT)
        finally:
            if dedup_key is not None:
                await self._guard.release(dedup_key)
            log_request(self._logger, request_context)
        return True
