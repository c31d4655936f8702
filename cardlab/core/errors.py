from __future__ import annotations

from typing import Literal

TransientKind = Literal["rate_limited", "server_error", "timeout", "network"]


class CommandError(Exception):
    """Base for every error a command handler turns into a single reply."""

    kind = "error"

    def __init__(self, message: str = "", *, provider: str | None = None) -> None:
        super().__init__(message or self.kind)
        self.provider = provider


class ValidationError(CommandError):
    kind = "validation"

    def __init__(self, field: str, message: str = "") -> None:
        super().__init__(message or f"invalid {field}")
        self.field = field


class NotFoundError(CommandError):
    kind = "not_found"


class ProviderError(CommandError):
    kind = "provider_failed"

    def __init__(
        self,
        message: str = "",
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    kind = "transient"

    def __init__(
        self,
        message: str = "",
        *,
        provider: str | None = None,
        status_code: int | None = None,
        reason: TransientKind = "server_error",
    ) -> None:
        super().__init__(message, provider=provider, status_code=status_code)
        self.reason = reason


class ParseError(ProviderError):
    kind = "parse"


class SessionExpiredError(CommandError):
    """Stored credentials were rejected and could not be renewed."""

    kind = "session_expired"
