from __future__ import annotations

from typing import Final

from cardlab.core.errors import (
    CommandError,
    NotFoundError,
    ParseError,
    ProviderError,
    SessionExpiredError,
    TransientProviderError,
    ValidationError,
)

COOLDOWN_TEXT: Final[str] = "⚠️ Por favor, aguarde alguns segundos antes de usar outro comando."
GENERIC_ERROR_TEXT: Final[str] = "❌ Ocorreu um erro ao processar o comando. Por favor, tente novamente."
NOT_FOUND_TEXT: Final[str] = "❌ Não foram encontradas informações para esta consulta."
TRY_LATER_TEXT: Final[str] = "❌ Erro ao consultar o serviço. Tente mais tarde."
RATE_LIMITED_TEXT: Final[str] = "⚠️ Serviço temporariamente sobrecarregado. Tente novamente em alguns segundos."
TIMEOUT_TEXT: Final[str] = "⚠️ Tempo limite esgotado ao contatar o serviço. Tente novamente."
UNEXPECTED_RESPONSE_TEXT: Final[str] = "❌ Resposta inesperada do serviço. Tente mais tarde."

INVALID_BIN_TEXT: Final[str] = "❌ BIN inválido. Deve conter apenas números, entre 6 e 16 dígitos."
INVALID_MONTH_TEXT: Final[str] = "❌ Mês inválido. Deve estar entre 01 e 12."
INVALID_YEAR_TEXT: Final[str] = (
    "❌ Ano inválido. Deve estar no formato YY ou YYYY e ser maior que o ano atual."
)
INVALID_CVV_TEXT: Final[str] = "❌ CVV inválido. Deve conter 3 ou 4 dígitos."
INVALID_IP_TEXT: Final[str] = "❌ Formato de IP inválido. Deve ser um endereço IPv4 ou IPv6 válido."
INVALID_CEDULA_TEXT: Final[str] = "❌ Uso: /cedula <número de cédula>\nExemplo: /cedula 17xxxxxxxx"
INVALID_INDEX_TEXT: Final[str] = "❌ Índice inválido"

GEN_USAGE_TEXT: Final[str] = "❌ Uso: /gen ou .gen BIN|MM|YYYY|CVV\nExemplo: /gen 477349002646|05|2027|123"
BIN_USAGE_TEXT: Final[str] = "❌ Uso: /bin ou .bin BIN\nExemplo: /bin 431940"
PLATE_USAGE_TEXT: Final[str] = "❌ Uso: .placa PLACA\nExemplo: .placa PDF9627"
IP_USAGE_TEXT: Final[str] = "❌ Uso: /ip ou .ip <endereço IP>\nExemplo: /ip 8.8.8.8"
ADD_FAVORITE_USAGE_TEXT: Final[str] = "❌ Uso: .agregarbin BIN mês? ano? cvv?"
REMOVE_FAVORITE_USAGE_TEXT: Final[str] = "❌ Uso: .eliminarbin índice ou BIN"

MAIL_CREATED_TEXT: Final[str] = (
    "📧 <b>Email Temporário Gerado</b>\n\n"
    "📨 <b>Email:</b> <code>{address}</code>\n"
    "🔑 <b>Senha:</b> <code>{password}</code>\n\n"
    "⚠️ Este email é temporário e será excluído automaticamente.\n"
    "📝 Use <code>.check</code> para verificar se há novas mensagens."
)
MAIL_NO_MAILBOX_TEXT: Final[str] = "❌ Você não tem um email temporário ativo. Use .mail para gerar um."
MAIL_EMPTY_INBOX_TEXT: Final[str] = "📭 Sem novas mensagens no email: {address}"
MAIL_INBOX_SUMMARY_TEXT: Final[str] = "📨 Encontradas {count} mensagens em {address}"
MAIL_SESSION_EXPIRED_TEXT: Final[str] = "❌ Sua sessão de email expirou. Por favor, gere um novo email com .mail"

NOT_AVAILABLE: Final[str] = "Não disponível"

_VALIDATION_TEXTS: Final[dict[str, str]] = {
    "bin": INVALID_BIN_TEXT,
    "month": INVALID_MONTH_TEXT,
    "year": INVALID_YEAR_TEXT,
    "cvv": INVALID_CVV_TEXT,
    "ip": INVALID_IP_TEXT,
    "cedula": INVALID_CEDULA_TEXT,
    "index": INVALID_INDEX_TEXT,
    "plate": PLATE_USAGE_TEXT,
}


def map_error_text(exc: CommandError) -> str:
    if isinstance(exc, ValidationError):
        return _VALIDATION_TEXTS.get(exc.field, str(exc))
    if isinstance(exc, SessionExpiredError):
        return MAIL_SESSION_EXPIRED_TEXT
    if isinstance(exc, NotFoundError):
        return NOT_FOUND_TEXT
    if isinstance(exc, TransientProviderError):
        if exc.reason == "rate_limited":
            return RATE_LIMITED_TEXT
        if exc.reason == "timeout":
            return TIMEOUT_TEXT
        return TRY_LATER_TEXT
    if isinstance(exc, ParseError):
        return UNEXPECTED_RESPONSE_TEXT
    if isinstance(exc, ProviderError):
        return TRY_LATER_TEXT
    return GENERIC_ERROR_TEXT
