"""Lookup result shapes and per-provider payload mappings.

Each provider payload is its own variant with an explicit ``from_payload``
mapping. Missing or mistyped fields fall back to the defaults below and never
raise.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from cardlab.core.errors import NotFoundError, ParseError

UNKNOWN = "Desconhecido"
UNKNOWN_FEMININE = "Desconhecida"
UNKNOWN_COUNTRY_CODE = "??"


def _dig(payload: Any, *path: str) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _text(payload: Any, *path: str) -> str | None:
    value = _dig(payload, *path)
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _first(*values: str | None, default: str) -> str:
    for value in values:
        if value:
            return value
    return default


def parse_timestamp(value: Any) -> datetime | None:
    """Epoch milliseconds or ISO-8601 string to an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None
    return None


@dataclass(frozen=True)
class LookupResult:
    bank: str = UNKNOWN
    brand: str = UNKNOWN_FEMININE
    type: str = UNKNOWN
    country: str = UNKNOWN
    country_code: str = UNKNOWN_COUNTRY_CODE
    level: str = UNKNOWN
    provider: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "bank": self.bank,
            "brand": self.brand,
            "type": self.type,
            "country": self.country,
            "country_code": self.country_code,
            "level": self.level,
            "provider": self.provider,
        }


@dataclass(frozen=True)
class BinlistPayload:
    bank_name: str | None
    scheme: str | None
    card_type: str | None
    country_name: str | None
    country_alpha2: str | None
    brand: str | None

    @staticmethod
    def from_payload(payload: Any) -> BinlistPayload:
        return BinlistPayload(
            bank_name=_text(payload, "bank", "name"),
            scheme=_text(payload, "scheme"),
            card_type=_text(payload, "type"),
            country_name=_text(payload, "country", "name"),
            country_alpha2=_text(payload, "country", "alpha2"),
            brand=_text(payload, "brand"),
        )

    def to_result(self) -> LookupResult:
        return LookupResult(
            bank=_first(self.bank_name, default=UNKNOWN),
            brand=_first(self.scheme, default=UNKNOWN_FEMININE),
            type=_first(self.card_type, default=UNKNOWN),
            country=_first(self.country_name, default=UNKNOWN),
            country_code=_first(self.country_alpha2, default=UNKNOWN_COUNTRY_CODE),
            level=_first(self.brand, default=UNKNOWN),
            provider="binlist",
        )


@dataclass(frozen=True)
class BintablePayload:
    bank_name: str | None
    scheme: str | None
    brand: str | None
    card_type: str | None
    country_name: str | None
    country_code: str | None
    level: str | None

    @staticmethod
    def from_payload(payload: Any) -> BintablePayload:
        # bintable wraps the record in "data"; older responses are flat.
        body = payload.get("data") if isinstance(payload, dict) and isinstance(payload.get("data"), dict) else payload
        return BintablePayload(
            bank_name=_text(body, "bank", "name"),
            scheme=_text(body, "scheme") or _text(body, "card", "scheme"),
            brand=_text(body, "brand") or _text(body, "card", "brand"),
            card_type=_text(body, "type") or _text(body, "card", "type"),
            country_name=_text(body, "country", "name"),
            country_code=_text(body, "country", "code"),
            level=_text(body, "level") or _text(body, "card", "category"),
        )

    def to_result(self) -> LookupResult:
        return LookupResult(
            bank=_first(self.bank_name, default=UNKNOWN),
            brand=_first(self.scheme, self.brand, default=UNKNOWN_FEMININE),
            type=_first(self.card_type, default=UNKNOWN),
            country=_first(self.country_name, default=UNKNOWN),
            country_code=_first(self.country_code, default=UNKNOWN_COUNTRY_CODE),
            level=_first(self.level, default=UNKNOWN),
            provider="bintable",
        )


@dataclass(frozen=True)
class Debt:
    status: str | None
    amount: str | None


@dataclass(frozen=True)
class TaxpayerRecord:
    identifier: str
    name: str | None
    taxpayer_class: str | None
    id_type: str | None
    info_date: datetime | None
    debt: Debt | None

    @staticmethod
    def from_payload(identifier: str, payload: Any) -> TaxpayerRecord:
        taxpayer = _dig(payload, "contribuyente")
        if not isinstance(taxpayer, dict):
            raise NotFoundError(f"no taxpayer record for {identifier}", provider="registry")
        raw_debt = _dig(payload, "deuda")
        debt = None
        if isinstance(raw_debt, dict):
            debt = Debt(status=_text(raw_debt, "estado"), amount=_text(raw_debt, "monto"))
        return TaxpayerRecord(
            identifier=identifier,
            name=_text(taxpayer, "nombreComercial") or _text(taxpayer, "denominacion"),
            taxpayer_class=_text(taxpayer, "clase"),
            id_type=_text(taxpayer, "tipoIdentificacion"),
            info_date=parse_timestamp(taxpayer.get("fechaInformacion")),
            debt=debt,
        )


@dataclass(frozen=True)
class VehicleRecord:
    plate: str
    brand: str | None
    model: str | None
    year: str | None
    displacement: str | None
    country: str | None
    vehicle_class: str | None
    service: str | None
    total: str | None
    canton: str | None
    last_registration: datetime | None
    registration_expiry: datetime | None
    status: str | None

    @staticmethod
    def from_payload(plate: str, payload: Any) -> VehicleRecord:
        if not isinstance(payload, dict) or not payload:
            raise NotFoundError(f"no vehicle record for {plate}", provider="vehicle")
        return VehicleRecord(
            plate=plate,
            brand=_text(payload, "marca"),
            model=_text(payload, "modelo"),
            year=_text(payload, "anioModelo"),
            displacement=_text(payload, "cilindraje"),
            country=_text(payload, "paisFabricacion"),
            vehicle_class=_text(payload, "clase"),
            service=_text(payload, "servicio") or _text(payload, "servico"),
            total=_text(payload, "total"),
            canton=_text(payload, "cantonMatricula"),
            last_registration=parse_timestamp(_dig(payload, "fechaUltimaMatricula")),
            registration_expiry=parse_timestamp(_dig(payload, "fechaCaducidadMatricula")),
            status=_text(payload, "estadoAuto"),
        )


def _risk_level(proxy: bool, hosting: bool) -> str:
    if proxy and hosting:
        return "Alto"
    if proxy or hosting:
        return "Médio"
    return "Baixo"


@dataclass(frozen=True)
class IpInfo:
    ip: str
    country: str
    city: str
    isp: str
    proxy: bool
    hosting: bool
    mobile: bool
    asn: str
    organization: str
    timezone: str

    @property
    def risk_level(self) -> str:
        return _risk_level(self.proxy, self.hosting)

    @staticmethod
    def from_payload(ip: str, payload: Any) -> IpInfo:
        if _text(payload, "status") == "fail":
            raise NotFoundError(_text(payload, "message") or f"no data for {ip}", provider="ip")
        return IpInfo(
            ip=ip,
            country=_first(_text(payload, "country"), default=UNKNOWN),
            city=_first(_text(payload, "city"), default=UNKNOWN_FEMININE),
            isp=_first(_text(payload, "isp"), default=UNKNOWN),
            proxy=_dig(payload, "proxy") is True,
            hosting=_dig(payload, "hosting") is True,
            mobile=_dig(payload, "mobile") is True,
            asn=_first(_text(payload, "as"), default=UNKNOWN),
            organization=_first(_text(payload, "org"), default=UNKNOWN_FEMININE),
            timezone=_first(_text(payload, "timezone"), default=UNKNOWN),
        )


MAIL_CONTENT_LIMIT = 1000
NO_SUBJECT = "Sem assunto"
NO_CONTENT = "Sem conteúdo"
_TAG_RE = re.compile(r"<[^>]*>")


def hydra_members(payload: Any) -> list[dict[str, Any]]:
    """Items of a mail.tm collection (``hydra:member``) or a bare list."""
    members = payload if isinstance(payload, list) else _dig(payload, "hydra:member")
    if not isinstance(members, list):
        raise ParseError("mail: collection without members", provider="mail")
    return [member for member in members if isinstance(member, dict)]


def first_active_domain(payload: Any) -> str:
    for member in hydra_members(payload):
        domain = _text(member, "domain")
        if domain and member.get("isActive", True) is not False:
            return domain
    raise NotFoundError("mail: no active domain", provider="mail")


def auth_token(payload: Any) -> str:
    token = _text(payload, "token")
    if not token:
        raise ParseError("mail: token response without token", provider="mail")
    return token


def strip_html(markup: str) -> str:
    return html.unescape(_TAG_RE.sub("", markup)).replace("\xa0", " ").strip()


def _message_content(payload: Any) -> str:
    text = _text(payload, "text")
    if text:
        content = text
    else:
        raw_html = _dig(payload, "html")
        if isinstance(raw_html, list):
            raw_html = "".join(part for part in raw_html if isinstance(part, str))
        stripped = strip_html(raw_html) if isinstance(raw_html, str) else ""
        content = stripped or _text(payload, "intro") or NO_CONTENT
    if len(content) > MAIL_CONTENT_LIMIT:
        content = content[:MAIL_CONTENT_LIMIT] + "...\n(conteúdo truncado)"
    return content


@dataclass(frozen=True)
class MailMessage:
    message_id: str
    sender: str
    recipient: str
    subject: str
    created_at: datetime | None
    content: str

    @staticmethod
    def from_payload(payload: Any, *, default_recipient: str) -> MailMessage:
        recipients = _dig(payload, "to")
        first_recipient = recipients[0] if isinstance(recipients, list) and recipients else None
        return MailMessage(
            message_id=_text(payload, "id") or "",
            sender=_first(_text(payload, "from", "address"), default=UNKNOWN),
            recipient=_first(_text(first_recipient, "address"), default=default_recipient),
            subject=_first(_text(payload, "subject"), default=NO_SUBJECT),
            created_at=parse_timestamp(_dig(payload, "createdAt")),
            content=_message_content(payload),
        )
