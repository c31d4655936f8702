from __future__ import annotations

import html
import ipaddress
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from cardlab.bot import menu
from cardlab.bot.routing import CommandContext, Handler
from cardlab.core import user_record
from cardlab.core.card_generator import BATCH_SIZE, GeneratedCard, generate_batch
from cardlab.core.card_spec import MIN_BIN_LENGTH, CardSpecification, is_valid_bin, parse_card_spec, validate_card_spec
from cardlab.core.errors import CommandError, ValidationError
from cardlab.core.lookup import IpInfo, LookupResult, MailMessage, TaxpayerRecord, VehicleRecord
from cardlab.core.texts import (
    ADD_FAVORITE_USAGE_TEXT,
    BIN_USAGE_TEXT,
    GEN_USAGE_TEXT,
    IP_USAGE_TEXT,
    MAIL_CREATED_TEXT,
    MAIL_EMPTY_INBOX_TEXT,
    MAIL_INBOX_SUMMARY_TEXT,
    MAIL_NO_MAILBOX_TEXT,
    NOT_AVAILABLE,
    PLATE_USAGE_TEXT,
    REMOVE_FAVORITE_USAGE_TEXT,
)
from cardlab.infra.config import Settings
from cardlab.infra.providers import LookupResolver
from cardlab.infra.request_context import add_trace, log_event
from cardlab.infra.temp_mail import TempMailClient
from cardlab.infra.user_store import UserRecordStore

LOGGER = logging.getLogger(__name__)

HISTORY_PAGE_SIZE = 10
CLEAR_FILLER_LINES = 100
_SEPARATOR = "─━─━─━─━─━─━─━─━─━─━─━─━─"
_CEDULA_RE = re.compile(r"^[0-9]{10}$")
_PLATE_RE = re.compile(r"^[A-Z0-9-]{3,10}$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Services:
    settings: Settings
    user_store: UserRecordStore
    bin_resolver: LookupResolver[LookupResult]
    registry_resolver: LookupResolver[TaxpayerRecord]
    vehicle_resolver: LookupResolver[VehicleRecord]
    ip_resolver: LookupResolver[IpInfo]
    mail_client: TempMailClient
    rng: random.Random = field(default_factory=random.Random)
    now_provider: Callable[[], datetime] = field(default=_utc_now)


def _or_na(value: object | None) -> str:
    if value is None or value == "":
        return NOT_AVAILABLE
    return str(value)


def _format_date(value: datetime | None) -> str:
    if value is None:
        return NOT_AVAILABLE
    return value.strftime("%d/%m/%Y")


def _format_datetime(value: datetime | None) -> str:
    if value is None:
        return NOT_AVAILABLE
    return value.strftime("%d/%m/%Y %H:%M")


def _country_flag(country_code: str | None) -> str:
    if not country_code or len(country_code) != 2 or not country_code.isascii() or not country_code.isalpha():
        return ""
    return "".join(chr(127397 + ord(char)) for char in country_code.upper())


def _yes_no(flag: bool) -> str:
    return "✅ Sim" if flag else "❌ Não"


# --- help / menu -----------------------------------------------------------


async def start(ctx: CommandContext) -> None:
    await ctx.reply(menu.WELCOME_TEXT, parse_mode="HTML")
    await ctx.reply(menu.TOOLS_TEXT)
    await ctx.reply(menu.MENU_PROMPT, reply_markup=menu.build_main_keyboard())


async def help_command(ctx: CommandContext) -> None:
    await ctx.reply(menu.HELP_TEXT)


async def tools(ctx: CommandContext) -> None:
    await ctx.reply(menu.TOOLS_TEXT)


async def clear(ctx: CommandContext) -> None:
    await ctx.reply("⠀\n" * CLEAR_FILLER_LINES + "🧹 Chat limpo")


# --- generation ------------------------------------------------------------


def format_generation(
    spec: CardSpecification,
    cards: list[GeneratedCard],
    info: LookupResult | None,
    *,
    first_name: str | None,
) -> str:
    header = (
        f"𝘽𝙞𝙣 -» {spec.bin}xxxx|{spec.month or 'xx'}|"
        f"{spec.year[-2:] if spec.year else 'xx'}|{spec.cvv or 'rnd'}"
    )
    card_block = "\n".join(card.to_line() for card in cards)
    brand = info.brand if info else NOT_AVAILABLE
    card_type = info.type if info else NOT_AVAILABLE
    level = info.level if info else NOT_AVAILABLE
    bank = info.bank if info else NOT_AVAILABLE
    country = info.country if info else NOT_AVAILABLE
    flag = _country_flag(info.country_code if info else None)
    lines = [
        header,
        _SEPARATOR,
        card_block,
        _SEPARATOR,
        f"• 𝙄𝙣𝙛𝙤 -» {brand} - {card_type} - {level}",
        f"• 𝘽𝙖𝙣𝙠 -» {bank}",
        f"• 𝘾𝙤𝙪𝙣𝙩𝙧𝙮 -» {country} {flag}".rstrip(),
        _SEPARATOR,
        f"• 𝙂𝙚𝙣 𝙗𝙮 -» {first_name or 'Usuário'}",
    ]
    return "\n".join(lines)


async def _bin_info_or_none(ctx: CommandContext, bin_prefix: str) -> LookupResult | None:
    try:
        return await ctx.services.bin_resolver.resolve(bin_prefix, request_context=ctx.request_context)
    except CommandError as exc:
        log_event(
            LOGGER,
            ctx.request_context,
            component="handler",
            event="gen.bin_info_unavailable",
            status="failed",
            reason=exc.kind,
        )
        return None


async def gen(ctx: CommandContext) -> None:
    if not ctx.args:
        raise ValidationError("usage", GEN_USAGE_TEXT)
    spec = validate_card_spec(parse_card_spec(ctx.args))
    cards = generate_batch(spec, rng=ctx.services.rng, now_provider=ctx.services.now_provider)
    add_trace(ctx.request_context, step="generate", component="generator", name=spec.bin)
    info = await _bin_info_or_none(ctx, spec.bin[:MIN_BIN_LENGTH])
    now = ctx.services.now_provider()
    await ctx.services.user_store.update_async(
        ctx.user_id,
        lambda record: (user_record.push_history(record, "gen", spec.bin, count=len(cards), now=now), None),
    )
    await ctx.reply(format_generation(spec, cards, info, first_name=ctx.invocation.first_name))


# --- lookups ---------------------------------------------------------------


def format_bin_info(bin_value: str, info: LookupResult) -> str:
    return (
        f"🔍 Informações do BIN: {bin_value}\n\n"
        f"🏦 Banco: {info.bank}\n"
        f"💳 Bandeira: {info.brand}\n"
        f"🌍 País: {info.country} ({info.country_code})\n"
        f"📱 Tipo: {info.type}\n"
        f"⭐️ Nível: {info.level}"
    )


async def bin_lookup(ctx: CommandContext) -> None:
    bin_value = ctx.args.strip()
    if not bin_value:
        raise ValidationError("usage", BIN_USAGE_TEXT)
    if not is_valid_bin(bin_value):
        raise ValidationError("bin")
    info = await ctx.services.bin_resolver.resolve(bin_value, request_context=ctx.request_context)
    now = ctx.services.now_provider()
    await ctx.services.user_store.update_async(
        ctx.user_id,
        lambda record: (user_record.push_history(record, "lookup", bin_value, now=now), None),
    )
    await ctx.reply(format_bin_info(bin_value, info))


def format_taxpayer(record: TaxpayerRecord) -> str:
    lines = [
        f"🪪 Informações SRI para a cédula: <code>{html.escape(record.identifier)}</code>",
        "",
        f"• <b>Nome Comercial:</b> {html.escape(_or_na(record.name))}",
        f"• <b>Classe:</b> {html.escape(_or_na(record.taxpayer_class))}",
        f"• <b>Tipo de Identificação:</b> {html.escape(_or_na(record.id_type))}",
    ]
    if record.info_date is not None:
        lines.append(f"• <b>Data da Informação:</b> {_format_datetime(record.info_date)}")
    lines.append("")
    if record.debt is not None:
        status = html.escape(_or_na(record.debt.status))
        amount = html.escape(_or_na(record.debt.amount))
        lines.append(f"💸 <b>Dívida:</b> {status} - {amount}")
    else:
        lines.append("💸 <b>Dívida:</b> Sem registro de dívida")
    return "\n".join(lines)


async def cedula(ctx: CommandContext) -> None:
    identifier = ctx.args.strip()
    if not _CEDULA_RE.match(identifier):
        raise ValidationError("cedula")
    record = await ctx.services.registry_resolver.resolve(identifier, request_context=ctx.request_context)
    await ctx.reply(format_taxpayer(record), parse_mode="HTML")


def format_vehicle(record: VehicleRecord) -> str:
    return (
        f"🚗 Informações do veículo: {record.plate}\n\n"
        f"📝 Marca: {_or_na(record.brand)}\n"
        f"🚙 Modelo: {_or_na(record.model)}\n"
        f"📅 Ano: {_or_na(record.year)}\n"
        f"🔧 Cilindrada: {_or_na(record.displacement)}\n"
        f"🏭 País: {_or_na(record.country)}\n"
        f"🚦 Classe: {_or_na(record.vehicle_class)}\n"
        f"🔑 Serviço: {_or_na(record.service)}\n"
        f"💰 Total a pagar: ${_or_na(record.total)}\n\n"
        f"📍 Cantão: {_or_na(record.canton)}\n"
        f"📆 Última matrícula: {_format_date(record.last_registration)}\n"
        f"⏳ Validade: {_format_date(record.registration_expiry)}\n"
        f"🔄 Estado: {_or_na(record.status)}"
    )


async def placa(ctx: CommandContext) -> None:
    plate = ctx.args.strip().upper()
    if not plate:
        raise ValidationError("usage", PLATE_USAGE_TEXT)
    if not _PLATE_RE.match(plate):
        raise ValidationError("plate")
    record = await ctx.services.vehicle_resolver.resolve(plate, request_context=ctx.request_context)
    await ctx.reply(format_vehicle(record))


def format_ip_info(info: IpInfo) -> str:
    return (
        f"🔍 <b>Informações de IP: {html.escape(info.ip)}</b>\n\n"
        "<b>Informações Básicas:</b>\n"
        f"• País: {html.escape(info.country)}\n"
        f"• Cidade: {html.escape(info.city)}\n"
        f"• ISP: {html.escape(info.isp)}\n\n"
        "<b>Verificação de Segurança:</b>\n"
        f"• Proxy/VPN: {_yes_no(info.proxy)}\n"
        f"• Hosting: {_yes_no(info.hosting)}\n"
        f"• Rede móvel: {_yes_no(info.mobile)}\n"
        f"• Nível de Risco: {info.risk_level}\n\n"
        "<b>Informações Adicionais:</b>\n"
        f"• ASN: {html.escape(info.asn)}\n"
        f"• Organização: {html.escape(info.organization)}\n"
        f"• Fuso Horário: {html.escape(info.timezone)}"
    )


async def ip_lookup(ctx: CommandContext) -> None:
    raw_ip = ctx.args.strip()
    if not raw_ip:
        raise ValidationError("usage", IP_USAGE_TEXT)
    try:
        address = ipaddress.ip_address(raw_ip)
    except ValueError as exc:
        raise ValidationError("ip") from exc
    ip = str(address)
    info = await ctx.services.ip_resolver.resolve(ip, request_context=ctx.request_context)
    now = ctx.services.now_provider()
    await ctx.services.user_store.update_async(
        ctx.user_id,
        lambda record: (user_record.push_history(record, "ip_check", ip, now=now), None),
    )
    await ctx.reply(format_ip_info(info), parse_mode="HTML")


# --- temporary mail --------------------------------------------------------


async def mail(ctx: CommandContext) -> None:
    mailbox = await ctx.services.mail_client.create_mailbox(request_context=ctx.request_context)
    await ctx.services.user_store.update_async(
        ctx.user_id,
        lambda record: (user_record.set_temp_mail(record, mailbox), None),
    )
    text = MAIL_CREATED_TEXT.format(address=html.escape(mailbox.address), password=html.escape(mailbox.password))
    await ctx.reply(text, parse_mode="HTML")


def format_mail_message(message: MailMessage) -> str:
    return (
        "📨 <b>Nova mensagem recebida</b>\n\n"
        f"<b>De:</b> {html.escape(message.sender)}\n"
        f"<b>Para:</b> {html.escape(message.recipient)}\n"
        f"<b>Assunto:</b> {html.escape(message.subject)}\n"
        f"<b>Data:</b> {_format_datetime(message.created_at)}\n\n"
        f"<b>Conteúdo:</b>\n{html.escape(message.content)}"
    )


async def check_mail(ctx: CommandContext) -> None:
    record = await ctx.services.user_store.load_async(ctx.user_id)
    if record.temp_mail is None:
        await ctx.reply(MAIL_NO_MAILBOX_TEXT)
        return
    mailbox, messages = await ctx.services.mail_client.read_inbox(
        record.temp_mail, request_context=ctx.request_context
    )
    if mailbox != record.temp_mail:
        await ctx.services.user_store.update_async(
            ctx.user_id,
            lambda current: (user_record.set_temp_mail(current, mailbox), None),
        )
    if not messages:
        await ctx.reply(MAIL_EMPTY_INBOX_TEXT.format(address=mailbox.address))
        return
    await ctx.reply(MAIL_INBOX_SUMMARY_TEXT.format(count=len(messages), address=mailbox.address))
    for message in messages:
        await ctx.reply(format_mail_message(message), parse_mode="HTML")


# --- favourites & history --------------------------------------------------


def format_favorites(favorites: tuple[user_record.FavoriteBin, ...]) -> str:
    if not favorites:
        return "📌 Você não tem BINs favoritos salvos"
    lines = [
        f"{index}. {favorite.bin} ({favorite.month or 'MM'}/{favorite.year or 'YY'})"
        for index, favorite in enumerate(favorites, start=1)
    ]
    return "📌 Seus BINs favoritos:\n\n" + "\n".join(lines)


async def favoritos(ctx: CommandContext) -> None:
    record = await ctx.services.user_store.load_async(ctx.user_id)
    await ctx.reply(format_favorites(record.favorites))


async def agregarbin(ctx: CommandContext) -> None:
    if not ctx.args:
        raise ValidationError("usage", ADD_FAVORITE_USAGE_TEXT)
    spec = parse_card_spec(ctx.args)
    if not is_valid_bin(spec.bin):
        raise ValidationError("bin")
    favorite = user_record.FavoriteBin.from_spec(spec)
    added = await ctx.services.user_store.update_async(
        ctx.user_id,
        lambda record: user_record.add_favorite(record, favorite),
    )
    if not added:
        await ctx.reply("❌ Este BIN já está nos seus favoritos")
        return
    await ctx.reply("✅ BIN adicionado aos favoritos")


def _is_index_argument(value: str) -> bool:
    return value.isascii() and value.isdigit() and len(value) < MIN_BIN_LENGTH


async def eliminarbin(ctx: CommandContext) -> None:
    argument = ctx.args.strip()
    if not argument:
        raise ValidationError("usage", REMOVE_FAVORITE_USAGE_TEXT)
    if _is_index_argument(argument):
        index = int(argument) - 1
        removed = await ctx.services.user_store.update_async(
            ctx.user_id,
            lambda record: user_record.remove_favorite_at(record, index),
        )
        if removed is None:
            raise ValidationError("index")
    else:
        bin_value = parse_card_spec(argument).bin
        removed = await ctx.services.user_store.update_async(
            ctx.user_id,
            lambda record: user_record.remove_favorite_bin(record, bin_value),
        )
        if removed is None:
            await ctx.reply("❌ BIN não encontrado nos seus favoritos")
            return
    await ctx.reply(f"✅ BIN {removed.bin} removido dos favoritos")


def _history_timestamp(raw: str) -> str:
    try:
        return _format_datetime(datetime.fromisoformat(raw))
    except ValueError:
        return raw


def format_history(entries: tuple[user_record.HistoryEntry, ...]) -> str:
    if not entries:
        return "📝 Sem histórico de consultas"
    lines: list[str] = []
    for index, entry in enumerate(entries[:HISTORY_PAGE_SIZE], start=1):
        date = _history_timestamp(entry.timestamp)
        if entry.kind == "gen":
            count = entry.count if entry.count is not None else BATCH_SIZE
            lines.append(f"{index}. Geração: {entry.key} ({count} cartões) - {date}")
        elif entry.kind == "ip_check":
            lines.append(f"{index}. Consulta IP: {entry.key} - {date}")
        else:
            lines.append(f"{index}. Consulta: {entry.key} - {date}")
    return "📝 Histórico recente:\n\n" + "\n".join(lines)


async def historial(ctx: CommandContext) -> None:
    record = await ctx.services.user_store.load_async(ctx.user_id)
    await ctx.reply(format_history(record.history))


def build_handlers() -> dict[str, Handler]:
    return {
        "start": start,
        "help": help_command,
        "ajuda": help_command,
        "tools": tools,
        "gen": gen,
        "bin": bin_lookup,
        "cedula": cedula,
        "placa": placa,
        "ip": ip_lookup,
        "mail": mail,
        "check": check_mail,
        "favoritos": favoritos,
        "agregarbin": agregarbin,
        "eliminarbin": eliminarbin,
        "historial": historial,
        "clear": clear,
        "limpar": clear,
    }
