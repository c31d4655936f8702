from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Literal

from cardlab.core.card_spec import CardSpecification

HistoryKind = Literal["gen", "lookup", "ip_check"]

HISTORY_LIMIT = 100
_HISTORY_KINDS = {"gen", "lookup", "ip_check"}


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


@dataclass(frozen=True)
class FavoriteBin:
    bin: str
    month: str | None = None
    year: str | None = None
    cvv: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"bin": self.bin, "month": self.month, "year": self.year, "cvv": self.cvv}

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> FavoriteBin | None:
        if not isinstance(payload, dict):
            return None
        bin_value = payload.get("bin")
        if not isinstance(bin_value, str) or not bin_value:
            return None
        return FavoriteBin(
            bin=bin_value,
            month=_optional_str(payload.get("month")),
            year=_optional_str(payload.get("year")),
            cvv=_optional_str(payload.get("cvv")),
        )

    @staticmethod
    def from_spec(spec: CardSpecification) -> FavoriteBin:
        return FavoriteBin(bin=spec.bin, month=spec.month, year=spec.year, cvv=spec.cvv)


@dataclass(frozen=True)
class HistoryEntry:
    kind: HistoryKind
    key: str
    timestamp: str
    count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.kind, "key": self.key, "timestamp": self.timestamp}
        if self.count is not None:
            out["count"] = self.count
        return out

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> HistoryEntry | None:
        if not isinstance(payload, dict):
            return None
        kind = payload.get("type")
        key = payload.get("key")
        timestamp = payload.get("timestamp")
        if kind not in _HISTORY_KINDS:
            return None
        if not isinstance(key, str) or not key:
            return None
        if not isinstance(timestamp, str) or not timestamp:
            return None
        count = payload.get("count")
        return HistoryEntry(
            kind=kind,
            key=key,
            timestamp=timestamp,
            count=count if isinstance(count, int) else None,
        )


@dataclass(frozen=True)
class TempMailbox:
    address: str
    password: str
    token: str

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "password": self.password, "token": self.token}

    @staticmethod
    def from_dict(payload: Any) -> TempMailbox | None:
        if not isinstance(payload, dict):
            return None
        address = _optional_str(payload.get("address"))
        password = _optional_str(payload.get("password"))
        token = _optional_str(payload.get("token"))
        if not address or not password or not token:
            return None
        return TempMailbox(address=address, password=password, token=token)


@dataclass(frozen=True)
class UserRecord:
    favorites: tuple[FavoriteBin, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    temp_mail: TempMailbox | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "favorites": [favorite.to_dict() for favorite in self.favorites],
            "history": [entry.to_dict() for entry in self.history],
            "temp_mail": self.temp_mail.to_dict() if self.temp_mail else None,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any] | None) -> UserRecord:
        if not isinstance(payload, dict):
            return UserRecord()
        favorites: list[FavoriteBin] = []
        raw_favorites = payload.get("favorites")
        if isinstance(raw_favorites, list):
            for item in raw_favorites:
                favorite = FavoriteBin.from_dict(item)
                if favorite:
                    favorites.append(favorite)
        history: list[HistoryEntry] = []
        raw_history = payload.get("history")
        if isinstance(raw_history, list):
            for item in raw_history:
                entry = HistoryEntry.from_dict(item)
                if entry:
                    history.append(entry)
        return UserRecord(
            favorites=tuple(favorites),
            history=tuple(history[:HISTORY_LIMIT]),
            temp_mail=TempMailbox.from_dict(payload.get("temp_mail")),
        )


def has_favorite(record: UserRecord, bin_value: str) -> bool:
    return any(favorite.bin == bin_value for favorite in record.favorites)


def add_favorite(record: UserRecord, favorite: FavoriteBin) -> tuple[UserRecord, bool]:
    if has_favorite(record, favorite.bin):
        return record, False
    return replace(record, favorites=record.favorites + (favorite,)), True


def remove_favorite_at(record: UserRecord, index: int) -> tuple[UserRecord, FavoriteBin | None]:
    if index < 0 or index >= len(record.favorites):
        return record, None
    favorites = list(record.favorites)
    removed = favorites.pop(index)
    return replace(record, favorites=tuple(favorites)), removed


def remove_favorite_bin(record: UserRecord, bin_value: str) -> tuple[UserRecord, FavoriteBin | None]:
    for index, favorite in enumerate(record.favorites):
        if favorite.bin == bin_value:
            return remove_favorite_at(record, index)
    return record, None


def push_history(
    record: UserRecord,
    kind: HistoryKind,
    key: str,
    *,
    count: int | None = None,
    now: datetime | None = None,
) -> UserRecord:
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    entry = HistoryEntry(kind=kind, key=key, timestamp=timestamp, count=count)
    history = (entry,) + record.history
    return replace(record, history=history[:HISTORY_LIMIT])


def set_temp_mail(record: UserRecord, mailbox: TempMailbox) -> UserRecord:
    if record.temp_mail == mailbox:
        return record
    return replace(record, temp_mail=mailbox)
