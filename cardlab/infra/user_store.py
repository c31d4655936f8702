from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar

from cardlab.core.user_record import UserRecord

LOGGER = logging.getLogger(__name__)

RECORD_SCHEMA_VERSION = 1

T = TypeVar("T")


class UserRecordStore:
    """Per-user favourites, history and mailbox, one JSON document per user.

    The sync methods share one connection and serialise on a re-entrant lock.
    Handlers use the ``*_async`` variants, which run the sqlite work in a
    worker thread through ``asyncio.to_thread``.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._lock = threading.RLock()
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._lock:
            self._connection.execute(
                """
                CREATE TABLE IF NOT EXISTS user_records (
                    user_id INTEGER PRIMARY KEY,
                    schema_version INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self._connection.commit()

    def load(self, user_id: int) -> UserRecord:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT payload, schema_version FROM user_records WHERE user_id = ?",
                (user_id,),
            )
            row = cursor.fetchone()
        if row is None:
            return UserRecord()
        if row["schema_version"] != RECORD_SCHEMA_VERSION:
            LOGGER.warning(
                "User record schema mismatch: user_id=%s version=%s expected=%s",
                user_id,
                row["schema_version"],
                RECORD_SCHEMA_VERSION,
            )
        try:
            payload = json.loads(row["payload"]) if isinstance(row["payload"], str) else {}
        except json.JSONDecodeError:
            LOGGER.warning("Corrupt user record payload: user_id=%s", user_id)
            payload = {}
        return UserRecord.from_dict(payload)

    def save(self, user_id: int, record: UserRecord) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._connection.execute(
                """
                INSERT INTO user_records (user_id, schema_version, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    schema_version=excluded.schema_version,
                    payload=excluded.payload,
                    updated_at=excluded.updated_at
                """,
                (
                    user_id,
                    RECORD_SCHEMA_VERSION,
                    json.dumps(record.to_dict(), ensure_ascii=False, separators=(",", ":")),
                    now,
                ),
            )
            self._connection.commit()

    def update(self, user_id: int, mutate: Callable[[UserRecord], tuple[UserRecord, T]]) -> T:
        # Load, mutate and save under one lock hold: concurrent updates of
        # the same user apply one after the other.
        with self._lock:
            record = self.load(user_id)
            updated, outcome = mutate(record)
            if updated is not record:
                self.save(user_id, updated)
        return outcome

    async def load_async(self, user_id: int) -> UserRecord:
        return await asyncio.to_thread(self.load, user_id)

    async def update_async(self, user_id: int, mutate: Callable[[UserRecord], tuple[UserRecord, T]]) -> T:
        return await asyncio.to_thread(self.update, user_id, mutate)

    def close(self) -> None:
        with self._lock:
            try:
                self._connection.close()
            except sqlite3.Error:
                LOGGER.exception("Failed to close user record database connection")
