"""SQLite tables for relay sync: authors to follow, known relays and DHT uploads."""

from __future__ import annotations

import dataclasses
import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_authors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    public_key TEXT UNIQUE
);
CREATE TABLE IF NOT EXISTS sync_relays (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    public_key TEXT UNIQUE,
    relay_info TEXT
);
CREATE TABLE IF NOT EXISTS dht_uploadables (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    payload BLOB,
    pubkey BLOB,
    signature BLOB
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"cannot serialise {type(value).__name__} to JSON")


@dataclass
class SyncAuthor:
    id: int
    created_at: datetime
    updated_at: datetime
    public_key: str


@dataclass
class SyncRelay:
    id: int
    created_at: datetime
    updated_at: datetime
    public_key: str
    relay_info: str

    def info(self) -> Any:
        """Return the stored relay information decoded from JSON."""
        return json.loads(self.relay_info)


@dataclass
class DHTUploadable:
    id: int
    created_at: datetime
    updated_at: datetime
    payload: bytes
    pubkey: bytes
    signature: bytes


class SyncDatabase:
    """The sync tables in one SQLite file, or in memory for ":memory:"."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        with self._conn:
            self._conn.executescript(_SCHEMA)

    def __enter__(self) -> SyncDatabase:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _rows(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def get_sync_authors(self) -> list[SyncAuthor]:
        rows = self._rows(
            "SELECT id, created_at, updated_at, public_key FROM sync_authors ORDER BY id"
        )
        return [
            SyncAuthor(row[0], datetime.fromisoformat(row[1]), datetime.fromisoformat(row[2]), row[3])
            for row in rows
        ]

    def get_sync_relays(self) -> list[SyncRelay]:
        rows = self._rows(
            "SELECT id, created_at, updated_at, public_key, relay_info "
            "FROM sync_relays ORDER BY id"
        )
        return [
            SyncRelay(
                row[0],
                datetime.fromisoformat(row[1]),
                datetime.fromisoformat(row[2]),
                row[3],
                row[4],
            )
            for row in rows
        ]

    def get_dht_uploadables(self) -> list[DHTUploadable]:
        rows = self._rows(
            "SELECT id, created_at, updated_at, payload, pubkey, signature "
            "FROM dht_uploadables ORDER BY id"
        )
        return [
            DHTUploadable(
                row[0],
                datetime.fromisoformat(row[1]),
                datetime.fromisoformat(row[2]),
                bytes(row[3] or b""),
                bytes(row[4] or b""),
                bytes(row[5] or b""),
            )
            for row in rows
        ]

    def put_sync_author(self, public_key: str) -> None:
        """Add an author; an author already present is left as it is."""
        with self._lock, self._conn:
            found = self._conn.execute(
                "SELECT id FROM sync_authors WHERE public_key = ?", (public_key,)
            ).fetchone()
            if found is None:
                now = _now()
                self._conn.execute(
                    "INSERT INTO sync_authors (created_at, updated_at, public_key) "
                    "VALUES (?, ?, ?)",
                    (now, now, public_key),
                )

    def put_sync_relay(self, public_key: str, relay_info: Any) -> None:
        """Add a relay, or replace the stored information of a known one."""
        info_json = json.dumps(relay_info, default=_json_default)
        with self._lock, self._conn:
            found = self._conn.execute(
                "SELECT id FROM sync_relays WHERE public_key = ?", (public_key,)
            ).fetchone()
            now = _now()
            if found is None:
                self._conn.execute(
                    "INSERT INTO sync_relays (created_at, updated_at, public_key, relay_info) "
                    "VALUES (?, ?, ?, ?)",
                    (now, now, public_key, info_json),
                )
            else:
                self._conn.execute(
                    "UPDATE sync_relays SET relay_info = ?, updated_at = ? WHERE id = ?",
                    (info_json, now, found[0]),
                )

    def put_dht_uploadable(self, payload: bytes, pubkey: bytes, signature: bytes) -> None:
        """Add an upload for pubkey, or replace its payload and signature."""
        payload, pubkey, signature = bytes(payload), bytes(pubkey), bytes(signature)
        with self._lock, self._conn:
            found = self._conn.execute(
                "SELECT id FROM dht_uploadables WHERE pubkey = ? ORDER BY id LIMIT 1",
                (pubkey,),
            ).fetchone()
            now = _now()
            if found is None:
                self._conn.execute(
                    "INSERT INTO dht_uploadables "
                    "(created_at, updated_at, payload, pubkey, signature) VALUES (?, ?, ?, ?, ?)",
                    (now, now, payload, pubkey, signature),
                )
            else:
                self._conn.execute(
                    "UPDATE dht_uploadables SET payload = ?, signature = ?, updated_at = ? "
                    "WHERE id = ?",
                    (payload, signature, now, found[0]),
                )