"""Relay statistics: stored event kinds, user profiles, files and the panel charts."""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

from .nostr import Event
from .stats_db import StatsDatabase, _from_db, _to_db

log = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kinds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    kind_number INTEGER NOT NULL,
    event_id TEXT NOT NULL,
    size REAL NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS photos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hash TEXT NOT NULL,
    leaf_count INTEGER NOT NULL,
    kind_name TEXT NOT NULL,
    size REAL NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hash TEXT NOT NULL,
    leaf_count INTEGER NOT NULL,
    kind_name TEXT NOT NULL,
    size REAL NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS audios (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hash TEXT NOT NULL,
    leaf_count INTEGER NOT NULL,
    kind_name TEXT NOT NULL,
    size REAL NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS miscs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hash TEXT NOT NULL,
    leaf_count INTEGER NOT NULL,
    kind_name TEXT NOT NULL,
    size REAL NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS git_nestrs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    hash TEXT NOT NULL,
    leaf_count INTEGER NOT NULL,
    kind_name TEXT NOT NULL,
    git_type TEXT NOT NULL,
    size REAL NOT NULL,
    timestamp TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS user_profiles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    npub_key TEXT NOT NULL,
    lightning_addr INTEGER NOT NULL DEFAULT 0,
    dht_key INTEGER NOT NULL DEFAULT 0,
    timestamp TEXT NOT NULL
);
"""

_MEDIA_UNION = """
    SELECT timestamp, size, kind_number FROM kinds
    UNION ALL SELECT timestamp, size, NULL FROM photos
    UNION ALL SELECT timestamp, size, NULL FROM videos
    UNION ALL SELECT timestamp, size, NULL FROM git_nestrs
    UNION ALL SELECT timestamp, size, NULL FROM audios
"""


@dataclass
class RelaySettings:
    """What the relay accepts: the mode, the stored event kinds and media types."""

    mode: str = "smart"
    kinds: list[str] = field(default_factory=list)
    photos: list[str] = field(default_factory=list)
    videos: list[str] = field(default_factory=list)
    audio: list[str] = field(default_factory=list)


@dataclass
class AggregatedKindData:
    kind_number: int
    kind_count: int
    total_size: float


@dataclass
class MonthlyKindData:
    month: str
    total_size: float


@dataclass
class ActivityData:
    month: str
    total_gb: float


@dataclass
class BarChartData:
    month: str
    notes_gb: float
    media_gb: float


@dataclass
class TimeSeriesData:
    month: str
    profiles: int
    lightning_addr: int
    dht_key: int
    lightning_and_dht: int


def _event_size_mb(event: Event) -> float:
    size = len(event.id) + len(event.pubkey) + len(event.content) + len(event.sig)
    size += sum(len(part) for tag in event.tags for part in tag)
    return size / (1024 * 1024)


def _profile_flags(content: str) -> tuple[bool, bool]:
    try:
        data: Any = json.loads(content)
    except (ValueError, TypeError):
        log.info("No lightning address or DHT key in profile content, using defaults")
        data = {}
    if not isinstance(data, dict):
        data = {}
    nip05 = data.get("nip05")
    dht = data.get("dht-key")
    return (
        isinstance(nip05, str) and nip05 != "",
        isinstance(dht, str) and dht != "",
    )


class StatisticsStore(StatsDatabase):
    """The panel records plus the statistics about stored events and files."""

    def __init__(
        self,
        path: str | Path = ":memory:",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(path, clock)
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)

    # -- events and profiles -----------------------------------------------

    def save_event_kind(self, event: Event, relay_settings: RelaySettings) -> None:
        """Record a stored event; kind 0 events also update the author's profile."""
        if event.kind == 0:
            lightning_addr, dht_key = _profile_flags(event.content)
            self.upsert_user_profile(
                event.pubkey,
                lightning_addr,
                dht_key,
                datetime.fromtimestamp(event.created_at, timezone.utc),
            )
        if f"kind{event.kind}" in relay_settings.kinds:
            self._insert(
                "INSERT INTO kinds (kind_number, event_id, size, timestamp) VALUES (?, ?, ?, ?)",
                (event.kind, event.id, _event_size_mb(event), _to_db(self._now())),
            )

    def upsert_user_profile(
        self, npub_key: str, lightning_addr: bool, dht_key: bool, created_at: datetime
    ) -> None:
        """Create the profile of npub_key, or overwrite its flags and timestamp."""
        with self._lock, self._conn:
            found = self._conn.execute(
                "SELECT id FROM user_profiles WHERE npub_key = ? ORDER BY id LIMIT 1",
                (npub_key,),
            ).fetchone()
            values = (int(lightning_addr), int(dht_key), _to_db(created_at))
            if found is None:
                self._conn.execute(
                    "INSERT INTO user_profiles (lightning_addr, dht_key, timestamp, npub_key) "
                    "VALUES (?, ?, ?, ?)",
                    (*values, npub_key),
                )
            else:
                self._conn.execute(
                    "UPDATE user_profiles SET lightning_addr = ?, dht_key = ?, timestamp = ? "
                    "WHERE id = ?",
                    (*values, found[0]),
                )

    def delete_event_by_id(self, event_id: str) -> None:
        self._execute("DELETE FROM kinds WHERE event_id = ?", (event_id,))

    # -- files ---------------------------------------------------------------

    def save_file(
        self,
        kind_name: str,
        relay_settings: RelaySettings,
        hash: str,
        leaf_count: int,
        size_mb: float,
        item_name: str,
    ) -> None:
        """Record a stored file; media types listed in the settings are refused."""
        mode = relay_settings.mode
        lowered = kind_name.lower()
        blocked = [*relay_settings.photos, *relay_settings.videos, *relay_settings.audio]
        if mode == "smart":
            if lowered in blocked:
                raise ValueError(f"file type not permitted in smart mode: {kind_name}")
        elif mode == "unlimited":
            if lowered in blocked:
                raise ValueError(f"blocked file type in unlimited mode: {kind_name}")
        else:
            raise ValueError(f"unknown mode: {mode}")

        # Every listed media type is refused above, so what remains is stored as misc.
        self._insert(
            "INSERT INTO miscs (hash, leaf_count, kind_name, size, timestamp) "
            "VALUES (?, ?, ?, ?, ?)",
            (hash, leaf_count, item_name, size_mb, _to_db(self._now())),
        )

    # -- aggregates ------------------------------------------------------------

    def fetch_kind_data(self) -> list[AggregatedKindData]:
        """Count and total size per kind, largest total first."""
        totals: dict[int, AggregatedKindData] = {}
        for kind_number, size in self._query("SELECT kind_number, size FROM kinds ORDER BY id"):
            entry = totals.get(kind_number)
            if entry is None:
                totals[kind_number] = AggregatedKindData(kind_number, 1, size)
            else:
                entry.kind_count += 1
                entry.total_size += size
        return sorted(totals.values(), key=lambda entry: entry.total_size, reverse=True)

    def fetch_kind_trend_data(self, kind_number: int) -> list[MonthlyKindData]:
        """Total size per month of one kind over the last twelve months, oldest first."""
        now = self._now()
        cutoff = f"{now.year - 1:04d}-{now.month:02d}-{now.day:02d}"
        rows = self._query(
            "SELECT timestamp, size FROM kinds WHERE kind_number = ? AND timestamp >= ?",
            (kind_number, cutoff),
        )
        monthly: dict[str, float] = defaultdict(float)
        for timestamp, size in rows:
            monthly[_from_db(timestamp).strftime("%Y-%m")] += size
        return [MonthlyKindData(month, total) for month, total in sorted(monthly.items())]

    def fetch_monthly_storage_stats(self) -> list[ActivityData]:
        """Gigabytes stored per month across events and media."""
        rows = self._query(
            "SELECT substr(timestamp, 1, 7) AS month, ROUND(SUM(size) / 1024.0, 3) "
            f"FROM ({_MEDIA_UNION}) GROUP BY month ORDER BY month"
        )
        return [ActivityData(month, total) for month, total in rows]

    def fetch_notes_media_storage_data(self) -> list[BarChartData]:
        """Gigabytes of notes and of media per month."""
        rows = self._query(
            "SELECT substr(timestamp, 1, 7) AS month, "
            "ROUND(SUM(CASE WHEN kind_number IS NOT NULL THEN size ELSE 0 END) / 1024.0, 3), "
            "ROUND(SUM(CASE WHEN kind_number IS NULL THEN size ELSE 0 END) / 1024.0, 3) "
            f"FROM ({_MEDIA_UNION}) GROUP BY month ORDER BY month"
        )
        return [BarChartData(month, notes, media) for month, notes, media in rows]

    def fetch_profiles_time_series_data(
        self, start_date: str, end_date: str
    ) -> list[TimeSeriesData]:
        """Profile counts per month for months from start_date to end_date ("YYYY-MM")."""
        rows = self._query(
            "SELECT substr(timestamp, 1, 7) AS month, COUNT(*), "
            "COUNT(CASE WHEN lightning_addr THEN 1 END), "
            "COUNT(CASE WHEN dht_key THEN 1 END), "
            "COUNT(CASE WHEN lightning_addr AND dht_key THEN 1 END) "
            "FROM user_profiles WHERE substr(timestamp, 1, 7) >= ? "
            "AND substr(timestamp, 1, 7) <= ? GROUP BY month ORDER BY month ASC",
            (start_date, end_date),
        )
        return [TimeSeriesData(*row) for row in rows]

    # -- counts ------------------------------------------------------------------

    def _count(self, table: str) -> int:
        return int(self._query(f"SELECT COUNT(*) FROM {table}")[0][0])

    def fetch_kind_count(self) -> int:
        return self._count("kinds")

    def fetch_photo_count(self) -> int:
        return self._count("photos")

    def fetch_video_count(self) -> int:
        return self._count("videos")

    def fetch_git_nestr_count(self, git_nestr: Sequence[str]) -> int:
        """Count git entries whose type is one of git_nestr."""
        types = list(git_nestr)
        if not types:
            return 0
        marks = ", ".join("?" for _ in types)
        rows = self._query(f"SELECT COUNT(*) FROM git_nestrs WHERE git_type IN ({marks})", tuple(types))
        return int(rows[0][0])

    def fetch_audio_count(self) -> int:
        return self._count("audios")

    def fetch_misc_count(self) -> int:
        return self._count("miscs")