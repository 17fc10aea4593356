"""
datastore.py
------------

Persistence helpers for storing lounge tables in a local SQLite database.
Tables never change once the lounge has verified them, so anything stored
here is served from disk on every later run instead of being re-downloaded.

Two implementations share the same surface:

* :class:`SQLiteStore` for CLI / long-running usage.
* :class:`MemoryStore` for ephemeral environments and tests.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional, Set

from .config import DEFAULT_STORE_PATH
from .errors import StoreError
from .lounge_data import MatchRecord, normalize_player_id


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _dump_payload(record: MatchRecord) -> str:
    return json.dumps(dict(record.payload), separators=(",", ":"), ensure_ascii=False)


def _load_payload(match_id: int, raw: str) -> MatchRecord:
    try:
        return MatchRecord.from_payload(json.loads(raw))
    except (TypeError, ValueError) as exc:
        raise StoreError(f"Stored table {match_id} is corrupt: {exc}") from exc


class SQLiteStore:
    """Small helper that persists table payloads + per-player indexes locally."""

    def __init__(
        self,
        path: Optional[Path] = None,
        sync_ttl_hours: int = 6,
    ) -> None:
        self.path = Path(path) if path else DEFAULT_STORE_PATH
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.sync_ttl = timedelta(hours=sync_ttl_hours)
        # Connection may be shared across threads; every access holds _lock.
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # --------------------------------------------------------------------- #
    # Schema & lifecycle
    # --------------------------------------------------------------------- #

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self.conn.close()

    def _ensure_schema(self) -> None:
        """Create tables if they do not already exist."""
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS matches (
                id INTEGER PRIMARY KEY,
                season INTEGER,
                game_mode TEXT,
                tier TEXT,
                num_players INTEGER,
                created_on TEXT,
                payload TEXT NOT NULL,
                last_synced INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_matches_season
              ON matches(season, game_mode);

            CREATE TABLE IF NOT EXISTS player_matches (
                player_id INTEGER NOT NULL,
                match_id INTEGER NOT NULL,
                created_at INTEGER NOT NULL,
                PRIMARY KEY (player_id, match_id)
            );

            CREATE TABLE IF NOT EXISTS player_syncs (
                player_id INTEGER PRIMARY KEY,
                last_synced INTEGER NOT NULL
            );
            """
        )
        self.conn.commit()

    # --------------------------------------------------------------------- #
    # Matches
    # --------------------------------------------------------------------- #

    def put_match(self, match_id: int, record: MatchRecord) -> None:
        """Insert or replace a table. Same id always means same content."""
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    """
                    INSERT INTO matches(
                        id, season, game_mode, tier, num_players, created_on,
                        payload, last_synced
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        season = excluded.season,
                        game_mode = excluded.game_mode,
                        tier = excluded.tier,
                        num_players = excluded.num_players,
                        created_on = excluded.created_on,
                        payload = excluded.payload,
                        last_synced = excluded.last_synced
                    """,
                    (
                        int(match_id),
                        record.season,
                        record.game_mode,
                        record.tier,
                        record.num_players,
                        record.created_on.isoformat() if record.created_on else None,
                        _dump_payload(record),
                        _now_ts(),
                    ),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not save table {match_id}: {exc}") from exc

    def get_match(self, match_id: int) -> Optional[MatchRecord]:
        """Return a cached table, ``None`` if unknown."""
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT payload FROM matches WHERE id = ?",
                    (int(match_id),),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read table {match_id}: {exc}") from exc
        if row is None:
            return None
        return _load_payload(int(match_id), row["payload"])

    def count_matches(self) -> int:
        try:
            with self._lock:
                row = self.conn.execute("SELECT COUNT(*) AS n FROM matches").fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not count tables: {exc}") from exc
        return int(row["n"])

    # --------------------------------------------------------------------- #
    # Per-player index
    # --------------------------------------------------------------------- #

    def get_match_index_for_player(self, player_id: int) -> Set[int]:
        pid = normalize_player_id(player_id)
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT match_id FROM player_matches WHERE player_id = ?",
                    (pid,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read index for player {pid}: {exc}") from exc
        return {int(row["match_id"]) for row in rows}

    def put_match_index_for_player(self, player_id: int, match_ids: Iterable[int]) -> None:
        """Union ``match_ids`` into the player's index; existing rows are kept."""
        pid = normalize_player_id(player_id)
        now_ts = _now_ts()
        try:
            with self._lock, self.conn:
                self.conn.executemany(
                    """
                    INSERT INTO player_matches(player_id, match_id, created_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(player_id, match_id) DO NOTHING
                    """,
                    [(pid, int(match_id), now_ts) for match_id in set(match_ids)],
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not update index for player {pid}: {exc}") from exc

    # --------------------------------------------------------------------- #
    # Sync bookkeeping
    # --------------------------------------------------------------------- #

    def sync_is_stale(self, player_id: int) -> bool:
        """Return True when the player has not been synced within the TTL."""
        pid = normalize_player_id(player_id)
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT last_synced FROM player_syncs WHERE player_id = ?",
                    (pid,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read sync state for player {pid}: {exc}") from exc
        if row is None:
            return True
        last_synced = datetime.fromtimestamp(row["last_synced"], tz=timezone.utc)
        return (datetime.now(timezone.utc) - last_synced) >= self.sync_ttl

    def record_sync(self, player_id: int) -> None:
        """Persist the timestamp of the player's most recent sync pass."""
        pid = normalize_player_id(player_id)
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    """
                    INSERT INTO player_syncs(player_id, last_synced)
                    VALUES (?, ?)
                    ON CONFLICT(player_id) DO UPDATE SET last_synced = excluded.last_synced
                    """,
                    (pid, _now_ts()),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not record sync for player {pid}: {exc}") from exc


class MemoryStore:
    """Dict-backed store with the same surface as :class:`SQLiteStore`."""

    def __init__(self, sync_ttl_hours: int = 6) -> None:
        self.sync_ttl = timedelta(hours=sync_ttl_hours)
        self._matches: Dict[int, str] = {}
        self._index: Dict[int, Set[int]] = {}
        self._syncs: Dict[int, datetime] = {}
        self._lock = threading.Lock()

    def close(self) -> None:
        pass

    def put_match(self, match_id: int, record: MatchRecord) -> None:
        with self._lock:
            self._matches[int(match_id)] = _dump_payload(record)

    def get_match(self, match_id: int) -> Optional[MatchRecord]:
        with self._lock:
            raw = self._matches.get(int(match_id))
        if raw is None:
            return None
        return _load_payload(int(match_id), raw)

    def count_matches(self) -> int:
        return len(self._matches)

    def get_match_index_for_player(self, player_id: int) -> Set[int]:
        with self._lock:
            return set(self._index.get(normalize_player_id(player_id), ()))

    def put_match_index_for_player(self, player_id: int, match_ids: Iterable[int]) -> None:
        pid = normalize_player_id(player_id)
        with self._lock:
            self._index.setdefault(pid, set()).update(int(m) for m in match_ids)

    def sync_is_stale(self, player_id: int) -> bool:
        last_synced = self._syncs.get(normalize_player_id(player_id))
        if last_synced is None:
            return True
        return (datetime.now(timezone.utc) - last_synced) >= self.sync_ttl

    def record_sync(self, player_id: int) -> None:
        self._syncs[normalize_player_id(player_id)] = datetime.now(timezone.utc)


__all__ = ["SQLiteStore", "MemoryStore"]
