"""
sync.py
-------

Incremental download of a player's lounge tables.

A sync pass never re-downloads a table that is already in the store: it asks
the lounge for the player's rating history per season and game mode, picks
out the table ids it has not seen yet, fetches only those (five at a time),
and remembers them for the next pass.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .config import DEFAULT_SCHEDULE, SeasonSchedule
from .errors import LoungeError
from .lounge_data import MatchRecord, normalize_player_id

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
TABLE_REASON = "Table"


@dataclass
class SyncReport:
    """Counters describing one sync pass (logged at the end)."""

    player_id: int
    cached: int = 0
    combinations_checked: int = 0
    combinations_skipped: int = 0
    combinations_failed: int = 0
    matches_fetched: int = 0
    matches_failed: int = 0
    cancelled: bool = False


def missing_match_ids(details: Optional[Mapping[str, Any]], known: Iterable[int]) -> List[int]:
    """
    Table ids referenced by ``details['mmrChanges']`` that are not in ``known``.

    Only rating changes whose reason is a table count; penalties, bonuses and
    placement entries carry no table. Order follows the payload, duplicates
    are dropped.
    """
    if not isinstance(details, Mapping):
        return []
    known_ids = set(known)
    missing: List[int] = []
    for change in details.get("mmrChanges") or []:
        if not isinstance(change, Mapping) or change.get("reason") != TABLE_REASON:
            continue
        try:
            match_id = int(change.get("changeId"))
        except (TypeError, ValueError):
            continue
        if match_id in known_ids:
            continue
        known_ids.add(match_id)
        missing.append(match_id)
    return missing


def _details_match(
    details: Optional[Mapping[str, Any]],
    season: int,
    game_mode: str,
    schedule: SeasonSchedule,
) -> bool:
    if not isinstance(details, Mapping):
        return False
    try:
        details_season = int(details.get("season"))
    except (TypeError, ValueError):
        return False
    details_mode = details.get("gameMode") or schedule.default_game_mode
    return details_season == season and details_mode == game_mode


def load_cached_matches(store, player_id: Any) -> Dict[int, MatchRecord]:
    """Hydrate every table the store indexes for ``player_id``; bad rows are skipped."""
    player_id = normalize_player_id(player_id)
    try:
        known_ids = store.get_match_index_for_player(player_id)
    except LoungeError as exc:
        logger.warning("Could not read cached index for player %s: %s", player_id, exc)
        return {}

    matches: Dict[int, MatchRecord] = {}
    for match_id in sorted(known_ids):
        try:
            record = store.get_match(match_id)
        except LoungeError as exc:
            logger.warning("Skipping cached table %s for player %s: %s", match_id, player_id, exc)
            continue
        if record is None:
            logger.warning("Table %s indexed for player %s is missing from the store", match_id, player_id)
            continue
        matches[match_id] = record
    return matches


def _fetch_one(client, match_id: int) -> Tuple[int, Optional[MatchRecord], Optional[Exception]]:
    try:
        payload = client.get_match(match_id)
        if payload is None:
            return match_id, None, None
        return match_id, MatchRecord.from_payload(payload), None
    except (LoungeError, ValueError) as exc:
        return match_id, None, exc


def fetch_matches(
    client,
    match_ids: List[int],
    batch_size: int = BATCH_SIZE,
    cancel_event: Optional[threading.Event] = None,
    report: Optional[SyncReport] = None,
) -> Dict[int, MatchRecord]:
    """
    Download ``match_ids`` in batches of ``batch_size`` concurrent requests.

    Each batch completes before the next starts. A failing id is logged and
    skipped; it never aborts the batch.
    """
    fetched: Dict[int, MatchRecord] = {}
    if not match_ids:
        return fetched
    batch_size = max(1, int(batch_size))
    with ThreadPoolExecutor(max_workers=batch_size) as executor:
        for start in range(0, len(match_ids), batch_size):
            if cancel_event is not None and cancel_event.is_set():
                if report is not None:
                    report.cancelled = True
                break
            batch = match_ids[start:start + batch_size]
            for match_id, record, error in executor.map(lambda mid: _fetch_one(client, mid), batch):
                if error is not None:
                    logger.warning("Could not fetch table %s: %s", match_id, error)
                    if report is not None:
                        report.matches_failed += 1
                    continue
                if record is None:
                    logger.debug("Table %s not found on the lounge", match_id)
                    continue
                fetched[match_id] = record
    return fetched


def _persist(store, player_id: int, new_matches: Mapping[int, MatchRecord], all_ids: Set[int]) -> None:
    for match_id, record in new_matches.items():
        try:
            store.put_match(match_id, record)
        except LoungeError as exc:
            logger.warning("Failed to persist table %s for player %s: %s", match_id, player_id, exc)
    try:
        store.put_match_index_for_player(player_id, all_ids)
    except LoungeError as exc:
        logger.warning("Failed to update cached index for player %s: %s", player_id, exc)


def run_sync(
    player_id: Any,
    client,
    store,
    schedule: Optional[SeasonSchedule] = None,
    known_details: Optional[Mapping[str, Any]] = None,
    batch_size: int = BATCH_SIZE,
    cancel_event: Optional[threading.Event] = None,
) -> Tuple[Dict[int, MatchRecord], SyncReport]:
    """
    Return every table known for ``player_id`` (downloading the missing ones)
    together with the :class:`SyncReport` of the pass.

    Parameters
    ----------
    player_id:
        Numeric lounge id. Anything else raises :class:`InvalidArgument`
        before any network or store access.
    client:
        A :class:`~loungestats.lounge_client.LoungeClient` (or anything with
        ``get_player_details`` and ``get_match``).
    store:
        A :class:`~loungestats.datastore.SQLiteStore` or
        :class:`~loungestats.datastore.MemoryStore`.
    schedule:
        Seasons and game modes to walk; defaults to :data:`DEFAULT_SCHEDULE`.
    known_details:
        A ``/player/details`` payload the caller already holds. It replaces
        the request for the matching season/game mode.
    cancel_event:
        Checked between combinations and batches. Work fetched so far is
        still persisted.
    """
    pid = normalize_player_id(player_id)
    schedule = schedule or DEFAULT_SCHEDULE
    report = SyncReport(player_id=pid)

    matches = load_cached_matches(store, pid)
    report.cached = len(matches)
    new_matches: Dict[int, MatchRecord] = {}

    for season, game_mode in schedule.combinations():
        if cancel_event is not None and cancel_event.is_set():
            report.cancelled = True
            break
        report.combinations_checked += 1
        try:
            if _details_match(known_details, season, game_mode, schedule):
                details = known_details
            else:
                details = client.get_player_details(pid, season, game_mode)
        except LoungeError as exc:
            report.combinations_failed += 1
            logger.warning(
                "Player details failed for %s season %s/%s: %s", pid, season, game_mode, exc
            )
            continue

        if not isinstance(details, Mapping) or not details.get("mmrChanges"):
            if details and not isinstance(details, Mapping):
                logger.warning(
                    "Unexpected details payload for %s season %s/%s: %s",
                    pid,
                    season,
                    game_mode,
                    type(details).__name__,
                )
            report.combinations_skipped += 1
            continue

        missing = missing_match_ids(details, matches.keys())
        if not missing:
            logger.debug(
                "Season %s/%s complete for player %s (%s events)",
                season,
                game_mode,
                pid,
                details.get("eventsPlayed"),
            )
            continue

        logger.info(
            "Fetching %s new tables for player %s season %s/%s",
            len(missing),
            pid,
            season,
            game_mode,
        )
        fetched = fetch_matches(
            client,
            missing,
            batch_size=batch_size,
            cancel_event=cancel_event,
            report=report,
        )
        report.matches_fetched += len(fetched)
        matches.update(fetched)
        new_matches.update(fetched)
        if report.cancelled:
            break

    if new_matches:
        _persist(store, pid, new_matches, set(matches))

    logger.info(
        "Sync for player %s: %s cached, %s fetched, %s failed, %s/%s combinations skipped/failed%s",
        pid,
        report.cached,
        report.matches_fetched,
        report.matches_failed,
        report.combinations_skipped,
        report.combinations_failed,
        " (cancelled)" if report.cancelled else "",
    )
    return matches, report


def sync_player_matches(
    player_id: Any,
    client,
    store,
    schedule: Optional[SeasonSchedule] = None,
    known_details: Optional[Mapping[str, Any]] = None,
    batch_size: int = BATCH_SIZE,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[int, MatchRecord]:
    """Return every table known for ``player_id``; see :func:`run_sync`."""
    matches, _ = run_sync(
        player_id,
        client,
        store,
        schedule=schedule,
        known_details=known_details,
        batch_size=batch_size,
        cancel_event=cancel_event,
    )
    return matches


__all__ = [
    "BATCH_SIZE",
    "SyncReport",
    "fetch_matches",
    "load_cached_matches",
    "missing_match_ids",
    "run_sync",
    "sync_player_matches",
]
