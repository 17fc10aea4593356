"""High-level analytics entry points built on top of the lounge helpers."""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from . import metrics
from .config import SeasonSchedule, Settings
from .datastore import MemoryStore, SQLiteStore
from .filters import MatchFilter
from .lounge_client import LoungeClient
from .lounge_data import MatchCollection, iter_matches, normalize_player_id
from .sync import load_cached_matches, run_sync

logger = logging.getLogger(__name__)


def _flatten(prefix: str, value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    return {f"{prefix}_{key}": item for key, item in asdict(value).items()}


def summarize_player(matches: MatchCollection, player: Any) -> Dict[str, Any]:
    """
    Collect every aggregate and notable for ``player`` into one flat dict.

    Missing statistics are simply absent (or ``None``) so the result can be
    turned into a DataFrame row without special-casing.
    """
    rate = metrics.win_rate(matches, player)
    streaks = metrics.win_streaks(matches, player)
    partner = metrics.partner_average(matches, player)
    breakdown = metrics.player_count_breakdown(matches, player)

    summary: Dict[str, Any] = {
        "player": str(player),
        "matches_played": metrics.matches_played(matches, player),
        "win_rate": rate.win_rate if rate else None,
        "wins": rate.wins if rate else 0,
        "losses": rate.losses if rate else 0,
        "average_placement": metrics.average_placement(matches, player),
        "average_score": metrics.average_score(matches, player),
        "average_seed": metrics.average_seed(matches, player),
        "average_player_count": metrics.average_player_count(matches, player),
        "matches_12p": breakdown["12p"],
        "matches_24p": breakdown["24p"],
        "total_mmr_delta": metrics.total_mmr_delta(matches, player),
        "partner_average": partner.average if partner else None,
        "partner_room_average": partner.room_average if partner else None,
    }
    summary.update(asdict(streaks))
    summary.update(_flatten("best_score", metrics.best_score(matches, player)))
    summary.update(_flatten("worst_score", metrics.worst_score(matches, player)))
    summary.update(_flatten("overperformance", metrics.biggest_overperformance(matches, player)))
    summary.update(_flatten("underperformance", metrics.biggest_underperformance(matches, player)))
    summary.update(_flatten("carry", metrics.biggest_carry(matches, player)))
    summary.update(_flatten("anchor", metrics.biggest_anchor(matches, player)))
    return summary


def player_summary_frame(matches: MatchCollection, player: Any) -> pd.DataFrame:
    """One-row DataFrame of :func:`summarize_player`; empty when no tables match."""
    if metrics.matches_played(matches, player) == 0:
        return pd.DataFrame()
    return pd.DataFrame([summarize_player(matches, player)])


def match_history_frame(matches: MatchCollection, player: Any) -> pd.DataFrame:
    """Per-table rows for ``player`` sorted by completion time."""
    rows: List[Dict[str, Any]] = []
    for match in iter_matches(matches):
        ranking = metrics.player_ranking(match, player)
        if ranking is None:
            continue
        seeded = metrics.player_seed(match, player)
        rows.append(
            {
                "match_id": match.id,
                "season": match.season,
                "created_on": match.created_on,
                "tier": match.tier,
                "format": match.format,
                "num_players": match.num_players,
                "score": ranking.score,
                "placement": ranking.rank,
                "tied": ranking.tied,
                "seed": seeded.seed if seeded else None,
                "overperformance": seeded.seed - ranking.rank if seeded else None,
                "team_rank": ranking.participant.team_rank,
                "mmr_delta": ranking.participant.delta,
            }
        )
    df = pd.DataFrame(rows)
    if not df.empty:
        df.sort_values(["created_on", "match_id"], inplace=True, na_position="first")
        df.reset_index(drop=True, inplace=True)
    return df


def head_to_head_frame(matches: MatchCollection, player: Any, opponents: List[Any]) -> pd.DataFrame:
    """Head-to-head record of ``player`` against each opponent, one row each."""
    rows = []
    for opponent in opponents:
        record = metrics.get_h2h(matches, player, opponent)
        margin = metrics.biggest_difference(matches, player, opponent)
        rows.append(
            {
                "opponent": str(opponent),
                "wins": record.wins,
                "losses": record.losses,
                "ties": record.ties,
                "biggest_margin": margin.score_difference if margin else None,
                "biggest_margin_match_id": margin.match_id if margin else None,
            }
        )
    return pd.DataFrame(rows)


def load_player_matches(
    player_id: Any,
    client: Optional[LoungeClient] = None,
    store: Any = None,
    schedule: Optional[SeasonSchedule] = None,
    refresh: bool = False,
) -> Dict[int, Any]:
    """
    Sync ``player_id`` unless the store says the last pass is still fresh.

    ``refresh`` forces a pass. Without a store everything is fetched into a
    throwaway :class:`MemoryStore`. A pass is only recorded as fresh when
    every season/game mode answered and it was not cancelled, so a remote
    outage is retried on the next call.
    """
    pid = normalize_player_id(player_id)
    store = store if store is not None else MemoryStore()
    if not refresh and not store.sync_is_stale(pid):
        logger.info("Player %s synced recently, serving tables from the store", pid)
        return load_cached_matches(store, pid)
    owns_client = client is None
    client = client or LoungeClient()
    try:
        matches, report = run_sync(pid, client, store, schedule=schedule)
    finally:
        if owns_client:
            client.close()
    if report.combinations_failed or report.cancelled:
        logger.warning(
            "Sync for player %s incomplete (%s combinations failed); not marking it fresh",
            pid,
            report.combinations_failed,
        )
    else:
        store.record_sync(pid)
    return matches


def load_filtered_matches(
    player_id: Any,
    filt: Optional[MatchFilter] = None,
    use_store: bool = True,
    store_path: Optional[Path] = None,
    settings: Optional[Settings] = None,
    refresh: bool = False,
) -> Dict[int, Any]:
    """
    Open the store and a client, sync the player and apply ``filt``.

    Both the store and the client are closed before returning.
    """
    settings = settings or Settings.from_env()
    pid = normalize_player_id(player_id)
    store = SQLiteStore(store_path or settings.store_path) if use_store else MemoryStore()
    try:
        with LoungeClient(settings=settings) as client:
            matches = load_player_matches(pid, client=client, store=store, refresh=refresh)
    finally:
        store.close()
    if filt is not None and not filt.is_default:
        matches = filt.apply(matches)
    return matches


def generate_player_report(
    player_id: Any,
    filt: Optional[MatchFilter] = None,
    use_store: bool = True,
    store_path: Optional[Path] = None,
    settings: Optional[Settings] = None,
    refresh: bool = False,
) -> pd.DataFrame:
    """
    Run the full pipeline and return a one-row DataFrame for the player.

    Parameters
    ----------
    player_id:
        Numeric lounge id.
    filt:
        Optional :class:`MatchFilter` applied before computing statistics.
    use_store:
        When True, persist tables inside a SQLite database so follow-up runs
        only fetch what is new. Disable for ephemeral environments.
    store_path:
        Location of the SQLite database (defaults to ``settings.store_path``).
    refresh:
        Force a sync even if the player was synced recently.
    """
    matches = load_filtered_matches(
        player_id,
        filt=filt,
        use_store=use_store,
        store_path=store_path,
        settings=settings,
        refresh=refresh,
    )
    return player_summary_frame(matches, normalize_player_id(player_id))


__all__ = [
    "generate_player_report",
    "head_to_head_frame",
    "load_filtered_matches",
    "load_player_matches",
    "match_history_frame",
    "player_summary_frame",
    "summarize_player",
]
