"""
filters.py
----------

Pure helpers that narrow a match collection by time window, queue and
player count. Every helper returns a new ``{match_id: MatchRecord}`` dict
and leaves its input untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .config import DEFAULT_SCHEDULE, GAME_MODE_12P, GAME_MODE_24P
from .errors import InvalidArgument
from .lounge_data import MatchCollection, MatchRecord, iter_matches

ONE_WEEK = timedelta(days=7)
SQUAD_QUEUE_TIER = "SQ"

TIME_FILTERS = ("alltime", "weekly", "season")
QUEUE_FILTERS = ("both", "squads", "soloq")
PLAYER_COUNT_FILTERS = ("both", "12p", "24p", GAME_MODE_12P, GAME_MODE_24P)

_MODE_PLAYER_COUNTS = {GAME_MODE_12P: 12, GAME_MODE_24P: 24}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def filter_by_week(
    matches: MatchCollection,
    now: Optional[datetime] = None,
    window: timedelta = ONE_WEEK,
) -> Dict[int, MatchRecord]:
    """Tables completed within ``window`` of ``now``. Undated tables drop out."""
    now = now or _utc_now()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    cutoff = now - window
    return {
        m.id: m
        for m in iter_matches(matches)
        if m.created_on is not None and m.created_on >= cutoff
    }


def filter_by_season(matches: MatchCollection, season: int) -> Dict[int, MatchRecord]:
    return {m.id: m for m in iter_matches(matches) if m.season == season}


def filter_by_queue(matches: MatchCollection, queue: str) -> Dict[int, MatchRecord]:
    """``squads`` keeps squad-queue tables, ``soloq`` keeps everything else."""
    if queue == "both":
        return {m.id: m for m in iter_matches(matches)}
    if queue == "squads":
        return {m.id: m for m in iter_matches(matches) if m.tier == SQUAD_QUEUE_TIER}
    if queue == "soloq":
        return {m.id: m for m in iter_matches(matches) if m.tier != SQUAD_QUEUE_TIER}
    raise InvalidArgument(f"Unknown queue filter {queue!r}")


def _desired_player_count(player_count: str) -> int:
    if player_count in ("12p", GAME_MODE_12P):
        return 12
    if player_count in ("24p", GAME_MODE_24P):
        return 24
    raise InvalidArgument(f"Unknown player count filter {player_count!r}")


def filter_by_player_count(matches: MatchCollection, player_count: str) -> Dict[int, MatchRecord]:
    """
    Keep 12p or 24p tables. The game mode decides when the table carries
    one; legacy tables fall back to ``num_players``.
    """
    if player_count == "both":
        return {m.id: m for m in iter_matches(matches)}
    desired = _desired_player_count(player_count)
    kept: Dict[int, MatchRecord] = {}
    for match in iter_matches(matches):
        mode_count = _MODE_PLAYER_COUNTS.get(match.game_mode or "")
        if mode_count == desired or (mode_count is None and match.num_players == desired):
            kept[match.id] = match
    return kept


@dataclass
class MatchFilter:
    """Composable filter applied by intersection (time, then queue, then count)."""

    time_filter: str = "alltime"
    queue_filter: str = "both"
    player_count_filter: str = "both"
    current_season: Optional[int] = None

    def __post_init__(self) -> None:
        if self.time_filter not in TIME_FILTERS:
            raise InvalidArgument(f"Unknown time filter {self.time_filter!r}")
        if self.queue_filter not in QUEUE_FILTERS:
            raise InvalidArgument(f"Unknown queue filter {self.queue_filter!r}")
        if self.player_count_filter not in PLAYER_COUNT_FILTERS:
            raise InvalidArgument(f"Unknown player count filter {self.player_count_filter!r}")

    @property
    def is_default(self) -> bool:
        return (
            self.time_filter == "alltime"
            and self.queue_filter == "both"
            and self.player_count_filter == "both"
        )

    def apply(self, matches: MatchCollection, now: Optional[datetime] = None) -> Dict[int, MatchRecord]:
        if self.time_filter == "weekly":
            filtered = filter_by_week(matches, now=now)
        elif self.time_filter == "season":
            season = self.current_season
            if season is None:
                season = DEFAULT_SCHEDULE.current_season
            filtered = filter_by_season(matches, season)
        else:
            filtered = {m.id: m for m in iter_matches(matches)}
        filtered = filter_by_queue(filtered, self.queue_filter)
        return filter_by_player_count(filtered, self.player_count_filter)


__all__ = [
    "MatchFilter",
    "ONE_WEEK",
    "PLAYER_COUNT_FILTERS",
    "QUEUE_FILTERS",
    "SQUAD_QUEUE_TIER",
    "TIME_FILTERS",
    "filter_by_player_count",
    "filter_by_queue",
    "filter_by_season",
    "filter_by_week",
]
