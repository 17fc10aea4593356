"""
metrics.py
----------

Player statistics computed from a collection of :class:`MatchRecord`.

Everything here is pure: the functions read the tables they are given and
never touch the network or the store. Collections are walked in ascending
match id order, so "first one wins" tie-breaks always favour the lowest id.
Aggregates return ``None`` (or ``0`` for counts) when the player has no
qualifying tables.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from statistics import mean
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .filters import ONE_WEEK, MatchFilter
from .lounge_data import (
    MatchCollection,
    MatchRecord,
    Participant,
    iter_matches,
    matches_identifier,
    normalize_identifier,
    parse_timestamp,
)

# Expected individual score in an average room, by player count.
ROOM_AVERAGE_SCORE = {12: 82, 24: 72}


@dataclass(frozen=True)
class RankedParticipant:
    participant: Participant
    rank: int
    tied: bool

    @property
    def score(self) -> int:
        return self.participant.score


@dataclass(frozen=True)
class SeededParticipant:
    participant: Participant
    seed: int


@dataclass(frozen=True)
class ScoreResult:
    match_id: int
    score: int
    placement: Optional[int]


@dataclass(frozen=True)
class PerformanceResult:
    """Seed minus placement for one table, raw and per player."""

    match_id: int
    score: int
    placement: int
    amount: int
    normalized_amount: float
    player_count: Optional[int]


@dataclass(frozen=True)
class TeamResult:
    """Score minus teammates' average score for one table."""

    match_id: int
    score: int
    placement: int
    amount: float


@dataclass(frozen=True)
class ScoreDifference:
    match_id: int
    player1_score: int
    score_difference: int
    player1_rank: int
    player2_rank: int
    rank_difference: int


@dataclass(frozen=True)
class HeadToHead:
    wins: int = 0
    losses: int = 0
    ties: int = 0

    @property
    def total(self) -> int:
        return self.wins + self.losses + self.ties


@dataclass(frozen=True)
class WinRate:
    win_rate: float
    wins: int
    losses: int


@dataclass(frozen=True)
class WinStreaks:
    current_win_streak: int = 0
    current_streak_mmr_gain: float = 0
    longest_win_streak: int = 0
    longest_streak_mmr_gain: float = 0
    longest_streak_start: Optional[datetime] = None
    longest_streak_end: Optional[datetime] = None


@dataclass(frozen=True)
class PartnerAverage:
    average: float
    room_average: float
    teammate_samples: int
    match_count: int


# --------------------------------------------------------------------- #
# Per-table rankings
# --------------------------------------------------------------------- #


def participants_of(match: Optional[MatchRecord]) -> List[Participant]:
    if match is None:
        return []
    return match.participants()


def _id_sort_key(participant: Participant) -> Tuple[int, Any]:
    player_id = participant.result.player_id
    if player_id is None:
        return (2, "")
    try:
        return (0, int(player_id))
    except ValueError:
        return (1, player_id)


def rank_participants(match: Optional[MatchRecord]) -> List[RankedParticipant]:
    """
    Individual placements by score, highest first.

    Equal scores share a rank; the next lower score takes its 1-based
    position, so ``[100, 100, 90]`` ranks ``[1, 1, 3]``. Everyone who
    shares a score with someone else is flagged ``tied``.
    """
    ordered = sorted(participants_of(match), key=lambda p: -p.score)
    counts = Counter(p.score for p in ordered)
    ranked: List[RankedParticipant] = []
    current_rank = 1
    previous_score: Optional[int] = None
    for position, participant in enumerate(ordered, start=1):
        if previous_score is not None and participant.score < previous_score:
            current_rank = position
        previous_score = participant.score
        ranked.append(
            RankedParticipant(
                participant=participant,
                rank=current_rank,
                tied=counts[participant.score] > 1,
            )
        )
    return ranked


def rank_by_seed(match: Optional[MatchRecord]) -> List[SeededParticipant]:
    """
    Seeds by pre-table rating, highest first. Equal ratings are ordered by
    ascending player id; players without a rating are seeded last.
    """
    ordered = sorted(
        participants_of(match),
        key=lambda p: (p.prev_mmr is None, -(p.prev_mmr or 0.0), _id_sort_key(p)),
    )
    return [SeededParticipant(participant=p, seed=i) for i, p in enumerate(ordered, start=1)]


def player_ranking(match: Optional[MatchRecord], player: Any) -> Optional[RankedParticipant]:
    if normalize_identifier(player) is None:
        return None
    for ranked in rank_participants(match):
        if matches_identifier(ranked.participant, player):
            return ranked
    return None


def player_seed(match: Optional[MatchRecord], player: Any) -> Optional[SeededParticipant]:
    if normalize_identifier(player) is None:
        return None
    for seeded in rank_by_seed(match):
        if matches_identifier(seeded.participant, player):
            return seeded
    return None


def find_participant(match: Optional[MatchRecord], player: Any) -> Optional[Participant]:
    for participant in participants_of(match):
        if matches_identifier(participant, player):
            return participant
    return None


def _player_tables(matches: MatchCollection, player: Any) -> Iterable[Tuple[MatchRecord, Participant]]:
    if normalize_identifier(player) is None:
        return
    for match in iter_matches(matches):
        participant = find_participant(match, player)
        if participant is not None:
            yield match, participant


def h2h_matches(matches: MatchCollection, opponent: Any) -> Dict[int, MatchRecord]:
    """The subset of ``matches`` in which ``opponent`` also played."""
    return {match.id: match for match, _ in _player_tables(matches, opponent)}


# --------------------------------------------------------------------- #
# Notables
# --------------------------------------------------------------------- #


def _extreme_score(matches: MatchCollection, player: Any, highest: bool) -> Optional[ScoreResult]:
    best: Optional[ScoreResult] = None
    for match, participant in _player_tables(matches, player):
        score = participant.score
        if best is not None and not (score > best.score if highest else score < best.score):
            continue
        ranking = player_ranking(match, player)
        best = ScoreResult(
            match_id=match.id,
            score=score,
            placement=ranking.rank if ranking else None,
        )
    return best


def best_score(matches: MatchCollection, player: Any) -> Optional[ScoreResult]:
    return _extreme_score(matches, player, highest=True)


def worst_score(matches: MatchCollection, player: Any) -> Optional[ScoreResult]:
    return _extreme_score(matches, player, highest=False)


def _performances(matches: MatchCollection, player: Any) -> Iterable[PerformanceResult]:
    for match, _ in _player_tables(matches, player):
        ranking = player_ranking(match, player)
        seeded = player_seed(match, player)
        if ranking is None or seeded is None:
            continue
        amount = seeded.seed - ranking.rank
        player_count = match.num_players if match.num_players and match.num_players > 0 else None
        normalized = amount / player_count if player_count else float(amount)
        yield PerformanceResult(
            match_id=match.id,
            score=ranking.score,
            placement=ranking.rank,
            amount=amount,
            normalized_amount=normalized,
            player_count=player_count,
        )


def biggest_overperformance(matches: MatchCollection, player: Any) -> Optional[PerformanceResult]:
    """
    Table where the player beat their seed by the most.

    Compared per player in the room (``(seed - rank) / num_players``) so a
    +3 in a 12 player room outranks a +3 in a 24 player room. Ties fall
    back to the raw amount, then to the higher score.
    """
    best: Optional[PerformanceResult] = None
    for result in _performances(matches, player):
        if best is None or (result.normalized_amount, result.amount, result.score) > (
            best.normalized_amount,
            best.amount,
            best.score,
        ):
            best = result
    return best


def biggest_underperformance(matches: MatchCollection, player: Any) -> Optional[PerformanceResult]:
    """Mirror of :func:`biggest_overperformance`; lower is worse."""
    worst: Optional[PerformanceResult] = None
    for result in _performances(matches, player):
        if worst is None or (result.normalized_amount, result.amount, result.score) < (
            worst.normalized_amount,
            worst.amount,
            worst.score,
        ):
            worst = result
    return worst


def _team_results(matches: MatchCollection, player: Any) -> Iterable[TeamResult]:
    for match, participant in _player_tables(matches, player):
        if match.is_free_for_all:
            continue
        teammates = [
            p
            for p in participants_of(match)
            if p.team_index == participant.team_index and not matches_identifier(p, player)
        ]
        if not teammates:
            continue
        ranking = player_ranking(match, player)
        amount = participant.score - mean(t.score for t in teammates)
        yield TeamResult(
            match_id=match.id,
            score=participant.score,
            placement=ranking.rank if ranking else 0,
            amount=amount,
        )


def biggest_carry(matches: MatchCollection, player: Any) -> Optional[TeamResult]:
    """Largest score above the teammates' average; free-for-all tables never count."""
    best: Optional[TeamResult] = None
    for result in _team_results(matches, player):
        if best is None or (result.amount, result.score) > (best.amount, best.score):
            best = result
    return best


def biggest_anchor(matches: MatchCollection, player: Any) -> Optional[TeamResult]:
    worst: Optional[TeamResult] = None
    for result in _team_results(matches, player):
        if worst is None or (result.amount, result.score) < (worst.amount, worst.score):
            worst = result
    return worst


# --------------------------------------------------------------------- #
# Head to head
# --------------------------------------------------------------------- #


def _shared_rankings(
    matches: MatchCollection, player1: Any, player2: Any
) -> Iterable[Tuple[MatchRecord, RankedParticipant, RankedParticipant]]:
    id1 = normalize_identifier(player1)
    id2 = normalize_identifier(player2)
    if id1 is None or id2 is None or id1 == id2:
        return
    for match in iter_matches(matches):
        first = player_ranking(match, id1)
        second = player_ranking(match, id2)
        if first is None or second is None:
            continue
        yield match, first, second


def get_h2h(matches: MatchCollection, player1: Any, player2: Any) -> HeadToHead:
    """Wins/losses/ties of ``player1`` against ``player2`` by individual rank."""
    wins = losses = ties = 0
    for _, first, second in _shared_rankings(matches, player1, player2):
        if first.rank < second.rank:
            wins += 1
        elif first.rank > second.rank:
            losses += 1
        else:
            ties += 1
    return HeadToHead(wins=wins, losses=losses, ties=ties)


def biggest_difference(matches: MatchCollection, player1: Any, player2: Any) -> Optional[ScoreDifference]:
    """Largest score margin in a table ``player1`` won against ``player2``."""
    best: Optional[ScoreDifference] = None
    for match, first, second in _shared_rankings(matches, player1, player2):
        if first.rank >= second.rank:
            continue
        candidate = ScoreDifference(
            match_id=match.id,
            player1_score=first.score,
            score_difference=first.score - second.score,
            player1_rank=first.rank,
            player2_rank=second.rank,
            rank_difference=second.rank - first.rank,
        )
        if best is None or (candidate.score_difference, candidate.rank_difference) > (
            best.score_difference,
            best.rank_difference,
        ):
            best = candidate
    return best


# --------------------------------------------------------------------- #
# Streaks
# --------------------------------------------------------------------- #


def win_streaks(matches: MatchCollection, player: Any) -> WinStreaks:
    """
    Current and longest run of first-place team finishes, oldest first.

    Equal-length streaks keep the one that gained more rating. Tables
    without a completion time are ignored.
    """
    timeline = sorted(
        (
            (match.created_on, match.id, participant)
            for match, participant in _player_tables(matches, player)
            if match.created_on is not None
        ),
        key=lambda item: (item[0], item[1]),
    )

    current = 0
    current_gain = 0.0
    current_start: Optional[datetime] = None
    longest = 0
    longest_gain = 0.0
    longest_start: Optional[datetime] = None
    longest_end: Optional[datetime] = None

    for created_on, _, participant in timeline:
        if participant.team_rank != 1:
            current = 0
            current_gain = 0.0
            current_start = None
            continue
        if current == 0:
            current_start = created_on
        current += 1
        current_gain += participant.delta or 0
        if current > longest or (current == longest and current_gain > longest_gain):
            longest = current
            longest_gain = current_gain
            longest_start = current_start
            longest_end = created_on

    return WinStreaks(
        current_win_streak=current,
        current_streak_mmr_gain=current_gain,
        longest_win_streak=longest,
        longest_streak_mmr_gain=longest_gain,
        longest_streak_start=longest_start,
        longest_streak_end=longest_end,
    )


# --------------------------------------------------------------------- #
# Aggregates
# --------------------------------------------------------------------- #


def matches_played(matches: MatchCollection, player: Any) -> int:
    return sum(1 for _ in _player_tables(matches, player))


def win_rate(matches: MatchCollection, player: Any) -> Optional[WinRate]:
    """Share of rated tables with a positive rating change."""
    wins = losses = 0
    for _, participant in _player_tables(matches, player):
        delta = participant.delta
        if delta is None:
            continue
        if delta > 0:
            wins += 1
        elif delta < 0:
            losses += 1
    if wins + losses == 0:
        return None
    return WinRate(win_rate=wins / (wins + losses), wins=wins, losses=losses)


def average_placement(matches: MatchCollection, player: Any) -> Optional[float]:
    ranks = [
        ranking.rank
        for match, _ in _player_tables(matches, player)
        for ranking in [player_ranking(match, player)]
        if ranking is not None
    ]
    return mean(ranks) if ranks else None


def average_score(matches: MatchCollection, player: Any) -> Optional[float]:
    scores = [participant.score for _, participant in _player_tables(matches, player)]
    return mean(scores) if scores else None


def average_seed(matches: MatchCollection, player: Any) -> Optional[float]:
    seeds = [
        seeded.seed
        for match, _ in _player_tables(matches, player)
        for seeded in [player_seed(match, player)]
        if seeded is not None
    ]
    return mean(seeds) if seeds else None


def average_player_count(matches: MatchCollection, player: Any) -> Optional[float]:
    counts = [match.num_players for match, _ in _player_tables(matches, player) if match.num_players]
    return mean(counts) if counts else None


def player_count_breakdown(matches: MatchCollection, player: Any) -> Dict[str, int]:
    breakdown = {"12p": 0, "24p": 0}
    for match, _ in _player_tables(matches, player):
        breakdown["12p" if match.num_players == 12 else "24p"] += 1
    return breakdown


def partner_average(matches: MatchCollection, player: Any) -> Optional[PartnerAverage]:
    """
    Mean teammate score over team-format tables, with the score an average
    room would expect for the same mix of 12p/24p tables.
    """
    total = 0.0
    samples = 0
    table_count = 0
    expected_total = 0
    for match, participant in _player_tables(matches, player):
        if match.is_free_for_all:
            continue
        teammates = [
            p
            for p in participants_of(match)
            if p.team_index == participant.team_index and not matches_identifier(p, player)
        ]
        if not teammates:
            continue
        total += sum(t.score for t in teammates)
        samples += len(teammates)
        table_count += 1
        expected_total += ROOM_AVERAGE_SCORE.get(match.num_players or 0, 0)
    if not samples:
        return None
    return PartnerAverage(
        average=total / samples,
        room_average=round(expected_total / table_count, 1),
        teammate_samples=samples,
        match_count=table_count,
    )


def average_room_mmr(matches: MatchCollection) -> Optional[float]:
    """Mean pre-table rating over every participant of every table."""
    ratings = [
        participant.prev_mmr
        for match in iter_matches(matches)
        for participant in participants_of(match)
        if participant.prev_mmr is not None
    ]
    return mean(ratings) if ratings else None


def total_mmr_delta(matches: MatchCollection, player: Any) -> float:
    return sum(participant.delta or 0 for _, participant in _player_tables(matches, player))


def mmr_delta_for_filter(
    mmr_changes: Optional[Iterable[Mapping[str, Any]]],
    match_ids: Optional[Iterable[Any]] = None,
    filt: Optional[MatchFilter] = None,
    now: Optional[datetime] = None,
) -> float:
    """
    Rating change from a player's ``mmrChanges`` history under ``filt``.

    With a plain season filter every change of the season counts
    (penalties and bonuses included). Otherwise only changes tied to one
    of ``match_ids`` count, plus, for a plain weekly filter, any other
    change from the last seven days.
    """
    changes = [c for c in (mmr_changes or []) if isinstance(c, Mapping)]
    if not changes:
        return 0
    filt = filt or MatchFilter()
    plain = filt.queue_filter == "both" and filt.player_count_filter == "both"

    def _delta(change: Mapping[str, Any]) -> Optional[float]:
        raw = change.get("mmrDelta", change.get("delta"))
        try:
            return float(raw)
        except (TypeError, ValueError):
            return None

    if filt.time_filter == "season" and plain:
        return sum(d for d in (_delta(c) for c in changes) if d is not None)

    wanted = {str(m) for m in (match_ids or []) if m is not None}
    cutoff: Optional[datetime] = None
    if filt.time_filter == "weekly" and plain:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - ONE_WEEK

    total = 0.0
    for change in changes:
        delta = _delta(change)
        if delta is None:
            continue
        raw_id = change.get("tableId", change.get("changeId"))
        if raw_id is not None and str(raw_id) in wanted:
            total += delta
            continue
        if cutoff is not None:
            stamp = parse_timestamp(
                change.get("time") or change.get("createdOn") or change.get("updatedOn")
            )
            if stamp is not None and stamp >= cutoff:
                total += delta
    return total


__all__ = [
    "HeadToHead",
    "PartnerAverage",
    "PerformanceResult",
    "RankedParticipant",
    "ScoreDifference",
    "ScoreResult",
    "SeededParticipant",
    "TeamResult",
    "WinRate",
    "WinStreaks",
    "average_placement",
    "average_player_count",
    "average_room_mmr",
    "average_score",
    "average_seed",
    "best_score",
    "biggest_anchor",
    "biggest_carry",
    "biggest_difference",
    "biggest_overperformance",
    "biggest_underperformance",
    "find_participant",
    "get_h2h",
    "h2h_matches",
    "matches_played",
    "mmr_delta_for_filter",
    "partner_average",
    "participants_of",
    "player_count_breakdown",
    "player_ranking",
    "player_seed",
    "rank_by_seed",
    "rank_participants",
    "total_mmr_delta",
    "win_rate",
    "win_streaks",
    "worst_score",
]
