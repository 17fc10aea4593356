"""
lounge_data.py
--------------

Typed views over the lounge API payloads. A "table" on the lounge is one
finished match; we parse it once into a frozen :class:`MatchRecord` and keep
the raw payload alongside so the store can persist it verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import InvalidArgument

# Any of these fields may identify a participant.
IDENTIFIER_FIELDS = ("player_id", "discord_id", "player_discord_id")

MatchCollection = Union[Mapping[int, "MatchRecord"], Iterable["MatchRecord"]]


def normalize_identifier(identifier: Any) -> Optional[str]:
    """Stringify and strip an identifier; blank values become ``None``."""
    if identifier is None:
        return None
    normalized = str(identifier).strip()
    return normalized or None


def normalize_player_id(player_id: Any) -> int:
    """Validate a numeric lounge id, raising :class:`InvalidArgument`."""
    normalized = normalize_identifier(player_id)
    if normalized is None:
        raise InvalidArgument("player id is required")
    try:
        value = int(normalized)
    except ValueError:
        raise InvalidArgument(f"player id must be numeric, got {player_id!r}") from None
    if value <= 0:
        raise InvalidArgument(f"player id must be positive, got {player_id!r}")
    return value


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse the API's ISO-8601 timestamps (``...Z`` suffix included)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class PlayerResult:
    """One participant's line on a table."""

    player_id: Optional[str]
    discord_id: Optional[str] = None
    player_discord_id: Optional[str] = None
    name: Optional[str] = None
    score: int = 0
    prev_mmr: Optional[float] = None
    new_mmr: Optional[float] = None
    delta: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PlayerResult":
        prev_mmr = _to_float(payload.get("prevMmr"))
        new_mmr = _to_float(payload.get("newMmr"))
        delta = _to_float(payload.get("delta"))
        if delta is None:
            delta = _to_float(payload.get("mmrDelta"))
        if delta is None and prev_mmr is not None and new_mmr is not None:
            delta = new_mmr - prev_mmr
        score = payload.get("score")
        if score is None:
            score = payload.get("points", payload.get("total"))
        return cls(
            player_id=normalize_identifier(payload.get("playerId", payload.get("id"))),
            discord_id=normalize_identifier(payload.get("discordId")),
            player_discord_id=normalize_identifier(payload.get("playerDiscordId")),
            name=payload.get("playerName") or payload.get("name"),
            score=_to_int(score) or 0,
            prev_mmr=prev_mmr,
            new_mmr=new_mmr,
            delta=delta,
        )


@dataclass(frozen=True)
class Team:
    rank: Optional[int]
    results: Tuple[PlayerResult, ...] = ()


@dataclass(frozen=True)
class Participant:
    """A :class:`PlayerResult` tagged with its team's placement."""

    result: PlayerResult
    team_rank: Optional[int]
    team_index: int

    @property
    def score(self) -> int:
        return self.result.score

    @property
    def prev_mmr(self) -> Optional[float]:
        return self.result.prev_mmr

    @property
    def delta(self) -> Optional[float]:
        return self.result.delta


@dataclass(frozen=True)
class MatchRecord:
    """Immutable view of a lounge table."""

    id: int
    season: Optional[int]
    game_mode: Optional[str]
    tier: Optional[str]
    format: Optional[str]
    num_players: Optional[int]
    created_on: Optional[datetime]
    teams: Tuple[Team, ...]
    payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MatchRecord":
        match_id = _to_int(payload.get("id", payload.get("tableId")))
        if match_id is None:
            raise ValueError("table payload has no id")
        teams: List[Team] = []
        for team in payload.get("teams") or []:
            if not isinstance(team, Mapping):
                continue
            results = tuple(
                PlayerResult.from_payload(score)
                for score in (team.get("scores") or [])
                if isinstance(score, Mapping)
            )
            teams.append(Team(rank=_to_int(team.get("rank")), results=results))
        num_players = payload.get("numPlayers")
        if num_players is None:
            num_players = payload.get("numplayers", payload.get("playerCount"))
        return cls(
            id=match_id,
            season=_to_int(payload.get("season")),
            game_mode=payload.get("gameMode") or payload.get("game") or None,
            tier=payload.get("tier") or None,
            format=payload.get("format") or None,
            num_players=_to_int(num_players),
            created_on=parse_timestamp(payload.get("createdOn")),
            teams=tuple(teams),
            payload=dict(payload),
        )

    @property
    def is_free_for_all(self) -> bool:
        return (self.format or "").strip().lower() == "ffa"

    def participants(self) -> List[Participant]:
        """Flatten every team's results, keeping team rank and 1-based index."""
        return [
            Participant(result=result, team_rank=team.rank, team_index=index)
            for index, team in enumerate(self.teams, start=1)
            for result in team.results
        ]


def identifiers_of(participant: Union[Participant, PlayerResult]) -> FrozenSet[str]:
    """Every normalized identifier that refers to ``participant``."""
    result = participant.result if isinstance(participant, Participant) else participant
    values = (getattr(result, name) for name in IDENTIFIER_FIELDS)
    return frozenset(value for value in (normalize_identifier(v) for v in values) if value)


def matches_identifier(participant: Union[Participant, PlayerResult], identifier: Any) -> bool:
    normalized = normalize_identifier(identifier)
    if normalized is None:
        return False
    return normalized in identifiers_of(participant)


def iter_matches(matches: MatchCollection) -> Iterator[MatchRecord]:
    """Yield records in ascending id order whatever the container."""
    records = matches.values() if isinstance(matches, Mapping) else matches
    yield from sorted((m for m in records if m is not None), key=lambda m: m.id)


def as_collection(records: Iterable[MatchRecord]) -> Dict[int, MatchRecord]:
    return {record.id: record for record in records}


__all__ = [
    "IDENTIFIER_FIELDS",
    "MatchCollection",
    "MatchRecord",
    "Participant",
    "PlayerResult",
    "Team",
    "as_collection",
    "identifiers_of",
    "iter_matches",
    "matches_identifier",
    "normalize_identifier",
    "normalize_player_id",
    "parse_timestamp",
]
