"""Lounge match history sync + player statistics core package."""

from .analysis import generate_player_report, load_player_matches, summarize_player
from .config import DEFAULT_SCHEDULE, SeasonSchedule, Settings
from .datastore import MemoryStore, SQLiteStore
from .errors import (
    ClientError,
    InvalidArgument,
    LoungeError,
    NotFound,
    StoreError,
    TransientError,
)
from .filters import MatchFilter
from .lounge_client import LoungeClient
from .lounge_data import (
    MatchRecord,
    Participant,
    PlayerResult,
    Team,
    identifiers_of,
    matches_identifier,
)
from .sync import sync_player_matches

__all__ = [
    "DEFAULT_SCHEDULE",
    "ClientError",
    "InvalidArgument",
    "LoungeClient",
    "LoungeError",
    "MatchFilter",
    "MatchRecord",
    "MemoryStore",
    "NotFound",
    "Participant",
    "PlayerResult",
    "SQLiteStore",
    "SeasonSchedule",
    "Settings",
    "StoreError",
    "Team",
    "TransientError",
    "generate_player_report",
    "identifiers_of",
    "load_player_matches",
    "matches_identifier",
    "summarize_player",
    "sync_player_matches",
]
