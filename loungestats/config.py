"""
config.py
---------

Runtime settings (read from the environment) and the season schedule that
tells the sync engine which game modes exist for each season.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Tuple

DEFAULT_API_BASE = "https://lounge.mkcentral.com/api"
DEFAULT_STORE_PATH = Path(".cache") / "lounge" / "lounge.db"

LEGACY_GAME_MODE = "mkworld"
GAME_MODE_12P = "mkworld12p"
GAME_MODE_24P = "mkworld24p"

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Connection and storage options for the lounge pipeline."""

    api_base: str = DEFAULT_API_BASE
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = 15.0
    store_path: Path = DEFAULT_STORE_PATH
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        timeout_raw = env.get("LOUNGE_API_TIMEOUT")
        try:
            timeout = float(timeout_raw) if timeout_raw else cls.timeout
        except ValueError:
            logger.warning(
                "Ignoring invalid LOUNGE_API_TIMEOUT=%r, using %ss", timeout_raw, cls.timeout
            )
            timeout = cls.timeout
        store_raw = env.get("LOUNGE_STORE_PATH")
        return cls(
            api_base=(env.get("LOUNGE_API_BASE") or DEFAULT_API_BASE).rstrip("/"),
            username=env.get("LOUNGE_API_USERNAME") or None,
            password=env.get("LOUNGE_API_PASSWORD") or None,
            timeout=timeout,
            store_path=Path(store_raw) if store_raw else DEFAULT_STORE_PATH,
            log_level=(env.get("LOUNGE_LOG_LEVEL") or "INFO").upper(),
        )


@dataclass
class SeasonSchedule:
    """
    Mapping of season number to the game modes played in that season.

    New seasons are added as data; the sync engine walks whatever this
    table contains, in ascending season order.
    """

    modes: Dict[int, Tuple[str, ...]] = field(
        default_factory=lambda: {
            0: (LEGACY_GAME_MODE,),
            1: (LEGACY_GAME_MODE,),
            2: (GAME_MODE_12P, GAME_MODE_24P),
        }
    )
    default_game_mode: str = GAME_MODE_12P

    @property
    def current_season(self) -> int:
        return max(self.modes) if self.modes else 0

    def combinations(self) -> Iterator[Tuple[int, str]]:
        """Yield every ``(season, game_mode)`` pair in a stable order."""
        for season in sorted(self.modes):
            for game_mode in self.modes[season]:
                yield season, game_mode

    def with_season(self, season: int, game_modes: Tuple[str, ...]) -> "SeasonSchedule":
        """Return a copy with ``season`` added or replaced."""
        modes = dict(self.modes)
        modes[int(season)] = tuple(game_modes)
        return SeasonSchedule(modes=modes, default_game_mode=self.default_game_mode)


DEFAULT_SCHEDULE = SeasonSchedule()


__all__ = [
    "DEFAULT_API_BASE",
    "DEFAULT_STORE_PATH",
    "DEFAULT_SCHEDULE",
    "GAME_MODE_12P",
    "GAME_MODE_24P",
    "LEGACY_GAME_MODE",
    "SeasonSchedule",
    "Settings",
]
