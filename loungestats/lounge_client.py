"""
lounge_client.py
----------------

Thin wrapper around the lounge REST API. Every call goes through
:meth:`LoungeClient.get`, which classifies failures and retries the
transient ones with exponential backoff (1s, then 2s).
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import DEFAULT_SCHEDULE, Settings
from .errors import ClientError, NotFound, TransientError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 1.0


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Lounge request failed (attempt %s/%s), retrying in %.1fs: %s",
        retry_state.attempt_number,
        MAX_ATTEMPTS,
        delay,
        exc,
    )


class LoungeClient:
    """Client for the public lounge API. Many endpoints work without auth."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        max_attempts: int = MAX_ATTEMPTS,
        backoff: float = BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if self.settings.username and self.settings.password:
            self.session.auth = (self.settings.username, self.settings.password)
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._sleep = sleep

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "LoungeClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # --------------------------------------------------------------------- #
    # Transport
    # --------------------------------------------------------------------- #

    def build_url(self, endpoint: str) -> str:
        return f"{self.settings.api_base.rstrip('/')}/{endpoint.lstrip('/')}"

    @staticmethod
    def clean_params(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        """Drop ``None``/empty values and stringify the rest."""
        cleaned: Dict[str, str] = {}
        for key, value in (params or {}).items():
            if value is None or value == "":
                continue
            cleaned[key] = str(value)
        return cleaned

    def _request_once(self, endpoint: str, params: Dict[str, str]) -> Any:
        url = self.build_url(endpoint)
        try:
            resp = self.session.get(url, params=params, timeout=self.settings.timeout)
        except requests.RequestException as exc:
            raise TransientError(f"Network error calling {endpoint}: {exc}") from exc

        status = resp.status_code
        if 200 <= status < 300:
            try:
                return resp.json()
            except ValueError as exc:
                raise ClientError(
                    f"Invalid JSON from {endpoint}: {exc}", status_code=status
                ) from exc
        message = f"API Error: {status} {resp.reason or ''}".strip()
        if status == 404:
            raise NotFound(message)
        if status == 429 or status >= 500:
            raise TransientError(message, status_code=status)
        raise ClientError(message, status_code=status)

    def get(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """
        GET ``endpoint`` and return the decoded JSON body.

        Raises :class:`NotFound` on 404, :class:`ClientError` on other 4xx
        and :class:`TransientError` once retries are exhausted.
        """
        cleaned = self.clean_params(params)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, min=0),
            retry=retry_if_exception_type(TransientError),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(self._request_once, endpoint, cleaned)

    def _get_or_none(self, endpoint: str, params: Mapping[str, Any]) -> Optional[Any]:
        try:
            return self.get(endpoint, params)
        except NotFound:
            return None

    # --------------------------------------------------------------------- #
    # Endpoints
    # --------------------------------------------------------------------- #

    def get_player_details(
        self,
        player_id: int,
        season: int,
        game_mode: str = DEFAULT_SCHEDULE.default_game_mode,
    ) -> Optional[Dict[str, Any]]:
        """``/player/details`` for one season and game mode; ``None`` on 404."""
        return self._get_or_none(
            "/player/details",
            {"id": int(player_id), "season": season, "game": game_mode},
        )

    def get_match(self, match_id: int) -> Optional[Dict[str, Any]]:
        """Fetch a single table by id; ``None`` if the lounge does not know it."""
        return self._get_or_none("/table", {"tableId": int(match_id)})

    def get_player(
        self,
        player_id: Optional[int] = None,
        name: Optional[str] = None,
        discord_id: Optional[str] = None,
        season: Optional[int] = None,
        game_mode: str = DEFAULT_SCHEDULE.default_game_mode,
    ) -> Optional[Dict[str, Any]]:
        """Look a player up by lounge id, name or Discord id."""
        if player_id is None and not name and not discord_id:
            return None
        if season is None:
            season = DEFAULT_SCHEDULE.current_season
        params = {
            "id": int(player_id) if player_id is not None else None,
            "name": name,
            "discordId": discord_id,
            "season": season,
            "game": game_mode,
        }
        return self._get_or_none("/player", params)

    def search_players(
        self,
        query: str,
        limit: int = 25,
        skip: int = 0,
        season: Optional[int] = None,
        game_mode: str = DEFAULT_SCHEDULE.default_game_mode,
    ) -> List[Dict[str, Any]]:
        """Search the leaderboard by name. Blank queries return nothing."""
        trimmed = (query or "").strip()
        if not trimmed:
            return []
        try:
            bounded_limit = max(1, min(int(limit or 25), 100))
        except (TypeError, ValueError):
            bounded_limit = 25
        try:
            bounded_skip = max(0, int(skip or 0))
        except (TypeError, ValueError):
            bounded_skip = 0
        params = {
            "search": trimmed,
            "pageSize": bounded_limit,
            "skip": bounded_skip,
            "season": DEFAULT_SCHEDULE.current_season if season is None else season,
            "game": game_mode,
        }
        result = self._get_or_none("/player/leaderboard", params)
        if not result:
            return []
        if isinstance(result, list):
            return result
        if isinstance(result.get("data"), list):
            return result["data"]
        if isinstance(result.get("players"), list):
            return result["players"]
        return []


__all__ = ["LoungeClient", "MAX_ATTEMPTS", "BACKOFF_SECONDS"]
