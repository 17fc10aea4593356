import json
import threading
import time

import pytest
import requests

from factories import record, score, table
from loungestats.config import SeasonSchedule, Settings
from loungestats.datastore import MemoryStore
from loungestats.errors import InvalidArgument, TransientError
from loungestats.lounge_client import LoungeClient
from loungestats.sync import (
    fetch_matches,
    load_cached_matches,
    missing_match_ids,
    run_sync,
    sync_player_matches,
)

PLAYER = 42


def _table(table_id, season=2, game_mode="mkworld12p"):
    return table(
        table_id,
        [(1, [score(PLAYER, 90), score(7, 60)]), (2, [score(8, 50), score(9, 40)])],
        season=season,
        game_mode=game_mode,
    )


def _details(season, game_mode, table_ids, extra=()):
    changes = [{"changeId": tid, "reason": "Table", "mmrDelta": 10} for tid in table_ids]
    changes.extend(extra)
    return {"season": season, "gameMode": game_mode, "mmrChanges": changes, "eventsPlayed": len(table_ids)}


class FakeClient:
    """Serves canned ``/player/details`` and ``/table`` payloads and counts calls."""

    def __init__(self, details=None, tables=None, failing_details=(), failing_tables=(), delay=0.0):
        self.details = details or {}
        self.tables = tables or {}
        self.failing_details = set(failing_details)
        self.failing_tables = set(failing_tables)
        self.delay = delay
        self.detail_calls = []
        self.match_calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def get_player_details(self, player_id, season, game_mode):
        self.detail_calls.append((player_id, season, game_mode))
        if (season, game_mode) in self.failing_details:
            raise TransientError("API Error: 503")
        return self.details.get((season, game_mode))

    def get_match(self, match_id):
        with self._lock:
            self.match_calls.append(match_id)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if match_id in self.failing_tables:
                raise TransientError("API Error: 500")
            return self.tables.get(match_id)
        finally:
            with self._lock:
                self.in_flight -= 1


def _client_for(ids_by_combo, **kwargs):
    details = {combo: _details(combo[0], combo[1], ids) for combo, ids in ids_by_combo.items()}
    tables = {
        tid: _table(tid, season=combo[0], game_mode=combo[1])
        for combo, ids in ids_by_combo.items()
        for tid in ids
    }
    return FakeClient(details=details, tables=tables, **kwargs)


def test_missing_match_ids_only_counts_unknown_tables():
    details = _details(
        2,
        "mkworld12p",
        [5, 6, 6, 7],
        extra=[{"changeId": 99, "reason": "Penalty"}, {"reason": "Table"}, "junk"],
    )
    assert missing_match_ids(details, {6}) == [5, 7]
    assert missing_match_ids(None, set()) == []


def test_first_sync_fetches_everything_and_persists():
    client = _client_for({(1, "mkworld"): [1, 2], (2, "mkworld12p"): [3], (2, "mkworld24p"): [4]})
    store = MemoryStore()

    matches = sync_player_matches(PLAYER, client, store)

    assert sorted(matches) == [1, 2, 3, 4]
    assert sorted(client.match_calls) == [1, 2, 3, 4]
    assert [(s, g) for _, s, g in client.detail_calls] == [
        (0, "mkworld"),
        (1, "mkworld"),
        (2, "mkworld12p"),
        (2, "mkworld24p"),
    ]
    assert store.get_match_index_for_player(PLAYER) == {1, 2, 3, 4}
    assert store.count_matches() == 4


def test_second_sync_is_idempotent():
    client = _client_for({(2, "mkworld12p"): [3, 4]})
    store = MemoryStore()
    first = sync_player_matches(PLAYER, client, store)

    client.match_calls.clear()
    writes = []
    store.put_match = lambda *args: writes.append(args)
    store.put_match_index_for_player = lambda *args: writes.append(args)

    second = sync_player_matches(PLAYER, client, store)

    assert second == first
    assert client.match_calls == []
    assert writes == []


def test_only_new_tables_are_fetched():
    store = MemoryStore()
    sync_player_matches(PLAYER, _client_for({(2, "mkworld12p"): [1, 2]}), store)

    client = _client_for({(2, "mkworld12p"): [1, 2, 3]})
    matches = sync_player_matches(PLAYER, client, store)

    assert client.match_calls == [3]
    assert sorted(matches) == [1, 2, 3]
    assert store.get_match_index_for_player(PLAYER) == {1, 2, 3}


@pytest.mark.parametrize("bad", ["", None, "abc", 0])
def test_invalid_player_id_raises_before_any_io(bad):
    client = FakeClient()
    store = MemoryStore()
    with pytest.raises(InvalidArgument):
        sync_player_matches(bad, client, store)
    assert client.detail_calls == []


def test_failed_combination_does_not_stop_the_pass():
    client = _client_for(
        {(1, "mkworld"): [1], (2, "mkworld12p"): [2]},
        failing_details=[(1, "mkworld")],
    )
    matches = sync_player_matches(PLAYER, client, MemoryStore())
    assert sorted(matches) == [2]
    assert len(client.detail_calls) == 4


def test_failed_table_is_skipped_and_retried_next_pass():
    client = _client_for({(2, "mkworld12p"): [1, 2, 3]}, failing_tables=[2])
    store = MemoryStore()

    assert sorted(sync_player_matches(PLAYER, client, store)) == [1, 3]
    assert store.get_match_index_for_player(PLAYER) == {1, 3}

    client.failing_tables.clear()
    client.match_calls.clear()
    assert sorted(sync_player_matches(PLAYER, client, store)) == [1, 2, 3]
    assert client.match_calls == [2]


def test_known_details_replace_the_matching_request():
    client = _client_for({(2, "mkworld12p"): [1]})
    known = _details(2, "mkworld12p", [1, 5])
    client.tables[5] = _table(5)

    matches = sync_player_matches(PLAYER, client, MemoryStore(), known_details=known)

    assert sorted(matches) == [1, 5]
    assert (PLAYER, 2, "mkworld12p") not in client.detail_calls
    assert len(client.detail_calls) == 3


def test_known_details_without_game_mode_use_the_default():
    client = _client_for({})
    known = {"season": 2, "mmrChanges": [{"changeId": 8, "reason": "Table"}]}
    client.tables[8] = _table(8)

    assert sorted(sync_player_matches(PLAYER, client, MemoryStore(), known_details=known)) == [8]
    assert (PLAYER, 2, "mkworld12p") not in client.detail_calls


def test_at_most_one_batch_in_flight():
    ids = list(range(1, 13))
    client = _client_for({(2, "mkworld12p"): ids}, delay=0.01)

    matches = sync_player_matches(PLAYER, client, MemoryStore())

    assert sorted(matches) == ids
    assert 1 <= client.max_in_flight <= 5


def test_fetch_matches_respects_custom_batch_size():
    client = _client_for({(2, "mkworld12p"): list(range(1, 8))}, delay=0.01)
    fetched = fetch_matches(client, list(range(1, 8)), batch_size=2)
    assert sorted(fetched) == list(range(1, 8))
    assert client.max_in_flight <= 2


def test_cancel_stops_before_fetching():
    event = threading.Event()
    client = _client_for({(0, "mkworld"): [1, 2], (2, "mkworld12p"): [3]})
    original = client.get_player_details

    def cancelling_details(*args):
        event.set()
        return original(*args)

    client.get_player_details = cancelling_details
    store = MemoryStore()

    matches = sync_player_matches(PLAYER, client, store, cancel_event=event)

    assert matches == {}
    assert client.match_calls == []
    assert len(client.detail_calls) == 1
    assert store.get_match_index_for_player(PLAYER) == set()


def test_corrupt_cached_table_is_skipped_then_refetched():
    store = MemoryStore()
    store.put_match(2, record(_table(2)))
    store.put_match_index_for_player(PLAYER, {1, 2})
    store._matches[1] = "{not json"

    assert sorted(load_cached_matches(store, PLAYER)) == [2]

    client = _client_for({(2, "mkworld12p"): [1, 2]})
    matches = sync_player_matches(PLAYER, client, store)

    assert client.match_calls == [1]
    assert sorted(matches) == [1, 2]
    assert store.get_match(1).id == 1


def test_custom_schedule_adds_seasons_as_data():
    schedule = SeasonSchedule(modes={3: ("mkworld12p",)})
    client = _client_for({(3, "mkworld12p"): [11]})
    assert sorted(sync_player_matches(PLAYER, client, MemoryStore(), schedule=schedule)) == [11]
    assert client.detail_calls == [(PLAYER, 3, "mkworld12p")]


class RoutedResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self.reason = ""
        self._body = body

    def json(self):
        return json.loads(self._body)


class RoutedSession:
    """Answers lounge endpoints from a ``(path, season, game) -> response`` map."""

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}
        self.auth = None

    def get(self, url, params=None, timeout=None):
        params = params or {}
        path = url.split("/api", 1)[1]
        key = (path, params.get("season"), params.get("game"), params.get("tableId"))
        answer = self.routes.get(key, RoutedResponse(404, ""))
        if isinstance(answer, Exception):
            raise answer
        return answer

    def close(self):
        pass


def test_bad_remote_answers_only_skip_their_combination():
    details = json.dumps(_details(2, "mkworld12p", [5]))
    session = RoutedSession(
        {
            ("/player/details", "0", "mkworld", None): requests.exceptions.ChunkedEncodingError("cut"),
            ("/player/details", "1", "mkworld", None): RoutedResponse(200, "<html>Bad gateway</html>"),
            ("/player/details", "2", "mkworld12p", None): RoutedResponse(200, details),
            ("/player/details", "2", "mkworld24p", None): RoutedResponse(200, "[1, 2, 3]"),
            ("/table", None, None, "5"): RoutedResponse(200, json.dumps(_table(5))),
        }
    )
    client = LoungeClient(
        settings=Settings(api_base="https://lounge.test/api"),
        session=session,
        sleep=lambda _: None,
    )
    store = MemoryStore()

    matches, report = run_sync(PLAYER, client, store)

    assert sorted(matches) == [5]
    assert report.combinations_failed == 2
    assert report.combinations_skipped == 1
    assert store.get_match_index_for_player(PLAYER) == {5}


def test_non_mapping_details_are_skipped():
    client = FakeClient(details={(2, "mkworld12p"): ["not", "a", "dict"]})
    matches, report = run_sync(PLAYER, client, MemoryStore())
    assert matches == {}
    assert report.combinations_skipped == 4
    assert missing_match_ids(["junk"], set()) == []
