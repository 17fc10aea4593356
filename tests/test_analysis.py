import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest

import run_report
from factories import collection, ffa_table, score, table
from loungestats import analysis
from loungestats.config import Settings
from loungestats.datastore import MemoryStore
from loungestats.errors import TransientError
from loungestats.filters import MatchFilter


def _matches():
    return collection(
        table(
            1,
            [(1, [score(1, 100, delta=40), score(2, 60)]), (2, [score(3, 50), score(4, 40)])],
            num_players=12,
            created_on="2025-06-02T12:00:00Z",
        ),
        table(
            2,
            [(1, [score(3, 90), score(4, 80)]), (2, [score(1, 30, delta=-25), score(2, 70)])],
            num_players=12,
            created_on="2025-06-01T12:00:00Z",
        ),
        ffa_table(3, [score(2, 90), score(3, 50)], created_on="2025-06-03T12:00:00Z"),
    )


def test_summary_frame_contains_aggregates_and_notables():
    df = analysis.player_summary_frame(_matches(), 1)
    assert len(df) == 1
    row = df.iloc[0]
    assert row["matches_played"] == 2
    assert row["wins"] == 1 and row["losses"] == 1
    assert row["win_rate"] == pytest.approx(0.5)
    assert row["best_score_match_id"] == 1
    assert row["worst_score_match_id"] == 2
    assert row["carry_match_id"] == 1
    assert row["anchor_match_id"] == 2
    assert row["total_mmr_delta"] == 15
    assert row["longest_win_streak"] == 1


def test_summary_frame_empty_for_unknown_player():
    assert analysis.player_summary_frame(_matches(), 99).empty


def test_history_frame_is_chronological():
    df = analysis.match_history_frame(_matches(), 1)
    assert list(df["match_id"]) == [2, 1]
    assert list(df["placement"]) == [4, 1]
    assert list(df["team_rank"]) == [2, 1]


def test_head_to_head_frame():
    df = analysis.head_to_head_frame(_matches(), 1, [2, 3])
    by_opponent = df.set_index("opponent")
    assert by_opponent.loc["2", "wins"] == 1
    assert by_opponent.loc["2", "losses"] == 1
    assert by_opponent.loc["3", "wins"] == 1
    assert by_opponent.loc["3", "losses"] == 1
    assert by_opponent.loc["2", "biggest_margin_match_id"] == 1


class StubClient:
    def __init__(self, tables):
        self.tables = tables
        self.detail_calls = 0
        self.closed = False

    def get_player_details(self, player_id, season, game_mode):
        self.detail_calls += 1
        if season != 2 or game_mode != "mkworld12p":
            return None
        return {
            "season": 2,
            "gameMode": game_mode,
            "mmrChanges": [{"changeId": tid, "reason": "Table"} for tid in self.tables],
        }

    def get_match(self, match_id):
        return self.tables.get(match_id)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def _payloads():
    return {m.id: dict(m.payload) for m in _matches().values()}


def test_load_player_matches_serves_fresh_players_from_the_store():
    store = MemoryStore()
    client = StubClient(_payloads())

    first = analysis.load_player_matches(1, client=client, store=store)
    assert sorted(first) == [1, 2, 3]
    assert client.detail_calls == 4

    second = analysis.load_player_matches(1, client=client, store=store)
    assert second == first
    assert client.detail_calls == 4

    analysis.load_player_matches(1, client=client, store=store, refresh=True)
    assert client.detail_calls == 8
    assert not client.closed


def test_run_report_prints_summary(monkeypatch, capsys):
    client = StubClient(_payloads())
    monkeypatch.setattr(analysis, "LoungeClient", lambda settings=None: client)

    assert run_report.main(["1", "--no-store"]) == 0

    out = capsys.readouterr().out
    assert "matches_played" in out
    assert client.closed


def test_run_report_history_to_csv(monkeypatch, tmp_path):
    monkeypatch.setattr(analysis, "LoungeClient", lambda settings=None: StubClient(_payloads()))
    target = tmp_path / "history.csv"

    assert run_report.main(["1", "--no-store", "--history", "--output", str(target)]) == 0

    lines = target.read_text().splitlines()
    assert lines[0].startswith("match_id,")
    assert len(lines) == 3


def test_run_report_no_matches(monkeypatch, capsys):
    monkeypatch.setattr(analysis, "LoungeClient", lambda settings=None: StubClient({}))
    assert run_report.main(["1", "--no-store"]) == 0
    assert "No matches found for player 1." in capsys.readouterr().out


def test_run_report_rejects_bad_player_id(monkeypatch, capsys):
    monkeypatch.setattr(analysis, "LoungeClient", lambda settings=None: StubClient({}))
    assert run_report.main(["abc", "--no-store"]) == 1
    assert "Error running report:" in capsys.readouterr().out


class OutageClient(StubClient):
    def __init__(self, tables):
        super().__init__(tables)
        self.down = True

    def get_player_details(self, player_id, season, game_mode):
        if self.down:
            self.detail_calls += 1
            raise TransientError("API Error: 503", status_code=503)
        return super().get_player_details(player_id, season, game_mode)


def test_failed_pass_is_not_recorded_as_fresh():
    store = MemoryStore()
    client = OutageClient(_payloads())

    assert analysis.load_player_matches(1, client=client, store=store) == {}
    assert store.sync_is_stale(1)

    client.down = False
    assert sorted(analysis.load_player_matches(1, client=client, store=store)) == [1, 2, 3]
    assert not store.sync_is_stale(1)


def test_generate_player_report_applies_filter(monkeypatch, tmp_path):
    monkeypatch.setattr(analysis, "LoungeClient", lambda settings=None: StubClient(_payloads()))
    settings = Settings(store_path=tmp_path / "lounge.db")

    df = analysis.generate_player_report(1, settings=settings)
    assert df.iloc[0]["matches_played"] == 2

    soloq = MatchFilter(queue_filter="soloq")
    assert analysis.generate_player_report(1, filt=soloq, settings=settings).empty
    assert (tmp_path / "lounge.db").exists()
