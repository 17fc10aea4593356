from datetime import datetime, timezone

import pytest

from factories import score, table
from loungestats.errors import InvalidArgument
from loungestats.lounge_data import (
    MatchRecord,
    PlayerResult,
    identifiers_of,
    iter_matches,
    matches_identifier,
    normalize_identifier,
    normalize_player_id,
    parse_timestamp,
)


def test_match_record_from_payload():
    payload = table(
        42,
        [(1, [score(1, 90, discord_id="111"), score(2, 70)]), (2, [score(3, 60), score(4, 50)])],
        season=1,
        tier="SQ",
        fmt="2v2",
        game_mode="mkworld12p",
    )
    match = MatchRecord.from_payload(payload)

    assert match.id == 42
    assert match.season == 1
    assert match.tier == "SQ"
    assert match.game_mode == "mkworld12p"
    assert match.num_players == 4
    assert match.created_on == datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    assert not match.is_free_for_all
    assert [team.rank for team in match.teams] == [1, 2]
    participants = match.participants()
    assert [(p.result.player_id, p.team_rank, p.team_index) for p in participants] == [
        ("1", 1, 1),
        ("2", 1, 1),
        ("3", 2, 2),
        ("4", 2, 2),
    ]


def test_payload_survives_a_roundtrip_through_the_record():
    payload = table(7, [(1, [score(1, 80)]), (2, [score(2, 40)])], fmt="FFA")
    match = MatchRecord.from_payload(payload)
    assert MatchRecord.from_payload(match.payload) == match


def test_player_result_delta_fallbacks():
    explicit = PlayerResult.from_payload({"playerId": 1, "score": 10, "mmrDelta": -25})
    assert explicit.delta == -25

    derived = PlayerResult.from_payload({"playerId": 1, "score": 10, "prevMmr": 5000, "newMmr": 5040})
    assert derived.delta == 40

    missing = PlayerResult.from_payload({"playerId": 1})
    assert missing.delta is None
    assert missing.score == 0


def test_identifier_aliases():
    result = PlayerResult.from_payload(
        {"playerId": 123, "playerDiscordId": " 999 ", "discordId": "888", "score": 1}
    )
    assert identifiers_of(result) == frozenset({"123", "999", "888"})
    assert matches_identifier(result, 123)
    assert matches_identifier(result, "999")
    assert matches_identifier(result, "888")
    assert not matches_identifier(result, "1234")
    assert not matches_identifier(result, "")
    assert not matches_identifier(result, None)


def test_normalize_identifier():
    assert normalize_identifier(12) == "12"
    assert normalize_identifier("  ab ") == "ab"
    assert normalize_identifier("   ") is None
    assert normalize_identifier(None) is None


@pytest.mark.parametrize("bad", [None, "", "   ", "abc", 0, -5, "1.5"])
def test_normalize_player_id_rejects_bad_values(bad):
    with pytest.raises(InvalidArgument):
        normalize_player_id(bad)


def test_normalize_player_id_accepts_numeric_strings():
    assert normalize_player_id(" 1234 ") == 1234
    assert normalize_player_id(99) == 99


def test_parse_timestamp_variants():
    assert parse_timestamp("2025-01-02T03:04:05Z") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_timestamp("2025-01-02T03:04:05").tzinfo == timezone.utc
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_missing_id_is_rejected():
    with pytest.raises(ValueError):
        MatchRecord.from_payload({"teams": []})


def test_iter_matches_orders_by_id_for_mappings_and_lists():
    records = [MatchRecord.from_payload(table(i, [(1, [score(1, 10)])])) for i in (5, 2, 9)]
    assert [m.id for m in iter_matches(records)] == [2, 5, 9]
    assert [m.id for m in iter_matches({r.id: r for r in records})] == [2, 5, 9]
