#!/usr/bin/env python3
"""CLI helper to sync a lounge player's tables and print their statistics."""

import argparse
import logging
import sys
from typing import List, Optional

from loungestats import analysis
from loungestats.config import Settings
from loungestats.errors import LoungeError
from loungestats.filters import PLAYER_COUNT_FILTERS, QUEUE_FILTERS, TIME_FILTERS, MatchFilter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync and summarise a lounge player's match history.")
    parser.add_argument("player_id", help="Numeric lounge player id")
    parser.add_argument(
        "--time",
        choices=TIME_FILTERS,
        default="alltime",
        help="Time window: alltime, weekly (last 7 days) or season (current season only)",
    )
    parser.add_argument(
        "--queue",
        choices=QUEUE_FILTERS,
        default="both",
        help="Queue type: both, squads or soloq",
    )
    parser.add_argument(
        "--players",
        choices=PLAYER_COUNT_FILTERS,
        default="both",
        help="Player count: both, 12p or 24p",
    )
    parser.add_argument(
        "--season",
        type=int,
        help="Season used by --time season (defaults to the latest known season).",
    )
    parser.add_argument(
        "--vs",
        action="append",
        default=[],
        help="Opponent id for a head-to-head breakdown. Use multiple times for multiple opponents.",
    )
    parser.add_argument(
        "--history",
        action="store_true",
        help="Print the per-table history instead of the summary.",
    )
    parser.add_argument(
        "--output",
        help="Optional path to write the table as a CSV instead of printing it.",
    )
    parser.add_argument(
        "--no-store",
        action="store_true",
        help="Do not persist tables to the local SQLite database.",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Sync even if the player was synced recently.",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (default: LOUNGE_LOG_LEVEL or INFO).",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    options = dict(use_store=not args.no_store, settings=settings, refresh=args.refresh)
    try:
        filt = MatchFilter(
            time_filter=args.time,
            queue_filter=args.queue,
            player_count_filter=args.players,
            current_season=args.season,
        )
        if args.vs or args.history:
            matches = analysis.load_filtered_matches(args.player_id, filt=filt, **options)
            if args.vs:
                df = analysis.head_to_head_frame(matches, args.player_id, args.vs)
            else:
                df = analysis.match_history_frame(matches, args.player_id)
        else:
            df = analysis.generate_player_report(args.player_id, filt=filt, **options)
    except LoungeError as exc:
        print("Error running report:", exc)
        return 1

    if df.empty:
        print(f"No matches found for player {args.player_id}.")
        return 0

    if args.output:
        df.to_csv(args.output, index=False)
        print(f"Wrote {len(df)} rows to {args.output}")
        return 0

    if args.history or args.vs:
        print(df.to_string(index=False))
    else:
        print(df.T.to_string(header=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
