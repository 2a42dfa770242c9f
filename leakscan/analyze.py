#!/usr/bin/env python3
"""
Opening Leak Analysis

Fetches a user's recent games, finds the opening positions they keep
reaching, and reports the ones where their habitual move loses ground.

Usage:
  python analyze.py DrNykterstein --max-games 200 --depth 12
  python analyze.py someone --source chesscom --engine cloud -o report.json
  STOCKFISH_PATH=/usr/bin/stockfish python analyze.py someone
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import FETCH_TIMEOUT, SPEEDS, STOCKFISH_PATH, AnalyzeOptions
from evaluator import CloudEvaluator, StockfishEvaluator
from game_fetcher import FetchError, fetch_games, load_games_file
from leak_classifier import Evaluate, classify_positions
from models import AnalysisDiagnostics, AnalysisProgress, AnalyzeResponse, Game, response_to_dict
from opening_aggregator import aggregate_opening_positions
from report_card import build_report_card, median_rating
from time_management import time_management_score

logger = logging.getLogger(__name__)


def emit(options: AnalyzeOptions, progress: AnalysisProgress) -> None:
    if options.on_progress:
        options.on_progress(progress)


async def analyze_opening_leaks(
    username: str,
    evaluate: Evaluate,
    options: AnalyzeOptions | None = None,
    client: httpx.AsyncClient | None = None,
    games: Iterable[Game] | None = None,
) -> AnalyzeResponse:
    """
    Run one full analysis. Raises FetchError when the games cannot be
    downloaded; every other problem is reported through diagnostics.
    Pass games to skip the download.
    """
    options = (options or AnalyzeOptions()).clamped()

    if games is None:
        emit(options, AnalysisProgress(
            phase="fetch", message=f"Connecting to {options.source}",
            detail="Fetching your recent games...", percent=2,
        ))

        def on_game(count: int) -> None:
            emit(options, AnalysisProgress(
                phase="fetch", message="Downloading games",
                detail=f"{count} of {options.max_games} games received",
                current=count, total=options.max_games,
                percent=2 + round(count / options.max_games * 36),
            ))

        if client is None:
            async with httpx.AsyncClient(timeout=FETCH_TIMEOUT) as session:
                games = await fetch_games(
                    session, username, options.max_games, options.source, options.time_controls, on_game
                )
        else:
            games = await fetch_games(
                client, username, options.max_games, options.source, options.time_controls, on_game
            )
    games = list(games)[:options.max_games]

    aggregation = aggregate_opening_positions(
        games, username, options.max_opening_moves, options.on_progress
    )
    emit(options, AnalysisProgress(
        phase="aggregate",
        message="Recurring positions found",
        detail=f"{len(aggregation.positions)} distinct positions from {aggregation.games_analyzed} games",
        percent=56,
    ))

    classification = await classify_positions(
        aggregation.positions.values(),
        evaluate,
        engine_depth=options.engine_depth,
        cp_loss_threshold=options.cp_loss_threshold,
        on_progress=options.on_progress,
    )

    player_rating = median_rating(aggregation.player_ratings)
    response = AnalyzeResponse(
        username=username,
        games_analyzed=aggregation.games_analyzed,
        repeated_positions=classification.repeated_positions,
        leaks=classification.leaks,
        player_rating=player_rating,
        time_management_score=time_management_score(games, username),
        report=build_report_card(
            classification.position_traces, options.cp_loss_threshold, player_rating
        ),
    )
    if options.include_diagnostics:
        response.diagnostics = AnalysisDiagnostics(
            game_traces=aggregation.game_traces,
            position_traces=classification.position_traces,
        )

    emit(options, AnalysisProgress(
        phase="done", message="Analysis complete",
        detail=f"{len(response.leaks)} leaks in {response.repeated_positions} repeated positions",
        percent=100,
    ))
    return response


async def main_async():
    parser = argparse.ArgumentParser()
    parser.add_argument("username")
    parser.add_argument("--max-games", type=int, default=100)
    parser.add_argument("--max-moves", type=int, default=12, help="Opening length in full moves")
    parser.add_argument("--cp-threshold", type=int, default=100)
    parser.add_argument("--depth", type=int, default=10)
    parser.add_argument("--source", choices=["lichess", "chesscom"], default="lichess")
    parser.add_argument("--time-control", nargs="*", choices=SPEEDS, default=[])
    parser.add_argument("--engine", choices=["stockfish", "cloud"], default="stockfish")
    parser.add_argument("--games-file", default=None, help="Analyse a saved Lichess NDJSON export")
    parser.add_argument("--no-diagnostics", action="store_true")
    parser.add_argument("--output", "-o", default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    options = AnalyzeOptions(
        max_games=args.max_games,
        max_opening_moves=args.max_moves,
        cp_loss_threshold=args.cp_threshold,
        engine_depth=args.depth,
        source=args.source,
        time_controls=args.time_control,
        include_diagnostics=not args.no_diagnostics,
    )
    games = load_games_file(Path(args.games_file)) if args.games_file else None

    async with httpx.AsyncClient(timeout=FETCH_TIMEOUT) as session:
        if args.engine == "cloud":
            evaluator = CloudEvaluator(session)
            response = await analyze_opening_leaks(args.username, evaluator.evaluate, options, session, games)
        else:
            async with StockfishEvaluator(STOCKFISH_PATH) as evaluator:
                response = await analyze_opening_leaks(args.username, evaluator.evaluate, options, session, games)

    payload = json.dumps(response_to_dict(response), indent=2)
    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print(f"{response.games_analyzed} games analysed, {len(response.leaks)} leaks -> {args.output}")
    else:
        print(payload)


def main():
    try:
        asyncio.run(main_async())
    except FetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError:
        print("Stockfish not found. Install it or set STOCKFISH_PATH.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
