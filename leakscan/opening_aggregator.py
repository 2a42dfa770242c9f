"""
Opening Aggregator

Replays the opening of every game and buckets the positions the user reached
with the user to move, keyed by FEN. For each position we tally how often it
was reached and which move the user played there.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import chess

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import DEFAULT_MAX_OPENING_MOVES
from models import AnalysisProgress, Game, GameOpeningTrace, PlayerColor, RecurringPosition
from move_utils import apply_move_token, to_chess_color

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    positions: dict[str, RecurringPosition] = field(default_factory=dict)
    games_analyzed: int = 0
    game_traces: list[GameOpeningTrace] = field(default_factory=list)
    player_ratings: list[int] = field(default_factory=list)


def normalize_name(name: str) -> str:
    return name.strip().lower()


def user_color(game: Game, username: str) -> PlayerColor | None:
    """Which side the user played, or None when neither name matches."""
    target = normalize_name(username)
    if game.white_name and normalize_name(game.white_name) == target:
        return "white"
    if game.black_name and normalize_name(game.black_name) == target:
        return "black"
    return None


def user_outcome(game: Game, color: PlayerColor) -> str | None:
    """'win', 'draw' or 'loss' for the user; None when the game has no result."""
    if game.result == "1/2-1/2":
        return "draw"
    if game.result == "1-0":
        return "win" if color == "white" else "loss"
    if game.result == "0-1":
        return "win" if color == "black" else "loss"
    return None


def credit_outcome(position: RecurringPosition, outcome: str | None) -> None:
    if outcome == "win":
        position.wins += 1
    elif outcome == "draw":
        position.draws += 1
    elif outcome == "loss":
        position.losses += 1


def aggregate_opening_positions(
    games: Iterable[Game],
    username: str,
    max_opening_moves: int = DEFAULT_MAX_OPENING_MOVES,
    on_progress: Callable[[AnalysisProgress], None] | None = None,
) -> AggregationResult:
    """Build the FEN -> RecurringPosition table for one analysis run."""
    games = list(games)
    max_plies = max_opening_moves * 2
    result = AggregationResult()

    for index, game in enumerate(games):
        if on_progress and (index % 10 == 0 or index == len(games) - 1):
            on_progress(AnalysisProgress(
                phase="parse",
                message="Parsing games",
                detail=f"{index + 1} of {len(games)} games processed",
                current=index + 1,
                total=len(games),
                percent=40 + round((index + 1) / len(games) * 15),
            ))

        if not game.moves:
            continue
        color = user_color(game, username)
        if color is None:
            continue

        result.games_analyzed += 1
        rating = game.white_rating if color == "white" else game.black_rating
        if rating and rating > 0:
            result.player_ratings.append(rating)

        board = chess.Board()
        turn = to_chess_color(color)
        outcome = user_outcome(game, color)
        credited: set[str] = set()
        applied: list[str] = []

        for token in game.moves[:max_plies]:
            if board.turn == turn:
                fen_before = board.fen()
                position = result.positions.get(fen_before)
                if position is None:
                    position = result.positions[fen_before] = RecurringPosition(fen=fen_before)
                position.record(token)
                if fen_before not in credited:
                    credited.add(fen_before)
                    credit_outcome(position, outcome)

            if not apply_move_token(board, token):
                break
            applied.append(token)

        result.game_traces.append(GameOpeningTrace(
            game_index=len(result.game_traces) + 1,
            user_color=color,
            opening_moves=applied,
        ))

    logger.info(
        "Aggregated %d positions from %d/%d games",
        len(result.positions), result.games_analyzed, len(games),
    )
    return result
