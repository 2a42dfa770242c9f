"""
Heuristic labels for opening leaks.

Each rule is a named predicate over a TagContext; derive_leak_tags runs the
fixed rule table in order and keeps the first three that fire.
"""

from dataclasses import dataclass
from typing import Callable

import chess

from move_utils import parse_move_token

CENTER_SQUARES = {chess.D4, chess.E4, chess.D5, chess.E5}
MAX_TAGS = 3
DEFAULT_TAG = "Inaccuracy"


@dataclass(frozen=True)
class TagContext:
    cp_loss: int
    reach_count: int
    move_count: int
    fullmove_number: int
    user_move: chess.Move | None
    best_move: chess.Move | None
    user_san: str | None
    best_san: str | None
    user_piece: chess.PieceType | None


def build_context(
    fen_before: str,
    user_move: str,
    best_move: str | None,
    cp_loss: int,
    reach_count: int,
    move_count: int,
) -> TagContext:
    board = chess.Board(fen_before)
    user = parse_move_token(board, user_move)
    best = parse_move_token(board, best_move) if best_move else None
    piece = board.piece_type_at(user.from_square) if user else None
    return TagContext(
        cp_loss=cp_loss,
        reach_count=reach_count,
        move_count=move_count,
        fullmove_number=board.fullmove_number,
        user_move=user,
        best_move=best,
        user_san=board.san(user) if user else None,
        best_san=board.san(best) if best else None,
        user_piece=piece,
    )


def _contains(san: str | None, marker: str) -> bool:
    return san is not None and marker in san


def _best_not_user(marker: str) -> Callable[[TagContext], bool]:
    return lambda c: _contains(c.best_san, marker) and not _contains(c.user_san, marker)


def _center_control(c: TagContext) -> bool:
    return (
        c.best_move is not None
        and c.user_move is not None
        and c.best_move.to_square in CENTER_SQUARES
        and c.user_move.to_square not in CENTER_SQUARES
    )


def _opening_development(c: TagContext) -> bool:
    return c.fullmove_number <= 10 and c.user_piece in (chess.QUEEN, chess.KING)


LEAK_TAG_RULES: list[tuple[str, Callable[[TagContext], bool]]] = [
    ("Major Blunder", lambda c: c.cp_loss >= 250),
    ("Tactical Miss", lambda c: 150 <= c.cp_loss < 250),
    ("Repeated Habit", lambda c: c.reach_count > 0 and c.move_count / c.reach_count >= 0.7),
    ("King Safety", _best_not_user("O-O")),
    ("Missed Check", _best_not_user("+")),
    ("Missed Capture", _best_not_user("x")),
    ("Center Control", _center_control),
    ("Opening Development", _opening_development),
]


def derive_leak_tags(
    fen_before: str,
    user_move: str,
    best_move: str | None,
    cp_loss: int,
    reach_count: int,
    move_count: int,
) -> list[str]:
    ctx = build_context(fen_before, user_move, best_move, cp_loss, reach_count, move_count)
    tags = [name for name, rule in LEAK_TAG_RULES if rule(ctx)]
    return tags[:MAX_TAGS] or [DEFAULT_TAG]
