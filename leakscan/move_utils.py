"""Move token helpers on top of python-chess."""

import re

import chess

from models import PlayerColor

UCI_MOVE_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$")


def is_uci_move(token: str) -> bool:
    return bool(token) and UCI_MOVE_RE.match(token) is not None


def parse_move_token(board: chess.Board, token: str) -> chess.Move | None:
    """Resolve a coordinate or SAN token to a legal move, or None."""
    if not token:
        return None
    try:
        if is_uci_move(token):
            return board.parse_uci(token)
        return board.parse_san(token)
    except ValueError:
        # InvalidMoveError, IllegalMoveError and AmbiguousMoveError are all ValueErrors
        return None


def apply_move_token(board: chess.Board, token: str) -> bool:
    move = parse_move_token(board, token)
    if move is None:
        return False
    board.push(move)
    return True


def fen_after_move(fen: str, token: str) -> str | None:
    try:
        board = chess.Board(fen)
    except ValueError:
        return None
    return board.fen() if apply_move_token(board, token) else None


def san_for_move(fen: str, token: str | None) -> str | None:
    if not token:
        return None
    try:
        board = chess.Board(fen)
    except ValueError:
        return None
    move = parse_move_token(board, token)
    return board.san(move) if move is not None else None


def side_to_move(fen: str) -> PlayerColor:
    parts = fen.split()
    return "black" if len(parts) > 1 and parts[1] == "b" else "white"


def opposite(color: PlayerColor) -> PlayerColor:
    return "black" if color == "white" else "white"


def to_chess_color(color: PlayerColor) -> chess.Color:
    return chess.WHITE if color == "white" else chess.BLACK
