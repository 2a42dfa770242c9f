"""Tests for leak_tags.py"""

import sys
from pathlib import Path

import chess

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from leak_tags import derive_leak_tags


def fen_after(*sans: str) -> str:
    board = chess.Board()
    for san in sans:
        board.push_san(san)
    return board.fen()


ITALIAN = fen_after("e4", "e5", "Nf3", "Nc6", "Bc4", "Bc5")
AFTER_E4_D6 = fen_after("e4", "d6")
SCANDINAVIAN = fen_after("e4", "d5")
OPEN_GAME = fen_after("e4", "e5")


def tags(fen, user, best, cp_loss=120, reach=10, moves=5):
    return derive_leak_tags(fen, user, best, cp_loss, reach, moves)


def test_major_blunder():
    assert tags(chess.STARTING_FEN, "a2a3", "g1f3", cp_loss=250) == ["Major Blunder"]


def test_tactical_miss_band():
    assert tags(chess.STARTING_FEN, "a2a3", "g1f3", cp_loss=150) == ["Tactical Miss"]
    assert tags(chess.STARTING_FEN, "a2a3", "g1f3", cp_loss=249) == ["Tactical Miss"]
    assert tags(chess.STARTING_FEN, "a2a3", "g1f3", cp_loss=149) == ["Inaccuracy"]


def test_repeated_habit():
    assert tags(chess.STARTING_FEN, "a2a3", "g1f3", reach=10, moves=7) == ["Repeated Habit"]
    assert tags(chess.STARTING_FEN, "a2a3", "g1f3", reach=10, moves=6) == ["Inaccuracy"]


def test_king_safety_when_engine_castles():
    assert tags(ITALIAN, "d2d3", "e1g1") == ["King Safety"]
    # castling is a king move, so only the development rule fires
    assert tags(ITALIAN, "e1g1", "d2d3") == ["Opening Development"]


def test_missed_check():
    assert tags(AFTER_E4_D6, "g1f3", "f1b5") == ["Missed Check"]


def test_missed_capture_and_center_control():
    assert tags(SCANDINAVIAN, "b1c3", "e4d5") == ["Missed Capture", "Center Control"]


def test_opening_development_for_early_queen_moves():
    assert tags(OPEN_GAME, "d1h5", "g1f3") == ["Opening Development"]


def test_opening_development_only_in_first_ten_moves():
    fields = OPEN_GAME.split()
    fields[-1] = "11"
    assert tags(" ".join(fields), "d1h5", "g1f3") == ["Inaccuracy"]


def test_default_tag():
    assert tags(chess.STARTING_FEN, "a2a3", "g1f3") == ["Inaccuracy"]
    assert tags(chess.STARTING_FEN, "a2a3", None) == ["Inaccuracy"]


def test_at_most_three_tags_in_rule_order():
    result = tags(SCANDINAVIAN, "b1c3", "e4d5", cp_loss=300, reach=3, moves=3)
    assert result == ["Major Blunder", "Repeated Habit", "Missed Capture"]


def test_san_and_uci_user_moves_tag_alike():
    assert tags(SCANDINAVIAN, "Nc3", "e4d5") == tags(SCANDINAVIAN, "b1c3", "e4d5")


def test_same_inputs_same_tags():
    first = tags(ITALIAN, "d2d3", "e1g1", cp_loss=260, reach=4, moves=3)
    second = tags(ITALIAN, "d2d3", "e1g1", cp_loss=260, reach=4, moves=3)
    assert first == second == ["Major Blunder", "Repeated Habit", "King Safety"]
