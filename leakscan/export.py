#!/usr/bin/env python3
"""
Export CLI: write a leak report as JSON, CSV or PGN

Formats: json, csv, pgn (one game per leak, best move as a variation)

Usage:
  python export.py --report-id 6f1c... --format pgn --output leaks.pgn
  python export.py --input report.json --format csv --output leaks.csv
"""

import argparse
import csv
import json
import sys
from pathlib import Path
from uuid import UUID

import chess
import chess.pgn

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import MATE_CP
from db import ensure_schema, get_connection, get_report
from models import RepeatedOpeningLeak, leak_from_dict, leak_to_dict
from move_utils import parse_move_token

CSV_FIELDS = [
    "fenBefore", "userMove", "bestMove", "cpLoss", "evalBefore", "evalAfter",
    "reachCount", "moveCount", "sideToMove", "tags", "userWins", "userDraws", "userLosses",
]


def eval_comment(cp: int) -> str:
    """PGN eval annotation; cp is from White's point of view."""
    if abs(cp) >= MATE_CP - 1000:
        moves = MATE_CP - abs(cp)
        return f"[%eval #{moves if cp > 0 else -moves}]"
    return f"[%eval {cp / 100:.2f}]"


def white_pov(leak: RepeatedOpeningLeak, cp: int) -> int:
    return -cp if leak.user_color == "black" else cp


def leak_to_pgn_game(leak: RepeatedOpeningLeak, username: str = "?") -> chess.pgn.Game:
    """Game set up at fen_before: user's move as mainline, engine's move as variation."""
    board = chess.Board(leak.fen_before)
    game = chess.pgn.Game.from_board(board)
    game.headers["Event"] = f"Opening leak: {', '.join(leak.tags) or 'Inaccuracy'}"
    game.headers["Site"] = "Opening Leak Scanner"
    game.headers["White" if leak.user_color == "white" else "Black"] = username
    game.headers["Result"] = "*"
    game.comment = (
        f"Reached {leak.reach_count} times, played {leak.user_move} {leak.move_count} times. "
        f"{eval_comment(white_pov(leak, leak.eval_before))}"
    )

    user_move = parse_move_token(board, leak.user_move)
    if user_move is None:
        return game
    user_node = game.add_main_variation(user_move)
    user_node.comment = f"-{leak.cp_loss}cp {eval_comment(white_pov(leak, leak.eval_after))}"

    best_move = parse_move_token(board, leak.best_move) if leak.best_move else None
    if best_move is not None and best_move != user_move:
        best_node = game.add_variation(best_move)
        best_node.comment = "Engine choice"
    return game


def load_report(report_id: str | None, input_path: str | None) -> dict:
    if input_path:
        return json.loads(Path(input_path).read_text(encoding="utf-8"))
    with get_connection() as conn:
        ensure_schema(conn)
        report = get_report(conn, UUID(report_id))
    if report is None:
        raise LookupError(f"Report {report_id} not found")
    return report


def report_leaks(report: dict) -> list[RepeatedOpeningLeak]:
    return [leak_from_dict(d) for d in report.get("leaks") or []]


def report_username(report: dict) -> str:
    return report.get("username") or report.get("chessUsername") or "?"


def export_json(report: dict, output_path: Path) -> int:
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
    return len(report.get("leaks") or [])


def export_csv(leaks: list[RepeatedOpeningLeak], output_path: Path) -> int:
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=CSV_FIELDS, extrasaction="ignore")
        w.writeheader()
        for leak in leaks:
            row = leak_to_dict(leak)
            row["tags"] = "; ".join(leak.tags)
            w.writerow(row)
    return len(leaks)


def export_pgn(leaks: list[RepeatedOpeningLeak], output_path: Path, username: str = "?") -> int:
    with open(output_path, "w", encoding="utf-8") as f:
        for leak in leaks:
            print(leak_to_pgn_game(leak, username), file=f, end="\n\n")
    return len(leaks)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--format", choices=["json", "csv", "pgn"], default="json")
    parser.add_argument("--output", "-o", required=True)
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--report-id", default=None)
    source.add_argument("--input", default=None, help="Analysis JSON written by analyze.py")
    args = parser.parse_args()

    try:
        report = load_report(args.report_id, args.input)
    except LookupError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    out = Path(args.output)
    if args.format == "json":
        n = export_json(report, out)
    elif args.format == "csv":
        n = export_csv(report_leaks(report), out)
    else:
        n = export_pgn(report_leaks(report), out, report_username(report))
    print(f"Exported {n} leaks to {out}")


if __name__ == "__main__":
    main()
