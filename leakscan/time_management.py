"""
Time Management Score

A 0-100 score built from the %clk data of the user's games. Three parts:

  consistency  - coefficient of variation of time spent per move (45%)
  scrambles    - share of games where the clock fell under 10% of its
                 starting value (35%)
  early waste  - share of all thinking time spent on the first five
                 moves above 15% (20%)

Clocks are centiseconds remaining after each ply, in ply order.
"""

import math
import sys
from pathlib import Path
from typing import Iterable

sys.path.insert(0, str(Path(__file__).resolve().parent))
from models import Game
from opening_aggregator import user_color

MIN_GAMES_WITH_CLOCKS = 2
MIN_MOVE_TIMES = 10
SCRAMBLE_FRACTION = 0.1
EARLY_MOVES = 5


def user_clocks(game: Game, color: str) -> list[int]:
    """Every other clock reading, starting at the user's first ply."""
    start = 0 if color == "white" else 1
    return list(game.clocks[start::2])


def move_times(clocks: list[int]) -> list[int]:
    """Centiseconds spent per move; increments can make this negative, so clamp at 0."""
    return [max(0, prev - cur) for prev, cur in zip(clocks, clocks[1:])]


def had_time_scramble(clocks: list[int]) -> bool:
    initial = clocks[0]
    return initial > 0 and min(clocks) < initial * SCRAMBLE_FRACTION


def _bounded(value: float) -> float:
    return max(0.0, min(100.0, value))


def time_management_score(games: Iterable[Game], username: str) -> int | None:
    """None when fewer than two games carry clocks or fewer than ten move times exist."""
    times: list[int] = []
    scrambles = 0
    games_with_clocks = 0

    for game in games:
        if len(game.clocks) < 4:
            continue
        games_with_clocks += 1
        color = user_color(game, username)
        if color is None:
            continue
        clocks = user_clocks(game, color)
        if len(clocks) < 2:
            continue
        times.extend(move_times(clocks))
        if had_time_scramble(clocks):
            scrambles += 1

    if games_with_clocks < MIN_GAMES_WITH_CLOCKS or len(times) < MIN_MOVE_TIMES:
        return None

    seconds = [t / 100 for t in times]
    total = sum(seconds)
    mean = total / len(seconds)
    variance = sum((s - mean) ** 2 for s in seconds) / len(seconds)
    cv = math.sqrt(variance) / mean if mean > 0 else 2.0
    consistency = _bounded(100 * math.exp(-cv * 0.8))

    scramble_rate = scrambles / games_with_clocks
    scramble_score = _bounded(100 * math.exp(-scramble_rate * 2))

    early_ratio = sum(seconds[:EARLY_MOVES]) / total if total > 0 else 0.0
    waste_score = _bounded(100 * math.exp(-max(0.0, early_ratio - 0.15) * 5))

    # half-up rounding; the blend is never negative
    return math.floor(consistency * 0.45 + scramble_score * 0.35 + waste_score * 0.20 + 0.5)
