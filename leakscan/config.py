"""Settings and analysis options for the opening leak scanner."""

import math
import os
from dataclasses import dataclass, field
from typing import Callable, Literal

LICHESS_TOKEN = os.environ.get("LICHESS_TOKEN")
STOCKFISH_PATH = os.environ.get("STOCKFISH_PATH", "stockfish")
USER_AGENT = "firechess-opening-leak-scanner/1.0"

MIN_POSITION_REPEATS = 3
MATE_CP = 100000

FETCH_TIMEOUT = 15.0  # seconds per request
FETCH_RETRIES = 3
BACKOFF_BASE = 0.5  # seconds, doubled per attempt

DEFAULT_MAX_GAMES = 100
DEFAULT_MAX_OPENING_MOVES = 12
DEFAULT_CP_LOSS_THRESHOLD = 100
DEFAULT_ENGINE_DEPTH = 10

SPEEDS = ("bullet", "blitz", "rapid", "classical")

Source = Literal["lichess", "chesscom"]


def clamp_int(value, fallback: int, lo: int, hi: int) -> int:
    """Floor value into [lo, hi]; anything that is not a finite number gives fallback."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if isinstance(value, float) and not math.isfinite(value):
        return fallback
    return min(hi, max(lo, math.floor(value)))


@dataclass
class AnalyzeOptions:
    max_games: int = DEFAULT_MAX_GAMES
    max_opening_moves: int = DEFAULT_MAX_OPENING_MOVES
    cp_loss_threshold: int = DEFAULT_CP_LOSS_THRESHOLD
    engine_depth: int = DEFAULT_ENGINE_DEPTH
    source: Source = "lichess"
    time_controls: list[str] = field(default_factory=list)
    include_diagnostics: bool = True
    on_progress: Callable | None = None

    def clamped(self) -> "AnalyzeOptions":
        """Copy with every numeric option forced into its accepted range."""
        return AnalyzeOptions(
            max_games=clamp_int(self.max_games, DEFAULT_MAX_GAMES, 1, 500),
            max_opening_moves=clamp_int(self.max_opening_moves, DEFAULT_MAX_OPENING_MOVES, 1, 30),
            cp_loss_threshold=clamp_int(self.cp_loss_threshold, DEFAULT_CP_LOSS_THRESHOLD, 1, 1000),
            engine_depth=clamp_int(self.engine_depth, DEFAULT_ENGINE_DEPTH, 6, 24),
            source=self.source if self.source in ("lichess", "chesscom") else "lichess",
            time_controls=[t for t in self.time_controls if t in SPEEDS],
            include_diagnostics=self.include_diagnostics,
            on_progress=self.on_progress,
        )

    def to_dict(self) -> dict:
        """Config snapshot stored alongside a report (callback excluded)."""
        return {
            "maxGames": self.max_games,
            "maxMoves": self.max_opening_moves,
            "cpThreshold": self.cp_loss_threshold,
            "engineDepth": self.engine_depth,
            "source": self.source,
            "timeControls": list(self.time_controls),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnalyzeOptions":
        return cls(
            max_games=data.get("maxGames", DEFAULT_MAX_GAMES),
            max_opening_moves=data.get("maxMoves", DEFAULT_MAX_OPENING_MOVES),
            cp_loss_threshold=data.get("cpThreshold", DEFAULT_CP_LOSS_THRESHOLD),
            engine_depth=data.get("engineDepth", DEFAULT_ENGINE_DEPTH),
            source=data.get("source", "lichess"),
            time_controls=list(data.get("timeControls") or []),
        ).clamped()
