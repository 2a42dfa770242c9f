"""Data models for the opening leak scanner."""

from dataclasses import dataclass, field
from typing import Literal

PlayerColor = Literal["white", "black"]
SkippedReason = Literal["invalid_move", "missing_eval"]


@dataclass(frozen=True)
class Game:
    """One played game as fetched from the upstream server."""

    moves: tuple[str, ...] = ()
    white_name: str | None = None
    black_name: str | None = None
    white_rating: int | None = None
    black_rating: int | None = None
    result: Literal["1-0", "0-1", "1/2-1/2"] | None = None
    game_id: str | None = None
    clocks: tuple[int, ...] = ()


@dataclass
class RecurringPosition:
    """Aggregate over all games for one FEN reached with the user to move."""

    fen: str
    reach_count: int = 0
    move_counts: dict[str, int] = field(default_factory=dict)
    wins: int = 0
    draws: int = 0
    losses: int = 0

    def record(self, move: str) -> None:
        self.reach_count += 1
        self.move_counts[move] = self.move_counts.get(move, 0) + 1

    @property
    def chosen_move(self) -> str | None:
        """Most played move; ties go to the move seen first."""
        best, best_count = None, -1
        for move, count in self.move_counts.items():
            if count > best_count:
                best, best_count = move, count
        return best

    @property
    def chosen_move_count(self) -> int:
        move = self.chosen_move
        return self.move_counts[move] if move is not None else 0


@dataclass(frozen=True)
class EvaluationResult:
    """Engine output. cp is from the side to move's perspective."""

    cp: int
    best_move: str | None = None


@dataclass
class RepeatedOpeningLeak:
    fen_before: str
    fen_after: str
    user_move: str
    best_move: str | None
    cp_loss: int
    eval_before: int
    eval_after: int
    reach_count: int
    move_count: int
    side_to_move: PlayerColor
    user_color: PlayerColor
    tags: list[str] = field(default_factory=list)
    user_wins: int = 0
    user_draws: int = 0
    user_losses: int = 0


@dataclass
class GameOpeningTrace:
    game_index: int
    user_color: PlayerColor
    opening_moves: list[str] = field(default_factory=list)


@dataclass
class PositionEvalTrace:
    fen_before: str
    user_move: str
    best_move: str | None
    reach_count: int
    move_count: int
    eval_before: int | None = None
    eval_after: int | None = None
    cp_loss: int | None = None
    flagged: bool = False
    skipped_reason: SkippedReason | None = None


@dataclass
class AnalysisDiagnostics:
    game_traces: list[GameOpeningTrace] = field(default_factory=list)
    position_traces: list[PositionEvalTrace] = field(default_factory=list)


@dataclass
class AnalysisProgress:
    phase: Literal["fetch", "parse", "aggregate", "eval", "done"]
    message: str
    percent: int
    detail: str | None = None
    current: int | None = None
    total: int | None = None


@dataclass
class ReportCard:
    """Summary metrics shown on the report card."""

    estimated_accuracy: float
    estimated_rating: int
    weighted_cp_loss: float
    severe_leak_rate: float


@dataclass
class AnalyzeResponse:
    username: str
    games_analyzed: int = 0
    repeated_positions: int = 0
    leaks: list[RepeatedOpeningLeak] = field(default_factory=list)
    player_rating: int | None = None
    time_management_score: int | None = None
    report: ReportCard | None = None
    diagnostics: AnalysisDiagnostics | None = None


def leak_to_dict(leak: RepeatedOpeningLeak) -> dict:
    return {
        "fenBefore": leak.fen_before,
        "fenAfter": leak.fen_after,
        "userMove": leak.user_move,
        "bestMove": leak.best_move,
        "tags": list(leak.tags),
        "reachCount": leak.reach_count,
        "moveCount": leak.move_count,
        "cpLoss": leak.cp_loss,
        "evalBefore": leak.eval_before,
        "evalAfter": leak.eval_after,
        "sideToMove": leak.side_to_move,
        "userColor": leak.user_color,
        "userWins": leak.user_wins,
        "userDraws": leak.user_draws,
        "userLosses": leak.user_losses,
    }


def leak_from_dict(data: dict) -> RepeatedOpeningLeak:
    return RepeatedOpeningLeak(
        fen_before=data["fenBefore"],
        fen_after=data["fenAfter"],
        user_move=data["userMove"],
        best_move=data.get("bestMove"),
        cp_loss=data["cpLoss"],
        eval_before=data["evalBefore"],
        eval_after=data["evalAfter"],
        reach_count=data["reachCount"],
        move_count=data["moveCount"],
        side_to_move=data["sideToMove"],
        user_color=data.get("userColor", data["sideToMove"]),
        tags=list(data.get("tags") or []),
        user_wins=data.get("userWins", 0),
        user_draws=data.get("userDraws", 0),
        user_losses=data.get("userLosses", 0),
    )


def position_trace_to_dict(trace: PositionEvalTrace) -> dict:
    out = {
        "fenBefore": trace.fen_before,
        "userMove": trace.user_move,
        "bestMove": trace.best_move,
        "reachCount": trace.reach_count,
        "moveCount": trace.move_count,
        "evalBefore": trace.eval_before,
        "evalAfter": trace.eval_after,
        "cpLoss": trace.cp_loss,
        "flagged": trace.flagged,
    }
    if trace.skipped_reason:
        out["skippedReason"] = trace.skipped_reason
    return out


def diagnostics_to_dict(diagnostics: AnalysisDiagnostics) -> dict:
    return {
        "gameTraces": [
            {
                "gameIndex": t.game_index,
                "userColor": t.user_color,
                "openingMoves": list(t.opening_moves),
            }
            for t in diagnostics.game_traces
        ],
        "positionTraces": [position_trace_to_dict(t) for t in diagnostics.position_traces],
    }


def report_to_dict(report: ReportCard) -> dict:
    return {
        "estimatedAccuracy": report.estimated_accuracy,
        "estimatedRating": report.estimated_rating,
        "weightedCpLoss": report.weighted_cp_loss,
        "severeLeakRate": report.severe_leak_rate,
    }


def response_to_dict(response: AnalyzeResponse) -> dict:
    """JSON wire shape of an analysis run."""
    out = {
        "username": response.username,
        "gamesAnalyzed": response.games_analyzed,
        "repeatedPositions": response.repeated_positions,
        "leaks": [leak_to_dict(leak) for leak in response.leaks],
        "playerRating": response.player_rating,
        "timeManagementScore": response.time_management_score,
    }
    if response.report is not None:
        out["report"] = report_to_dict(response.report)
    if response.diagnostics is not None:
        out["diagnostics"] = diagnostics_to_dict(response.diagnostics)
    return out
