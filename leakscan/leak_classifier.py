"""
Leak Classifier & Ranker

Scores every recurring position the user reached at least MIN_POSITION_REPEATS
times: the position before the habitual move and the position after it are
each evaluated once, the difference from the user's point of view is the
centipawn loss, and anything over the threshold becomes a ranked leak.
Positions that cannot be scored get a diagnostic trace instead.
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterable

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import DEFAULT_CP_LOSS_THRESHOLD, DEFAULT_ENGINE_DEPTH, MIN_POSITION_REPEATS
from leak_tags import derive_leak_tags
from models import (
    AnalysisProgress,
    EvaluationResult,
    PlayerColor,
    PositionEvalTrace,
    RecurringPosition,
    RepeatedOpeningLeak,
)
from move_utils import fen_after_move, opposite, side_to_move

logger = logging.getLogger(__name__)

Evaluate = Callable[[str, int], Awaitable[EvaluationResult | None]]


@dataclass
class ClassificationResult:
    leaks: list[RepeatedOpeningLeak] = field(default_factory=list)
    position_traces: list[PositionEvalTrace] = field(default_factory=list)
    repeated_positions: int = 0


def eligible_positions(positions: Iterable[RecurringPosition]) -> list[RecurringPosition]:
    return [p for p in positions if p.reach_count >= MIN_POSITION_REPEATS]


def to_user_perspective(cp: int, scoring_side: PlayerColor, user: PlayerColor) -> int:
    return cp if scoring_side == user else -cp


def rank_leaks(leaks: Iterable[RepeatedOpeningLeak]) -> list[RepeatedOpeningLeak]:
    """Worst first; equal losses keep their evaluation order."""
    return sorted(leaks, key=lambda leak: -leak.cp_loss)


async def classify_positions(
    positions: Iterable[RecurringPosition],
    evaluate: Evaluate,
    engine_depth: int = DEFAULT_ENGINE_DEPTH,
    cp_loss_threshold: int = DEFAULT_CP_LOSS_THRESHOLD,
    on_progress: Callable[[AnalysisProgress], None] | None = None,
) -> ClassificationResult:
    repeated = eligible_positions(positions)
    result = ClassificationResult(repeated_positions=len(repeated))

    for index, position in enumerate(repeated):
        if on_progress and (index % 5 == 0 or index == len(repeated) - 1):
            on_progress(AnalysisProgress(
                phase="eval",
                message="Evaluating positions",
                detail=f"Position {index + 1} of {len(repeated)}",
                current=index + 1,
                total=len(repeated),
                percent=58 + round((index + 1) / len(repeated) * 22),
            ))

        fen_before = position.fen
        chosen = position.chosen_move
        chosen_count = position.chosen_move_count
        trace = PositionEvalTrace(
            fen_before=fen_before,
            user_move=chosen or "",
            best_move=None,
            reach_count=position.reach_count,
            move_count=chosen_count,
        )

        fen_after = fen_after_move(fen_before, chosen) if chosen else None
        if fen_after is None:
            trace.skipped_reason = "invalid_move"
            result.position_traces.append(trace)
            continue

        before = await evaluate(fen_before, engine_depth)
        after = await evaluate(fen_after, engine_depth)
        if before is None or after is None:
            trace.best_move = before.best_move if before else None
            trace.skipped_reason = "missing_eval"
            result.position_traces.append(trace)
            continue

        user = side_to_move(fen_before)
        eval_before = to_user_perspective(before.cp, user, user)
        eval_after = to_user_perspective(after.cp, opposite(user), user)
        cp_loss = eval_before - eval_after
        flagged = cp_loss > cp_loss_threshold

        trace.best_move = before.best_move
        trace.eval_before = eval_before
        trace.eval_after = eval_after
        trace.cp_loss = cp_loss
        trace.flagged = flagged
        result.position_traces.append(trace)

        if not flagged:
            continue

        result.leaks.append(RepeatedOpeningLeak(
            fen_before=fen_before,
            fen_after=fen_after,
            user_move=chosen,
            best_move=before.best_move,
            cp_loss=cp_loss,
            eval_before=eval_before,
            eval_after=eval_after,
            reach_count=position.reach_count,
            move_count=chosen_count,
            side_to_move=user,
            user_color=user,
            tags=derive_leak_tags(
                fen_before, chosen, before.best_move, cp_loss, position.reach_count, chosen_count
            ),
            user_wins=position.wins,
            user_draws=position.draws,
            user_losses=position.losses,
        ))

    result.leaks = rank_leaks(result.leaks)
    logger.info(
        "Classified %d repeated positions: %d leaks, %d skipped",
        len(repeated),
        len(result.leaks),
        sum(1 for t in result.position_traces if t.skipped_reason),
    )
    return result
