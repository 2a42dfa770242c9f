"""Summary metrics derived from the position traces of a run."""

import math
from typing import Iterable

from models import PositionEvalTrace, ReportCard


def median_rating(ratings: Iterable[int]) -> int | None:
    values = sorted(r for r in ratings if r and r > 0)
    if not values:
        return None
    mid = len(values) // 2
    if len(values) % 2:
        return values[mid]
    return round((values[mid - 1] + values[mid]) / 2)


def build_report_card(
    traces: Iterable[PositionEvalTrace],
    cp_loss_threshold: int,
    player_rating: int | None = None,
) -> ReportCard | None:
    """None when no position was actually scored."""
    valid = [t for t in traces if t.cp_loss is not None]
    if not valid:
        return None

    total_weight = sum(t.reach_count for t in valid)
    weighted = sum(t.cp_loss * t.reach_count for t in valid) / total_weight if total_weight else 0.0
    severe_rate = sum(1 for t in valid if t.cp_loss >= cp_loss_threshold) / len(valid)

    # 15cp ~ 88%, 30cp ~ 78%, 60cp ~ 61%
    accuracy = min(99.5, max(25.0, 100 * math.exp(-weighted / 120)))

    if player_rating and player_rating > 0:
        expected = max(2.0, 50 - player_rating / 60)
        diff = expected - max(1.0, weighted)
        adjustment = max(-200.0, min(200.0, diff * 8))
        rating = round(min(2800, max(400, player_rating + adjustment - 150 * severe_rate)))
    else:
        base = 1800 - 400 * math.log10(max(2.0, weighted))
        sample_factor = min(1.0, len(valid) / 50)
        adjusted = 1200 + (base - 400 * severe_rate - 1200) * sample_factor
        rating = round(min(2400, max(400, adjusted)))

    return ReportCard(
        estimated_accuracy=round(accuracy, 1),
        estimated_rating=rating,
        weighted_cp_loss=round(weighted, 1),
        severe_leak_rate=round(severe_rate, 3),
    )
