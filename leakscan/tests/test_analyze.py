"""End-to-end tests for analyze.py with a scripted evaluator."""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import chess
import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from analyze import analyze_opening_leaks
from config import AnalyzeOptions
from game_fetcher import FetchError
from models import EvaluationResult, Game, response_to_dict


def fen_after(*sans: str) -> str:
    board = chess.Board()
    for san in sans:
        board.push_san(san)
    return board.fen()


def make_game(moves: str, result="1-0") -> Game:
    return Game(moves=tuple(moves.split()), white_name="alice", black_name="bob", result=result)


GAMES = [make_game("e4 e5 Nf3 Nc6")] * 3 + [make_game("d4 d5 c4 e6")] * 2

EVALS = {
    chess.STARTING_FEN: EvaluationResult(30, "e2e4"),
    fen_after("e4"): EvaluationResult(-30, "e7e5"),
    fen_after("e4", "e5"): EvaluationResult(30, "f1c4"),
    fen_after("e4", "e5", "Nf3"): EvaluationResult(90, "b8c6"),
}


def evaluator(table: dict = EVALS) -> AsyncMock:
    async def evaluate(fen, depth):
        return table.get(fen)
    return AsyncMock(side_effect=evaluate)


def lichess_ndjson(games) -> str:
    lines = []
    for i, game in enumerate(games):
        lines.append(json.dumps({
            "id": f"g{i}",
            "moves": " ".join(game.moves),
            "status": "resign",
            "winner": "white",
            "players": {
                "white": {"user": {"name": game.white_name}, "rating": 1500},
                "black": {"user": {"name": game.black_name}, "rating": 1450},
            },
        }))
    return "\n".join(lines) + "\n"


@pytest.mark.asyncio
async def test_habitual_mistake_becomes_a_leak():
    response = await analyze_opening_leaks("alice", evaluator(), games=GAMES)

    assert response.games_analyzed == 5
    assert response.repeated_positions == 2
    assert len(response.leaks) == 1
    leak = response.leaks[0]
    assert leak.fen_before == fen_after("e4", "e5")
    assert leak.user_move == "Nf3"
    assert leak.best_move == "f1c4"
    assert leak.cp_loss == 120
    assert leak.reach_count == leak.move_count == 3
    assert leak.tags == ["Repeated Habit"]
    assert leak.user_wins == 3
    assert response.report is not None


@pytest.mark.asyncio
async def test_position_seen_twice_is_never_evaluated():
    evaluate = evaluator()
    games = [make_game("e4 e5 Nf3")] * 2
    response = await analyze_opening_leaks("alice", evaluate, games=games)

    assert response.games_analyzed == 2
    assert response.repeated_positions == 0
    assert response.leaks == []
    assert response.report is None
    evaluate.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_evaluations_are_reported_not_raised():
    response = await analyze_opening_leaks("alice", evaluator({}), games=GAMES)

    assert response.leaks == []
    reasons = [t.skipped_reason for t in response.diagnostics.position_traces]
    assert reasons == ["missing_eval", "missing_eval"]
    assert response.report is None


@pytest.mark.asyncio
async def test_fetches_games_when_none_given():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, text=lichess_ndjson(GAMES))

    events = []
    options = AnalyzeOptions(max_games=50, on_progress=events.append)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await analyze_opening_leaks("alice", evaluator(), options, client)

    assert len(requests) == 1
    assert requests[0].url.params["max"] == "50"
    assert response.games_analyzed == 5
    assert response.player_rating == 1500
    assert len(response.leaks) == 1

    phases = [e.phase for e in events]
    assert phases[0] == "fetch"
    assert phases[-1] == "done"
    assert phases.index("parse") < phases.index("aggregate") < phases.index("eval")
    assert events[-1].percent == 100


@pytest.mark.asyncio
async def test_fetch_failure_propagates():
    def handler(request):
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(FetchError) as exc_info:
            await analyze_opening_leaks("ghost", evaluator(), AnalyzeOptions(), client)
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_max_games_limits_given_games():
    response = await analyze_opening_leaks(
        "alice", evaluator(), AnalyzeOptions(max_games=2), games=GAMES
    )
    assert response.games_analyzed == 2


@pytest.mark.asyncio
async def test_higher_threshold_hides_leak():
    response = await analyze_opening_leaks(
        "alice", evaluator(), AnalyzeOptions(cp_loss_threshold=150), games=GAMES
    )
    assert response.leaks == []
    assert response.repeated_positions == 2


@pytest.mark.asyncio
async def test_diagnostics_can_be_disabled():
    response = await analyze_opening_leaks(
        "alice", evaluator(), AnalyzeOptions(include_diagnostics=False), games=GAMES
    )
    assert response.diagnostics is None
    assert "diagnostics" not in response_to_dict(response)


@pytest.mark.asyncio
async def test_diagnostics_contents():
    response = await analyze_opening_leaks("alice", evaluator(), games=GAMES)
    diagnostics = response_to_dict(response)["diagnostics"]

    assert len(diagnostics["gameTraces"]) == 5
    assert diagnostics["gameTraces"][0]["openingMoves"] == ["e4", "e5", "Nf3", "Nc6"]
    flagged = [t for t in diagnostics["positionTraces"] if t["flagged"]]
    assert len(flagged) == 1
    assert "skippedReason" not in flagged[0]


@pytest.mark.asyncio
async def test_same_input_same_report():
    first = await analyze_opening_leaks("alice", evaluator(), games=GAMES)
    second = await analyze_opening_leaks("alice", evaluator(), games=GAMES)
    assert json.dumps(response_to_dict(first)) == json.dumps(response_to_dict(second))


@pytest.mark.asyncio
async def test_time_management_score_needs_clocks():
    response = await analyze_opening_leaks("alice", evaluator(), games=GAMES)
    assert response.time_management_score is None

    clocks = tuple(range(60000, 59000, -100))
    timed = [Game(moves=("e4", "e5", "Nf3", "Nc6"), white_name="alice", black_name="bob", clocks=clocks)] * 3
    response = await analyze_opening_leaks("alice", evaluator(), games=timed)
    assert response_to_dict(response)["timeManagementScore"] is not None
