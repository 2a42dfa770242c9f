"""Tests for api/main.py"""

import sys
import uuid
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import psycopg
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from game_fetcher import FetchError
from models import AnalyzeResponse


async def no_eval(fen, depth):
    return None


@pytest.fixture
def client():
    from api.main import app, get_evaluator
    app.dependency_overrides[get_evaluator] = lambda: no_eval
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_conn():
    conn = MagicMock()
    conn.__enter__ = MagicMock(return_value=conn)
    conn.__exit__ = MagicMock(return_value=False)
    return conn


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_analyze_requires_username(client):
    resp = client.get("/analyze", params={"username": "  "})
    assert resp.status_code == 400


def test_analyze_returns_report(client):
    analyze = AsyncMock(return_value=AnalyzeResponse(username="alice", games_analyzed=7))
    with patch("api.main.analyze_opening_leaks", analyze):
        resp = client.get("/analyze", params={"username": "alice", "maxGames": 9999, "depth": 3})

    assert resp.status_code == 200
    data = resp.json()
    assert data["gamesAnalyzed"] == 7
    assert data["leaks"] == []
    assert data["timeManagementScore"] is None
    options = analyze.await_args.args[2]
    assert options.max_games == 500
    assert options.engine_depth == 6


def test_analyze_unknown_user(client):
    analyze = AsyncMock(side_effect=FetchError("Lichess games: user not found", status=404))
    with patch("api.main.analyze_opening_leaks", analyze):
        resp = client.get("/analyze", params={"username": "ghost"})
    assert resp.status_code == 404


def test_analyze_upstream_failure(client):
    analyze = AsyncMock(side_effect=FetchError("Lichess games failed after 4 attempts", status=None))
    with patch("api.main.analyze_opening_leaks", analyze):
        resp = client.get("/analyze", params={"username": "alice"})
    assert resp.status_code == 502


def test_create_report_stores_result(client, mock_conn):
    report_id = uuid.uuid4()
    analyze = AsyncMock(return_value=AnalyzeResponse(username="alice", games_analyzed=3))
    with patch("api.main.analyze_opening_leaks", analyze), \
         patch("api.main.get_connection", return_value=mock_conn), \
         patch("api.main.save_report", return_value=(report_id, True)) as save:
        resp = client.post("/reports", json={"username": "alice", "maxGames": 20, "source": "chesscom"})

    assert resp.status_code == 200
    data = resp.json()
    assert data == {"saved": True, "id": str(report_id), "report": data["report"]}
    assert data["report"]["gamesAnalyzed"] == 3
    options = save.call_args.args[2]
    assert options.max_games == 20
    assert options.source == "chesscom"


def test_list_reports(client, mock_conn):
    with patch("api.main.get_connection", return_value=mock_conn), \
         patch("api.main.get_reports", return_value=[{"reportId": "x"}]) as get_reports:
        resp = client.get("/reports/alice", params={"limit": 5})
    assert resp.json() == {"reports": [{"reportId": "x"}]}
    assert get_reports.call_args.args[1:] == ("alice", 5)


def test_get_report_not_found(client, mock_conn):
    with patch("api.main.get_connection", return_value=mock_conn), \
         patch("api.main.get_report", return_value=None):
        resp = client.get(f"/report/{uuid.uuid4()}")
    assert resp.status_code == 404


def test_delete_report(client, mock_conn):
    with patch("api.main.get_connection", return_value=mock_conn), \
         patch("api.main.delete_report", return_value=True):
        resp = client.delete(f"/report/{uuid.uuid4()}")
    assert resp.json() == {"deleted": True}

    with patch("api.main.get_connection", return_value=mock_conn), \
         patch("api.main.delete_report", return_value=False):
        resp = client.delete(f"/report/{uuid.uuid4()}")
    assert resp.status_code == 404


def test_startup_creates_report_schema():
    from api.main import app
    with patch("api.main.init_schema") as init_schema:
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
    init_schema.assert_called_once()


def test_startup_without_database_still_serves():
    from api.main import app
    with patch("api.main.init_schema", side_effect=psycopg.OperationalError("connection refused")):
        with TestClient(app) as client:
            assert client.get("/health").json() == {"status": "ok"}
