"""
FastAPI service for the Opening Leak Scanner

Endpoints:
  GET    /analyze?username=...        - Run an analysis and return the leak report
  POST   /reports                     - Run an analysis and store it (deduplicated)
  GET    /reports/{username}          - Stored reports for a chess username
  GET    /report/{report_id}          - One stored report
  DELETE /report/{report_id}          - Delete a stored report
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Literal
from uuid import UUID

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import httpx
import psycopg
from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from analyze import analyze_opening_leaks
from config import FETCH_TIMEOUT, AnalyzeOptions
from db import delete_report, get_connection, get_report, get_reports, init_schema, save_report
from evaluator import CloudEvaluator
from game_fetcher import FetchError
from leak_classifier import Evaluate
from models import response_to_dict

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # /analyze works without a database, so a missing one only disables /reports
    try:
        init_schema()
    except psycopg.OperationalError as e:
        logger.warning("Report storage unavailable: %s", e)
    yield


app = FastAPI(title="Opening Leak Scanner API", version="1.0.0", lifespan=lifespan)


class AnalyzeRequest(BaseModel):
    username: str = Field(..., min_length=1)
    max_games: int | None = Field(None, alias="maxGames")
    max_moves: int | None = Field(None, alias="maxMoves")
    cp_threshold: int | None = Field(None, alias="cpThreshold")
    depth: int | None = None
    source: Literal["lichess", "chesscom"] = "lichess"

    def to_options(self) -> AnalyzeOptions:
        return build_options(self.max_games, self.max_moves, self.cp_threshold, self.depth, self.source)


def build_options(max_games, max_moves, cp_threshold, depth, source) -> AnalyzeOptions:
    """Unset values fall back to defaults; out-of-range values are clamped."""
    return AnalyzeOptions(
        max_games=max_games,
        max_opening_moves=max_moves,
        cp_loss_threshold=cp_threshold,
        engine_depth=depth,
        source=source,
    ).clamped()


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=FETCH_TIMEOUT) as client:
        yield client


async def get_evaluator(client: httpx.AsyncClient = Depends(get_http_client)) -> Evaluate:
    """One evaluator per request so concurrent analyses never share state."""
    return CloudEvaluator(client).evaluate


async def run_analysis(username: str, options: AnalyzeOptions, evaluate: Evaluate, client: httpx.AsyncClient):
    username = username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="Missing username")
    try:
        return await analyze_opening_leaks(username, evaluate, options, client)
    except FetchError as e:
        raise HTTPException(status_code=e.status or 502, detail=str(e))


@app.get("/analyze")
async def analyze_endpoint(
    username: str = Query(""),
    max_games: int | None = Query(None, alias="maxGames"),
    max_moves: int | None = Query(None, alias="maxMoves"),
    cp_threshold: int | None = Query(None, alias="cpThreshold"),
    depth: int | None = Query(None),
    source: Literal["lichess", "chesscom"] = Query("lichess"),
    evaluate: Evaluate = Depends(get_evaluator),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Analyze a user's recent games for repeated opening leaks."""
    options = build_options(max_games, max_moves, cp_threshold, depth, source)
    response = await run_analysis(username, options, evaluate, client)
    return response_to_dict(response)


@app.post("/reports")
async def create_report(
    body: AnalyzeRequest,
    evaluate: Evaluate = Depends(get_evaluator),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """Analyze and store the report; identical reports are not stored twice."""
    options = body.to_options()
    response = await run_analysis(body.username, options, evaluate, client)
    with get_connection() as conn:
        report_id, saved = save_report(conn, response, options)
    return {"saved": saved, "id": str(report_id), "report": response_to_dict(response)}


@app.get("/reports/{username}")
def list_reports(username: str, limit: int = Query(20, ge=1, le=100)):
    with get_connection() as conn:
        return {"reports": get_reports(conn, username, limit)}


@app.get("/report/{report_id}")
def get_report_endpoint(report_id: UUID):
    with get_connection() as conn:
        report = get_report(conn, report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


@app.delete("/report/{report_id}")
def delete_report_endpoint(report_id: UUID):
    with get_connection() as conn:
        deleted = delete_report(conn, report_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Report not found")
    return {"deleted": True}


@app.get("/health")
def health():
    return {"status": "ok"}
