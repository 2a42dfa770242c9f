"""Celery application for running opening leak analyses in the background."""

import os
from celery import Celery

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

app = Celery("leakscan", broker=REDIS_URL, backend=REDIS_URL)
app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


async def run_and_store(username: str, options):
    """One run: its own engine process, its own aggregation state."""
    from analyze import analyze_opening_leaks
    from config import STOCKFISH_PATH
    from db import ensure_schema, get_connection, save_report
    from evaluator import StockfishEvaluator

    async with StockfishEvaluator(STOCKFISH_PATH) as evaluator:
        response = await analyze_opening_leaks(username, evaluator.evaluate, options)
    with get_connection() as conn:
        ensure_schema(conn)
        report_id, saved = save_report(conn, response, options)
    return {"id": str(report_id), "saved": saved, "leaks": len(response.leaks)}


@app.task(bind=True, max_retries=3)
def analyze_user_task(self, username: str, options_dict: dict | None = None):
    """Celery task: analyze one user and store the report."""
    import asyncio
    from config import AnalyzeOptions
    from game_fetcher import FetchError

    options = AnalyzeOptions.from_dict(options_dict or {})
    try:
        return asyncio.run(run_and_store(username, options))
    except FetchError as exc:
        if exc.status == 404:
            raise
        raise self.retry(exc=exc, countdown=5)
