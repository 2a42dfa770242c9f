"""
Position Evaluator Bridge

The leak classifier only needs `await evaluate(fen, depth)` returning an
EvaluationResult scored for the side to move, or None when no evaluation is
available. Two implementations live here:

  StockfishEvaluator - a local UCI engine driven through python-chess
  CloudEvaluator     - the Lichess cloud-eval API, rate limited and cached
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Protocol

import chess
import chess.engine
import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import BACKOFF_BASE, MATE_CP, STOCKFISH_PATH, USER_AGENT
from game_fetcher import is_transient_status, retry_after_seconds
from models import EvaluationResult
from move_utils import side_to_move
from rate_limiter import RequestQueue, TTLCache

logger = logging.getLogger(__name__)

CLOUD_EVAL_API = "https://lichess.org/api/cloud-eval"
ENGINE_TIMEOUT = 20.0


class PositionEvaluator(Protocol):
    async def evaluate(self, fen: str, depth: int) -> EvaluationResult | None: ...


def score_to_cp(score: chess.engine.Score) -> int:
    """Centipawns for a side-relative score; mate in n becomes +-(MATE_CP - n)."""
    return score.score(mate_score=MATE_CP)


class StockfishEvaluator:
    """Serialises searches on one engine process and caches results per FEN and depth."""

    def __init__(self, path: str = STOCKFISH_PATH, timeout: float = ENGINE_TIMEOUT):
        self.path = path
        self.timeout = timeout
        self._engine: chess.engine.UciProtocol | None = None
        self._lock = asyncio.Lock()
        self._cache: dict[str, EvaluationResult | None] = {}

    async def __aenter__(self) -> "StockfishEvaluator":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def start(self) -> None:
        if self._engine is None:
            _, self._engine = await chess.engine.popen_uci(self.path)

    async def close(self) -> None:
        if self._engine is not None:
            try:
                await self._engine.quit()
            except chess.engine.EngineTerminatedError:
                pass
            self._engine = None

    def _cached(self, fen: str, depth: int) -> tuple[bool, EvaluationResult | None]:
        key = f"{fen}|d{depth}"
        if key in self._cache:
            return True, self._cache[key]
        # A deeper search of the same position is at least as good
        for cached_key, value in self._cache.items():
            cached_fen, _, cached_depth = cached_key.rpartition("|d")
            if cached_fen == fen and int(cached_depth) > depth and value is not None:
                self._cache[key] = value
                return True, value
        return False, None

    async def evaluate(self, fen: str, depth: int) -> EvaluationResult | None:
        hit, value = self._cached(fen, depth)
        if hit:
            return value
        async with self._lock:
            hit, value = self._cached(fen, depth)
            if hit:
                return value
            result = await self._analyse(fen, depth)
            self._cache[f"{fen}|d{depth}"] = result
            return result

    async def _analyse(self, fen: str, depth: int) -> EvaluationResult | None:
        await self.start()
        board = chess.Board(fen)
        try:
            info = await asyncio.wait_for(
                self._engine.analyse(board, chess.engine.Limit(depth=depth)), self.timeout
            )
        except (chess.engine.EngineError, chess.engine.EngineTerminatedError, asyncio.TimeoutError) as e:
            logger.warning("Engine failed on %s at depth %d: %s", fen, depth, e)
            return None

        score = info.get("score")
        if score is None:
            return None
        pv = info.get("pv") or []
        return EvaluationResult(
            cp=score_to_cp(score.relative),
            best_move=pv[0].uci() if pv else None,
        )


def cloud_pv_to_result(pv: dict, fen: str) -> EvaluationResult | None:
    """Cloud evals are from White's point of view; flip them for Black to move."""
    mate = pv.get("mate")
    if isinstance(mate, int):
        sign = 1 if mate > 0 else -1
        cp = sign * (MATE_CP - min(abs(mate), 1000))
    elif isinstance(pv.get("cp"), int):
        cp = pv["cp"]
    else:
        return None
    if side_to_move(fen) == "black":
        cp = -cp
    moves = (pv.get("moves") or "").split()
    return EvaluationResult(cp=cp, best_move=moves[0] if moves else None)


class CloudEvaluator:
    """Lichess cloud-eval lookups. The requested depth is ignored; the cloud returns what it has."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        queue: RequestQueue | None = None,
        cache: TTLCache | None = None,
        retries: int = 3,
    ):
        self.client = client
        self.queue = queue or RequestQueue(concurrency=1, min_interval=0.35)
        self.cache = cache or TTLCache(ttl=300.0)
        self.retries = retries

    async def evaluate(self, fen: str, depth: int) -> EvaluationResult | None:
        if fen in self.cache:
            return self.cache.get(fen)
        async with self.queue.slot():
            result = await self._fetch(fen)
        self.cache.set(fen, result)
        return result

    async def _fetch(self, fen: str) -> EvaluationResult | None:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        for attempt in range(self.retries + 1):
            backoff = BACKOFF_BASE * 2**attempt
            try:
                response = await self.client.get(
                    CLOUD_EVAL_API, params={"fen": fen, "multiPv": 1}, headers=headers, timeout=12.0
                )
            except httpx.TransportError as e:
                logger.warning("Cloud eval request failed for %s: %s", fen, e)
                if attempt < self.retries:
                    await asyncio.sleep(backoff)
                    continue
                return None

            if response.status_code == 404:
                return None
            if is_transient_status(response.status_code) and attempt < self.retries:
                await asyncio.sleep(retry_after_seconds(response) or backoff)
                continue
            if not response.is_success:
                return None

            try:
                pvs = response.json().get("pvs") or []
            except ValueError:
                return None
            return cloud_pv_to_result(pvs[0], fen) if pvs else None
        return None
