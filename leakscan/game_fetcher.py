"""
Game Fetcher

Downloads a user's recent games from Lichess (NDJSON stream) or Chess.com
(monthly archives) and turns them into Game records.

Transient failures (408, 429, 5xx, timeouts, dropped connections) are
retried up to FETCH_RETRIES times with exponential backoff, honouring the
server's Retry-After header when it sends one. Anything else, or running out
of retries, raises FetchError.
"""

import asyncio
import io
import json
import logging
import re
import sys
from pathlib import Path
from typing import Awaitable, Callable, Iterable
from urllib.parse import quote

import chess
import chess.pgn
import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import BACKOFF_BASE, FETCH_RETRIES, FETCH_TIMEOUT, LICHESS_TOKEN, USER_AGENT
from models import Game

logger = logging.getLogger(__name__)

LICHESS_GAMES_API = "https://lichess.org/api/games/user/{username}"
CHESSCOM_ARCHIVES_API = "https://api.chess.com/pub/player/{username}/games/archives"

UNFINISHED_STATUSES = {"created", "started", "aborted", "noStart", "unknownFinish"}
CLOCK_RE = re.compile(r"\[%clk\s+(\d+):(\d+):(\d+(?:\.\d+)?)\]")


class FetchError(Exception):
    """Games could not be downloaded; fatal for an analysis run."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class TransientStatusError(Exception):
    def __init__(self, status: int, retry_after: float = 0.0):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.retry_after = retry_after


def is_transient_status(status: int) -> bool:
    return status in (408, 429) or 500 <= status <= 599


def retry_after_seconds(response: httpx.Response) -> float:
    try:
        value = float(response.headers.get("retry-after", "0"))
    except ValueError:
        return 0.0
    return value if value > 0 else 0.0


def check_status(response: httpx.Response, what: str) -> None:
    """Raise for a non-2xx response: transient ones are retryable, the rest are not."""
    if response.is_success:
        return
    status = response.status_code
    if status == 404:
        raise FetchError(f"{what}: user not found", status=404)
    if is_transient_status(status):
        raise TransientStatusError(status, retry_after_seconds(response))
    raise FetchError(f"{what} request failed ({status})", status=status)


async def with_retry(attempt: Callable[[], Awaitable], what: str, retries: int = FETCH_RETRIES):
    """Run attempt() until it succeeds, retrying transient failures with backoff."""
    last_cause = "unknown error"
    last_status = None
    for n in range(retries + 1):
        try:
            return await attempt()
        except TransientStatusError as e:
            last_cause, last_status = str(e), e.status
            delay = e.retry_after or BACKOFF_BASE * 2**n
        except httpx.TransportError as e:
            last_cause, last_status = f"{type(e).__name__}: {e}", None
            delay = BACKOFF_BASE * 2**n
        if n < retries:
            logger.warning("%s attempt %d failed (%s), retrying in %.1fs", what, n + 1, last_cause, delay)
            await asyncio.sleep(delay)
    raise FetchError(
        f"{what} failed after {retries + 1} attempts. Last error: {last_cause}",
        status=last_status,
    )


def parse_games_payload(payload: str) -> list[dict]:
    """Parse NDJSON text into raw game dicts; malformed lines are dropped."""
    games = []
    for line in payload.splitlines():
        raw = parse_game_line(line)
        if raw is not None:
            games.append(raw)
    return games


def parse_game_line(line: str) -> dict | None:
    line = line.strip()
    if not line:
        return None
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Dropping malformed game line: %.80s", line)
        return None
    return raw if isinstance(raw, dict) else None


def game_from_lichess(raw: dict) -> Game | None:
    """Convert one Lichess NDJSON record; records without moves are dropped."""
    moves = raw.get("moves")
    if not isinstance(moves, str) or not moves.strip():
        return None
    players = raw.get("players") or {}
    white = players.get("white") or {}
    black = players.get("black") or {}

    winner = raw.get("winner")
    if winner == "white":
        result = "1-0"
    elif winner == "black":
        result = "0-1"
    elif raw.get("status") and raw.get("status") not in UNFINISHED_STATUSES:
        result = "1/2-1/2"
    else:
        result = None

    clocks = raw.get("clocks") or []
    return Game(
        moves=tuple(moves.split()),
        white_name=(white.get("user") or {}).get("name"),
        black_name=(black.get("user") or {}).get("name"),
        white_rating=white.get("rating"),
        black_rating=black.get("rating"),
        result=result,
        game_id=raw.get("id"),
        clocks=tuple(c for c in clocks if isinstance(c, int)),
    )


def parse_pgn_clocks(pgn: str) -> tuple[int, ...]:
    """%clk annotations as centiseconds, matching the Lichess clock format."""
    return tuple(
        round((int(h) * 3600 + int(m) * 60 + float(s)) * 100)
        for h, m, s in CLOCK_RE.findall(pgn)
    )


def game_from_chesscom(raw: dict) -> Game | None:
    """Convert one Chess.com archive record by replaying its PGN."""
    pgn = raw.get("pgn")
    if not pgn:
        return None
    pgn_game = chess.pgn.read_game(io.StringIO(pgn))
    if pgn_game is None:
        return None
    board = pgn_game.board()
    sans = []
    for move in pgn_game.mainline_moves():
        sans.append(board.san(move))
        board.push(move)
    if not sans:
        return None

    result = pgn_game.headers.get("Result")
    white = raw.get("white") or {}
    black = raw.get("black") or {}
    return Game(
        moves=tuple(sans),
        white_name=white.get("username"),
        black_name=black.get("username"),
        white_rating=white.get("rating"),
        black_rating=black.get("rating"),
        result=result if result in ("1-0", "0-1", "1/2-1/2") else None,
        game_id=raw.get("url"),
        clocks=parse_pgn_clocks(pgn),
    )


def load_games_file(path: Path) -> list[Game]:
    """Read a saved Lichess NDJSON export."""
    text = Path(path).read_text(encoding="utf-8")
    games = (game_from_lichess(raw) for raw in parse_games_payload(text))
    return [g for g in games if g is not None]


def lichess_headers(token: str | None = LICHESS_TOKEN) -> dict:
    headers = {"Accept": "application/x-ndjson", "User-Agent": USER_AGENT}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def fetch_lichess_games(
    client: httpx.AsyncClient,
    username: str,
    max_games: int,
    time_controls: Iterable[str] = (),
    on_game: Callable[[int], None] | None = None,
    token: str | None = LICHESS_TOKEN,
) -> list[Game]:
    """Stream a user's most recent games from Lichess."""
    url = LICHESS_GAMES_API.format(username=quote(username))
    params = {
        "max": max_games,
        "moves": "true",
        "opening": "false",
        "clocks": "true",
        "evals": "false",
        "pgnInJson": "false",
    }
    perfs = [t for t in time_controls if t != "all"]
    if perfs:
        params["perfType"] = ",".join(perfs)

    async def attempt() -> list[Game]:
        games: list[Game] = []
        async with client.stream(
            "GET", url, params=params, headers=lichess_headers(token), timeout=FETCH_TIMEOUT
        ) as response:
            if not response.is_success:
                await response.aread()
                check_status(response, "Lichess games")
            async for line in response.aiter_lines():
                raw = parse_game_line(line)
                game = game_from_lichess(raw) if raw is not None else None
                if game is None:
                    continue
                games.append(game)
                if on_game:
                    on_game(len(games))
                if len(games) >= max_games:
                    break
        return games

    return await with_retry(attempt, "Lichess games")


async def fetch_json(client: httpx.AsyncClient, url: str, what: str) -> dict:
    """GET a JSON object; any other body is a FetchError."""

    async def attempt() -> dict:
        response = await client.get(
            url, headers={"Accept": "application/json", "User-Agent": USER_AGENT}, timeout=FETCH_TIMEOUT
        )
        check_status(response, what)
        try:
            data = response.json()
        except ValueError as e:
            raise FetchError(f"{what}: invalid JSON response ({e})", status=502) from e
        if not isinstance(data, dict):
            raise FetchError(f"{what}: expected a JSON object, got {type(data).__name__}", status=502)
        return data

    return await with_retry(attempt, what)


def json_list(data: dict, key: str) -> list:
    value = data.get(key)
    return value if isinstance(value, list) else []


def chesscom_time_classes(time_controls: Iterable[str]) -> set[str] | None:
    """Map Lichess speed names to Chess.com time classes; None means no filter."""
    wanted = [t for t in time_controls if t != "all"]
    if not wanted:
        return None
    allowed = set()
    for tc in wanted:
        if tc == "classical":
            allowed.update({"rapid", "daily"})
        else:
            allowed.add(tc)
    return allowed


def involves_user(game: Game, username: str) -> bool:
    target = username.strip().lower()
    names = (game.white_name, game.black_name)
    return any(name and name.strip().lower() == target for name in names)


async def fetch_chesscom_games(
    client: httpx.AsyncClient,
    username: str,
    max_games: int,
    time_controls: Iterable[str] = (),
    on_game: Callable[[int], None] | None = None,
) -> list[Game]:
    """Walk Chess.com monthly archives newest first until max_games are collected."""
    archives_url = CHESSCOM_ARCHIVES_API.format(username=quote(username.strip().lower()))
    archive_list = await fetch_json(client, archives_url, "Chess.com archives")
    archives = [u for u in reversed(json_list(archive_list, "archives")) if isinstance(u, str)]
    allowed = chesscom_time_classes(time_controls)

    collected: list[Game] = []
    for archive_url in archives:
        if len(collected) >= max_games:
            break
        month = await fetch_json(client, archive_url, "Chess.com archive")
        for raw in reversed(json_list(month, "games")):
            if len(collected) >= max_games:
                break
            if not isinstance(raw, dict):
                continue
            if raw.get("rules") and raw["rules"] != "chess":
                continue
            if allowed is not None and raw.get("time_class") and raw["time_class"] not in allowed:
                continue
            game = game_from_chesscom(raw)
            if game is None or not involves_user(game, username):
                continue
            collected.append(game)
            if on_game:
                on_game(len(collected))
    return collected


async def fetch_games(
    client: httpx.AsyncClient,
    username: str,
    max_games: int,
    source: str = "lichess",
    time_controls: Iterable[str] = (),
    on_game: Callable[[int], None] | None = None,
) -> list[Game]:
    if source == "chesscom":
        return await fetch_chesscom_games(client, username, max_games, time_controls, on_game)
    return await fetch_lichess_games(client, username, max_games, time_controls, on_game)
