"""Report storage for the opening leak scanner."""

import hashlib
import json
import os
from contextlib import contextmanager
from uuid import UUID

import psycopg
from psycopg.types.json import Jsonb

from config import AnalyzeOptions
from models import AnalyzeResponse, diagnostics_to_dict, leak_to_dict

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS reports (
    report_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    chess_username TEXT NOT NULL,
    source TEXT NOT NULL,
    games_analyzed INTEGER NOT NULL DEFAULT 0,
    max_games INTEGER,
    max_moves INTEGER,
    cp_threshold INTEGER,
    engine_depth INTEGER,
    estimated_accuracy REAL,
    estimated_rating REAL,
    weighted_cp_loss REAL,
    severe_leak_rate REAL,
    time_management_score INTEGER,
    repeated_positions INTEGER DEFAULT 0,
    leak_count INTEGER DEFAULT 0,
    leaks JSONB DEFAULT '[]'::jsonb,
    diagnostics JSONB,
    content_hash TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW()
);
ALTER TABLE reports ADD COLUMN IF NOT EXISTS time_management_score INTEGER;
CREATE INDEX IF NOT EXISTS reports_username_idx ON reports (lower(chess_username), created_at DESC);
CREATE UNIQUE INDEX IF NOT EXISTS reports_content_hash_idx ON reports (content_hash);
"""

REPORT_COLUMNS = """
    report_id, chess_username, source, games_analyzed, max_games, max_moves,
    cp_threshold, engine_depth, estimated_accuracy, estimated_rating,
    weighted_cp_loss, severe_leak_rate, repeated_positions, leak_count,
    leaks, diagnostics, created_at, time_management_score
"""


def get_connection_string() -> str:
    """Get database connection string from environment."""
    return os.environ.get(
        "DATABASE_URL",
        "postgresql://localhost:5432/opening_leaks?user=postgres&password=postgres",
    )


@contextmanager
def get_connection():
    """Context manager for database connections."""
    conn = psycopg.connect(get_connection_string())
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def ensure_schema(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)


def init_schema() -> None:
    """Create the reports table and indexes on a fresh database."""
    with get_connection() as conn:
        ensure_schema(conn)


def compute_content_hash(response: AnalyzeResponse, options: AnalyzeOptions) -> str:
    """SHA-256 over the username, config snapshot and leak payload."""
    body = {
        "username": response.username.strip().lower(),
        "options": options.to_dict(),
        "gamesAnalyzed": response.games_analyzed,
        "leaks": [leak_to_dict(leak) for leak in response.leaks],
    }
    return hashlib.sha256(json.dumps(body, sort_keys=True).encode("utf-8")).hexdigest()


def save_report(
    conn: psycopg.Connection, response: AnalyzeResponse, options: AnalyzeOptions
) -> tuple[UUID, bool]:
    """
    Insert a report unless an identical one exists.
    Returns (report_id, saved); saved is False for a duplicate.
    """
    content_hash = compute_content_hash(response, options)
    report = response.report
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO reports (
                chess_username, source, games_analyzed, max_games, max_moves, cp_threshold,
                engine_depth, estimated_accuracy, estimated_rating, weighted_cp_loss,
                severe_leak_rate, time_management_score, repeated_positions, leak_count,
                leaks, diagnostics, content_hash
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (content_hash) DO NOTHING
            RETURNING report_id
            """,
            (
                response.username,
                options.source,
                response.games_analyzed,
                options.max_games,
                options.max_opening_moves,
                options.cp_loss_threshold,
                options.engine_depth,
                report.estimated_accuracy if report else None,
                report.estimated_rating if report else None,
                report.weighted_cp_loss if report else None,
                report.severe_leak_rate if report else None,
                response.time_management_score,
                response.repeated_positions,
                len(response.leaks),
                Jsonb([leak_to_dict(leak) for leak in response.leaks]),
                Jsonb(diagnostics_to_dict(response.diagnostics)) if response.diagnostics else None,
                content_hash,
            ),
        )
        row = cur.fetchone()
        if row:
            return row[0], True

        # An identical report is already stored, possibly by a concurrent save
        cur.execute("SELECT report_id FROM reports WHERE content_hash = %s", (content_hash,))
        row = cur.fetchone()
    if not row:
        raise RuntimeError("save_report failed to return row")
    return row[0], False


def row_to_report(row) -> dict:
    return {
        "reportId": str(row[0]),
        "chessUsername": row[1],
        "source": row[2],
        "gamesAnalyzed": row[3],
        "maxGames": row[4],
        "maxMoves": row[5],
        "cpThreshold": row[6],
        "engineDepth": row[7],
        "estimatedAccuracy": row[8],
        "estimatedRating": row[9],
        "weightedCpLoss": row[10],
        "severeLeakRate": row[11],
        "repeatedPositions": row[12] or 0,
        "leakCount": row[13] or 0,
        "leaks": row[14] or [],
        "diagnostics": row[15],
        "createdAt": row[16].isoformat() if row[16] else None,
        "timeManagementScore": row[17],
    }


def get_reports(conn: psycopg.Connection, username: str, limit: int = 20) -> list[dict]:
    """Most recent reports for a chess username, newest first."""
    with conn.cursor() as cur:
        cur.execute(
            f"""
            SELECT {REPORT_COLUMNS} FROM reports
            WHERE lower(chess_username) = lower(%s)
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (username.strip(), limit),
        )
        return [row_to_report(r) for r in cur.fetchall()]


def get_report(conn: psycopg.Connection, report_id: UUID) -> dict | None:
    with conn.cursor() as cur:
        cur.execute(f"SELECT {REPORT_COLUMNS} FROM reports WHERE report_id = %s", (report_id,))
        row = cur.fetchone()
    return row_to_report(row) if row else None


def delete_report(conn: psycopg.Connection, report_id: UUID) -> bool:
    with conn.cursor() as cur:
        cur.execute("DELETE FROM reports WHERE report_id = %s", (report_id,))
        return cur.rowcount > 0
