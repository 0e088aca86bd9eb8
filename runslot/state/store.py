"""
Run history for the runslot daemon.

This module persists every run the scheduler admits, together with its
cancellation or terminal outcome, in SQLite. The in-memory active run table
stays the source of truth for admission; this store only records history
for inspection and statistics.

The database schema includes:
- runs: one row per admitted run, updated on every transition

All operations go through a short-lived connection with WAL mode enabled,
so the daemon's worker threads and the CLI can read concurrently.
"""

import time
import sqlite3
from pathlib import Path
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from runslot.utils.logging import get_logger

log = get_logger("state")

STATE_DIR = Path.home() / ".runslot"
DB_FILE = STATE_DIR / "state.db"

@contextmanager
def _get_conn() -> Iterator[sqlite3.Connection]:
    """
    Get a database connection with proper settings.

    Commits on success, rolls back on exceptions and always closes the
    connection when exiting the context.

    :return: SQLite connection with dictionary-style row access.
    """
    DB_FILE.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_FILE, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

def init_db() -> None:
    """
    Initialize database schema. Idempotent.
    """
    with _get_conn() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,      -- run_id
                key TEXT NOT NULL,        -- concurrency key
                pipeline TEXT NOT NULL,   -- 'build-test' or 'style-check'
                event_type TEXT NOT NULL,
                branch TEXT NOT NULL,
                commit_hash TEXT NOT NULL,
                state TEXT NOT NULL,      -- 'running', 'cancelled', 'completed'
                outcome TEXT,             -- 'success' or 'failure' once completed
                submitted_at REAL NOT NULL,
                finished_at REAL,
                updated_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_runs_key ON runs(key);
            CREATE INDEX IF NOT EXISTS idx_runs_branch ON runs(branch);
            CREATE INDEX IF NOT EXISTS idx_runs_state ON runs(state);
        """)
    log.debug("Database initialized")


def record_run(run: Dict) -> str:
    """
    Insert or update a run.

    Cancelled and completed are final: a write carrying an older state for a
    run that already finished is ignored, whatever order observers run in.

    :param run: Run dictionary as produced by Run.to_dict().
    :return: The run ID that was recorded.
    """
    with _get_conn() as conn:
        conn.execute("""
            INSERT INTO runs
            (id, key, pipeline, event_type, branch, commit_hash, state, outcome,
             submitted_at, finished_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                state = excluded.state,
                outcome = excluded.outcome,
                finished_at = excluded.finished_at,
                updated_at = excluded.updated_at
            WHERE runs.state = 'running'
        """, (
            run["run_id"], run["key"], run["pipeline"], run["event_type"],
            run["branch"], run["commit_hash"], run["state"], run.get("outcome"),
            run["submitted_at"], run.get("finished_at"), time.time(),
        ))
    return run["run_id"]


def get_run(run_id: str) -> Optional[Dict]:
    """
    Get a run by ID.

    :param run_id: Unique identifier of the run.
    :return: Dictionary with run data, or None if not found.
    """
    with _get_conn() as conn:
        row = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
        return dict(row) if row else None


def list_runs(branch: str = None,
              pipeline: str = None,
              state: str = None,
              limit: int = 100,
              ) -> List[Dict]:
    """
    List runs with optional filters, most recent first.

    :param branch: Only runs triggered on this branch.
    :param pipeline: Only runs of this pipeline kind.
    :param state: Only runs in this state.
    :param limit: Maximum number of runs to return.
    :return: List of run dictionaries.
    """
    query = "SELECT * FROM runs WHERE 1=1"
    params = []

    if branch:
        query += " AND branch = ?"
        params.append(branch)
    if pipeline:
        query += " AND pipeline = ?"
        params.append(pipeline)
    if state:
        query += " AND state = ?"
        params.append(state)

    query += " ORDER BY submitted_at DESC LIMIT ?"
    params.append(limit)

    with _get_conn() as conn:
        rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]


def get_run_stats(pipeline: str = None) -> Dict:
    """
    Aggregate counts over finished runs.

    :param pipeline: Optional pipeline kind filter.
    :return: Totals per terminal state and the success rate of completed runs.
    """
    query = """
        SELECT
            COUNT(*) AS total_runs,
            SUM(CASE WHEN state = 'cancelled' THEN 1 ELSE 0 END) AS cancelled_runs,
            SUM(CASE WHEN outcome = 'success' THEN 1 ELSE 0 END) AS successful_runs,
            SUM(CASE WHEN outcome = 'failure' THEN 1 ELSE 0 END) AS failed_runs,
            AVG(finished_at - submitted_at) AS avg_duration
        FROM runs
        WHERE state != 'running'
    """
    params = []

    if pipeline:
        query += " AND pipeline = ?"
        params.append(pipeline)

    with _get_conn() as conn:
        row = conn.execute(query, params).fetchone()
        successful = row["successful_runs"] or 0
        failed = row["failed_runs"] or 0
        return {
            "total_runs": row["total_runs"] or 0,
            "cancelled_runs": row["cancelled_runs"] or 0,
            "successful_runs": successful,
            "failed_runs": failed,
            "success_rate": successful / (successful + failed) if (successful + failed) else 0,
            "avg_duration": row["avg_duration"],
        }


def mark_interrupted() -> int:
    """
    Mark runs left 'running' by a previous daemon session as cancelled.

    :return: Number of runs updated.
    """
    now = time.time()
    with _get_conn() as conn:
        cursor = conn.execute(
            "UPDATE runs SET state = 'cancelled', finished_at = ?, updated_at = ? WHERE state = 'running'",
            (now, now),
        )
        return cursor.rowcount


def clear_runs() -> int:
    """
    Remove finished runs from the history. Runs still active are kept.

    :return: Number of runs removed.
    """
    with _get_conn() as conn:
        cursor = conn.execute("DELETE FROM runs WHERE state != 'running'")
        return cursor.rowcount
