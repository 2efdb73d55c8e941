"""SQLite helpers for the lookup automation.

This module owns the job queue table (``circle_codes``) and the append-only
results table (``lookup_results``): connection helper, schema initialisation,
job claiming and status transitions, and bulk result inserts.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from . import config
from .error_codes import InvalidStatusTransition
from .models import Job, JobStatus, is_allowed_transition
from .utils import utc_now_iso

DB_PATH: Path = config.DB_PATH

RESULT_COLUMNS: tuple[str, ...] = (
    "service_no",
    "unique_service_no",
    "customer_name",
    "address",
    "ero",
    "mobile",
    "bill_amount",
    "fetch_status",
    "search_info",
    "status",
)


def get_connection() -> sqlite3.Connection:
    """Return a SQLite connection to the project database.

    The parent directory is created if missing and ``check_same_thread`` is
    disabled so the Flask threads and the cycle thread can share the file.
    Callers must manage concurrency at a higher layer.
    """

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH, check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def initialize_schema() -> None:
    """Create the queue and results tables if they do not yet exist."""

    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS circle_codes (
            id                     INTEGER PRIMARY KEY AUTOINCREMENT,
            circle_code            TEXT NOT NULL,
            digits_in_service_code INTEGER NOT NULL,
            status                 TEXT NOT NULL DEFAULT 'PENDING'
                CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')),
            created_at             TEXT NOT NULL,
            updated_at             TEXT NOT NULL,
            started_at             TEXT,
            completed_at           TEXT,
            total_services         INTEGER,
            successful_services    INTEGER,
            failed_services        INTEGER,
            remarks                TEXT
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_circle_codes_status
            ON circle_codes(status);
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_circle_codes_circle_code
            ON circle_codes(circle_code);
        """,
        """
        CREATE TABLE IF NOT EXISTS lookup_results (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            service_no        TEXT,
            unique_service_no TEXT,
            customer_name     TEXT,
            address           TEXT,
            ero               TEXT,
            mobile            TEXT,
            bill_amount       TEXT,
            fetch_status      TEXT,
            search_info       TEXT,
            created_at        TEXT NOT NULL,
            remarks           TEXT,
            status            TEXT DEFAULT 'PENDING'
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_lookup_results_service_no
            ON lookup_results(service_no);
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_lookup_results_fetch_status
            ON lookup_results(fetch_status);
        """,
    )

    conn = get_connection()
    with conn:
        for statement in statements:
            conn.execute(statement)


def add_job(circle_code: str, digits_in_service_code: int) -> int:
    """Insert a PENDING circle code job and return its identifier."""

    now = utc_now_iso()
    conn = get_connection()
    with conn:
        cursor = conn.execute(
            """
            INSERT INTO circle_codes (
                circle_code, digits_in_service_code, status, created_at, updated_at
            ) VALUES (?, ?, 'PENDING', ?, ?)
            """,
            (circle_code.strip(), int(digits_in_service_code), now, now),
        )
    return int(cursor.lastrowid)


def get_job_row(job_id: int) -> Optional[sqlite3.Row]:
    conn = get_connection()
    cursor = conn.execute("SELECT * FROM circle_codes WHERE id = ?", (job_id,))
    return cursor.fetchone()


def get_job(job_id: int) -> Optional[Job]:
    row = get_job_row(job_id)
    return Job.from_row(row) if row else None


def select_jobs_by_status(status: JobStatus | str) -> list[Job]:
    """Return jobs with ``status`` ordered oldest first."""

    conn = get_connection()
    cursor = conn.execute(
        "SELECT * FROM circle_codes WHERE status = ? ORDER BY id ASC",
        (JobStatus(status).value,),
    )
    return [Job.from_row(row) for row in cursor.fetchall()]


def claim_next_pending_job() -> Optional[Job]:
    """Move the oldest PENDING job to PROCESSING and return it.

    The update is conditional on the row still being PENDING so a job that
    was changed externally between the select and the update is skipped.
    """

    conn = get_connection()
    while True:
        with conn:
            row = conn.execute(
                "SELECT * FROM circle_codes WHERE status = 'PENDING' ORDER BY id ASC LIMIT 1"
            ).fetchone()
            if row is None:
                return None
            now = utc_now_iso()
            cursor = conn.execute(
                """
                UPDATE circle_codes
                SET status = 'PROCESSING', started_at = ?, updated_at = ?
                WHERE id = ? AND status = 'PENDING'
                """,
                (now, now, int(row["id"])),
            )
        if cursor.rowcount == 1:
            job = Job.from_row(row)
            job.status = JobStatus.PROCESSING
            return job


def update_job_status(
    job_id: int,
    status: JobStatus | str,
    *,
    remarks: Optional[str] = None,
    total_services: Optional[int] = None,
    successful_services: Optional[int] = None,
    failed_services: Optional[int] = None,
) -> None:
    """Apply a lifecycle transition to a job row.

    Raises ``InvalidStatusTransition`` when the move is not part of
    PENDING -> PROCESSING -> {COMPLETED, FAILED}.
    """

    target = JobStatus(status)
    row = get_job_row(job_id)
    current = row["status"] if row is not None else None
    if not is_allowed_transition(current, target):
        raise InvalidStatusTransition(job_id, current, target.value)

    now = utc_now_iso()
    terminal = target in (JobStatus.COMPLETED, JobStatus.FAILED)
    conn = get_connection()
    with conn:
        cursor = conn.execute(
            """
            UPDATE circle_codes
            SET status = ?,
                updated_at = ?,
                started_at = COALESCE(started_at, ?),
                completed_at = CASE WHEN ? THEN ? ELSE completed_at END,
                total_services = COALESCE(?, total_services),
                successful_services = COALESCE(?, successful_services),
                failed_services = COALESCE(?, failed_services),
                remarks = COALESCE(?, remarks)
            WHERE id = ? AND status = ?
            """,
            (
                target.value,
                now,
                now,
                1 if terminal else 0,
                now,
                total_services,
                successful_services,
                failed_services,
                remarks,
                job_id,
                current,
            ),
        )
    if cursor.rowcount != 1:
        latest = get_job_row(job_id)
        raise InvalidStatusTransition(
            job_id, latest["status"] if latest is not None else None, target.value
        )


def requeue_job(job_id: int, *, force: bool = False) -> Job:
    """Queue a fresh PENDING job for the range of a FAILED job.

    The original row keeps its terminal status; the new row shares its circle
    code and digit width, so it picks up any checkpoint left for that range.
    With ``force`` a job stuck in PROCESSING (for example after a crash) is
    first moved to FAILED.
    """

    job = get_job(job_id)
    if job is None:
        raise ValueError(f"Job {job_id} does not exist")
    if job.status == JobStatus.PROCESSING and force:
        update_job_status(job_id, JobStatus.FAILED, remarks="requeued: stale PROCESSING")
    elif job.status != JobStatus.FAILED:
        raise ValueError(f"Job {job_id} is {job.status.value}; only FAILED jobs can be requeued")

    new_id = add_job(job.circle_code, job.digit_width)
    return Job(id=new_id, circle_code=job.circle_code, digit_width=job.digit_width)


def bulk_insert_results(rows: Sequence[Mapping[str, Any]]) -> int:
    """Insert result rows in a single transaction and return the count."""

    if not rows:
        return 0

    now = utc_now_iso()
    placeholders = ", ".join("?" for _ in RESULT_COLUMNS)
    sql = (
        f"INSERT INTO lookup_results ({', '.join(RESULT_COLUMNS)}, created_at) "
        f"VALUES ({placeholders}, ?)"
    )
    params = [tuple(row.get(col) for col in RESULT_COLUMNS) + (now,) for row in rows]

    conn = get_connection()
    with conn:
        conn.executemany(sql, params)
    return len(params)


def count_results(fetch_status: Optional[str] = None) -> int:
    conn = get_connection()
    if fetch_status is None:
        row = conn.execute("SELECT COUNT(*) AS n FROM lookup_results").fetchone()
    else:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM lookup_results WHERE fetch_status = ?",
            (fetch_status,),
        ).fetchone()
    return int(row["n"]) if row else 0


def fetch_results(limit: Optional[int] = None) -> list[dict[str, Any]]:
    """Return result rows newest first as plain dictionaries."""

    conn = get_connection()
    sql = "SELECT * FROM lookup_results ORDER BY id DESC"
    params: tuple[Any, ...] = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (int(limit),)
    return [dict(row) for row in conn.execute(sql, params).fetchall()]


__all__ = [
    "DB_PATH",
    "RESULT_COLUMNS",
    "get_connection",
    "initialize_schema",
    "add_job",
    "get_job",
    "get_job_row",
    "select_jobs_by_status",
    "claim_next_pending_job",
    "update_job_status",
    "requeue_job",
    "bulk_insert_results",
    "count_results",
    "fetch_results",
]
