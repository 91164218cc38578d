from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime

from wosync.db.session import from_db_timestamp, get_connection, to_db_timestamp, utc_now
from wosync.models.sync_job import JobStatus, JobType, SyncJob

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100

_JOB_COLUMNS = """
    j.id, j.workspace_id, j.job_type, j.entity_id, j.status, j.attempts, j.next_retry_at,
    j.error_code, j.error_message, j.completed_at, j.created_at, j.updated_at
"""


class JobStoreError(Exception):
    pass


class SyncJobNotFoundError(JobStoreError):
    pass


class JobNotRetryableError(JobStoreError):
    pass


@dataclass
class SyncJobPage:
    items: list[SyncJob]
    next_cursor: int | None
    has_more: bool


def _row_to_job(row: sqlite3.Row) -> SyncJob:
    keys = row.keys()
    return SyncJob(
        id=row["id"],
        workspace_id=row["workspace_id"],
        job_type=JobType(row["job_type"]),
        entity_id=row["entity_id"],
        status=JobStatus(row["status"]),
        attempts=int(row["attempts"] or 0),
        next_retry_at=from_db_timestamp(row["next_retry_at"]),
        error_code=row["error_code"],
        error_message=row["error_message"],
        completed_at=from_db_timestamp(row["completed_at"]),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
        work_order_number=row["work_order_number"] if "work_order_number" in keys else None,
    )


def insert_pending(workspace_id: str, job_type: JobType, entity_id: str) -> SyncJob:
    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        cursor = connection.execute(
            """
            INSERT INTO sync_jobs (workspace_id, job_type, entity_id, status, attempts, created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, ?, ?)
            """,
            (workspace_id, JobType(job_type).value, entity_id, JobStatus.PENDING.value, timestamp, timestamp),
        )
        connection.commit()
        job_id = cursor.lastrowid

    logger.info("Enqueued %s sync job %s for entity %s", JobType(job_type).value, job_id, entity_id)
    job = get_sync_job(job_id)
    if job is None:
        raise SyncJobNotFoundError(f"Sync job {job_id} not found")
    return job


# Canonical writes call this; it is the only way sync job rows are created.
enqueue = insert_pending


def select_eligible(workspace_id: str, limit: int, now: datetime | None = None) -> list[SyncJob]:
    """PENDING jobs whose retry time has passed, oldest first, never more than limit."""
    if limit <= 0:
        return []
    now_ts = to_db_timestamp(now or utc_now())
    with get_connection() as connection:
        rows = connection.execute(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM sync_jobs j
            WHERE j.workspace_id = ?
              AND j.status = ?
              AND (j.next_retry_at IS NULL OR j.next_retry_at <= ?)
            ORDER BY j.created_at ASC, j.id ASC
            LIMIT ?
            """,
            (workspace_id, JobStatus.PENDING.value, now_ts, limit),
        ).fetchall()
    return [_row_to_job(row) for row in rows]


def claim(job_id: int) -> bool:
    """
    Atomically move a job from PENDING to PROCESSING.

    Returns False when another worker got there first; the affected-row count
    is the lock, there is no separate lock table.
    """
    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        cursor = connection.execute(
            """
            UPDATE sync_jobs
            SET status = ?, updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (JobStatus.PROCESSING.value, timestamp, job_id, JobStatus.PENDING.value),
        )
        connection.commit()
        return cursor.rowcount == 1


def mark_done(job_id: int) -> None:
    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        connection.execute(
            """
            UPDATE sync_jobs
            SET status = ?, completed_at = ?, next_retry_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (JobStatus.DONE.value, timestamp, timestamp, job_id),
        )
        connection.commit()


def mark_retry(
    job_id: int,
    next_retry_at: datetime,
    error_code: str,
    error_message: str,
    attempts: int,
) -> None:
    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        connection.execute(
            """
            UPDATE sync_jobs
            SET status = ?, next_retry_at = ?, error_code = ?, error_message = ?, attempts = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                JobStatus.PENDING.value,
                to_db_timestamp(next_retry_at),
                error_code,
                error_message,
                attempts,
                timestamp,
                job_id,
            ),
        )
        connection.commit()


def mark_failed(job_id: int, error_code: str, error_message: str, attempts: int) -> None:
    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        connection.execute(
            """
            UPDATE sync_jobs
            SET status = ?, error_code = ?, error_message = ?, attempts = ?, next_retry_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (JobStatus.FAILED.value, error_code, error_message, attempts, timestamp, job_id),
        )
        connection.commit()


def count_pending(workspace_id: str) -> int:
    with get_connection() as connection:
        row = connection.execute(
            "SELECT COUNT(*) AS n FROM sync_jobs WHERE workspace_id = ? AND status = ?",
            (workspace_id, JobStatus.PENDING.value),
        ).fetchone()
    return int(row["n"])


def get_sync_job(job_id: int, workspace_id: str | None = None) -> SyncJob | None:
    query = f"SELECT {_JOB_COLUMNS} FROM sync_jobs j WHERE j.id = ?"
    params: list[object] = [job_id]
    if workspace_id is not None:
        query += " AND j.workspace_id = ?"
        params.append(workspace_id)

    with get_connection() as connection:
        row = connection.execute(query, params).fetchone()

    if not row:
        return None
    return _row_to_job(row)


def list_sync_jobs(
    workspace_id: str,
    status: JobStatus | None = None,
    cursor: int | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> SyncJobPage:
    """
    Newest-first page of jobs for the operator view.

    Work-order jobs are decorated with the work order number from the
    canonical store; the join is read-time only.
    """
    limit = max(1, min(int(limit or DEFAULT_LIST_LIMIT), MAX_LIST_LIMIT))

    conditions = ["j.workspace_id = ?"]
    params: list[object] = [workspace_id]
    if status is not None:
        conditions.append("j.status = ?")
        params.append(JobStatus(status).value)
    if cursor is not None:
        conditions.append("j.id < ?")
        params.append(cursor)
    params.append(limit + 1)

    with get_connection() as connection:
        rows = connection.execute(
            f"""
            SELECT {_JOB_COLUMNS},
                CASE WHEN j.job_type IN ('WORK_ORDER', 'SIGNED_MATCH') THEN w.work_order_number END
                    AS work_order_number
            FROM sync_jobs j
            LEFT JOIN work_orders w
              ON w.id = j.entity_id AND w.workspace_id = j.workspace_id
            WHERE {" AND ".join(conditions)}
            ORDER BY j.id DESC
            LIMIT ?
            """,
            params,
        ).fetchall()

    has_more = len(rows) > limit
    items = [_row_to_job(row) for row in rows[:limit]]
    next_cursor = items[-1].id if (has_more and items) else None
    return SyncJobPage(items=items, next_cursor=next_cursor, has_more=has_more)


def list_jobs_for_entity(workspace_id: str, entity_id: str) -> list[SyncJob]:
    with get_connection() as connection:
        rows = connection.execute(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM sync_jobs j
            WHERE j.workspace_id = ? AND j.entity_id = ?
            ORDER BY j.id DESC
            """,
            (workspace_id, entity_id),
        ).fetchall()
    return [_row_to_job(row) for row in rows]


def retry_sync_job(workspace_id: str, job_id: int) -> SyncJob:
    """
    Operator retry: FAILED or PENDING jobs become eligible immediately.

    attempts is kept so the max-attempts guard still applies afterwards.
    """
    job = get_sync_job(job_id, workspace_id=workspace_id)
    if job is None:
        raise SyncJobNotFoundError(f"Sync job {job_id} not found")
    if job.status not in {JobStatus.FAILED, JobStatus.PENDING}:
        raise JobNotRetryableError(f"Sync job {job_id} is {job.status.value} and cannot be retried")

    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        cursor = connection.execute(
            """
            UPDATE sync_jobs
            SET status = ?, next_retry_at = NULL, error_code = NULL, error_message = NULL, updated_at = ?
            WHERE id = ? AND workspace_id = ? AND status IN (?, ?)
            """,
            (
                JobStatus.PENDING.value,
                timestamp,
                job_id,
                workspace_id,
                JobStatus.FAILED.value,
                JobStatus.PENDING.value,
            ),
        )
        connection.commit()
        if cursor.rowcount != 1:
            raise JobNotRetryableError(f"Sync job {job_id} changed state while retrying")

    logger.info("Sync job %s manually re-queued (attempts=%s)", job_id, job.attempts)
    refreshed = get_sync_job(job_id, workspace_id=workspace_id)
    if refreshed is None:
        raise SyncJobNotFoundError(f"Sync job {job_id} not found")
    return refreshed
