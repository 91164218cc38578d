from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from wosync.db.session import from_db_timestamp, get_connection, to_db_timestamp, utc_now
from wosync.models.sync_job import JobType
from wosync.models.work_order import WorkOrder
from wosync.services import job_store

# Fields a caller may set on a canonical work order
EDITABLE_FIELDS = (
    "work_order_number",
    "fm_key",
    "status",
    "scheduled_date",
    "customer_name",
    "service_address",
    "job_description",
    "amount",
    "currency",
    "priority",
    "notes",
)

_COLUMNS = """
    w.id, w.workspace_id, w.work_order_number, w.fm_key, w.status, w.scheduled_date, w.customer_name,
    w.service_address, w.job_description, w.amount, w.currency, w.priority, w.notes, w.signed_pdf_url,
    w.signed_preview_image_url, w.signed_at, w.created_at, w.updated_at
"""

_LATEST_JOB = """
    (SELECT s.status FROM sync_jobs s WHERE s.entity_id = w.id ORDER BY s.id DESC LIMIT 1) AS last_job_status,
    (SELECT s.error_code FROM sync_jobs s WHERE s.entity_id = w.id ORDER BY s.id DESC LIMIT 1) AS last_job_error
"""


class WorkOrderNotFoundError(Exception):
    pass


@dataclass
class WorkOrderRow:
    work_order: WorkOrder
    export_status: str | None


@dataclass
class WorkOrderPage:
    items: list[WorkOrderRow]
    next_cursor: str | None
    has_more: bool


def _row_to_work_order(row: sqlite3.Row) -> WorkOrder:
    return WorkOrder(
        id=row["id"],
        workspace_id=row["workspace_id"],
        work_order_number=row["work_order_number"],
        fm_key=row["fm_key"],
        status=row["status"] or "OPEN",
        scheduled_date=row["scheduled_date"],
        customer_name=row["customer_name"],
        service_address=row["service_address"],
        job_description=row["job_description"],
        amount=row["amount"],
        currency=row["currency"],
        priority=row["priority"],
        notes=row["notes"],
        signed_pdf_url=row["signed_pdf_url"],
        signed_preview_image_url=row["signed_preview_image_url"],
        signed_at=from_db_timestamp(row["signed_at"]),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


def export_status_from_job(status: str | None, error_code: str | None) -> str | None:
    if status is None:
        return None
    if status == "DONE":
        return "EXPORTED"
    if status == "FAILED":
        return "FAILED"
    if error_code == "QUOTA_EXCEEDED":
        return "FAILED_QUOTA"
    return "PENDING"


def get_work_order(work_order_id: str, workspace_id: str | None = None) -> WorkOrder | None:
    query = f"SELECT {_COLUMNS} FROM work_orders w WHERE w.id = ?"
    params: list[Any] = [work_order_id]
    if workspace_id is not None:
        query += " AND w.workspace_id = ?"
        params.append(workspace_id)
    with get_connection() as connection:
        row = connection.execute(query, params).fetchone()
    if not row:
        return None
    return _row_to_work_order(row)


def find_by_natural_key(workspace_id: str, work_order_number: str, fm_key: str | None) -> WorkOrder | None:
    with get_connection() as connection:
        row = connection.execute(
            f"""
            SELECT {_COLUMNS}
            FROM work_orders w
            WHERE w.workspace_id = ?
              AND lower(trim(coalesce(w.work_order_number, ''))) = ?
              AND lower(trim(coalesce(w.fm_key, ''))) = ?
            ORDER BY w.created_at DESC
            LIMIT 1
            """,
            (workspace_id, work_order_number.strip().lower(), (fm_key or "").strip().lower()),
        ).fetchone()
    if not row:
        return None
    return _row_to_work_order(row)


def list_work_orders(
    workspace_id: str,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> WorkOrderPage:
    """Newest-first page; cursor is the id of the last work order already seen."""
    limit = max(1, min(int(limit), 200))
    conditions = ["w.workspace_id = ?"]
    params: list[Any] = [workspace_id]

    if status:
        conditions.append("upper(w.status) = ?")
        params.append(status.strip().upper())
    if search:
        like = f"%{search.strip().lower()}%"
        conditions.append(
            "(lower(coalesce(w.work_order_number, '')) LIKE ?"
            " OR lower(coalesce(w.fm_key, '')) LIKE ?"
            " OR lower(coalesce(w.customer_name, '')) LIKE ?)"
        )
        params.extend([like, like, like])
    if cursor:
        conditions.append("(w.created_at, w.id) < (SELECT c.created_at, c.id FROM work_orders c WHERE c.id = ?)")
        params.append(cursor)
    params.append(limit + 1)

    with get_connection() as connection:
        rows = connection.execute(
            f"""
            SELECT {_COLUMNS}, {_LATEST_JOB}
            FROM work_orders w
            WHERE {" AND ".join(conditions)}
            ORDER BY w.created_at DESC, w.id DESC
            LIMIT ?
            """,
            params,
        ).fetchall()

    has_more = len(rows) > limit
    items = [
        WorkOrderRow(
            work_order=_row_to_work_order(row),
            export_status=export_status_from_job(row["last_job_status"], row["last_job_error"]),
        )
        for row in rows[:limit]
    ]
    next_cursor = items[-1].work_order.id if (has_more and items) else None
    return WorkOrderPage(items=items, next_cursor=next_cursor, has_more=has_more)


def save_work_order(workspace_id: str, fields: dict[str, Any], work_order_id: str | None = None) -> WorkOrder:
    """
    Insert or update a canonical work order and enqueue its export.

    The job only carries the id; the executor reads current values when it runs.
    """
    values = {k: fields.get(k) for k in EDITABLE_FIELDS if k in fields}
    timestamp = to_db_timestamp(utc_now())

    with get_connection() as connection:
        existing = None
        if work_order_id:
            existing = connection.execute(
                "SELECT id FROM work_orders WHERE id = ? AND workspace_id = ?",
                (work_order_id, workspace_id),
            ).fetchone()

        if existing:
            if values:
                assignments = ", ".join(f"{k} = ?" for k in values)
                connection.execute(
                    f"UPDATE work_orders SET {assignments}, updated_at = ? WHERE id = ?",
                    (*values.values(), timestamp, work_order_id),
                )
        else:
            work_order_id = work_order_id or str(uuid.uuid4())
            values.setdefault("status", "OPEN")
            columns = ["id", "workspace_id", *values.keys(), "created_at", "updated_at"]
            connection.execute(
                f"INSERT INTO work_orders ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                (work_order_id, workspace_id, *values.values(), timestamp, timestamp),
            )
        connection.commit()

    job_store.enqueue(workspace_id, JobType.WORK_ORDER, work_order_id)
    work_order = get_work_order(work_order_id)
    if work_order is None:
        raise WorkOrderNotFoundError(f"Work order not found: {work_order_id}")
    return work_order


def record_signed_match(
    workspace_id: str,
    work_order_id: str,
    signed_pdf_url: str,
    signed_preview_image_url: str | None = None,
    signed_at: datetime | None = None,
    status: str = "SIGNED",
) -> WorkOrder:
    """Attach a matched signed document to a work order and enqueue the partial export."""
    if get_work_order(work_order_id, workspace_id=workspace_id) is None:
        raise WorkOrderNotFoundError(f"Work order not found: {work_order_id}")

    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        connection.execute(
            """
            UPDATE work_orders
            SET status = ?, signed_pdf_url = ?, signed_preview_image_url = ?, signed_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                status,
                signed_pdf_url,
                signed_preview_image_url,
                to_db_timestamp(signed_at or utc_now()),
                timestamp,
                work_order_id,
            ),
        )
        connection.commit()

    job_store.enqueue(workspace_id, JobType.SIGNED_MATCH, work_order_id)
    work_order = get_work_order(work_order_id)
    if work_order is None:
        raise WorkOrderNotFoundError(f"Work order not found: {work_order_id}")
    return work_order
