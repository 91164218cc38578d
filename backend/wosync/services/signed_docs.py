from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Any

from wosync.db.session import from_db_timestamp, get_connection, to_db_timestamp, utc_now
from wosync.models.signed_document import Decision, SignedDocument
from wosync.models.sync_job import JobType
from wosync.models.work_order import WorkOrder
from wosync.services import job_store, work_orders

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100

_COLUMNS = """
    d.id, d.workspace_id, d.file_hash, d.signed_pdf_url, d.signed_preview_image_url, d.fm_key,
    d.extraction_method, d.extraction_confidence, d.extraction_rationale, d.extracted_work_order_number,
    d.matched_work_order_id, d.created_at, d.updated_at, w.work_order_number AS matched_work_order_number
"""

_FROM = """
    FROM signed_documents d
    LEFT JOIN work_orders w ON w.id = d.matched_work_order_id AND w.workspace_id = d.workspace_id
"""


class SignedDocumentNotFoundError(Exception):
    pass


@dataclass
class SignedDocumentPage:
    items: list[SignedDocument]
    next_cursor: str | None
    has_more: bool


def _row_to_document(row: sqlite3.Row) -> SignedDocument:
    return SignedDocument(
        id=row["id"],
        workspace_id=row["workspace_id"],
        file_hash=row["file_hash"],
        signed_pdf_url=row["signed_pdf_url"],
        signed_preview_image_url=row["signed_preview_image_url"],
        fm_key=row["fm_key"],
        extraction_method=row["extraction_method"],
        extraction_confidence=row["extraction_confidence"],
        extraction_rationale=row["extraction_rationale"],
        extracted_work_order_number=row["extracted_work_order_number"],
        matched_work_order_id=row["matched_work_order_id"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
        matched_work_order_number=row["matched_work_order_number"],
    )


def get_signed_document(document_id: str, workspace_id: str | None = None) -> SignedDocument | None:
    query = f"SELECT {_COLUMNS} {_FROM} WHERE d.id = ?"
    params: list[Any] = [document_id]
    if workspace_id is not None:
        query += " AND d.workspace_id = ?"
        params.append(workspace_id)
    with get_connection() as connection:
        row = connection.execute(query, params).fetchone()
    if not row:
        return None
    return _row_to_document(row)


def _require(document_id: str, workspace_id: str) -> SignedDocument:
    document = get_signed_document(document_id, workspace_id=workspace_id)
    if document is None:
        raise SignedDocumentNotFoundError(f"Signed document not found: {document_id}")
    return document


def record_signed_document(
    workspace_id: str,
    *,
    signed_pdf_url: str,
    signed_preview_image_url: str | None = None,
    fm_key: str | None = None,
    file_hash: str | None = None,
    extracted_work_order_number: str | None = None,
    extraction_method: str | None = None,
    extraction_confidence: str | None = None,
    extraction_rationale: str | None = None,
) -> SignedDocument:
    """Store an incoming signed document and enqueue its SIGNED_DOCUMENT job."""
    document_id = str(uuid.uuid4())
    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        connection.execute(
            """
            INSERT INTO signed_documents
                (id, workspace_id, file_hash, signed_pdf_url, signed_preview_image_url, fm_key, extraction_method,
                 extraction_confidence, extraction_rationale, extracted_work_order_number, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                document_id,
                workspace_id,
                file_hash,
                signed_pdf_url,
                signed_preview_image_url,
                fm_key,
                extraction_method,
                extraction_confidence,
                extraction_rationale,
                extracted_work_order_number,
                timestamp,
                timestamp,
            ),
        )
        connection.commit()

    job_store.enqueue(workspace_id, JobType.SIGNED_DOCUMENT, document_id)
    return _require(document_id, workspace_id)


def match_signed_document(workspace_id: str, document_id: str, work_order_id: str) -> tuple[SignedDocument, WorkOrder]:
    """Link a document to a work order; the work order picks up the signed fields and a SIGNED_MATCH job."""
    document = _require(document_id, workspace_id)
    work_order = work_orders.record_signed_match(
        workspace_id,
        work_order_id,
        signed_pdf_url=document.signed_pdf_url or "",
        signed_preview_image_url=document.signed_preview_image_url,
    )

    with get_connection() as connection:
        connection.execute(
            "UPDATE signed_documents SET matched_work_order_id = ?, updated_at = ? WHERE id = ?",
            (work_order_id, to_db_timestamp(utc_now()), document_id),
        )
        connection.commit()

    logger.info("Signed document %s matched to work order %s", document_id, work_order_id)
    return _require(document_id, workspace_id), work_order


def list_signed_documents(
    workspace_id: str,
    decision: Decision | None = None,
    search: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    cursor: str | None = None,
) -> SignedDocumentPage:
    """Newest-first page; the decision filter is applied before paging so pages stay full."""
    limit = max(1, min(int(limit or DEFAULT_LIST_LIMIT), MAX_LIST_LIMIT))
    conditions = ["d.workspace_id = ?"]
    params: list[Any] = [workspace_id]

    if decision is Decision.MATCHED:
        conditions.append("d.matched_work_order_id IS NOT NULL")
    elif decision is Decision.UNMATCHED:
        conditions.append("d.matched_work_order_id IS NULL")
    if search:
        conditions.append("lower(coalesce(d.extracted_work_order_number, '')) LIKE ?")
        params.append(f"%{search.strip().lower()}%")
    if cursor:
        conditions.append(
            "(d.created_at, d.id) < (SELECT c.created_at, c.id FROM signed_documents c WHERE c.id = ?)"
        )
        params.append(cursor)
    params.append(limit + 1)

    with get_connection() as connection:
        rows = connection.execute(
            f"""
            SELECT {_COLUMNS}
            {_FROM}
            WHERE {" AND ".join(conditions)}
            ORDER BY d.created_at DESC, d.id DESC
            LIMIT ?
            """,
            params,
        ).fetchall()

    has_more = len(rows) > limit
    items = [_row_to_document(row) for row in rows[:limit]]
    next_cursor = items[-1].id if (has_more and items) else None
    return SignedDocumentPage(items=items, next_cursor=next_cursor, has_more=has_more)
