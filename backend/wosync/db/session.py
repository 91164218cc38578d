from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

from wosync.config import get_settings


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    # Fixed precision keeps lexical order equal to chronological order in SQL comparisons
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_connection() -> sqlite3.Connection:
    db_path = get_settings().database_path
    connection = sqlite3.connect(db_path, timeout=30)
    connection.row_factory = sqlite3.Row
    return connection


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == column for r in rows)


def init_db() -> None:
    get_settings().database_path.parent.mkdir(parents=True, exist_ok=True)
    with get_connection() as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                spreadsheet_id TEXT,
                drive_folder_id TEXT,
                sheet_name TEXT,
                primary_read_source TEXT NOT NULL DEFAULT 'LEGACY',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

        # Add strict_mode column if missing (migration)
        if not _column_exists(connection, "workspaces", "strict_mode"):
            connection.execute("ALTER TABLE workspaces ADD COLUMN strict_mode INTEGER NOT NULL DEFAULT 0")

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS work_orders (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                work_order_number TEXT,
                fm_key TEXT,
                status TEXT NOT NULL DEFAULT 'OPEN',
                scheduled_date TEXT,
                customer_name TEXT,
                service_address TEXT,
                job_description TEXT,
                amount TEXT,
                currency TEXT DEFAULT 'USD',
                priority TEXT,
                notes TEXT,
                signed_pdf_url TEXT,
                signed_preview_image_url TEXT,
                signed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_work_orders_workspace_created
            ON work_orders(workspace_id, created_at)
            """
        )

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL,
                job_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                next_retry_at TEXT,
                error_code TEXT,
                error_message TEXT,
                completed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_sync_jobs_eligible
            ON sync_jobs(workspace_id, status, created_at)
            """
        )
        connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_sync_jobs_entity
            ON sync_jobs(entity_id)
            """
        )

        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS signed_documents (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                file_hash TEXT,
                signed_pdf_url TEXT,
                signed_preview_image_url TEXT,
                fm_key TEXT,
                extraction_method TEXT,
                extraction_confidence TEXT,
                extraction_rationale TEXT,
                extracted_work_order_number TEXT,
                matched_work_order_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_signed_documents_workspace_created
            ON signed_documents(workspace_id, created_at)
            """
        )
        connection.commit()
