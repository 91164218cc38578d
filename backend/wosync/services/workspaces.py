from __future__ import annotations

import logging
import sqlite3
import uuid

from wosync.db.session import from_db_timestamp, get_connection, to_db_timestamp, utc_now
from wosync.models.workspace import ReadSource, Workspace

logger = logging.getLogger(__name__)


class WorkspaceNotFoundError(Exception):
    pass


def _row_to_workspace(row: sqlite3.Row) -> Workspace:
    return Workspace(
        id=row["id"],
        name=row["name"],
        spreadsheet_id=row["spreadsheet_id"],
        drive_folder_id=row["drive_folder_id"],
        sheet_name=row["sheet_name"],
        primary_read_source=ReadSource.DB if row["primary_read_source"] == "DB" else ReadSource.LEGACY,
        strict_mode=bool(row["strict_mode"]),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


def create_workspace(
    name: str,
    spreadsheet_id: str | None = None,
    drive_folder_id: str | None = None,
    sheet_name: str | None = None,
    primary_read_source: ReadSource = ReadSource.LEGACY,
    strict_mode: bool = False,
) -> Workspace:
    workspace_id = str(uuid.uuid4())
    timestamp = to_db_timestamp(utc_now())
    with get_connection() as connection:
        connection.execute(
            """
            INSERT INTO workspaces
                (id, name, spreadsheet_id, drive_folder_id, sheet_name, primary_read_source, strict_mode, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                workspace_id,
                name,
                spreadsheet_id,
                drive_folder_id,
                sheet_name,
                ReadSource(primary_read_source).value,
                int(strict_mode),
                timestamp,
                timestamp,
            ),
        )
        connection.commit()
    return get_workspace(workspace_id)


def find_workspace(workspace_id: str) -> Workspace | None:
    with get_connection() as connection:
        row = connection.execute(
            """
            SELECT id, name, spreadsheet_id, drive_folder_id, sheet_name, primary_read_source, strict_mode,
                   created_at, updated_at
            FROM workspaces
            WHERE id = ?
            """,
            (workspace_id,),
        ).fetchone()
    if not row:
        return None
    return _row_to_workspace(row)


def get_workspace(workspace_id: str) -> Workspace:
    workspace = find_workspace(workspace_id)
    if workspace is None:
        raise WorkspaceNotFoundError(f"Workspace not found: {workspace_id}")
    return workspace


def set_read_settings(
    workspace_id: str,
    primary_read_source: ReadSource | None = None,
    strict_mode: bool | None = None,
) -> Workspace:
    """Takes effect on the next read; the router keeps no state between calls."""
    workspace = get_workspace(workspace_id)
    source = ReadSource(primary_read_source) if primary_read_source is not None else workspace.primary_read_source
    strict = workspace.strict_mode if strict_mode is None else bool(strict_mode)

    with get_connection() as connection:
        connection.execute(
            """
            UPDATE workspaces
            SET primary_read_source = ?, strict_mode = ?, updated_at = ?
            WHERE id = ?
            """,
            (source.value, int(strict), to_db_timestamp(utc_now()), workspace_id),
        )
        connection.commit()

    if source is not workspace.primary_read_source or strict != workspace.strict_mode:
        logger.info(
            "Workspace %s read settings changed: primary=%s strict=%s",
            workspace_id,
            source.value,
            strict,
        )
    return get_workspace(workspace_id)
