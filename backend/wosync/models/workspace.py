from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ReadSource(str, Enum):
    LEGACY = "LEGACY"
    DB = "DB"

    @property
    def other(self) -> "ReadSource":
        return ReadSource.DB if self is ReadSource.LEGACY else ReadSource.LEGACY


@dataclass
class Workspace:
    id: str
    name: str
    spreadsheet_id: str | None
    drive_folder_id: str | None
    sheet_name: str | None
    primary_read_source: ReadSource
    strict_mode: bool
    created_at: datetime
    updated_at: datetime
