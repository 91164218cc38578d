from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class JobType(str, Enum):
    WORK_ORDER = "WORK_ORDER"
    SIGNED_DOCUMENT = "SIGNED_DOCUMENT"
    SIGNED_MATCH = "SIGNED_MATCH"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class SyncJob:
    id: int
    workspace_id: str
    job_type: JobType
    entity_id: str
    status: JobStatus
    attempts: int
    next_retry_at: datetime | None
    error_code: str | None
    error_message: str | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    # Display decoration joined from work_orders, not part of the row itself
    work_order_number: str | None = None
