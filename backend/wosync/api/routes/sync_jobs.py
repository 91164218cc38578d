from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from wosync.api.deps import get_header_cache, get_legacy_factory, load_workspace
from wosync.models.sync_job import JobStatus, SyncJob
from wosync.services import job_store, sheets_session, sync_runner, workspaces
from wosync.services.header_cache import HeaderCache
from wosync.services.sheets_service import SpreadsheetNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workspaces/{workspace_id}/sync-jobs", tags=["sync-jobs"])


# -------------------------
# API models (operator view)
# -------------------------

class SyncJobItem(BaseModel):
    id: int
    jobType: Literal["WORK_ORDER", "SIGNED_DOCUMENT", "SIGNED_MATCH"]
    entityId: str
    status: Literal["PENDING", "PROCESSING", "DONE", "FAILED"]
    attempts: int = 0
    nextRetryAt: Optional[datetime] = None
    errorCode: Optional[str] = None
    errorMessage: Optional[str] = None
    completedAt: Optional[datetime] = None
    createdAt: datetime
    updatedAt: datetime
    workOrderNumber: Optional[str] = None


class SyncJobListResponse(BaseModel):
    items: list[SyncJobItem] = Field(default_factory=list)
    nextCursor: Optional[int] = None
    hasMore: bool = False


class ProcessResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    failedQuota: int
    remainingPending: int


def to_item(job: SyncJob) -> SyncJobItem:
    return SyncJobItem(
        id=job.id,
        jobType=job.job_type.value,
        entityId=job.entity_id,
        status=job.status.value,
        attempts=job.attempts,
        nextRetryAt=job.next_retry_at,
        errorCode=job.error_code,
        errorMessage=job.error_message,
        completedAt=job.completed_at,
        createdAt=job.created_at,
        updatedAt=job.updated_at,
        workOrderNumber=job.work_order_number,
    )


# -------------------------
# Routes
# -------------------------

@router.get("", response_model=SyncJobListResponse)
def list_sync_jobs(
    workspace_id: str,
    status_filter: Optional[Literal["PENDING", "PROCESSING", "DONE", "FAILED"]] = Query(default=None, alias="status"),
    cursor: Optional[int] = Query(default=None),
    limit: int = Query(default=job_store.DEFAULT_LIST_LIMIT, ge=1, le=job_store.MAX_LIST_LIMIT),
) -> SyncJobListResponse:
    load_workspace(workspace_id)
    page = job_store.list_sync_jobs(
        workspace_id,
        status=JobStatus(status_filter) if status_filter else None,
        cursor=cursor,
        limit=limit,
    )
    return SyncJobListResponse(
        items=[to_item(job) for job in page.items],
        nextCursor=page.next_cursor,
        hasMore=page.has_more,
    )


@router.post("/process", response_model=ProcessResponse)
def process_sync_jobs(
    workspace_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    legacy_factory=Depends(get_legacy_factory),
    header_cache: HeaderCache = Depends(get_header_cache),
) -> ProcessResponse:
    load_workspace(workspace_id)
    try:
        result = sync_runner.process_pending(
            workspace_id,
            limit,
            legacy_factory=legacy_factory,
            header_cache=header_cache,
        )
    except workspaces.WorkspaceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except sheets_session.MissingCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except SpreadsheetNotConfiguredError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return ProcessResponse(
        processed=result.processed,
        succeeded=result.succeeded,
        failed=result.failed,
        failedQuota=result.failed_quota,
        remainingPending=result.remaining_pending,
    )


@router.post("/{job_id}/retry", response_model=SyncJobItem)
def retry_sync_job(workspace_id: str, job_id: int) -> SyncJobItem:
    try:
        job = job_store.retry_sync_job(workspace_id, job_id)
    except job_store.SyncJobNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except job_store.JobNotRetryableError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return to_item(job)
