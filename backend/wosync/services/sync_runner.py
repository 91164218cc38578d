from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable

from wosync.config import get_settings
from wosync.db.session import utc_now
from wosync.models.sync_job import SyncJob
from wosync.models.workspace import Workspace
from wosync.services import job_executor, job_store, sheets_session, workspaces
from wosync.services.backoff import delay_for_attempt, is_quota_error, max_attempts
from wosync.services.header_cache import HeaderCache
from wosync.services.sheets_service import LegacyStore, QuotaExceededError, SheetsServiceError, build_legacy_store

logger = logging.getLogger(__name__)

ERROR_EXPORT = "EXPORT_ERROR"
ERROR_QUOTA = "QUOTA_EXCEEDED"
ERROR_MAX_ATTEMPTS = "MAX_ATTEMPTS_EXCEEDED"

LegacyFactory = Callable[[Workspace, str], LegacyStore]


@dataclass
class BatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_quota: int = 0
    remaining_pending: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _is_quota_failure(exc: Exception) -> bool:
    # Typed errors say what they are; message text is only consulted for untyped ones
    if isinstance(exc, QuotaExceededError):
        return True
    if isinstance(exc, (SheetsServiceError, job_executor.EntityNotFoundError)):
        return False
    return is_quota_error(str(exc))


def _error_message(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


def _quota_delay(job: SyncJob, exc: Exception) -> timedelta:
    # Throttling does not spend the attempt budget, but still waits at least as long as asked
    delay = delay_for_attempt(job.attempts + 1)
    retry_after = getattr(exc, "retry_after_seconds", None)
    if retry_after:
        delay = max(delay, timedelta(seconds=int(retry_after)))
    return delay


def _record_failure(job: SyncJob, exc: Exception, failed_at: datetime) -> None:
    message = _error_message(exc)
    attempts = job.attempts + 1
    if attempts >= max_attempts():
        job_store.mark_failed(job.id, ERROR_MAX_ATTEMPTS, message, attempts)
        logger.error(
            "Sync job %s (%s %s) failed permanently after %d attempts: %s",
            job.id,
            job.job_type.value,
            job.entity_id,
            attempts,
            message,
        )
        return

    next_retry_at = failed_at + delay_for_attempt(attempts)
    job_store.mark_retry(job.id, next_retry_at, ERROR_EXPORT, message, attempts)
    logger.warning(
        "Sync job %s attempt %d failed, retrying at %s: %s",
        job.id,
        attempts,
        next_retry_at.isoformat(),
        message,
    )


def process_pending(
    workspace_id: str,
    limit: int | None = None,
    *,
    legacy_factory: LegacyFactory | None = None,
    header_cache: HeaderCache | None = None,
    now: datetime | None = None,
) -> BatchResult:
    """
    Run one bounded, sequential pass over a workspace's eligible sync jobs.

    Job-level failures are recorded on the job row and in the counts. Only
    environment failures (unknown workspace, no spreadsheet, no credentials)
    raise, and they do so before any job is claimed.
    """
    settings = get_settings()
    limit = settings.default_batch_limit if limit is None else limit
    eligible = job_store.select_eligible(workspace_id, limit, now=now)

    if not eligible:
        return BatchResult(remaining_pending=job_store.count_pending(workspace_id))

    workspace = workspaces.get_workspace(workspace_id)
    access_token = sheets_session.get_access_token()
    owns_store = legacy_factory is None
    if legacy_factory is None:
        cache = header_cache or HeaderCache(ttl_seconds=settings.header_cache_ttl_seconds)
        legacy = build_legacy_store(workspace, access_token, cache)
    else:
        legacy = legacy_factory(workspace, access_token)

    result = BatchResult()
    try:
        for job in eligible:
            if not job_store.claim(job.id):
                logger.info("Sync job %s was claimed by another worker, skipping", job.id)
                continue

            result.processed += 1
            try:
                job_executor.execute(job, legacy)
            except Exception as exc:
                failed_at = now or utc_now()
                if _is_quota_failure(exc):
                    result.failed_quota += 1
                    job_store.mark_retry(
                        job.id,
                        failed_at + _quota_delay(job, exc),
                        ERROR_QUOTA,
                        _error_message(exc),
                        job.attempts,
                    )
                    logger.warning(
                        "Quota error on sync job %s, stopping pass for workspace %s: %s",
                        job.id,
                        workspace_id,
                        exc,
                    )
                    break

                result.failed += 1
                _record_failure(job, exc, failed_at)
                continue

            job_store.mark_done(job.id)
            result.succeeded += 1
            logger.info("Sync job %s (%s %s) exported", job.id, job.job_type.value, job.entity_id)
    finally:
        if owns_store:
            legacy.close()

    result.remaining_pending = job_store.count_pending(workspace_id)
    logger.info(
        "Sync pass for workspace %s: processed=%d succeeded=%d failed=%d failed_quota=%d remaining=%d",
        workspace_id,
        result.processed,
        result.succeeded,
        result.failed,
        result.failed_quota,
        result.remaining_pending,
    )
    return result
