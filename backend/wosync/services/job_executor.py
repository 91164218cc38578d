from __future__ import annotations

import logging
from typing import Callable

from wosync.db.session import to_db_timestamp, utc_now
from wosync.models.sync_job import JobType, SyncJob
from wosync.models.work_order import WorkOrder
from wosync.services import work_orders
from wosync.services.sheets_service import LegacyRecord, LegacyStore

logger = logging.getLogger(__name__)

JobHandler = Callable[[SyncJob, LegacyStore], None]

MISSING_WORK_ORDER_NUMBER = "MISSING"


class EntityNotFoundError(Exception):
    pass


def _iso(value) -> str | None:
    return to_db_timestamp(value) if value is not None else None


def work_order_to_legacy_record(work_order: WorkOrder) -> LegacyRecord:
    """Full legacy row for a canonical work order."""
    wo_number = work_order.work_order_number or MISSING_WORK_ORDER_NUMBER
    return {
        "jobId": f"{(work_order.fm_key or '').strip().lower()}:{wo_number.strip().lower()}",
        "fmKey": work_order.fm_key,
        "wo_number": wo_number,
        "status": work_order.status or "OPEN",
        "scheduled_date": work_order.scheduled_date,
        "customer_name": work_order.customer_name,
        "service_address": work_order.service_address,
        "job_description": work_order.job_description,
        "amount": work_order.amount,
        "currency": work_order.currency,
        "priority": work_order.priority,
        "notes": work_order.notes,
        "signed_pdf_url": work_order.signed_pdf_url,
        "signed_preview_image_url": work_order.signed_preview_image_url,
        "signed_at": _iso(work_order.signed_at),
        "created_at": _iso(work_order.created_at),
        "source": "DB_EXPORT",
        "last_updated_at": _iso(work_order.updated_at) or to_db_timestamp(utc_now()),
    }


def signed_fields(work_order: WorkOrder) -> LegacyRecord:
    """Only the columns that change when a signed document is matched."""
    return {
        "status": work_order.status or "SIGNED",
        "signed_pdf_url": work_order.signed_pdf_url,
        "signed_preview_image_url": work_order.signed_preview_image_url,
        "signed_at": _iso(work_order.signed_at),
        "last_updated_at": _iso(work_order.updated_at) or to_db_timestamp(utc_now()),
    }


def _load_work_order(job: SyncJob) -> WorkOrder:
    # Read at execution time so a late job still carries the latest values
    work_order = work_orders.get_work_order(job.entity_id, workspace_id=job.workspace_id)
    if work_order is None:
        raise EntityNotFoundError(f"Work order not found: {job.entity_id}")
    return work_order


def _export_work_order(job: SyncJob, legacy: LegacyStore) -> None:
    work_order = _load_work_order(job)
    outcome = legacy.upsert_work_order(work_order_to_legacy_record(work_order))
    logger.debug("Work order %s %s in legacy store", work_order.id, outcome)


def _export_signed_match(job: SyncJob, legacy: LegacyStore) -> None:
    work_order = _load_work_order(job)
    legacy.update_work_order_partial(
        work_order.work_order_number or MISSING_WORK_ORDER_NUMBER,
        work_order.fm_key,
        signed_fields(work_order),
    )


def _skip_signed_document(job: SyncJob, legacy: LegacyStore) -> None:
    # The legacy sheet has no document entity; documents travel with their work order
    return None


_HANDLERS: dict[JobType, JobHandler] = {
    JobType.WORK_ORDER: _export_work_order,
    JobType.SIGNED_DOCUMENT: _skip_signed_document,
    JobType.SIGNED_MATCH: _export_signed_match,
}

_unhandled = set(JobType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No sync handler registered for job types: {sorted(t.value for t in _unhandled)}")


def execute(job: SyncJob, legacy: LegacyStore) -> None:
    """Run one claimed job against the legacy store; raises on any failure."""
    _HANDLERS[JobType(job.job_type)](job, legacy)
