from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from wosync.config import get_settings
from wosync.db.session import to_db_timestamp
from wosync.models.signed_document import Decision, SignedDocument, UnifiedSignedDoc
from wosync.models.sync_job import SyncJob
from wosync.models.work_order import UnifiedWorkOrder, WorkOrder
from wosync.models.workspace import ReadSource, Workspace
from wosync.services import job_store, signed_docs, work_orders
from wosync.services.sheets_service import LegacyRecord, LegacyStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


# -------------------------
# Errors
# -------------------------

class ReadRouterError(Exception):
    pass


class StrictModeReadError(ReadRouterError):
    """Primary failed and the workspace forbids falling back."""

    def __init__(self, source: ReadSource, cause: Exception) -> None:
        super().__init__(f"{source.value} read failed and strict mode disables fallback: {cause}")
        self.source = source
        self.cause = cause


class ReadUnavailableError(ReadRouterError):
    """Both sources failed; the message is the secondary's, which is the more telling one."""

    def __init__(
        self,
        primary: ReadSource,
        primary_error: Exception,
        secondary_error: Exception,
    ) -> None:
        super().__init__(f"{primary.other.value} read failed after {primary.value} failure: {secondary_error}")
        self.primary = primary
        self.primary_error = primary_error
        self.secondary_error = secondary_error


# -------------------------
# Results
# -------------------------

@dataclass
class ReadResult(Generic[T]):
    data: T
    data_source: ReadSource
    fallback_used: bool = False


@dataclass
class WorkOrderListing:
    work_orders: list[UnifiedWorkOrder]
    next_cursor: str | None = None
    has_more: bool = False


@dataclass
class WorkOrderDetail:
    work_order: UnifiedWorkOrder
    job_description: str | None = None
    priority: str | None = None
    notes: str | None = None
    signed_preview_image_url: str | None = None
    sync_jobs: list[SyncJob] = field(default_factory=list)


# -------------------------
# Router
# -------------------------

class ReadRouter:
    """Chooses which store answers a read; holds no per-call state."""

    def __init__(self, db_primary_reads: bool | None = None) -> None:
        self._db_primary_reads = db_primary_reads

    def primary_for(self, workspace: Workspace) -> ReadSource:
        enabled = self._db_primary_reads
        if enabled is None:
            enabled = get_settings().db_primary_reads
        if not enabled:
            return ReadSource.LEGACY
        return workspace.primary_read_source

    def read(
        self,
        workspace: Workspace,
        *,
        legacy: Callable[[], T],
        db: Callable[[], T],
    ) -> ReadResult[T]:
        readers = {ReadSource.LEGACY: legacy, ReadSource.DB: db}
        primary = self.primary_for(workspace)
        secondary = primary.other

        try:
            return ReadResult(data=readers[primary](), data_source=primary)
        except Exception as primary_exc:
            if workspace.strict_mode:
                logger.error("%s read failed for workspace %s (strict mode): %s", primary.value, workspace.id, primary_exc)
                raise StrictModeReadError(primary, primary_exc) from primary_exc
            logger.warning(
                "%s read failed for workspace %s, falling back to %s: %s",
                primary.value,
                workspace.id,
                secondary.value,
                primary_exc,
            )
            try:
                data = readers[secondary]()
            except Exception as secondary_exc:
                raise ReadUnavailableError(primary, primary_exc, secondary_exc) from secondary_exc
            return ReadResult(data=data, data_source=secondary, fallback_used=True)


# -------------------------
# Mapping
# -------------------------

def unified_from_db(work_order: WorkOrder, export_status: str | None = None) -> UnifiedWorkOrder:
    return UnifiedWorkOrder(
        id=work_order.id,
        work_order_number=work_order.work_order_number,
        fm_key=work_order.fm_key,
        customer_name=work_order.customer_name,
        service_address=work_order.service_address,
        scheduled_date=work_order.scheduled_date,
        amount=work_order.amount,
        currency=work_order.currency,
        status=work_order.status,
        signed_at=to_db_timestamp(work_order.signed_at) if work_order.signed_at else None,
        signed_pdf_url=work_order.signed_pdf_url,
        export_status=export_status,
    )


def unified_from_legacy(record: LegacyRecord) -> UnifiedWorkOrder:
    wo_number = record.get("wo_number") or ""
    return UnifiedWorkOrder(
        id=record.get("jobId") or f"legacy-{wo_number}-{record.get('_row_number')}",
        work_order_number=wo_number or None,
        fm_key=record.get("fmKey"),
        customer_name=record.get("customer_name"),
        service_address=record.get("service_address"),
        scheduled_date=record.get("scheduled_date"),
        amount=record.get("amount"),
        currency=record.get("currency"),
        status=(record.get("status") or "OPEN").strip(),
        signed_at=record.get("signed_at"),
        signed_pdf_url=record.get("signed_pdf_url"),
        export_status=None,  # the sheet has no notion of export state
    )


def _legacy_matches(record: LegacyRecord, status: str | None, search: str | None) -> bool:
    if status and (record.get("status") or "").strip().upper() != status.strip().upper():
        return False
    if search:
        needle = search.strip().lower()
        haystack = [record.get("wo_number"), record.get("fmKey"), record.get("customer_name")]
        if not any(needle in (value or "").lower() for value in haystack):
            return False
    return True


# -------------------------
# Reads
# -------------------------

def list_work_orders(
    router: ReadRouter,
    workspace: Workspace,
    legacy_provider: Callable[[], LegacyStore],
    *,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    cursor: str | None = None,
) -> ReadResult[WorkOrderListing]:
    def from_db() -> WorkOrderListing:
        page = work_orders.list_work_orders(workspace.id, status=status, search=search, limit=limit, cursor=cursor)
        return WorkOrderListing(
            work_orders=[unified_from_db(row.work_order, row.export_status) for row in page.items],
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )

    def from_legacy() -> WorkOrderListing:
        # The sheet is append-only in practice, so newest rows are at the bottom
        records = [r for r in reversed(legacy_provider().list_records()) if _legacy_matches(r, status, search)]
        return WorkOrderListing(
            work_orders=[unified_from_legacy(r) for r in records[:limit]],
            next_cursor=None,  # no cursor pagination on the sheet
            has_more=len(records) > limit,
        )

    return router.read(workspace, legacy=from_legacy, db=from_db)


def get_work_order_detail(
    router: ReadRouter,
    workspace: Workspace,
    legacy_provider: Callable[[], LegacyStore],
    *,
    work_order_number: str,
    fm_key: str | None = None,
) -> ReadResult[WorkOrderDetail | None]:
    """Detail by natural key; a miss is a successful read returning None, not a source failure."""

    def from_db() -> WorkOrderDetail | None:
        work_order = work_orders.find_by_natural_key(workspace.id, work_order_number, fm_key)
        if work_order is None:
            return None
        jobs = job_store.list_jobs_for_entity(workspace.id, work_order.id)
        latest = jobs[0] if jobs else None
        export_status = work_orders.export_status_from_job(
            latest.status.value if latest else None,
            latest.error_code if latest else None,
        )
        return WorkOrderDetail(
            work_order=unified_from_db(work_order, export_status),
            job_description=work_order.job_description,
            priority=work_order.priority,
            notes=work_order.notes,
            signed_preview_image_url=work_order.signed_preview_image_url,
            sync_jobs=jobs,
        )

    def from_legacy() -> WorkOrderDetail | None:
        record = legacy_provider().find_record(work_order_number, fm_key)
        if record is None:
            return None
        return WorkOrderDetail(
            work_order=unified_from_legacy(record),
            job_description=record.get("job_description"),
            priority=record.get("priority"),
            notes=record.get("notes"),
            signed_preview_image_url=record.get("signed_preview_image_url"),
        )

    return router.read(workspace, legacy=from_legacy, db=from_db)


# -------------------------
# Signed documents
# -------------------------

@dataclass
class SignedDocListing:
    items: list[UnifiedSignedDoc]
    next_cursor: str | None = None
    has_more: bool = False


def unified_from_db_document(document: SignedDocument) -> UnifiedSignedDoc:
    return UnifiedSignedDoc(
        id=document.id,
        extracted_work_order_number=document.extracted_work_order_number,
        extraction_method=document.extraction_method,
        extraction_confidence=document.extraction_confidence,
        extraction_rationale=document.extraction_rationale,
        signed_pdf_url=document.signed_pdf_url,
        signed_preview_image_url=document.signed_preview_image_url,
        fm_key=document.fm_key,
        matched_work_order_id=document.matched_work_order_id,
        matched_work_order_number=document.matched_work_order_number,
        decision=document.decision,
        created_at=to_db_timestamp(document.created_at),
    )


def _review_decision(resolved: str | None) -> Decision:
    value = (resolved or "").strip().lower()
    if value == "true":
        return Decision.MATCHED
    if value == "false":
        return Decision.UNMATCHED
    return Decision.NEEDS_REVIEW


def unified_from_review_row(row: LegacyRecord) -> UnifiedSignedDoc:
    extracted = row.get("extracted_work_order_number")
    return UnifiedSignedDoc(
        id=f"legacy-{row.get('_row_number')}",
        extracted_work_order_number=extracted,
        extraction_method=row.get("extraction_method"),
        extraction_confidence=row.get("extraction_confidence"),
        extraction_rationale=row.get("extraction_rationale"),
        signed_pdf_url=row.get("signed_pdf_url"),
        signed_preview_image_url=row.get("preview_image_url"),
        fm_key=row.get("fmkey"),
        matched_work_order_id=None,  # the review sheet only knows the extracted number
        matched_work_order_number=extracted,
        decision=_review_decision(row.get("resolved")),
        created_at=row.get("created_at"),
    )


def list_signed_docs(
    router: ReadRouter,
    workspace: Workspace,
    legacy_provider: Callable[[], LegacyStore],
    *,
    decision: Decision | None = None,
    search: str | None = None,
    limit: int = signed_docs.DEFAULT_LIST_LIMIT,
    cursor: str | None = None,
) -> ReadResult[SignedDocListing]:
    def from_db() -> SignedDocListing:
        page = signed_docs.list_signed_documents(
            workspace.id, decision=decision, search=search, limit=limit, cursor=cursor
        )
        return SignedDocListing(
            items=[unified_from_db_document(doc) for doc in page.items],
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )

    def from_legacy() -> SignedDocListing:
        needle = (search or "").strip().lower()
        items = []
        for row in legacy_provider().list_signed_review_rows():
            doc = unified_from_review_row(row)
            if decision is not None and doc.decision is not decision:
                continue
            if needle and needle not in (doc.extracted_work_order_number or "").lower():
                continue
            items.append(doc)
        return SignedDocListing(items=items[:limit], next_cursor=None, has_more=len(items) > limit)

    return router.read(workspace, legacy=from_legacy, db=from_db)
