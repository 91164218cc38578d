from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from wosync.api.deps import LegacyProvider, get_legacy_factory, get_read_router, load_workspace, read_failure
from wosync.api.routes.sync_jobs import SyncJobItem, to_item
from wosync.db.session import to_db_timestamp
from wosync.models.work_order import UnifiedWorkOrder, WorkOrder
from wosync.services import read_router, work_orders
from wosync.services.read_router import ReadRouter, ReadRouterError

router = APIRouter(prefix="/api/workspaces/{workspace_id}/work-orders", tags=["work-orders"])

DataSource = Literal["LEGACY", "DB"]


# -------------------------
# API models
# -------------------------

class WorkOrderWriteRequest(BaseModel):
    workOrderNumber: Optional[str] = None
    fmKey: Optional[str] = None
    status: Optional[str] = None
    scheduledDate: Optional[str] = None
    customerName: Optional[str] = None
    serviceAddress: Optional[str] = None
    jobDescription: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None


class SignedMatchRequest(BaseModel):
    signedPdfUrl: str = Field(..., min_length=1)
    signedPreviewImageUrl: Optional[str] = None
    signedAt: Optional[datetime] = None
    status: str = "SIGNED"


class WorkOrderResponse(BaseModel):
    id: str
    workOrderNumber: Optional[str] = None
    fmKey: Optional[str] = None
    status: str
    scheduledDate: Optional[str] = None
    customerName: Optional[str] = None
    serviceAddress: Optional[str] = None
    jobDescription: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None
    signedPdfUrl: Optional[str] = None
    signedPreviewImageUrl: Optional[str] = None
    signedAt: Optional[str] = None


class UnifiedWorkOrderItem(BaseModel):
    id: str
    workOrderNumber: Optional[str] = None
    fmKey: Optional[str] = None
    customerName: Optional[str] = None
    serviceAddress: Optional[str] = None
    scheduledDate: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    status: str
    signedAt: Optional[str] = None
    signedPdfUrl: Optional[str] = None
    exportStatus: Optional[str] = None


class WorkOrderListResponse(BaseModel):
    workOrders: list[UnifiedWorkOrderItem] = Field(default_factory=list)
    nextCursor: Optional[str] = None
    hasMore: bool = False
    dataSource: DataSource
    fallbackUsed: bool = False


class WorkOrderDetailResponse(BaseModel):
    workOrder: UnifiedWorkOrderItem
    jobDescription: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None
    signedPreviewImageUrl: Optional[str] = None
    syncJobs: list[SyncJobItem] = Field(default_factory=list)
    dataSource: DataSource
    fallbackUsed: bool = False


# -------------------------
# Helpers
# -------------------------

_REQUEST_FIELDS = {
    "workOrderNumber": "work_order_number",
    "fmKey": "fm_key",
    "status": "status",
    "scheduledDate": "scheduled_date",
    "customerName": "customer_name",
    "serviceAddress": "service_address",
    "jobDescription": "job_description",
    "amount": "amount",
    "currency": "currency",
    "priority": "priority",
    "notes": "notes",
}


def _fields_from_request(payload: WorkOrderWriteRequest) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for api_name, value in payload.model_dump(exclude_unset=True).items():
        if api_name == "amount" and value is not None:
            value = str(value)
        fields[_REQUEST_FIELDS[api_name]] = value
    return fields


def _to_response(work_order: WorkOrder) -> WorkOrderResponse:
    return WorkOrderResponse(
        id=work_order.id,
        workOrderNumber=work_order.work_order_number,
        fmKey=work_order.fm_key,
        status=work_order.status,
        scheduledDate=work_order.scheduled_date,
        customerName=work_order.customer_name,
        serviceAddress=work_order.service_address,
        jobDescription=work_order.job_description,
        amount=work_order.amount,
        currency=work_order.currency,
        priority=work_order.priority,
        notes=work_order.notes,
        signedPdfUrl=work_order.signed_pdf_url,
        signedPreviewImageUrl=work_order.signed_preview_image_url,
        signedAt=to_db_timestamp(work_order.signed_at) if work_order.signed_at else None,
    )


def _to_item(work_order: UnifiedWorkOrder) -> UnifiedWorkOrderItem:
    return UnifiedWorkOrderItem(
        id=work_order.id,
        workOrderNumber=work_order.work_order_number,
        fmKey=work_order.fm_key,
        customerName=work_order.customer_name,
        serviceAddress=work_order.service_address,
        scheduledDate=work_order.scheduled_date,
        amount=work_order.amount,
        currency=work_order.currency,
        status=work_order.status,
        signedAt=work_order.signed_at,
        signedPdfUrl=work_order.signed_pdf_url,
        exportStatus=work_order.export_status,
    )


# -------------------------
# Writes
# -------------------------

@router.post("", response_model=WorkOrderResponse, status_code=status.HTTP_201_CREATED)
def create_work_order(workspace_id: str, payload: WorkOrderWriteRequest) -> WorkOrderResponse:
    load_workspace(workspace_id)
    work_order = work_orders.save_work_order(workspace_id, _fields_from_request(payload))
    return _to_response(work_order)


@router.put("/{work_order_id}", response_model=WorkOrderResponse)
def update_work_order(workspace_id: str, work_order_id: str, payload: WorkOrderWriteRequest) -> WorkOrderResponse:
    load_workspace(workspace_id)
    if work_orders.get_work_order(work_order_id, workspace_id=workspace_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found")
    work_order = work_orders.save_work_order(workspace_id, _fields_from_request(payload), work_order_id=work_order_id)
    return _to_response(work_order)


@router.post("/{work_order_id}/signed", response_model=WorkOrderResponse)
def record_signed_match(workspace_id: str, work_order_id: str, payload: SignedMatchRequest) -> WorkOrderResponse:
    load_workspace(workspace_id)
    try:
        work_order = work_orders.record_signed_match(
            workspace_id,
            work_order_id,
            signed_pdf_url=payload.signedPdfUrl,
            signed_preview_image_url=payload.signedPreviewImageUrl,
            signed_at=payload.signedAt,
            status=payload.status,
        )
    except work_orders.WorkOrderNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_response(work_order)


# -------------------------
# Reads
# -------------------------

@router.get("", response_model=WorkOrderListResponse)
def list_work_orders(
    workspace_id: str,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, alias="q"),
    limit: int = Query(default=50, ge=1, le=200),
    cursor: Optional[str] = Query(default=None),
    reader: ReadRouter = Depends(get_read_router),
    legacy_factory=Depends(get_legacy_factory),
) -> WorkOrderListResponse:
    workspace = load_workspace(workspace_id)
    provider = LegacyProvider(workspace, legacy_factory)
    try:
        result = read_router.list_work_orders(
            reader,
            workspace,
            provider,
            status=status_filter,
            search=search,
            limit=limit,
            cursor=cursor,
        )
    except ReadRouterError as exc:
        raise read_failure(exc) from exc
    finally:
        provider.close()

    return WorkOrderListResponse(
        workOrders=[_to_item(wo) for wo in result.data.work_orders],
        nextCursor=result.data.next_cursor,
        hasMore=result.data.has_more,
        dataSource=result.data_source.value,
        fallbackUsed=result.fallback_used,
    )


@router.get("/detail", response_model=WorkOrderDetailResponse)
def get_work_order_detail(
    workspace_id: str,
    work_order_number: str = Query(..., alias="workOrderNumber", min_length=1),
    fm_key: Optional[str] = Query(default=None, alias="fmKey"),
    reader: ReadRouter = Depends(get_read_router),
    legacy_factory=Depends(get_legacy_factory),
) -> WorkOrderDetailResponse:
    workspace = load_workspace(workspace_id)
    provider = LegacyProvider(workspace, legacy_factory)
    try:
        result = read_router.get_work_order_detail(
            reader,
            workspace,
            provider,
            work_order_number=work_order_number,
            fm_key=fm_key,
        )
    except ReadRouterError as exc:
        raise read_failure(exc) from exc
    finally:
        provider.close()

    detail = result.data
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work order not found")

    return WorkOrderDetailResponse(
        workOrder=_to_item(detail.work_order),
        jobDescription=detail.job_description,
        priority=detail.priority,
        notes=detail.notes,
        signedPreviewImageUrl=detail.signed_preview_image_url,
        syncJobs=[to_item(job) for job in detail.sync_jobs],
        dataSource=result.data_source.value,
        fallbackUsed=result.fallback_used,
    )
