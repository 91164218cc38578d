from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from wosync.api.deps import LegacyProvider, get_legacy_factory, get_read_router, load_workspace, read_failure
from wosync.models.signed_document import Decision, UnifiedSignedDoc
from wosync.services import read_router, signed_docs, work_orders
from wosync.services.read_router import ReadRouter, ReadRouterError

router = APIRouter(prefix="/api/workspaces/{workspace_id}/signed-docs", tags=["signed-docs"])


# -------------------------
# API models
# -------------------------

class SignedDocCreateRequest(BaseModel):
    signedPdfUrl: str = Field(..., min_length=1)
    signedPreviewImageUrl: Optional[str] = None
    fmKey: Optional[str] = None
    fileHash: Optional[str] = None
    extractedWorkOrderNumber: Optional[str] = None
    extractionMethod: Optional[str] = None
    extractionConfidence: Optional[str] = None
    extractionRationale: Optional[str] = None


class SignedDocMatchRequest(BaseModel):
    workOrderId: str = Field(..., min_length=1)


class SignedDocItem(BaseModel):
    id: str
    extractedWorkOrderNumber: Optional[str] = None
    extractionMethod: Optional[str] = None
    extractionConfidence: Optional[str] = None
    extractionRationale: Optional[str] = None
    signedPdfUrl: Optional[str] = None
    signedPreviewImageUrl: Optional[str] = None
    fmKey: Optional[str] = None
    matchedWorkOrderId: Optional[str] = None
    matchedWorkOrderNumber: Optional[str] = None
    decision: Literal["MATCHED", "UNMATCHED", "NEEDS_REVIEW"]
    createdAt: Optional[str] = None


class SignedDocListResponse(BaseModel):
    items: list[SignedDocItem] = Field(default_factory=list)
    nextCursor: Optional[str] = None
    hasMore: bool = False
    dataSource: Literal["LEGACY", "DB"]
    fallbackUsed: bool = False


def _to_item(doc: UnifiedSignedDoc) -> SignedDocItem:
    return SignedDocItem(
        id=doc.id,
        extractedWorkOrderNumber=doc.extracted_work_order_number,
        extractionMethod=doc.extraction_method,
        extractionConfidence=doc.extraction_confidence,
        extractionRationale=doc.extraction_rationale,
        signedPdfUrl=doc.signed_pdf_url,
        signedPreviewImageUrl=doc.signed_preview_image_url,
        fmKey=doc.fm_key,
        matchedWorkOrderId=doc.matched_work_order_id,
        matchedWorkOrderNumber=doc.matched_work_order_number,
        decision=doc.decision.value,
        createdAt=doc.created_at,
    )


# -------------------------
# Routes
# -------------------------

@router.post("", response_model=SignedDocItem, status_code=status.HTTP_201_CREATED)
def create_signed_doc(workspace_id: str, payload: SignedDocCreateRequest) -> SignedDocItem:
    load_workspace(workspace_id)
    document = signed_docs.record_signed_document(
        workspace_id,
        signed_pdf_url=payload.signedPdfUrl,
        signed_preview_image_url=payload.signedPreviewImageUrl,
        fm_key=payload.fmKey,
        file_hash=payload.fileHash,
        extracted_work_order_number=payload.extractedWorkOrderNumber,
        extraction_method=payload.extractionMethod,
        extraction_confidence=payload.extractionConfidence,
        extraction_rationale=payload.extractionRationale,
    )
    return _to_item(read_router.unified_from_db_document(document))


@router.post("/{document_id}/match", response_model=SignedDocItem)
def match_signed_doc(workspace_id: str, document_id: str, payload: SignedDocMatchRequest) -> SignedDocItem:
    load_workspace(workspace_id)
    try:
        document, _ = signed_docs.match_signed_document(workspace_id, document_id, payload.workOrderId)
    except (signed_docs.SignedDocumentNotFoundError, work_orders.WorkOrderNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _to_item(read_router.unified_from_db_document(document))


@router.get("", response_model=SignedDocListResponse)
def list_signed_docs(
    workspace_id: str,
    decision: Optional[Literal["MATCHED", "UNMATCHED"]] = Query(default=None),
    search: Optional[str] = Query(default=None, alias="q"),
    limit: int = Query(default=signed_docs.DEFAULT_LIST_LIMIT, ge=1, le=signed_docs.MAX_LIST_LIMIT),
    cursor: Optional[str] = Query(default=None),
    reader: ReadRouter = Depends(get_read_router),
    legacy_factory=Depends(get_legacy_factory),
) -> SignedDocListResponse:
    workspace = load_workspace(workspace_id)
    provider = LegacyProvider(workspace, legacy_factory)
    try:
        result = read_router.list_signed_docs(
            reader,
            workspace,
            provider,
            decision=Decision(decision) if decision else None,
            search=search,
            limit=limit,
            cursor=cursor,
        )
    except ReadRouterError as exc:
        raise read_failure(exc) from exc
    finally:
        provider.close()

    return SignedDocListResponse(
        items=[_to_item(doc) for doc in result.data.items],
        nextCursor=result.data.next_cursor,
        hasMore=result.data.has_more,
        dataSource=result.data_source.value,
        fallbackUsed=result.fallback_used,
    )
