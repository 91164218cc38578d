from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from wosync.api.deps import LegacyProvider, get_legacy_factory, get_read_router, load_workspace
from wosync.services import reconciliation, sheets_session
from wosync.services.read_router import ReadRouter
from wosync.services.reconciliation import DriftReport, RecordKey
from wosync.services.sheets_service import SheetsServiceError, SpreadsheetNotConfiguredError

router = APIRouter(prefix="/api/workspaces/{workspace_id}/reconcile", tags=["reconcile"])


class RecordKeyItem(BaseModel):
    workOrderNumber: str
    fmKey: Optional[str] = None


class DriftEntryItem(BaseModel):
    workOrderNumber: str
    fmKey: Optional[str] = None
    field: str
    primaryValue: Any = None
    secondaryValue: Any = None


class DriftReportResponse(BaseModel):
    primarySource: str
    secondarySource: str
    primaryCount: int
    secondaryCount: int
    inBoth: int
    onlyInPrimary: list[RecordKeyItem] = Field(default_factory=list)
    onlyInSecondary: list[RecordKeyItem] = Field(default_factory=list)
    onlyInPrimaryCount: int = 0
    onlyInSecondaryCount: int = 0
    comparedPairs: int = 0
    fields: list[str] = Field(default_factory=list)
    driftCounts: dict[str, int] = Field(default_factory=dict)
    drift: list[DriftEntryItem] = Field(default_factory=list)
    totalDrift: int = 0


def _key_item(key: RecordKey) -> RecordKeyItem:
    return RecordKeyItem(workOrderNumber=key.work_order_number, fmKey=key.fm_key)


def _to_response(report: DriftReport) -> DriftReportResponse:
    return DriftReportResponse(
        primarySource=report.primary_source,
        secondarySource=report.secondary_source,
        primaryCount=report.primary_count,
        secondaryCount=report.secondary_count,
        inBoth=report.in_both,
        onlyInPrimary=[_key_item(k) for k in report.only_in_primary],
        onlyInSecondary=[_key_item(k) for k in report.only_in_secondary],
        onlyInPrimaryCount=report.only_in_primary_count,
        onlyInSecondaryCount=report.only_in_secondary_count,
        comparedPairs=report.compared_pairs,
        fields=report.fields,
        driftCounts=report.drift_counts,
        drift=[
            DriftEntryItem(
                workOrderNumber=entry.key.work_order_number,
                fmKey=entry.key.fm_key,
                field=entry.field,
                primaryValue=entry.primary_value,
                secondaryValue=entry.secondary_value,
            )
            for entry in report.drift
        ],
        totalDrift=report.total_drift,
    )


@router.get("/sample", response_model=DriftReportResponse)
def reconcile_sample(
    workspace_id: str,
    sample_size: int = Query(default=50, alias="sampleSize"),
    reader: ReadRouter = Depends(get_read_router),
    legacy_factory=Depends(get_legacy_factory),
) -> DriftReportResponse:
    workspace = load_workspace(workspace_id)
    provider = LegacyProvider(workspace, legacy_factory)
    try:
        report = reconciliation.compare_sample(
            workspace_id,
            sample_size,
            legacy_provider=provider,
            router=reader,
        )
    except sheets_session.MissingCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except SpreadsheetNotConfiguredError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SheetsServiceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    finally:
        provider.close()
    return _to_response(report)
