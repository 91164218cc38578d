from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from wosync.api.deps import load_workspace
from wosync.models.workspace import ReadSource, Workspace
from wosync.services import workspaces

router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])


# -------------------------
# API models
# -------------------------

class WorkspaceCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, examples=["Acme Facilities"])
    spreadsheetId: Optional[str] = None
    driveFolderId: Optional[str] = None
    sheetName: Optional[str] = None
    primaryReadSource: Literal["LEGACY", "DB"] = "LEGACY"
    strictMode: bool = False


class WorkspaceResponse(BaseModel):
    id: str
    name: str
    spreadsheetId: Optional[str] = None
    driveFolderId: Optional[str] = None
    sheetName: Optional[str] = None
    primaryReadSource: Literal["LEGACY", "DB"]
    strictMode: bool


class ReadSourceSettings(BaseModel):
    primaryReadSource: Literal["LEGACY", "DB"]
    strictMode: bool = False


class ReadSourceUpdateRequest(BaseModel):
    primaryReadSource: Optional[Literal["LEGACY", "DB"]] = None
    strictMode: Optional[bool] = None


def _to_response(workspace: Workspace) -> WorkspaceResponse:
    return WorkspaceResponse(
        id=workspace.id,
        name=workspace.name,
        spreadsheetId=workspace.spreadsheet_id,
        driveFolderId=workspace.drive_folder_id,
        sheetName=workspace.sheet_name,
        primaryReadSource=workspace.primary_read_source.value,
        strictMode=workspace.strict_mode,
    )


# -------------------------
# Routes
# -------------------------

@router.post("", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
def create_workspace(payload: WorkspaceCreateRequest) -> WorkspaceResponse:
    workspace = workspaces.create_workspace(
        name=payload.name,
        spreadsheet_id=payload.spreadsheetId,
        drive_folder_id=payload.driveFolderId,
        sheet_name=payload.sheetName,
        primary_read_source=ReadSource(payload.primaryReadSource),
        strict_mode=payload.strictMode,
    )
    return _to_response(workspace)


@router.get("/{workspace_id}", response_model=WorkspaceResponse)
def get_workspace(workspace_id: str) -> WorkspaceResponse:
    return _to_response(load_workspace(workspace_id))


@router.get("/{workspace_id}/read-source", response_model=ReadSourceSettings)
def get_read_source(workspace_id: str) -> ReadSourceSettings:
    workspace = load_workspace(workspace_id)
    return ReadSourceSettings(
        primaryReadSource=workspace.primary_read_source.value,
        strictMode=workspace.strict_mode,
    )


@router.put("/{workspace_id}/read-source", response_model=ReadSourceSettings)
def update_read_source(workspace_id: str, payload: ReadSourceUpdateRequest) -> ReadSourceSettings:
    load_workspace(workspace_id)
    workspace = workspaces.set_read_settings(
        workspace_id,
        primary_read_source=ReadSource(payload.primaryReadSource) if payload.primaryReadSource else None,
        strict_mode=payload.strictMode,
    )
    return ReadSourceSettings(
        primaryReadSource=workspace.primary_read_source.value,
        strictMode=workspace.strict_mode,
    )
