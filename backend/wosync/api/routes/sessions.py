from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, Field

from wosync.services import sheets_session

router = APIRouter(prefix="/sessions", tags=["sessions"])


class SessionCreateRequest(BaseModel):
    access_token: str = Field(..., min_length=1, examples=["ya29.a0Af..."])


class SessionResponse(BaseModel):
    connected: bool


@router.post("", response_model=SessionResponse)
def create_session(request: SessionCreateRequest) -> SessionResponse:
    sheets_session.set_access_token(request.access_token.strip())
    return SessionResponse(connected=sheets_session.is_connected())


@router.delete("", response_model=SessionResponse)
def delete_session() -> SessionResponse:
    sheets_session.clear_access_token()
    return SessionResponse(connected=sheets_session.is_connected())
