from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, status

from wosync.config import get_settings
from wosync.models.workspace import Workspace
from wosync.services import sheets_session, workspaces
from wosync.services.header_cache import HeaderCache
from wosync.services.read_router import ReadRouter, ReadRouterError, StrictModeReadError
from wosync.services.sheets_service import LegacyStore, build_legacy_store
from wosync.services.sync_runner import LegacyFactory


@lru_cache
def get_header_cache() -> HeaderCache:
    # One per process so header lookups survive across requests
    return HeaderCache(ttl_seconds=get_settings().header_cache_ttl_seconds)


def get_read_router() -> ReadRouter:
    return ReadRouter()


def get_legacy_factory() -> Optional[LegacyFactory]:
    """None means the real Google Sheets client; tests override this dependency."""
    return None


def load_workspace(workspace_id: str) -> Workspace:
    try:
        return workspaces.get_workspace(workspace_id)
    except workspaces.WorkspaceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


class LegacyProvider:
    """
    Builds the legacy store on first use.

    Reads go through this so a missing token or spreadsheet surfaces as a
    failure of the legacy source, which the read router can fall back from.
    """

    def __init__(self, workspace: Workspace, factory: Optional[LegacyFactory] = None) -> None:
        self._workspace = workspace
        self._factory = factory
        self._store: Optional[LegacyStore] = None

    def __call__(self) -> LegacyStore:
        if self._store is None:
            access_token = sheets_session.get_access_token()
            if self._factory is not None:
                self._store = self._factory(self._workspace, access_token)
            else:
                self._store = build_legacy_store(self._workspace, access_token, get_header_cache())
        return self._store

    def close(self) -> None:
        if self._store is not None and self._factory is None:
            self._store.close()
        self._store = None


def read_failure(exc: ReadRouterError) -> HTTPException:
    if isinstance(exc, StrictModeReadError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "READ_STRICT_MODE", "source": exc.source.value, "message": str(exc)},
        )
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "READ_SOURCE_UNAVAILABLE", "message": str(exc)},
    )
