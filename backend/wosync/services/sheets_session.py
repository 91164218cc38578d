from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from wosync.config import get_settings


class MissingCredentialsError(RuntimeError):
    pass


@dataclass
class SheetsSession:
    connected: bool = False
    access_token: Optional[str] = None


_SHEETS_SESSION = SheetsSession()


def set_access_token(access_token: str) -> None:
    _SHEETS_SESSION.connected = True
    _SHEETS_SESSION.access_token = access_token


def clear_access_token() -> None:
    _SHEETS_SESSION.connected = False
    _SHEETS_SESSION.access_token = None


def is_connected() -> bool:
    return bool(_SHEETS_SESSION.connected and _SHEETS_SESSION.access_token) or bool(
        get_settings().google_access_token
    )


def get_access_token() -> str:
    if _SHEETS_SESSION.connected and _SHEETS_SESSION.access_token:
        return _SHEETS_SESSION.access_token
    configured = get_settings().google_access_token
    if configured:
        return configured
    raise MissingCredentialsError("Google Sheets is not connected (missing access token)")
