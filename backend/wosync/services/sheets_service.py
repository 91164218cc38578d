from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from urllib.parse import quote

import httpx

from wosync.config import get_settings
from wosync.models.work_order import natural_key
from wosync.models.workspace import Workspace
from wosync.services.header_cache import HeaderCache, HeaderMap

logger = logging.getLogger(__name__)


# -------------------------
# Legacy sheet layout
# -------------------------

LEGACY_COLUMNS: tuple[str, ...] = (
    "jobId",
    "fmKey",
    "wo_number",
    "status",
    "scheduled_date",
    "customer_name",
    "service_address",
    "job_description",
    "amount",
    "currency",
    "priority",
    "notes",
    "signed_pdf_url",
    "signed_preview_image_url",
    "signed_at",
    "created_at",
    "source",
    "last_updated_at",
)

LegacyRecord = dict[str, Optional[str]]


# -------------------------
# Errors
# -------------------------

class SheetsServiceError(Exception):
    pass


class AuthenticationError(SheetsServiceError):
    pass


class ApiAccessError(SheetsServiceError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ServerConnectionError(SheetsServiceError):
    pass


class QuotaExceededError(SheetsServiceError):
    """Raised when Sheets throttles the caller (HTTP 429 or a quota 403).

    The message always contains "quota" so text-based classification agrees
    with the type.
    """

    def __init__(self, message: str, retry_after_seconds: int | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ResponseParseError(SheetsServiceError):
    pass


class LegacyRecordNotFoundError(SheetsServiceError):
    pass


class SpreadsheetNotConfiguredError(SheetsServiceError):
    pass


class LegacyStore(Protocol):
    def list_records(self) -> list[LegacyRecord]: ...

    def find_record(self, work_order_number: str, fm_key: str | None) -> LegacyRecord | None: ...

    def upsert_work_order(self, record: LegacyRecord) -> str: ...

    def update_work_order_partial(
        self, work_order_number: str, fm_key: str | None, fields: LegacyRecord
    ) -> None: ...

    def list_signed_review_rows(self) -> list[LegacyRecord]: ...


# -------------------------
# Helpers
# -------------------------

def format_sheet_range(sheet_name: str, cell_range: str = "1:1") -> str:
    """Sheet names with spaces or quotes must be single-quoted in A1 notation."""
    if any(ch.isspace() or ch in "'\"" for ch in sheet_name):
        escaped = sheet_name.replace("'", "''")
        return f"'{escaped}'!{cell_range}"
    return f"{sheet_name}!{cell_range}"


def column_letter(index: int) -> str:
    """0-based column index to A, B, ..., Z, AA, ..."""
    n = index + 1
    letters = ""
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def _extract_retry_after_seconds(resp: httpx.Response) -> int | None:
    raw = resp.headers.get("retry-after")
    if raw and raw.strip().isdigit():
        return int(raw.strip())
    return None


def _error_snippet(resp: httpx.Response) -> str:
    text = resp.text or ""
    try:
        payload = resp.json()
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            err = payload["error"]
            return f"{err.get('status') or ''} {err.get('message') or ''}".strip()
    except ValueError:
        pass
    return text[:300]


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


# -------------------------
# Client
# -------------------------

class SheetsLegacyStore:
    """Work-order rows in one Google Sheet, addressed by (wo_number, fmKey)."""

    def __init__(
        self,
        *,
        access_token: str,
        spreadsheet_id: str,
        sheet_name: str,
        header_cache: HeaderCache,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        settings = get_settings()
        self._access_token = access_token
        self._spreadsheet_id = spreadsheet_id
        self._sheet_name = sheet_name
        self._header_cache = header_cache
        self._base_url = (base_url or settings.sheets_api_base_url).rstrip("/")
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds or settings.sheets_timeout_seconds),
            follow_redirects=True,
        )

    # -- HTTP --------------------------------------------------------------

    def _values_url(self, cell_range: str, suffix: str = "", sheet_name: str | None = None) -> str:
        a1 = format_sheet_range(sheet_name or self._sheet_name, cell_range)
        return f"{self._base_url}/{self._spreadsheet_id}/values/{quote(a1, safe='')}{suffix}"

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
            "User-Agent": "WorkOrder Sync",
        }
        try:
            resp = self._client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise ServerConnectionError("Timed out waiting for the Google Sheets API.") from exc
        except httpx.RequestError as exc:
            raise ServerConnectionError("Unable to reach the Google Sheets API.") from exc

        if resp.status_code == 429:
            raise QuotaExceededError(
                f"Sheets API quota exceeded (429). snippet={_error_snippet(resp)!r}",
                retry_after_seconds=_extract_retry_after_seconds(resp),
            )
        if resp.status_code == 403:
            snippet = _error_snippet(resp)
            if "ratelimitexceeded" in snippet.lower() or "quota" in snippet.lower():
                raise QuotaExceededError(
                    f"Sheets API quota exceeded (403). snippet={snippet!r}",
                    retry_after_seconds=_extract_retry_after_seconds(resp),
                )
            raise AuthenticationError("Google access token was rejected or access to the spreadsheet is denied.")
        if resp.status_code == 401:
            raise AuthenticationError("Google access token is invalid or expired.")
        if resp.status_code == 404:
            raise ApiAccessError("Spreadsheet or sheet was not found.", status_code=404)
        if resp.status_code >= 400:
            raise ApiAccessError(
                f"Sheets request failed with status {resp.status_code}. snippet={_error_snippet(resp)!r}",
                status_code=resp.status_code,
            )

        if not resp.content:
            return {}
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ResponseParseError(f"Sheets API returned invalid JSON. snippet={(resp.text or '')[:300]!r}") from exc
        if not isinstance(payload, dict):
            raise ResponseParseError(f"Unexpected JSON type from Sheets API: {type(payload).__name__}")
        return payload

    def _get_values(self, cell_range: str, sheet_name: str | None = None) -> list[list[str]]:
        payload = self._request("GET", self._values_url(cell_range, sheet_name=sheet_name))
        values = payload.get("values") or []
        return [[_cell(v) for v in row] for row in values if isinstance(row, list)]

    def _put_row(self, row_number: int, values: list[str]) -> None:
        last = column_letter(max(len(values), 1) - 1)
        self._request(
            "PUT",
            self._values_url(f"A{row_number}:{last}{row_number}"),
            params={"valueInputOption": "RAW"},
            json={"values": [values]},
        )

    def _append_row(self, values: list[str]) -> None:
        self._request(
            "POST",
            self._values_url("A:A", ":append"),
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [values]},
        )

    # -- Headers -------------------------------------------------------------

    def get_headers(self) -> HeaderMap:
        cached = self._header_cache.get(self._spreadsheet_id, self._sheet_name)
        if cached is not None:
            return cached
        rows = self._get_values("1:1")
        headers = rows[0] if rows else []
        return self._header_cache.put(self._spreadsheet_id, self._sheet_name, headers)

    def ensure_columns(self, required: tuple[str, ...] = LEGACY_COLUMNS) -> HeaderMap:
        header_map = self.get_headers()
        missing = [c for c in required if header_map.index_of(c) is None]
        if not missing:
            return header_map

        headers = list(header_map.headers) + missing
        logger.info("Adding %d missing column(s) to sheet %s: %s", len(missing), self._sheet_name, missing)
        self._put_row(1, headers)
        self._header_cache.invalidate(self._spreadsheet_id, self._sheet_name)
        return self._header_cache.put(self._spreadsheet_id, self._sheet_name, headers)

    # -- Records -------------------------------------------------------------

    def _read_data_rows(self) -> tuple[HeaderMap, list[list[str]]]:
        rows = self._get_values("A:ZZ")
        if not rows:
            return HeaderMap.from_headers([], fetched_at=0.0), []
        # The full read includes the header row; refresh the cache from it
        header_map = self._header_cache.put(self._spreadsheet_id, self._sheet_name, rows[0])
        return header_map, rows[1:]

    @staticmethod
    def _row_to_record(header_map: HeaderMap, row: list[str], row_number: int) -> LegacyRecord:
        record: LegacyRecord = {}
        for column in LEGACY_COLUMNS:
            index = header_map.index_of(column)
            value = row[index].strip() if index is not None and index < len(row) else ""
            record[column] = value or None
        record["_row_number"] = str(row_number)
        return record

    def list_records(self) -> list[LegacyRecord]:
        """All data rows in sheet order (oldest first); rows without wo_number are skipped."""
        header_map, rows = self._read_data_rows()
        records: list[LegacyRecord] = []
        for offset, row in enumerate(rows):
            record = self._row_to_record(header_map, row, row_number=offset + 2)
            if record.get("wo_number"):
                records.append(record)
        return records

    def _locate(self, work_order_number: str, fm_key: str | None) -> tuple[HeaderMap, int | None, list[str]]:
        header_map, rows = self._read_data_rows()
        wanted = natural_key(work_order_number, fm_key)
        for offset, row in enumerate(rows):
            record = self._row_to_record(header_map, row, row_number=offset + 2)
            if record.get("wo_number") and natural_key(record.get("wo_number"), record.get("fmKey")) == wanted:
                return header_map, offset + 2, row
        return header_map, None, []

    def find_record(self, work_order_number: str, fm_key: str | None) -> LegacyRecord | None:
        header_map, row_number, row = self._locate(work_order_number, fm_key)
        if row_number is None:
            return None
        return self._row_to_record(header_map, row, row_number)

    @staticmethod
    def _merge_row(header_map: HeaderMap, existing: list[str], fields: LegacyRecord) -> list[str]:
        merged = list(existing) + [""] * max(0, len(header_map.headers) - len(existing))
        for column, value in fields.items():
            index = header_map.index_of(column)
            if index is not None:
                merged[index] = _cell(value)
        return merged

    def upsert_work_order(self, record: LegacyRecord) -> str:
        """Update the row matching the record's natural key, or append one. Returns "updated" or "inserted"."""
        work_order_number = record.get("wo_number") or ""
        if not work_order_number:
            raise ValueError("legacy record requires wo_number")

        self.ensure_columns()
        header_map, row_number, existing = self._locate(work_order_number, record.get("fmKey"))
        row = self._merge_row(header_map, existing, record)

        if row_number is None:
            self._append_row(row)
            return "inserted"
        self._put_row(row_number, row)
        return "updated"

    def update_work_order_partial(self, work_order_number: str, fm_key: str | None, fields: LegacyRecord) -> None:
        header_map, row_number, existing = self._locate(work_order_number, fm_key)
        if row_number is None:
            raise LegacyRecordNotFoundError(
                f"No legacy row for work order {work_order_number!r} (fmKey={fm_key!r}) yet"
            )
        self._put_row(row_number, self._merge_row(header_map, existing, fields))

    def list_signed_review_rows(self) -> list[LegacyRecord]:
        """Rows of the signed-documents review sheet, keyed by lowercased header, oldest first."""
        sheet_name = get_settings().signed_review_sheet_name
        rows = self._get_values("A:Z", sheet_name=sheet_name)
        if not rows:
            return []
        header_map = HeaderMap.from_headers(rows[0], fetched_at=0.0)
        records: list[LegacyRecord] = []
        for offset, row in enumerate(rows[1:]):
            if not any(cell.strip() for cell in row):
                continue
            record: LegacyRecord = {}
            for column, index in header_map.index_by_lower.items():
                value = row[index].strip() if index < len(row) else ""
                record[column] = value or None
            record["_row_number"] = str(offset + 2)
            records.append(record)
        return records

    def close(self) -> None:
        self._client.close()


def build_legacy_store(
    workspace: Workspace,
    access_token: str,
    header_cache: HeaderCache,
    http_client: httpx.Client | None = None,
) -> SheetsLegacyStore:
    if not workspace.spreadsheet_id:
        raise SpreadsheetNotConfiguredError(f"Workspace {workspace.id} has no spreadsheet configured")
    return SheetsLegacyStore(
        access_token=access_token,
        spreadsheet_id=workspace.spreadsheet_id,
        sheet_name=workspace.sheet_name or get_settings().default_sheet_name,
        header_cache=header_cache,
        http_client=http_client,
    )
