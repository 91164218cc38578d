import pathlib

import pytest
from fastapi.testclient import TestClient

from wosync.api.deps import get_header_cache, get_legacy_factory
from wosync.config import get_settings
from wosync.db.session import init_db
from wosync.main import app
from wosync.models.work_order import natural_key
from wosync.services import sheets_session, workspaces
from wosync.services.sheets_service import LegacyRecordNotFoundError


class FakeLegacyStore:
    """In-memory legacy sheet keyed the same way as the real one."""

    def __init__(self):
        self.rows: list[dict] = []
        self.write_errors: list[Exception | None] = []  # None lets that write through
        self.always_fail: Exception | None = None
        self.read_error: Exception | None = None
        self.writes: list[tuple[str, dict]] = []
        self.review_rows: list[dict] = []

    def _check_write(self):
        if self.always_fail is not None:
            raise self.always_fail
        if self.write_errors:
            error = self.write_errors.pop(0)
            if error is not None:
                raise error

    def _matches(self, row, work_order_number, fm_key):
        return natural_key(row.get("wo_number"), row.get("fmKey")) == natural_key(work_order_number, fm_key)

    def list_records(self):
        if self.read_error is not None:
            raise self.read_error
        return [dict(row) for row in self.rows]

    def list_signed_review_rows(self):
        if self.read_error is not None:
            raise self.read_error
        return [dict(row, _row_number=index + 2) for index, row in enumerate(self.review_rows)]

    def find_record(self, work_order_number, fm_key):
        for row in self.list_records():
            if self._matches(row, work_order_number, fm_key):
                return row
        return None

    def upsert_work_order(self, record):
        self._check_write()
        self.writes.append(("upsert", dict(record)))
        for row in self.rows:
            if self._matches(row, record.get("wo_number"), record.get("fmKey")):
                row.update(record)
                return "updated"
        self.rows.append(dict(record))
        return "inserted"

    def update_work_order_partial(self, work_order_number, fm_key, fields):
        self._check_write()
        for row in self.rows:
            if self._matches(row, work_order_number, fm_key):
                self.writes.append(("partial", dict(fields)))
                row.update(fields)
                return
        raise LegacyRecordNotFoundError(f"No legacy row for work order {work_order_number!r}")


@pytest.fixture(autouse=True)
def isolated_db(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WOSYNC_DATABASE_PATH", str(tmp_path / "internal.db"))
    monkeypatch.delenv("WOSYNC_GOOGLE_ACCESS_TOKEN", raising=False)
    monkeypatch.setenv("WOSYNC_DB_PRIMARY_READS", "true")
    get_settings.cache_clear()
    get_header_cache.cache_clear()
    sheets_session.clear_access_token()
    init_db()
    yield
    sheets_session.clear_access_token()
    app.dependency_overrides.clear()
    get_settings.cache_clear()
    get_header_cache.cache_clear()


@pytest.fixture
def legacy() -> FakeLegacyStore:
    return FakeLegacyStore()


@pytest.fixture
def legacy_factory(legacy):
    return lambda workspace, access_token: legacy


@pytest.fixture
def connected():
    sheets_session.set_access_token("test-token")
    yield
    sheets_session.clear_access_token()


@pytest.fixture
def workspace():
    return workspaces.create_workspace(name="Acme Facilities", spreadsheet_id="sheet-123")


@pytest.fixture
def client(legacy_factory) -> TestClient:
    app.dependency_overrides[get_legacy_factory] = lambda: legacy_factory
    return TestClient(app)
