import pytest

from wosync.config import Settings, get_settings
from wosync.db.session import utc_now
from wosync.models.signed_document import Decision
from wosync.models.workspace import ReadSource, Workspace
from wosync.services import read_router, signed_docs, work_orders, workspaces
from wosync.services.read_router import ReadRouter, ReadUnavailableError, StrictModeReadError


def _workspace(primary=ReadSource.DB, strict=False):
    now = utc_now()
    return Workspace(
        id="ws-1",
        name="Acme",
        spreadsheet_id="sheet-1",
        drive_folder_id=None,
        sheet_name=None,
        primary_read_source=primary,
        strict_mode=strict,
        created_at=now,
        updated_at=now,
    )


def _fail(message):
    def reader():
        raise RuntimeError(message)

    return reader


def test_primary_success_has_no_fallback():
    result = ReadRouter(db_primary_reads=True).read(_workspace(), legacy=lambda: "legacy", db=lambda: "db")

    assert result.data == "db"
    assert result.data_source is ReadSource.DB
    assert result.fallback_used is False


def test_primary_failure_falls_back():
    result = ReadRouter(db_primary_reads=True).read(_workspace(), legacy=lambda: "legacy", db=_fail("db down"))

    assert result.data == "legacy"
    assert result.data_source is ReadSource.LEGACY
    assert result.fallback_used is True


def test_legacy_primary_falls_back_to_db():
    result = ReadRouter(db_primary_reads=True).read(
        _workspace(primary=ReadSource.LEGACY), legacy=_fail("sheet down"), db=lambda: "db"
    )

    assert result.data_source is ReadSource.DB
    assert result.fallback_used is True


def test_strict_mode_surfaces_primary_error():
    with pytest.raises(StrictModeReadError) as excinfo:
        ReadRouter(db_primary_reads=True).read(
            _workspace(strict=True), legacy=lambda: "legacy", db=_fail("db down")
        )

    assert excinfo.value.source is ReadSource.DB
    assert "db down" in str(excinfo.value)


def test_both_sources_down_reports_secondary_error():
    with pytest.raises(ReadUnavailableError) as excinfo:
        ReadRouter(db_primary_reads=True).read(_workspace(), legacy=_fail("sheet down"), db=_fail("db down"))

    assert "sheet down" in str(excinfo.value)
    assert str(excinfo.value.primary_error) == "db down"


def test_global_switch_forces_legacy():
    result = ReadRouter(db_primary_reads=False).read(_workspace(), legacy=lambda: "legacy", db=lambda: "db")

    assert result.data_source is ReadSource.LEGACY


def test_list_work_orders_from_db(workspace):
    workspaces.set_read_settings(workspace.id, primary_read_source=ReadSource.DB)
    work_orders.save_work_order(workspace.id, {"work_order_number": "WO-1", "fm_key": "FM"})
    work_orders.save_work_order(workspace.id, {"work_order_number": "WO-2", "fm_key": "FM"})
    ws = workspaces.get_workspace(workspace.id)

    def legacy_provider():
        raise AssertionError("legacy must not be read")

    result = read_router.list_work_orders(ReadRouter(db_primary_reads=True), ws, legacy_provider)

    assert result.data_source is ReadSource.DB
    assert [wo.work_order_number for wo in result.data.work_orders] == ["WO-2", "WO-1"]
    assert result.data.work_orders[0].export_status == "PENDING"


def test_list_work_orders_from_legacy_is_newest_first(workspace, legacy):
    legacy.rows.extend(
        [
            {"wo_number": "WO-1", "fmKey": "FM", "status": "open"},
            {"wo_number": "WO-2", "fmKey": "FM", "status": "SIGNED"},
        ]
    )

    result = read_router.list_work_orders(ReadRouter(), workspace, lambda: legacy)
    assert result.data_source is ReadSource.LEGACY
    assert [wo.work_order_number for wo in result.data.work_orders] == ["WO-2", "WO-1"]

    filtered = read_router.list_work_orders(ReadRouter(), workspace, lambda: legacy, status="open")
    assert [wo.work_order_number for wo in filtered.data.work_orders] == ["WO-1"]


def test_detail_miss_is_not_a_failure(workspace, legacy):
    result = read_router.get_work_order_detail(
        ReadRouter(), workspace, lambda: legacy, work_order_number="WO-404", fm_key=None
    )

    assert result.data is None
    assert result.fallback_used is False


def test_db_primary_reads_defaults_off(monkeypatch):
    monkeypatch.delenv("WOSYNC_DB_PRIMARY_READS", raising=False)
    get_settings.cache_clear()

    assert Settings().db_primary_reads is False
    assert ReadRouter().primary_for(_workspace(primary=ReadSource.DB)) is ReadSource.LEGACY


def test_signed_docs_from_review_sheet(workspace, legacy):
    legacy.review_rows.extend(
        [
            {"extracted_work_order_number": "WO-7", "signed_pdf_url": "https://x/7.pdf", "resolved": "TRUE"},
            {"extracted_work_order_number": "WO-8", "signed_pdf_url": "https://x/8.pdf", "resolved": "false"},
            {"extracted_work_order_number": "WO-9", "signed_pdf_url": "https://x/9.pdf", "fmkey": "FM"},
        ]
    )

    result = read_router.list_signed_docs(ReadRouter(), workspace, lambda: legacy)

    assert result.data_source is ReadSource.LEGACY
    assert [doc.id for doc in result.data.items] == ["legacy-2", "legacy-3", "legacy-4"]
    assert [doc.decision for doc in result.data.items] == [
        Decision.MATCHED,
        Decision.UNMATCHED,
        Decision.NEEDS_REVIEW,
    ]
    assert result.data.items[2].fm_key == "FM"

    unmatched = read_router.list_signed_docs(
        ReadRouter(), workspace, lambda: legacy, decision=Decision.UNMATCHED
    )
    assert [doc.extracted_work_order_number for doc in unmatched.data.items] == ["WO-8"]

    limited = read_router.list_signed_docs(ReadRouter(), workspace, lambda: legacy, search="wo", limit=2)
    assert len(limited.data.items) == 2
    assert limited.data.has_more is True


def test_signed_docs_from_db_falls_back_to_review_sheet(workspace, legacy, monkeypatch):
    workspaces.set_read_settings(workspace.id, primary_read_source=ReadSource.DB)
    ws = workspaces.get_workspace(workspace.id)
    legacy.review_rows.append({"extracted_work_order_number": "WO-3", "resolved": "true"})

    def broken(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(signed_docs, "list_signed_documents", broken)
    result = read_router.list_signed_docs(ReadRouter(db_primary_reads=True), ws, lambda: legacy)

    assert result.data_source is ReadSource.LEGACY
    assert result.fallback_used is True
    assert result.data.items[0].extracted_work_order_number == "WO-3"
