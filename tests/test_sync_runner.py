from datetime import timedelta

import pytest

from wosync.db.session import utc_now
from wosync.config import get_settings
from wosync.models.sync_job import JobStatus, JobType
from wosync.services import job_store, sheets_session, sync_runner, work_orders, workspaces
from wosync.services.sheets_service import LegacyRecordNotFoundError, QuotaExceededError, SpreadsheetNotConfiguredError


def _create_work_orders(workspace, n):
    created = []
    for i in range(n):
        created.append(work_orders.save_work_order(workspace.id, {"work_order_number": f"WO-{i}", "fm_key": "FM"}))
    return created


def _jobs(workspace):
    return job_store.list_sync_jobs(workspace.id, limit=100).items


def test_single_job_succeeds(workspace, legacy, legacy_factory, connected):
    _create_work_orders(workspace, 1)

    result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory)

    assert result.as_dict() == {
        "processed": 1,
        "succeeded": 1,
        "failed": 0,
        "failed_quota": 0,
        "remaining_pending": 0,
    }
    job = _jobs(workspace)[0]
    assert job.status is JobStatus.DONE
    assert job.completed_at is not None
    assert len(legacy.rows) == 1


def test_batch_respects_limit(workspace, legacy_factory, connected):
    _create_work_orders(workspace, 4)

    result = sync_runner.process_pending(workspace.id, 3, legacy_factory=legacy_factory)

    assert result.processed == 3
    assert result.remaining_pending == 1


def test_empty_queue_needs_no_credentials(workspace):
    result = sync_runner.process_pending(workspace.id, 10)

    assert result.processed == 0
    assert result.remaining_pending == 0


def test_transient_failure_schedules_retry(workspace, legacy, legacy_factory, connected):
    _create_work_orders(workspace, 1)
    legacy.write_errors.append(RuntimeError("connection reset"))
    now = utc_now()

    result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory, now=now)

    assert result.failed == 1
    assert result.remaining_pending == 1
    job = _jobs(workspace)[0]
    assert job.status is JobStatus.PENDING
    assert job.attempts == 1
    assert job.error_code == "EXPORT_ERROR"
    assert job.error_message == "connection reset"
    assert job.next_retry_at == now + timedelta(minutes=5)


def test_job_fails_permanently_after_max_attempts(workspace, legacy, legacy_factory, connected):
    _create_work_orders(workspace, 1)
    legacy.always_fail = RuntimeError("boom")
    now = utc_now()

    for attempt in range(1, 6):
        now += timedelta(days=2)
        result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory, now=now)
        assert result.processed == 1
        job = _jobs(workspace)[0]
        assert job.attempts == attempt

    assert job.status is JobStatus.FAILED
    assert job.error_code == "MAX_ATTEMPTS_EXCEEDED"
    assert job.next_retry_at is None

    # Terminal jobs are never picked up again
    result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory, now=now + timedelta(days=30))
    assert result.processed == 0


def test_quota_error_stops_the_pass(workspace, legacy, legacy_factory, connected):
    _create_work_orders(workspace, 5)
    legacy.write_errors.append(QuotaExceededError("Sheets API quota exceeded (429)"))
    now = utc_now()

    result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory, now=now)

    assert result.processed == 1
    assert result.failed_quota == 1
    assert result.failed == 0
    assert result.succeeded == 0
    assert result.remaining_pending == 5

    jobs = sorted(_jobs(workspace), key=lambda j: j.id)
    throttled, untouched = jobs[0], jobs[1:]
    assert throttled.error_code == "QUOTA_EXCEEDED"
    assert throttled.attempts == 0
    assert throttled.next_retry_at == now + timedelta(minutes=5)
    for job in untouched:
        assert job.status is JobStatus.PENDING
        assert job.attempts == 0
        assert job.error_code is None
    assert legacy.writes == []


def test_quota_retry_after_extends_delay(workspace, legacy, legacy_factory, connected):
    _create_work_orders(workspace, 1)
    legacy.write_errors.append(QuotaExceededError("quota", retry_after_seconds=3600))
    now = utc_now()

    sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory, now=now)

    assert _jobs(workspace)[0].next_retry_at == now + timedelta(hours=1)


def test_quota_text_in_generic_error_is_classified(workspace, legacy, legacy_factory, connected):
    _create_work_orders(workspace, 2)
    legacy.write_errors.append(RuntimeError("RESOURCE_EXHAUSTED: too many writes"))

    result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory)

    assert result.failed_quota == 1
    assert result.processed == 1


def test_missing_credentials_mutates_nothing(workspace, legacy_factory):
    _create_work_orders(workspace, 2)
    sheets_session.clear_access_token()

    with pytest.raises(sheets_session.MissingCredentialsError):
        sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory)

    for job in _jobs(workspace):
        assert job.status is JobStatus.PENDING
        assert job.attempts == 0


def test_workspace_without_spreadsheet_mutates_nothing(connected):
    bare = workspaces.create_workspace(name="No sheet")
    work_orders.save_work_order(bare.id, {"work_order_number": "WO-1"})

    with pytest.raises(SpreadsheetNotConfiguredError):
        sync_runner.process_pending(bare.id, 10)

    job = job_store.list_sync_jobs(bare.id).items[0]
    assert job.status is JobStatus.PENDING
    assert job.attempts == 0


def test_lost_claim_is_skipped(workspace, legacy_factory, connected, monkeypatch):
    _create_work_orders(workspace, 2)
    first = sorted(_jobs(workspace), key=lambda j: j.id)[0]
    real_claim = job_store.claim

    def racing_claim(job_id):
        if job_id == first.id:
            real_claim(job_id)  # another worker wins
            return False
        return real_claim(job_id)

    monkeypatch.setattr(job_store, "claim", racing_claim)

    result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory)

    assert result.processed == 1
    assert result.succeeded == 1
    assert job_store.get_sync_job(first.id).status is JobStatus.PROCESSING


def test_quota_on_second_job_stops_before_the_rest(workspace, legacy, legacy_factory, connected):
    _create_work_orders(workspace, 5)
    legacy.write_errors.extend([None, QuotaExceededError("Sheets API quota exceeded (429)")])

    result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory)

    assert result.processed == 2
    assert result.succeeded == 1
    assert result.failed_quota == 1
    assert result.failed == 0
    assert result.remaining_pending == 4

    jobs = sorted(_jobs(workspace), key=lambda j: j.id)
    assert jobs[0].status is JobStatus.DONE
    assert jobs[1].status is JobStatus.PENDING
    assert jobs[1].error_code == "QUOTA_EXCEEDED"
    assert jobs[1].attempts == 0
    for job in jobs[2:]:
        assert job.status is JobStatus.PENDING
        assert job.attempts == 0
        assert job.error_code is None
    assert len(legacy.writes) == 1


def test_missing_legacy_row_with_429_in_number_still_fails(workspace, legacy, legacy_factory, connected):
    created = work_orders.save_work_order(workspace.id, {"work_order_number": "WO-1429", "fm_key": "FM"})
    for job in _jobs(workspace):
        job_store.mark_done(job.id)
    work_orders.record_signed_match(workspace.id, created.id, signed_pdf_url="https://files/WO-1429.pdf")
    now = utc_now()

    for attempt in range(1, 6):
        now += timedelta(days=2)
        result = sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory, now=now)
        assert result.failed == 1
        assert result.failed_quota == 0

    job = next(j for j in _jobs(workspace) if j.job_type is JobType.SIGNED_MATCH)
    assert job.status is JobStatus.FAILED
    assert job.error_code == "MAX_ATTEMPTS_EXCEEDED"
    assert job.attempts == 5
    assert "WO-1429" in job.error_message


def test_typed_sheets_errors_are_never_read_as_quota():
    assert sync_runner._is_quota_failure(QuotaExceededError("slow down"))
    assert not sync_runner._is_quota_failure(LegacyRecordNotFoundError("No legacy row for 'WO-429' (quota sheet)"))
    assert sync_runner._is_quota_failure(RuntimeError("HTTP 429"))
    assert not sync_runner._is_quota_failure(RuntimeError("bad row WO-1429"))


def test_max_attempts_setting_is_honoured(workspace, legacy, legacy_factory, connected, monkeypatch):
    monkeypatch.setenv("WOSYNC_MAX_ATTEMPTS", "2")
    get_settings.cache_clear()
    _create_work_orders(workspace, 1)
    legacy.always_fail = RuntimeError("boom")
    now = utc_now()

    for _ in range(2):
        now += timedelta(days=2)
        sync_runner.process_pending(workspace.id, 10, legacy_factory=legacy_factory, now=now)

    job = _jobs(workspace)[0]
    assert job.status is JobStatus.FAILED
    assert job.attempts == 2
