from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from wosync.db.session import utc_now
from wosync.models.sync_job import JobStatus, JobType
from wosync.services import job_store


def _enqueue(workspace_id, n):
    return [job_store.insert_pending(workspace_id, JobType.WORK_ORDER, f"wo-{i}") for i in range(n)]


def test_insert_pending_defaults():
    job = job_store.insert_pending("ws-1", JobType.WORK_ORDER, "wo-1")

    assert job.status is JobStatus.PENDING
    assert job.attempts == 0
    assert job.next_retry_at is None
    assert job.error_code is None
    assert job.completed_at is None


def test_select_eligible_is_oldest_first_and_bounded():
    jobs = _enqueue("ws-1", 3)
    _enqueue("ws-2", 2)

    eligible = job_store.select_eligible("ws-1", 2)

    assert [j.id for j in eligible] == [jobs[0].id, jobs[1].id]
    assert job_store.select_eligible("ws-1", 0) == []


def test_select_eligible_skips_future_retries_and_non_pending():
    jobs = _enqueue("ws-1", 3)
    now = utc_now()
    job_store.mark_retry(jobs[0].id, now + timedelta(hours=1), "EXPORT_ERROR", "boom", 1)
    job_store.mark_done(jobs[1].id)

    assert [j.id for j in job_store.select_eligible("ws-1", 10, now=now)] == [jobs[2].id]
    later = job_store.select_eligible("ws-1", 10, now=now + timedelta(hours=2))
    assert [j.id for j in later] == [jobs[0].id, jobs[2].id]


def test_claim_succeeds_once():
    job = _enqueue("ws-1", 1)[0]

    assert job_store.claim(job.id) is True
    assert job_store.claim(job.id) is False
    assert job_store.get_sync_job(job.id).status is JobStatus.PROCESSING


def test_concurrent_claims_have_one_winner():
    job = _enqueue("ws-1", 1)[0]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: job_store.claim(job.id), range(8)))

    assert results.count(True) == 1


def test_mark_done_sets_completed_at():
    job = _enqueue("ws-1", 1)[0]
    job_store.claim(job.id)
    job_store.mark_done(job.id)

    done = job_store.get_sync_job(job.id)
    assert done.status is JobStatus.DONE
    assert done.completed_at is not None
    assert job_store.count_pending("ws-1") == 0


def test_list_sync_jobs_pages_newest_first():
    jobs = _enqueue("ws-1", 5)
    ids = [j.id for j in reversed(jobs)]

    first = job_store.list_sync_jobs("ws-1", limit=2)
    assert [j.id for j in first.items] == ids[:2]
    assert first.has_more is True

    second = job_store.list_sync_jobs("ws-1", cursor=first.next_cursor, limit=2)
    assert [j.id for j in second.items] == ids[2:4]

    last = job_store.list_sync_jobs("ws-1", cursor=second.next_cursor, limit=2)
    assert [j.id for j in last.items] == ids[4:]
    assert last.has_more is False
    assert last.next_cursor is None


def test_list_sync_jobs_filters_by_status():
    jobs = _enqueue("ws-1", 3)
    job_store.mark_failed(jobs[1].id, "MAX_ATTEMPTS_EXCEEDED", "boom", 5)

    page = job_store.list_sync_jobs("ws-1", status=JobStatus.FAILED)
    assert [j.id for j in page.items] == [jobs[1].id]


def test_retry_clears_errors_and_keeps_attempts():
    job = _enqueue("ws-1", 1)[0]
    job_store.mark_failed(job.id, "MAX_ATTEMPTS_EXCEEDED", "boom", 5)

    retried = job_store.retry_sync_job("ws-1", job.id)

    assert retried.status is JobStatus.PENDING
    assert retried.attempts == 5
    assert retried.error_code is None
    assert retried.error_message is None
    assert retried.next_retry_at is None


def test_retry_rejects_done_and_unknown_jobs():
    job = _enqueue("ws-1", 1)[0]
    job_store.mark_done(job.id)

    with pytest.raises(job_store.JobNotRetryableError):
        job_store.retry_sync_job("ws-1", job.id)
    with pytest.raises(job_store.SyncJobNotFoundError):
        job_store.retry_sync_job("ws-1", 9999)
    with pytest.raises(job_store.SyncJobNotFoundError):
        job_store.retry_sync_job("ws-other", job.id)
