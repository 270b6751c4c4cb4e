"""
Tests for the durable job queue, job locks and the job event trail
"""

import asyncio
import pytest
from datetime import datetime, timedelta
from sqlalchemy import update
from models.base import JobEventStatus, JobStatus
from models.job import Job, JobLock


async def backdate(session_maker, model, row_filter, **values):
    async with session_maker() as session:
        await session.execute(update(model).where(row_filter).values(**values))
        await session.commit()


@pytest.mark.asyncio
async def test_enqueue_claim_complete(job_store):
    job_id = await job_store.enqueue("monitor.check", {"monitor_id": 1})

    job = await job_store.claim()

    assert job.id == job_id
    assert job.type == "monitor.check"
    assert job.payload == {"monitor_id": 1}
    assert job.attempts == 1
    assert await job_store.claim() is None

    assert await job_store.complete(job.id, "ok") is True
    stored = await job_store.get_job(job.id)
    assert stored.status == JobStatus.DONE
    assert stored.message == "ok"
    assert stored.finished_at is not None


@pytest.mark.asyncio
async def test_claims_are_exclusive_and_oldest_first(job_store):
    ids = [await job_store.enqueue("monitor.check", {"monitor_id": i}) for i in range(4)]

    claimed = [await job_store.claim() for _ in range(5)]

    assert [j.id for j in claimed[:4]] == ids
    assert claimed[4] is None


@pytest.mark.asyncio
async def test_concurrent_claims_hand_out_a_job_once(job_store):
    job_id = await job_store.enqueue("monitor.check", {"monitor_id": 1})

    claimed = await asyncio.gather(*(job_store.claim() for _ in range(5)))

    winners = [job for job in claimed if job is not None]
    assert [job.id for job in winners] == [job_id]
    assert (await job_store.get_job(job_id)).attempts == 1


@pytest.mark.asyncio
async def test_claim_filters_by_type(job_store):
    await job_store.enqueue("monitor.check", {"monitor_id": 1})
    digest_id = await job_store.enqueue("notification.digest", {"monitor_id": 1})

    job = await job_store.claim(types=["notification.digest"])

    assert job.id == digest_id


@pytest.mark.asyncio
async def test_finish_only_applies_to_started_jobs(job_store):
    job_id = await job_store.enqueue("monitor.check")

    assert await job_store.complete(job_id) is False

    await job_store.claim()
    assert await job_store.fail(job_id, "HTTP 503") is True
    assert await job_store.complete(job_id) is False

    stored = await job_store.get_job(job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.error == "HTTP 503"


@pytest.mark.asyncio
async def test_dedupe_key_blocks_pending_duplicates(job_store):
    first = await job_store.enqueue("monitor.check", {"monitor_id": 1}, dedupe_key="monitor:1")

    assert await job_store.enqueue("monitor.check", {"monitor_id": 1}, dedupe_key="monitor:1") is None
    assert await job_store.enqueue("monitor.check", {"monitor_id": 2}, dedupe_key="monitor:2") is not None

    await job_store.claim()
    assert await job_store.enqueue("monitor.check", {"monitor_id": 1}, dedupe_key="monitor:1") is None

    await job_store.complete(first)
    assert await job_store.enqueue("monitor.check", {"monitor_id": 1}, dedupe_key="monitor:1") is not None


@pytest.mark.asyncio
async def test_enqueue_notifies_listeners(job_store):
    calls = []
    job_store.add_enqueue_listener(lambda: calls.append(1))

    await job_store.enqueue("monitor.check", dedupe_key="monitor:1")
    await job_store.enqueue("monitor.check", dedupe_key="monitor:1")

    assert calls == [1]


@pytest.mark.asyncio
async def test_timed_out_job_is_requeued(job_store, session_maker):
    """
    Test: a worker that died mid-job leaves it started; maintenance requeues it
    """
    job_id = await job_store.enqueue("monitor.check")
    await job_store.claim()
    await backdate(session_maker, Job, Job.id == job_id, started_at=datetime.utcnow() - timedelta(hours=2))

    assert await job_store.requeue_timed_out(timedelta(minutes=30)) == 1

    job = await job_store.claim()
    assert job.id == job_id
    assert job.attempts == 2


@pytest.mark.asyncio
async def test_recent_started_job_is_not_requeued(job_store):
    await job_store.enqueue("monitor.check")
    await job_store.claim()

    assert await job_store.requeue_timed_out(timedelta(minutes=30)) == 0


@pytest.mark.asyncio
async def test_remove_finished(job_store, session_maker):
    done_id = await job_store.enqueue("monitor.check")
    failed_id = await job_store.enqueue("monitor.check")
    await job_store.claim()
    await job_store.claim()
    await job_store.complete(done_id)
    await job_store.fail(failed_id, "boom")

    old = datetime.utcnow() - timedelta(hours=30)
    await backdate(session_maker, Job, Job.id.in_([done_id, failed_id]), finished_at=old)

    removed = await job_store.remove_finished(timedelta(hours=24), timedelta(hours=168))

    assert removed == 1
    assert await job_store.get_job(done_id) is None
    assert await job_store.get_job(failed_id) is not None


@pytest.mark.asyncio
async def test_count_jobs_by_status(job_store):
    await job_store.enqueue("monitor.check")
    await job_store.enqueue("monitor.check")
    await job_store.claim()

    assert await job_store.count_jobs_by_status() == {"queued": 1, "started": 1, "done": 0, "failed": 0}


# ============================================================================
# Locks
# ============================================================================

@pytest.mark.asyncio
async def test_lock_is_exclusive_until_released(job_store):
    assert await job_store.acquire_lock("monitor.check", "1", job_id=10) is True
    assert await job_store.acquire_lock("monitor.check", "1", job_id=11) is False
    assert await job_store.acquire_lock("monitor.check", "2", job_id=11) is True

    await job_store.release_lock("monitor.check", "1")

    assert await job_store.acquire_lock("monitor.check", "1", job_id=12) is True


@pytest.mark.asyncio
async def test_stale_locks_are_cleaned_up(job_store, session_maker):
    await job_store.acquire_lock("monitor.check", "1")
    await job_store.acquire_lock("monitor.check", "2")
    await backdate(
        session_maker, JobLock, JobLock.key == "1", acquired_at=datetime.utcnow() - timedelta(hours=1)
    )

    assert await job_store.cleanup_stale_locks(timedelta(minutes=30)) == 1
    assert await job_store.acquire_lock("monitor.check", "1") is True
    assert await job_store.acquire_lock("monitor.check", "2") is False


# ============================================================================
# Job events
# ============================================================================

@pytest.mark.asyncio
async def test_job_events_are_filtered_newest_first(job_store):
    await job_store.record_job_event("monitor.check", JobEventStatus.QUEUED, job_id=1, monitor_id=5)
    await job_store.record_job_event("monitor.check", JobEventStatus.STARTED, job_id=1, monitor_id=5)
    await job_store.record_job_event("monitor.check", JobEventStatus.DONE, job_id=1, monitor_id=5, message="ok")
    await job_store.record_job_event("notification.digest", JobEventStatus.QUEUED, job_id=2, monitor_id=6)

    events = await job_store.list_job_events(monitor_id=5)
    assert [e.status for e in events] == [JobEventStatus.DONE, JobEventStatus.STARTED, JobEventStatus.QUEUED]
    assert events[0].job_id == "1"

    digests = await job_store.list_job_events(job_type="notification.digest")
    assert [e.monitor_id for e in digests] == [6]

    done = await job_store.list_job_events(status=JobEventStatus.DONE)
    assert [e.message for e in done] == ["ok"]

    assert len(await job_store.list_job_events(limit=2)) == 2
