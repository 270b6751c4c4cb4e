"""
Tests for weekly digest delivery
"""

import pytest
from datetime import datetime
from sqlalchemy import select
from core.exceptions import DigestDeliveryError
from jobs.handlers import NOTIFICATION_DIGEST
from jobs.scheduler import MonitorScheduler
from models.base import DeliveryMode
from models.channel import MonitorChannel
from models.digest import ChannelDigestItem
from models.notification_event import NotificationEvent
from monitoring.digest import enqueue_weekly_digest, list_pending_digest_groups, process_digest_job
from monitoring.notifier import NotificationService
from monitoring.repository import MonitorRepository
from tests.helpers import (
    TEST_ENCRYPTION_KEY,
    RecordingNotifier,
    create_channel,
    create_monitor,
    structured,
)

WEDNESDAY = datetime(2024, 1, 17, 12, 0)
THURSDAY = datetime(2024, 1, 18, 12, 0)
DIGEST_AT = datetime(2024, 1, 22, 9, 0)


async def record_change(session, monitor, created_at, version=None, meta=None, text=None):
    repo = MonitorRepository(session)
    snapshot = await repo.create_snapshot(monitor.id, f"hash-{created_at.isoformat()}", f"content {created_at}")
    return await repo.create_change(
        monitor_id=monitor.id,
        after_snapshot_id=snapshot.id,
        summary=f"change at {created_at:%A}",
        ai_summary=text,
        ai_summary_meta=meta.to_meta() if meta else None,
        release_version=version,
        created_at=created_at,
    )


async def weekly_link(session, monitor):
    channel = await create_channel(session, monitor, delivery_mode=DeliveryMode.WEEKLY_DIGEST)
    links = await MonitorRepository(session).get_monitor_channels(monitor.id)
    return channel, links


async def pending_items(session):
    result = await session.execute(
        select(ChannelDigestItem)
        .order_by(ChannelDigestItem.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def payload(monitor, channel, digest_at=DIGEST_AT):
    return {"monitor_id": monitor.id, "channel_id": channel.id, "digest_at": digest_at.isoformat()}


@pytest.mark.asyncio
async def test_week_of_changes_forms_one_group(db_session):
    monitor = await create_monitor(db_session)
    channel, links = await weekly_link(db_session, monitor)
    first = await record_change(db_session, monitor, WEDNESDAY)
    second = await record_change(db_session, monitor, THURSDAY)

    assert await enqueue_weekly_digest(db_session, first, links) == 1
    assert await enqueue_weekly_digest(db_session, second, links) == 1
    # same (channel, change) again is a no-op
    assert await enqueue_weekly_digest(db_session, first, links) == 0

    groups = await list_pending_digest_groups(db_session, DIGEST_AT)
    assert len(groups) == 1
    assert groups[0].digest_key == "2024-01-15"
    assert groups[0].channel_id == channel.id
    assert groups[0].change_ids == [first.id, second.id]

    # not due before Monday 09:00
    assert await list_pending_digest_groups(db_session, datetime(2024, 1, 22, 8, 59)) == []


@pytest.mark.asyncio
async def test_digest_is_sent_once_as_aggregate(db_session, notification_service, notifier):
    monitor = await create_monitor(db_session, name="Acme CLI")
    channel, links = await weekly_link(db_session, monitor)
    first = await record_change(
        db_session, monitor, WEDNESDAY, version="v1.1.0", meta=structured(features=["Sandbox mode"])
    )
    second = await record_change(
        db_session, monitor, THURSDAY, version="v1.2.0", meta=structured(fixes=["Fix login", "Fix crash", "Fix hang"])
    )
    for change in (first, second):
        await enqueue_weekly_digest(db_session, change, links)

    result = await process_digest_job(db_session, payload(monitor, channel), notification_service)

    assert result.status == "sent"
    assert result.message == "sent 2 changes"
    assert len(notifier.sent) == 1
    assert notifier.sent[0]["change_id"] == second.id
    assert notifier.sent[0]["text"] == (
        "**Acme CLI: changes from v1.1.0 to v1.2.0**\n"
        "Period: 2024-01-15 → 2024-01-22\n"
        "**Features**\n- Sandbox mode\n"
        "**Fixes**\n- Fix login\n- Fix crash\n- Fix hang"
    )

    assert all(item.sent_at is not None for item in await pending_items(db_session))
    events = (await db_session.execute(select(NotificationEvent).order_by(NotificationEvent.id))).scalars().all()
    assert [(e.change_id, e.status.value) for e in events] == [(first.id, "sent"), (second.id, "sent")]

    link = await db_session.get(MonitorChannel, (monitor.id, channel.id))
    await db_session.refresh(link)
    assert link.last_digest_at == DIGEST_AT

    again = await process_digest_job(db_session, payload(monitor, channel), notification_service)
    assert again.status == "none"
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_failed_digest_stays_pending(db_session, session_maker):
    """
    Test: a channel failure fails the job and leaves the items for a retry
    """
    monitor = await create_monitor(db_session)
    channel, links = await weekly_link(db_session, monitor)
    change = await record_change(db_session, monitor, WEDNESDAY, text="**Docs updated**")
    await enqueue_weekly_digest(db_session, change, links)
    failing = NotificationService(
        session_maker,
        overrides={"webhook": RecordingNotifier(ok=False)},
        encryption_key=TEST_ENCRYPTION_KEY,
    )

    with pytest.raises(DigestDeliveryError):
        await process_digest_job(db_session, payload(monitor, channel), failing)

    assert all(item.sent_at is None for item in await pending_items(db_session))


@pytest.mark.asyncio
async def test_digest_for_inactive_monitor_is_skipped(db_session, notification_service, notifier):
    monitor = await create_monitor(db_session)
    channel, links = await weekly_link(db_session, monitor)
    change = await record_change(db_session, monitor, WEDNESDAY)
    await enqueue_weekly_digest(db_session, change, links)
    monitor.active = False
    await db_session.commit()

    result = await process_digest_job(db_session, payload(monitor, channel), notification_service)

    assert result.status == "skipped"
    assert notifier.sent == []
    assert all(item.sent_at is not None for item in await pending_items(db_session))


@pytest.mark.asyncio
async def test_digest_falls_back_to_change_summaries(db_session, notification_service, notifier):
    monitor = await create_monitor(db_session, name="Docs")
    channel, links = await weekly_link(db_session, monitor)
    change = await record_change(db_session, monitor, WEDNESDAY, text="**Pricing page updated**\n- Pro is $20")
    await enqueue_weekly_digest(db_session, change, links)

    await process_digest_job(db_session, payload(monitor, channel), notification_service)

    assert notifier.sent[0]["text"] == (
        "**Docs: latest updates**\n"
        "Period: 2024-01-15 → 2024-01-22\n"
        "**Highlights**\n- **Pricing page updated**"
    )


@pytest.mark.asyncio
async def test_scheduler_enqueues_due_digest_once(db_session, job_store, session_maker):
    monitor = await create_monitor(db_session, last_checked_at=datetime.utcnow())
    channel, links = await weekly_link(db_session, monitor)
    change = await record_change(db_session, monitor, WEDNESDAY)
    await enqueue_weekly_digest(db_session, change, links)
    scheduler = MonitorScheduler(job_store, session_maker)

    first = await scheduler.tick()
    second = await scheduler.tick()

    assert first["digests"] == 1
    assert second["digests"] == 0

    job = await job_store.claim(types=[NOTIFICATION_DIGEST])
    assert job.payload == payload(monitor, channel)
