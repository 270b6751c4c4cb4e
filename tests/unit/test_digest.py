"""
Tests for weekly digest bucketing and payload parsing
"""

import pytest
from datetime import datetime, timedelta, timezone
from core.exceptions import InvalidJobPayloadError
from models.base import DeliveryMode
from models.channel import MonitorChannel
from monitoring.digest import (
    compute_digest_target,
    digest_timeframe,
    parse_digest_payload,
    partition_channels,
)


def test_midweek_change_is_sent_next_monday_morning():
    target = compute_digest_target(datetime(2024, 1, 17, 15, 30))  # Wednesday

    assert target.digest_key == "2024-01-15"
    assert target.period_start == datetime(2024, 1, 15)
    assert target.digest_at == datetime(2024, 1, 22, 9, 0)
    assert target.period_end == target.digest_at


@pytest.mark.parametrize(
    "reference",
    [
        datetime(2024, 1, 15, 0, 0),
        datetime(2024, 1, 18, 12, 0),
        datetime(2024, 1, 21, 23, 59, 59),
    ],
)
def test_whole_week_shares_one_bucket(reference):
    target = compute_digest_target(reference)

    assert target.digest_key == "2024-01-15"
    assert target.digest_at == datetime(2024, 1, 22, 9, 0)


def test_monday_before_send_hour_starts_a_new_week():
    target = compute_digest_target(datetime(2024, 1, 22, 8, 0))

    assert target.digest_key == "2024-01-22"
    assert target.digest_at == datetime(2024, 1, 29, 9, 0)


def test_aware_reference_is_bucketed_in_utc():
    # Monday 01:00 at UTC+5 is still Sunday in UTC
    reference = datetime(2024, 1, 22, 1, 0, tzinfo=timezone(timedelta(hours=5)))
    assert compute_digest_target(reference).digest_key == "2024-01-15"


def test_partition_channels():
    immediate = MonitorChannel(channel_id=1, delivery_mode=DeliveryMode.IMMEDIATE)
    weekly = MonitorChannel(channel_id=2, delivery_mode=DeliveryMode.WEEKLY_DIGEST)
    unset = MonitorChannel(channel_id=3)

    assert partition_channels([immediate, weekly, unset]) == ([immediate, unset], [weekly])


def test_parse_digest_payload():
    monitor_id, channel_id, digest_at = parse_digest_payload(
        {"monitor_id": "4", "channel_id": 9, "digest_at": "2024-01-22T09:00:00"}
    )

    assert (monitor_id, channel_id) == (4, 9)
    assert digest_at == datetime(2024, 1, 22, 9, 0)


def test_parse_digest_payload_normalizes_aware_timestamp():
    _, _, digest_at = parse_digest_payload(
        {"monitor_id": 1, "channel_id": 2, "digest_at": "2024-01-22T09:00:00+00:00"}
    )
    assert digest_at.tzinfo is None
    assert digest_at == datetime(2024, 1, 22, 9, 0)


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"channel_id": 2, "digest_at": "2024-01-22T09:00:00"},
        {"monitor_id": 1, "channel_id": 2, "digest_at": "next monday"},
        {"monitor_id": 1, "channel_id": 2, "digest_at": 12},
    ],
)
def test_parse_digest_payload_rejects_bad_payloads(payload):
    with pytest.raises(InvalidJobPayloadError):
        parse_digest_payload(payload)


def test_digest_timeframe_ends_the_day_before_send():
    assert digest_timeframe("2024-01-15", datetime(2024, 1, 22, 9, 0)) == ("2024-01-15", "2024-01-22")
    assert digest_timeframe("2024-01-15", datetime(2024, 1, 22, 0, 0)) == ("2024-01-15", "2024-01-21")
