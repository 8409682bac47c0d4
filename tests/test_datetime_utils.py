import time
from datetime import datetime, timedelta, timezone

import pytest

from src.utils.datetime_utils import (
    ensure_utc,
    isoformat_utc,
    parse_duration,
    parse_feed_datetime,
    parse_to_utc_with_tzinfo,
)


def test_parse_various_tz_strings():
    dt, off, name = parse_to_utc_with_tzinfo("Tue, 15 Jan 2019 12:45:26 GMT")
    assert dt.tzinfo == timezone.utc
    assert off == 0
    assert name.upper().startswith("GMT") or name.upper() == "UTC"

    dt2, off2, _ = parse_to_utc_with_tzinfo("2025-09-30T12:00:00-03:00")
    assert off2 == -180
    assert dt2 == datetime(2025, 9, 30, 15, 0, tzinfo=timezone.utc)

    dt3, off3, _ = parse_to_utc_with_tzinfo("2024-01-01 00:00:00")
    assert off3 == 0
    assert dt3.tzinfo == timezone.utc


def test_struct_time_is_read_as_utc():
    parsed = time.strptime("2025-01-06 10:00:00", "%Y-%m-%d %H:%M:%S")
    assert parse_feed_datetime(parsed) == datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc)


def test_parse_feed_datetime_drops_microseconds_and_garbage():
    value = datetime(2025, 1, 6, 10, 0, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
    assert parse_feed_datetime(value) == datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)
    assert parse_feed_datetime("not a date at all") is None
    assert parse_feed_datetime("") is None
    assert parse_feed_datetime(None) is None


def test_isoformat_utc_is_stable():
    naive = datetime(2025, 1, 6, 10, 0)
    aware = datetime(2025, 1, 6, 11, 0, tzinfo=timezone(timedelta(hours=1)))
    assert isoformat_utc(naive) == "2025-01-06T10:00:00Z"
    assert isoformat_utc(aware) == "2025-01-06T10:00:00Z"
    assert isoformat_utc(None) == ""
    assert ensure_utc(naive).tzinfo == timezone.utc


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("01:02:03", 3723),
        ("45:10", 2710),
        ("1865", 1865),
        ("1865.7", 1865),
        (90, 90),
        ("", None),
        ("abc", None),
        ("10:75", None),
        ("1:61:00", None),
        (None, None),
        (float("inf"), None),
        (-5, None),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected
