from __future__ import annotations

import calendar
import math
import re
import time as _time
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, Union

from dateutil import parser as date_parser

DateInput = Union[str, _time.struct_time, datetime, None]

_CLOCK_DURATION = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{1,2})(?:\.\d+)?$")
_PLAIN_SECONDS = re.compile(r"^\d+(?:\.\d+)?$")


def _tz_offset_minutes(dt: datetime) -> int:
    if dt.tzinfo is None:
        return 0
    offset = dt.utcoffset() or timedelta(0)
    return int(offset.total_seconds() // 60)


def _tz_name(dt: datetime) -> str:
    if dt.tzinfo is None:
        return "UTC"
    name = dt.tzname() or ""
    if name:
        return name
    minutes = _tz_offset_minutes(dt)
    sign = "+" if minutes >= 0 else "-"
    m = abs(minutes)
    return f"UTC{sign}{m // 60:02d}:{m % 60:02d}"


def parse_to_utc_with_tzinfo(value: DateInput) -> Tuple[datetime, int, str]:
    """
    Parse many feed date forms into canonical UTC datetime and capture original tz info.

    ``struct_time`` values are the UTC tuples produced by feedparser.
    Returns: (dt_utc, original_tz_offset_minutes, original_tz_name)
    """
    if value is None:
        dt = datetime.now(timezone.utc)
        return dt, 0, "UTC"

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, _time.struct_time):
        dt = datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    else:
        dt = date_parser.parse(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    tz_offset = _tz_offset_minutes(dt)
    tzname = _tz_name(dt)
    dt_utc = dt.astimezone(timezone.utc)
    return dt_utc, tz_offset, tzname


def parse_feed_datetime(value: DateInput) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime, or None when absent or unparseable."""
    if value is None or value == "":
        return None
    try:
        dt_utc, _, _ = parse_to_utc_with_tzinfo(value)
    except (ValueError, OverflowError, TypeError):
        return None
    return dt_utc.replace(microsecond=0)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from SQLite."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> str:
    """Stable ISO-8601 rendering used in hashes; empty string for None."""
    normalized = ensure_utc(dt)
    if normalized is None:
        return ""
    return normalized.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_duration(value: Union[str, int, float, None]) -> Optional[int]:
    """
    Convert an ``itunes:duration`` value to whole seconds.

    Accepts ``HH:MM:SS``, ``MM:SS`` and plain seconds; anything else is None.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        if (isinstance(value, float) and not math.isfinite(value)) or value < 0:
            return None
        return int(value)
    text = str(value).strip()
    if not text:
        return None
    if _PLAIN_SECONDS.match(text):
        return int(float(text))
    match = _CLOCK_DURATION.match(text)
    if not match:
        return None
    hours = int(match.group(1) or 0)
    minutes = int(match.group(2))
    seconds = int(match.group(3))
    if seconds >= 60 or (match.group(1) is not None and minutes >= 60):
        return None
    return hours * 3600 + minutes * 60 + seconds
