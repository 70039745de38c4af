from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

from dateutil import parser as date_parser

# Spreadsheet serial day numbers count from 1899-12-30; 25569 is 1970-01-01.
SPREADSHEET_EPOCH_OFFSET = 25569
SECONDS_PER_DAY = 86400

UNPARSEABLE_MINUTES = 9999

_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})\s?(AM|PM)", re.IGNORECASE)
_LEADING_ZERO_RE = re.compile(r"^0")
_AGE_SUFFIX_RE = re.compile(r" Y$")
_NON_DIGIT_RE = re.compile(r"\D")
_PHONE_RE = re.compile(r"^(\d{3})(\d{3})(\d{4})$")


def clock_label(hour: int, minute: int) -> str:
    """24h hour/minute -> "H:MM AM" with no leading zero on the hour."""
    suffix = "PM" if hour >= 12 else "AM"
    h12 = hour % 12 or 12
    return f"{h12}:{minute:02d} {suffix}"


def format_time(value: Any) -> Any:
    if isinstance(value, datetime):
        return clock_label(value.hour, value.minute)
    if isinstance(value, time):
        return clock_label(value.hour, value.minute)
    if not value or not isinstance(value, str):
        return value
    return _LEADING_ZERO_RE.sub("", value, count=1)


def format_sex(value: Any) -> Any:
    if not value or not isinstance(value, str):
        return value
    return value[0].upper()


def format_age(value: Any) -> Any:
    if not value or not isinstance(value, str):
        return value
    return _AGE_SUFFIX_RE.sub("", value)


def _mdy(d: date) -> str:
    return f"{d.month:02d}/{d.day:02d}/{d.year}"


def format_dob(value: Any) -> Any:
    """
    Spreadsheet serial, date/datetime cell, or date string -> MM/DD/YYYY.
    Anything that does not parse is handed back untouched.
    """
    if not value:
        return ""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        try:
            seconds = round((value - SPREADSHEET_EPOCH_OFFSET) * SECONDS_PER_DAY)
            stamp = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=seconds)
        except (OverflowError, ValueError):
            return value
        return _mdy(stamp)
    if isinstance(value, (datetime, date)):
        return _mdy(value)
    if not isinstance(value, str):
        return value
    raw = value.strip()
    if not raw:
        return value
    try:
        parsed = date_parser.parse(raw)
    except (ValueError, OverflowError):
        return value
    return _mdy(parsed)


def format_phone(value: Any) -> Any:
    if not value:
        return value
    cleaned = _NON_DIGIT_RE.sub("", str(value))
    match = _PHONE_RE.match(cleaned)
    if not match:
        return value
    return f"({match.group(1)}) {match.group(2)}-{match.group(3)}"


def parse_clock(value: Any) -> Optional[Tuple[int, int]]:
    """"H:MM AM/PM" -> (hour of day 0-23, minute), or None."""
    if not value or not isinstance(value, str):
        return None
    m = _TIME_RE.search(value)
    if not m:
        return None
    hour = int(m.group(1))
    minute = int(m.group(2))
    meridiem = m.group(3).upper()
    if meridiem == "PM" and hour != 12:
        hour += 12
    if meridiem == "AM" and hour == 12:
        hour = 0
    return hour, minute


def time_to_minutes(value: Any) -> int:
    parsed = parse_clock(value)
    if parsed is None:
        return UNPARSEABLE_MINUTES
    hour, minute = parsed
    return hour * 60 + minute
