from __future__ import annotations

from collections import Counter
from typing import Any, List, Sequence

from worksheet.formatting import clock_label, parse_clock, time_to_minutes
from worksheet.models import AppointmentRecord, GridRow, TimeSlotPlaceholder

DAY_START_HOUR = 8
DAY_END_HOUR = 15  # exclusive
SLOT_MINUTES = (0, 20, 40)


def standard_time_slots() -> List[str]:
    """8:00 AM through 2:40 PM in 20 minute steps (21 slots)."""
    return [
        clock_label(hour, minute)
        for hour in range(DAY_START_HOUR, DAY_END_HOUR)
        for minute in SLOT_MINUTES
    ]


def placeholder_id(date_key: str, slot: str) -> str:
    return f"empty-{date_key}-{slot}"


def is_non_standard_time(value: Any) -> bool:
    """True for times worth emphasising: unparseable, off-hours, or off the 20 minute grid."""
    if not value or not isinstance(value, str):
        return False
    parsed = parse_clock(value)
    if parsed is None:
        return True
    hour, minute = parsed
    if hour < DAY_START_HOUR or hour >= DAY_END_HOUR:
        return True
    return minute not in SLOT_MINUTES


def mark_double_bookings(records: Sequence[AppointmentRecord]) -> None:
    counts = Counter(r.time for r in records)
    for r in records:
        r.is_double_booked = counts[r.time] > 1


def project_day(records: Sequence[AppointmentRecord], date_key: str = "") -> List[GridRow]:
    """
    Merge a day's appointments with placeholders for every open standard slot,
    ordered by time of day. Records whose time is unparseable sort last; ties
    keep input order (records before placeholders).
    """
    mark_double_bookings(records)
    taken = {r.time for r in records}
    placeholders = [
        TimeSlotPlaceholder(id=placeholder_id(date_key, slot), time=slot)
        for slot in standard_time_slots()
        if slot not in taken
    ]
    rows: List[GridRow] = [*records, *placeholders]
    rows.sort(key=lambda row: time_to_minutes(row.time))
    return rows
