from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Sequence

from pydantic import ValidationError

from worksheet.errors import ReconciliationError
from worksheet.formatting import format_age, format_sex, format_time
from worksheet.models import FLAG_COLUMNS, AppointmentRecord

logger = logging.getLogger("worksheet.reconcile")

# Roster columns from this one onward are the source system's admin fields.
ADMIN_COLUMNS_START = "Visit Sts"
# Emitted by the roster but never modelled here.
INTERNAL_COLUMNS = ("P/R", "Provider", "Appt Time")

SOURCE_TIME_COLUMN = "Appt Time"

FIXED_COLUMN_ORDER = [
    "Visit Type",
    "Time",
    "Patient Name",
    "Sex",
    "DOB",
    "Age",
    "Reason",
    "Results Needed",
    "Chart",
    "Extracted Summary",
]
ALWAYS_SHOWN_COLUMNS = {"Visit Type", "Chart", "Extracted Summary"}
CHECKBOX_COLUMNS = list(FLAG_COLUMNS.keys())
INTERNAL_KEYS = {"id", "isPrinted", "isDone", "isCancelled", "isEmptySlot", "isDoubleBooked"}


def admin_columns(first_row: Mapping[str, Any]) -> List[str]:
    keys = list(first_row.keys())
    dropped = keys[keys.index(ADMIN_COLUMNS_START):] if ADMIN_COLUMNS_START in keys else []
    dropped.extend(INTERNAL_COLUMNS)
    return dropped


def build_primary_records(rows: Sequence[Mapping[str, Any]], date_key: str) -> List[AppointmentRecord]:
    """
    Roster rows for one date of service -> uniform appointment records.

    Raises ReconciliationError when a row does not have the expected shape; the
    caller must then commit nothing.
    """
    if not rows:
        return []

    try:
        dropped = set(admin_columns(rows[0]))
        records: List[AppointmentRecord] = []
        for index, row in enumerate(rows):
            visit_type = row.get("Visit Type")
            fixed: Dict[str, Any] = {
                "id": f"{date_key}-{index}",
                "Visit Type": str(visit_type) if visit_type else "",
                "Patient Name": row.get("Patient Name"),
                "Time": format_time(row.get(SOURCE_TIME_COLUMN)),
                "Sex": format_sex(row.get("Sex")),
                "Age": format_age(row.get("Age")),
                "Reason": [],
                "Results Needed": [],
                "Chart": None,
                "Extracted Summary": None,
                "isPrinted": False,
                "isDone": False,
                "isCancelled": False,
            }
            for key, value in row.items():
                if key in dropped or key in fixed:
                    continue
                fixed[key] = value
            records.append(AppointmentRecord.model_validate(fixed))
    except (AttributeError, TypeError, ValidationError) as e:
        raise ReconciliationError(f"Unexpected roster row shape: {e}") from e

    logger.info(f"Reconciled {len(records)} roster rows for {date_key}")
    return records


def column_order(patient_lists: Mapping[str, Sequence[AppointmentRecord]]) -> List[str]:
    """Superset display schema across every loaded date of service."""
    seen: Dict[str, None] = {}
    for records in patient_lists.values():
        for record in records:
            for key in record.columns():
                seen.setdefault(key, None)

    fixed = [c for c in FIXED_COLUMN_ORDER if c in seen or c in ALWAYS_SHOWN_COLUMNS]
    others = [
        k for k in seen
        if k not in FIXED_COLUMN_ORDER and k not in CHECKBOX_COLUMNS and k not in INTERNAL_KEYS
    ]
    return fixed + others + CHECKBOX_COLUMNS
