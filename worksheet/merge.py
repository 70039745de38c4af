from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence

from worksheet.errors import MissingColumnsError, NoPrimaryListError
from worksheet.formatting import format_dob, format_phone
from worksheet.identity import normalize_name
from worksheet.models import AppointmentRecord

logger = logging.getLogger("worksheet.merge")

# report header -> record attribute
REQUIRED_COLUMNS: Dict[str, str] = {
    "Patient Name": "patient_name",
    "DOB": "dob",
    "Tel No.": "phone",
    "Acc #": "account",
}

PatientLists = Dict[str, List[AppointmentRecord]]


@dataclass
class MergeResult:
    updated: int
    patient_lists: PatientLists


def match_columns(headers: Sequence[str]) -> Dict[str, str]:
    """
    Required report column -> actual header (case-insensitive, trimmed).
    Raises MissingColumnsError naming every required column not found.
    """
    found: Dict[str, str] = {}
    missing: List[str] = []
    for required in REQUIRED_COLUMNS:
        target = required.lower()
        match = next((h for h in headers if str(h).strip().lower() == target), None)
        if match is None:
            missing.append(required)
        else:
            found[required] = match
    if missing:
        raise MissingColumnsError(missing)
    return found


def build_lookup(rows: Sequence[Mapping[str, Any]], headers: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
    lookup: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        key = normalize_name(row.get(headers["Patient Name"]))
        if not key:
            continue
        # later rows for the same identity win
        lookup[key] = {
            "dob": format_dob(row.get(headers["DOB"])),
            "phone": format_phone(row.get(headers["Tel No."])),
            "account": row.get(headers["Acc #"]),
        }
    return lookup


def merge_supplemental(rows: Sequence[Mapping[str, Any]], patient_lists: Mapping[str, Sequence[AppointmentRecord]]) -> MergeResult:
    """
    Overlay DOB / phone / account from report rows onto every appointment whose
    normalized patient name matches.

    The input groups are not touched: the overlay is applied to a deep copy
    which is returned together with the number of records updated. Two
    different patients that normalize to the same key both receive the overlay.
    """
    if not patient_lists:
        raise NoPrimaryListError()

    first_row = rows[0] if rows else {}
    headers = match_columns(list(first_row.keys()))
    lookup = build_lookup(rows, headers)

    merged: PatientLists = {
        dos: [r.model_copy(deep=True) for r in records]
        for dos, records in patient_lists.items()
    }
    updated = 0
    for records in merged.values():
        for record in records:
            overlay = lookup.get(normalize_name(record.patient_name))
            if overlay is None:
                continue
            for attr, value in overlay.items():
                setattr(record, attr, value)
            updated += 1

    logger.info(f"Supplemental merge matched {updated} appointment(s) from {len(rows)} row(s)")
    return MergeResult(updated=updated, patient_lists=merged)
