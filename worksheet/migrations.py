from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, List, Tuple

from worksheet.errors import StateCorruptionError

logger = logging.getLogger("worksheet.migrations")

LEGACY_COLUMNS = ("Provider", "Appt Time")

# flags the slot grid derives on every projection; older saves carried them
DERIVED_KEYS = ("isDoubleBooked", "isEmptySlot", "isConverted")

RecordMigration = Callable[[Dict[str, Any]], bool]


def _drop_legacy_columns(record: Dict[str, Any]) -> bool:
    changed = False
    for col in LEGACY_COLUMNS:
        if col in record:
            del record[col]
            changed = True
    visit_type = record.get("Visit Type")
    if isinstance(visit_type, list):
        record["Visit Type"] = visit_type[0] if visit_type else ""
        changed = True
    return changed


def _backfill_attachments(record: Dict[str, Any]) -> bool:
    changed = False
    for col in ("Chart", "Extracted Summary"):
        if col not in record:
            record[col] = None
            changed = True
    return changed


def _normalize_tag_lists(record: Dict[str, Any]) -> bool:
    changed = False
    if record.get("Reason") is None:
        record["Reason"] = []
        changed = True
    results = record.get("Results Needed")
    if results is None:
        record["Results Needed"] = []
        changed = True
    elif isinstance(results, list) and any(isinstance(r, str) for r in results):
        record["Results Needed"] = [
            {"name": r, "completed": False} if isinstance(r, str) else r
            for r in results
        ]
        changed = True
    return changed


def _drop_derived_flags(record: Dict[str, Any]) -> bool:
    changed = False
    for key in DERIVED_KEYS:
        if key in record:
            del record[key]
            changed = True
    return changed


# (version, description, step); applied in order on every load. Each step is
# idempotent, so payloads already in the current shape pass through unchanged.
MIGRATIONS: List[Tuple[int, str, RecordMigration]] = [
    (1, "drop Provider/Appt Time, single-valued Visit Type", _drop_legacy_columns),
    (2, "backfill Chart/Extracted Summary", _backfill_attachments),
    (3, "Reason/Results Needed list shapes", _normalize_tag_lists),
    (4, "drop projection-only flags", _drop_derived_flags),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


def migrate_payload(payload: Any) -> Dict[str, Any]:
    """
    Persisted state (any legacy shape) -> canonical payload.

    The input is not modified. Raises StateCorruptionError when the payload is
    not a state object at all.
    """
    if not isinstance(payload, dict):
        raise StateCorruptionError("State payload is not an object")
    out = copy.deepcopy(payload)
    lists = out.get("patientLists")
    if lists is None:
        out["patientLists"] = {}
        return out
    if not isinstance(lists, dict):
        raise StateCorruptionError("patientLists is not a mapping")

    touched = 0
    for dos, records in lists.items():
        if not isinstance(records, list):
            raise StateCorruptionError(f"Patient list for {dos} is not a list")
        for record in records:
            if not isinstance(record, dict):
                raise StateCorruptionError(f"Patient list for {dos} holds a non-object record")
            changed = False
            for _version, _desc, step in MIGRATIONS:
                changed = step(record) or changed
            if changed:
                touched += 1

    if touched:
        logger.info(f"Migrated {touched} record(s) to schema v{SCHEMA_VERSION}")
    return out
