from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from worksheet.attachments import build_attachment, check_slot, open_mode
from worksheet.errors import (
    DateGroupNotFoundError,
    EmptyFileError,
    InputFormatError,
    InvalidEditError,
    MissingDateOfServiceError,
    PersistenceError,
    PlaceholderNotFoundError,
    ReconciliationError,
    RecordNotFoundError,
    StateCorruptionError,
    WorksheetError,
)
from worksheet.formatting import format_age, format_dob, format_phone, format_sex, format_time
from worksheet.merge import merge_supplemental
from worksheet.migrations import migrate_payload
from worksheet.models import (
    FLAG_COLUMNS,
    AppointmentRecord,
    ApplicationState,
    Attachment,
    EditIntent,
    GridRow,
    Notice,
    ResultNeeded,
    TimeSlotPlaceholder,
)
from worksheet.persistence import StateBackend
from worksheet.reconcile import INTERNAL_KEYS, build_primary_records, column_order
from worksheet.slot_grid import is_non_standard_time, project_day
from worksheet.spreadsheet import FileKind, classify_file

logger = logging.getLogger("worksheet.state_store")

EDIT_FORMATTERS: Dict[str, Callable[[Any], Any]] = {
    "Time": format_time,
    "Phone": format_phone,
    "DOB": format_dob,
    "Sex": format_sex,
    "Age": format_age,
}

# columns with their own commands; not editable as plain text
NON_TEXT_COLUMNS = {"Reason", "Results Needed", "Chart", "Extracted Summary"}

_ALIAS_TO_ATTR: Dict[str, str] = {
    (info.alias or name): name for name, info in AppointmentRecord.model_fields.items()
}
_ATTR_TO_ALIAS: Dict[str, str] = {attr: alias for alias, attr in _ALIAS_TO_ATTR.items()}

# projection-only fields; never set by a command
_DERIVED_FIELDS = {name for name, info in AppointmentRecord.model_fields.items() if info.exclude}


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PendingImport:
    filename: str
    rows: List[Dict[str, Any]]


@dataclass
class StageOutcome:
    kind: FileKind
    pending: bool = False
    date_key: Optional[str] = None
    imported: int = 0
    merged: int = 0


class StateStore:
    """
    Owns the ApplicationState for one worksheet.

    Every mutation goes through a method here and is followed by a whole-state
    save through the backend. A failed save leaves memory as is and queues an
    error notice; the next successful save brings storage back in line.
    """

    def __init__(self, backend: StateBackend, clock: Callable[[], int] = _now_ms) -> None:
        self.backend = backend
        self.state = ApplicationState()
        self.pending_import: Optional[PendingImport] = None
        self.notices: List[Notice] = []
        self.tag_revision = 0
        self._clock = clock
        # date_key -> live placeholders of the last projection, by id
        self._placeholders: Dict[str, Dict[str, TimeSlotPlaceholder]] = {}
        # placeholder id -> record it became
        self._converted: Dict[str, str] = {}
        # sync routes run in a threadpool
        self._lock = threading.RLock()
        self._wire_tags()

    # -------------------------
    # Notices
    # -------------------------
    def notify(self, level: str, message: str) -> None:
        self.notices.append(Notice(level=level, message=message))

    def drain_notices(self) -> List[Notice]:
        out, self.notices = self.notices, []
        return out

    # -------------------------
    # Load / persist
    # -------------------------
    def _wire_tags(self) -> None:
        self.state.tags.subscribe(self._on_tag_added)

    def _on_tag_added(self, kind: str, value: str) -> None:
        self.tag_revision += 1

    def _reset(self, state: Optional[ApplicationState] = None) -> None:
        self.state = state or ApplicationState()
        self._placeholders = {}
        self._converted = {}
        self._wire_tags()

    def load(self) -> ApplicationState:
        try:
            raw = self.backend.load()
        except PersistenceError as e:
            logger.error(f"Loading saved state failed: {e}")
            self._reset()
            self.notify("error", "Could not load saved data from the server.")
            return self.state

        try:
            state = ApplicationState.from_payload(migrate_payload(raw))
        except StateCorruptionError as e:
            logger.warning(f"Saved state is corrupt and was discarded: {e}")
            self._reset()
            self.notify("warning", "Error loading data. Saved data was corrupt and has been cleared.")
            return self.state

        self._reset(state)
        logger.info(f"Loaded state with {len(state.patient_lists)} date(s) of service")
        return self.state

    def persist(self) -> bool:
        try:
            self.backend.save(self.state.to_payload())
            return True
        except PersistenceError as e:
            logger.error(f"Saving state failed: {e}")
            self.notify("error", "Error: Could not save data.")
            return False

    # -------------------------
    # Lookups
    # -------------------------
    def _group(self, date_key: str) -> List[AppointmentRecord]:
        records = self.state.patient_lists.get(date_key)
        if records is None:
            raise DateGroupNotFoundError(date_key)
        return records

    def _record(self, date_key: str, record_id: str) -> AppointmentRecord:
        self._group(date_key)
        record = self.state.find_record(date_key, record_id)
        if record is None:
            raise RecordNotFoundError(date_key, record_id)
        return record

    def _new_id(self, date_key: str, prefix: str = "") -> str:
        stamp = self._clock()
        existing = {r.id for r in self.state.patient_lists.get(date_key, [])}
        while True:
            candidate = f"{prefix}{date_key}-{stamp}"
            if candidate not in existing:
                return candidate
            stamp += 1

    @staticmethod
    def check_date_key(date_key: Optional[str]) -> str:
        dk = (date_key or "").strip()
        if not dk:
            raise MissingDateOfServiceError()
        try:
            date.fromisoformat(dk)
        except ValueError:
            raise InputFormatError(f"Invalid date of service: {dk}") from None
        return dk

    # -------------------------
    # Imports
    # -------------------------
    def stage_file(self, filename: str, rows: Sequence[Dict[str, Any]], date_key: Optional[str] = None) -> StageOutcome:
        """
        Route a parsed spreadsheet by file name. A roster without a date of
        service waits in the pending buffer until commit_pending().
        """
        kind = classify_file(filename)
        if not rows:
            raise EmptyFileError(filename)
        if kind is FileKind.REPORT:
            return StageOutcome(kind=kind, merged=self.merge_supplemental(rows))
        if date_key:
            records = self.import_roster(rows, date_key)
            return StageOutcome(kind=kind, date_key=date_key, imported=len(records))
        self.pending_import = PendingImport(filename=filename, rows=list(rows))
        return StageOutcome(kind=kind, pending=True)

    def commit_pending(self, date_key: Optional[str]) -> List[AppointmentRecord]:
        if self.pending_import is None:
            raise InputFormatError("No roster file is waiting for a date of service.")
        dk = self.check_date_key(date_key)
        pending, self.pending_import = self.pending_import, None
        return self.import_roster(pending.rows, dk)

    def discard_pending(self) -> None:
        self.pending_import = None

    def import_roster(self, rows: Sequence[Dict[str, Any]], date_key: str) -> List[AppointmentRecord]:
        dk = self.check_date_key(date_key)
        if not rows:
            return []
        try:
            records = build_primary_records(rows, dk)
        except ReconciliationError:
            logger.exception(f"Error processing primary data for {dk}")
            self.pending_import = None
            raise
        self.state.patient_lists[dk] = records
        self._placeholders.pop(dk, None)
        self.persist()
        self.notify("success", f"Processed primary list for {dk}.")
        return records

    def merge_supplemental(self, rows: Sequence[Dict[str, Any]]) -> int:
        try:
            result = merge_supplemental(rows, self.state.patient_lists)
        except WorksheetError:
            raise
        except Exception as e:
            logger.exception("Error processing supplemental data")
            raise InputFormatError("Error processing supplemental data. Check file columns.") from e
        self.state.patient_lists = result.patient_lists
        self.persist()
        self.notify("success", f"Merged data for {result.updated} patient(s).")
        return result.updated

    # -------------------------
    # Grid
    # -------------------------
    def grid(self, date_key: str) -> List[GridRow]:
        """
        Current projection for one date. Placeholders that are still open keep
        their identity across projections so a conversion flag sticks.
        """
        with self._lock:
            rows = project_day(self._group(date_key), date_key)
            previous = self._placeholders.get(date_key, {})
            live: Dict[str, TimeSlotPlaceholder] = {}
            out: List[GridRow] = []
            for row in rows:
                if isinstance(row, TimeSlotPlaceholder):
                    kept = previous.get(row.id)
                    if kept is not None and not kept.converted:
                        row = kept
                    live[row.id] = row
                out.append(row)
            self._placeholders[date_key] = live
            return out

    def convert_placeholder(self, date_key: str, placeholder_id: str, patient_name: str) -> Optional[AppointmentRecord]:
        """
        Turn an open slot into a real appointment. Returns None when nothing was
        created (blank name, or the slot was already converted).
        """
        with self._lock:
            name = (patient_name or "").strip()
            records = self._group(date_key)
            if not name:
                return None

            placeholder = self._placeholders.get(date_key, {}).get(placeholder_id)
            if placeholder is not None and not placeholder.converted:
                # an edit may have moved a record into the slot since the last projection
                if placeholder.time in {r.time for r in records}:
                    placeholder = None
            if placeholder is None:
                self.grid(date_key)
                placeholder = self._placeholders.get(date_key, {}).get(placeholder_id)
            if placeholder is None:
                if placeholder_id in self._converted:
                    return None
                raise PlaceholderNotFoundError(placeholder_id)
            if placeholder.converted:
                return None
            placeholder.converted = True

            record = AppointmentRecord.model_validate({
                "id": self._new_id(date_key),
                "Time": placeholder.time,
                "Visit Type": "",
                "Patient Name": name,
                "Sex": "",
                "Age": "",
                "Reason": [],
                "Results Needed": [],
                "Chart": None,
                "Extracted Summary": None,
                "isPrinted": False,
                "isDone": False,
                "isCancelled": False,
            })
            records.append(record)
            self._converted[placeholder_id] = record.id
            self.grid(date_key)
            self.persist()
            return record

    # -------------------------
    # Record commands
    # -------------------------
    def add_appointment(self, date_key: str) -> AppointmentRecord:
        records = self._group(date_key)
        record = AppointmentRecord.model_validate({
            "id": self._new_id(date_key, prefix="manual-"),
            "Visit Type": "",
            "Time": "",
            "Patient Name": "",
            "Sex": "",
            "Age": "",
            "DOB": "",
            "Phone": "",
            "Account": "",
            "Reason": [],
            "Results Needed": [],
            "Chart": None,
            "Extracted Summary": None,
            "isPrinted": False,
            "isDone": False,
            "isCancelled": False,
        })
        records.append(record)
        self.persist()
        return record

    def apply_edit(self, date_key: str, intent: EditIntent) -> AppointmentRecord:
        record = self._record(date_key, intent.record_id)
        column = (intent.field or "").strip()
        # python field names resolve to their column before the guard
        column = _ATTR_TO_ALIAS.get(column, column)
        if (
            not column
            or column.startswith("_")
            or (column not in _ALIAS_TO_ATTR and hasattr(AppointmentRecord, column))
            or column in _DERIVED_FIELDS
            or column in INTERNAL_KEYS
            or column in NON_TEXT_COLUMNS
            or column in FLAG_COLUMNS
        ):
            raise InvalidEditError(f"Column {column!r} cannot be edited as text.")

        text = "" if intent.value is None else str(intent.value).strip()
        formatter = EDIT_FORMATTERS.get(column)
        value = formatter(text) if formatter else text

        try:
            setattr(record, _ALIAS_TO_ATTR.get(column, column), value)
        except ValidationError as e:
            raise InvalidEditError(f"Column {column!r} cannot be edited as text.") from e
        if column == "Visit Type":
            self.state.tags.ensure("visit_type", text)
        self.persist()
        return record

    def add_reason(self, date_key: str, record_id: str, value: str) -> AppointmentRecord:
        record = self._record(date_key, record_id)
        item = (value or "").strip()
        if not item:
            return record
        if item not in record.reasons:
            record.reasons = [*record.reasons, item]
        self.state.tags.ensure("reason", item)
        self.persist()
        return record

    def remove_reason(self, date_key: str, record_id: str, value: str) -> AppointmentRecord:
        record = self._record(date_key, record_id)
        record.reasons = [r for r in record.reasons if r != value]
        self.persist()
        return record

    def add_result_needed(self, date_key: str, record_id: str, name: str) -> AppointmentRecord:
        record = self._record(date_key, record_id)
        item = (name or "").strip()
        if not item:
            return record
        if not record.has_result_needed(item):
            record.results_needed = [*record.results_needed, ResultNeeded(name=item)]
        self.state.tags.ensure("results_needed", item)
        self.persist()
        return record

    def toggle_result_needed(self, date_key: str, record_id: str, name: str) -> AppointmentRecord:
        record = self._record(date_key, record_id)
        target = (name or "").strip().lower()
        for item in record.results_needed:
            if item.name.lower() == target:
                item.completed = not item.completed
                break
        else:
            raise InvalidEditError(f"{name!r} is not in Results Needed.")
        record.results_needed = list(record.results_needed)
        self.persist()
        return record

    def remove_result_needed(self, date_key: str, record_id: str, name: str) -> AppointmentRecord:
        record = self._record(date_key, record_id)
        target = (name or "").strip().lower()
        record.results_needed = [r for r in record.results_needed if r.name.lower() != target]
        self.persist()
        return record

    def set_flag(self, date_key: str, record_id: str, flag: str, value: bool) -> AppointmentRecord:
        record = self._record(date_key, record_id)
        key = FLAG_COLUMNS.get(flag, flag)
        if key not in FLAG_COLUMNS.values():
            raise InvalidEditError(f"Unknown flag: {flag}")
        setattr(record, _ALIAS_TO_ATTR[key], bool(value))
        self.persist()
        return record

    # -------------------------
    # Attachments
    # -------------------------
    def attach(self, date_key: str, record_id: str, slot: str, filename: str, mime: str, data: bytes) -> Attachment:
        record = self._record(date_key, record_id)
        attachment = build_attachment(slot, filename, mime, data)
        setattr(record, _ALIAS_TO_ATTR[slot], attachment)
        self.persist()
        return attachment

    def attachment_read_failed(self, filename: str, error: Exception) -> None:
        logger.warning(f"Reading attachment {filename!r} failed: {error}")
        self.notify("warning", "Error reading file.")

    def detach(self, date_key: str, record_id: str, slot: str) -> AppointmentRecord:
        record = self._record(date_key, record_id)
        check_slot(slot)
        setattr(record, _ALIAS_TO_ATTR[slot], None)
        self.persist()
        return record

    def attachment(self, date_key: str, record_id: str, slot: str) -> Optional[Attachment]:
        record = self._record(date_key, record_id)
        check_slot(slot)
        return getattr(record, _ALIAS_TO_ATTR[slot])

    # -------------------------
    # Views
    # -------------------------
    def row_view(self, row: GridRow) -> Dict[str, Any]:
        if isinstance(row, TimeSlotPlaceholder):
            return {"id": row.id, "Time": row.time, "isEmptySlot": True}
        out = row.to_dict()
        for slot in ("Chart", "Extracted Summary"):
            attachment = getattr(row, _ALIAS_TO_ATTR[slot])
            if attachment is not None:
                out[slot] = {"name": attachment.name, "open": open_mode(slot, attachment)}
        out["isDoubleBooked"] = row.is_double_booked
        out["isNonStandardTime"] = is_non_standard_time(row.time)
        out["status"] = row.row_status()
        return out

    def date_keys(self) -> List[str]:
        return sorted(self.state.patient_lists.keys(), reverse=True)

    def tags_view(self) -> Dict[str, Any]:
        tags = self.state.tags
        return {
            "visitType": tags.sorted("visit_type"),
            "reason": tags.sorted("reason"),
            "resultsNeeded": tags.sorted("results_needed"),
            "revision": self.tag_revision,
        }

    def day_view(self, date_key: str) -> Dict[str, Any]:
        return {"dos": date_key, "rows": [self.row_view(r) for r in self.grid(date_key)]}

    def view(self) -> Dict[str, Any]:
        return {
            "columns": column_order(self.state.patient_lists),
            "dates": [self.day_view(dk) for dk in self.date_keys()],
            "tags": self.tags_view(),
            "pendingImport": self.pending_import.filename if self.pending_import else None,
        }
