from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time as clock_time
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from worksheet.errors import StateCorruptionError
from worksheet.formatting import format_dob, format_time
from worksheet.tags import TagVocabulary


# =========================
# Shared strict base model (Pydantic v2)
# =========================

class StrictBaseModel(BaseModel):
    """
    Strict, assignment-validating base model (Pydantic v2).
    - extra fields are forbidden (schema discipline)
    - assignment is validated (catches subtle runtime drift)
    - fields accept either the python name or the persisted column name
    """
    model_config = ConfigDict(extra="forbid", validate_assignment=True, populate_by_name=True)


# =========================
# Attachments
# =========================

AttachmentSlot = Literal["Chart", "Extracted Summary"]


class Attachment(StrictBaseModel):
    """
    Opaque reference to an attached file. data_url is a base64 data: URL;
    nothing in the engine looks inside it.
    """
    name: str
    data_url: str = Field(alias="dataUrl")


# =========================
# Appointment record
# =========================

class ResultNeeded(StrictBaseModel):
    name: str
    completed: bool = False


FlagName = Literal["isPrinted", "isDone", "isCancelled"]

FLAG_COLUMNS: Dict[str, str] = {
    "Printed": "isPrinted",
    "Done": "isDone",
    "Cancelled": "isCancelled",
}

_TEXT_FIELDS = ("visit_type", "time", "patient_name", "sex", "age", "dob", "phone")


class AppointmentRecord(BaseModel):
    """
    One scheduled or manually-added visit.

    Persisted keys are the spreadsheet-style column names (aliases). Columns the
    roster carries that are not modelled here ride along as extras.
    Only fields that were explicitly set are persisted, so a roster record has
    no DOB/Phone/Account until a report is merged into it.
    """
    model_config = ConfigDict(extra="allow", validate_assignment=True, populate_by_name=True)

    id: str
    visit_type: str = Field(default="", alias="Visit Type")
    time: str = Field(default="", alias="Time")
    patient_name: str = Field(default="", alias="Patient Name")
    sex: str = Field(default="", alias="Sex")
    age: str = Field(default="", alias="Age")
    dob: str = Field(default="", alias="DOB")
    phone: str = Field(default="", alias="Phone")
    account: Union[str, int, float] = Field(default="", alias="Account")

    reasons: List[str] = Field(default_factory=list, alias="Reason")
    results_needed: List[ResultNeeded] = Field(default_factory=list, alias="Results Needed")

    chart: Optional[Attachment] = Field(default=None, alias="Chart")
    extracted_summary: Optional[Attachment] = Field(default=None, alias="Extracted Summary")

    is_printed: bool = Field(default=False, alias="isPrinted")
    is_done: bool = Field(default=False, alias="isDone")
    is_cancelled: bool = Field(default=False, alias="isCancelled")

    # derived by the slot grid on every projection
    is_double_booked: bool = Field(default=False, exclude=True)

    @field_validator(*_TEXT_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float)):
            return str(v)
        if isinstance(v, (datetime, date)):
            return format_dob(v)
        if isinstance(v, clock_time):
            return format_time(v)
        return v

    @field_validator("account", mode="before")
    @classmethod
    def _coerce_account(cls, v: Any) -> Any:
        return "" if v is None else v

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def columns(self) -> List[str]:
        return list(self.to_dict().keys())

    def row_status(self) -> str:
        if self.is_cancelled:
            return "cancelled"
        if self.is_done:
            return "done"
        if self.is_printed:
            return "printed"
        return "open"

    def has_result_needed(self, name: str) -> bool:
        target = (name or "").lower()
        return any(r.name.lower() == target for r in self.results_needed)


class TimeSlotPlaceholder(StrictBaseModel):
    """Unfilled standard slot. Lives only in a projection; never persisted."""
    id: str
    time: str = Field(alias="Time")
    is_empty_slot: Literal[True] = Field(default=True, alias="isEmptySlot")
    converted: bool = False


GridRow = Union[AppointmentRecord, TimeSlotPlaceholder]


# =========================
# Commands / notices
# =========================

class EditIntent(StrictBaseModel):
    """A single cell edit: set `field` (persisted column name) on `record_id`."""
    record_id: str
    field: str
    value: Any = ""


NoticeLevel = Literal["success", "info", "warning", "error"]


class Notice(StrictBaseModel):
    level: NoticeLevel = "info"
    message: str


# =========================
# Application state (ROOT)
# =========================

@dataclass
class ApplicationState:
    patient_lists: Dict[str, List[AppointmentRecord]] = field(default_factory=dict)
    tags: TagVocabulary = field(default_factory=TagVocabulary)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "patientLists": {
                dos: [r.to_dict() for r in records]
                for dos, records in self.patient_lists.items()
            },
            "reasonTags": self.tags.sorted("reason"),
            "resultsNeededTags": self.tags.sorted("results_needed"),
            "visitTypeTags": self.tags.sorted("visit_type"),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ApplicationState":
        """
        Build state from an already-migrated payload.
        Raises StateCorruptionError for anything that does not fit the model.
        """
        if not isinstance(payload, dict):
            raise StateCorruptionError("State payload is not an object")
        raw_lists = payload.get("patientLists") or {}
        if not isinstance(raw_lists, dict):
            raise StateCorruptionError("patientLists is not a mapping")

        lists: Dict[str, List[AppointmentRecord]] = {}
        try:
            for dos, records in raw_lists.items():
                if not isinstance(records, list):
                    raise StateCorruptionError(f"Patient list for {dos} is not a list")
                lists[str(dos)] = [AppointmentRecord.model_validate(r) for r in records]
        except ValidationError as e:
            raise StateCorruptionError(f"Invalid appointment record: {e}") from e

        tags = TagVocabulary()
        for kind, key in (
            ("reason", "reasonTags"),
            ("results_needed", "resultsNeededTags"),
            ("visit_type", "visitTypeTags"),
        ):
            values = payload.get(key) or []
            if not isinstance(values, list):
                raise StateCorruptionError(f"{key} is not a list")
            tags.load(kind, [v for v in values if isinstance(v, str)])

        return cls(patient_lists=lists, tags=tags)

    def find_record(self, date_key: str, record_id: str) -> Optional[AppointmentRecord]:
        for record in self.patient_lists.get(date_key, []):
            if record.id == record_id:
                return record
        return None
