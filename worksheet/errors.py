from __future__ import annotations

from typing import List, Optional


class WorksheetError(Exception):
    """Base class for every error the worksheet engine raises on purpose."""


# =========================
# Input-format errors (reported, operation aborted, prior state untouched)
# =========================

class InputFormatError(WorksheetError):
    pass


class SpreadsheetReadError(InputFormatError):
    def __init__(self, filename: str, reason: str = "") -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(
            f"Error processing file: {filename}. It may be corrupt or in an unsupported format."
        )


class EmptyFileError(InputFormatError):
    def __init__(self, filename: str = "") -> None:
        self.filename = filename
        super().__init__("File is empty.")


class UnrecognizedFileError(InputFormatError):
    def __init__(self, filename: str) -> None:
        self.filename = filename
        super().__init__(f'Unrecognized file: "{filename}".')


class MissingColumnsError(InputFormatError):
    def __init__(self, missing: List[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Supplemental file missing: {', '.join(self.missing)}.")


class NoPrimaryListError(InputFormatError):
    def __init__(self) -> None:
        super().__init__("Upload a primary list before supplemental data.")


class MissingDateOfServiceError(InputFormatError):
    def __init__(self) -> None:
        super().__init__("Please select a Date of Service.")


class AttachmentTypeError(InputFormatError):
    def __init__(self, slot: str, allowed: str) -> None:
        self.slot = slot
        self.allowed = allowed
        super().__init__(f"Invalid file type. Please upload {allowed}.")


class InvalidEditError(InputFormatError):
    pass


# =========================
# Lookup errors
# =========================

class DateGroupNotFoundError(WorksheetError):
    def __init__(self, date_key: str) -> None:
        self.date_key = date_key
        super().__init__(f"No appointments for date of service {date_key}.")


class RecordNotFoundError(WorksheetError):
    def __init__(self, date_key: str, record_id: str) -> None:
        self.date_key = date_key
        self.record_id = record_id
        super().__init__(f"Appointment {record_id} not found for {date_key}.")


class PlaceholderNotFoundError(WorksheetError):
    def __init__(self, placeholder_id: str) -> None:
        self.placeholder_id = placeholder_id
        super().__init__(f"Time slot {placeholder_id} is no longer open.")


# =========================
# State / persistence errors
# =========================

class StateCorruptionError(WorksheetError):
    """Persisted payload could not be turned into an ApplicationState."""


class PersistenceError(WorksheetError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class InvalidStatePayloadError(WorksheetError):
    def __init__(self) -> None:
        super().__init__("Invalid patientLists payload")


# =========================
# Programming-invariant violations
# =========================

class ReconciliationError(WorksheetError):
    """Raised when roster rows have a shape the reconciler cannot handle."""
