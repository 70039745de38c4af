from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Request, Response, UploadFile
from pydantic import BaseModel

from worksheet.attachments import decode_data_url
from worksheet.errors import (
    DateGroupNotFoundError,
    InputFormatError,
    InvalidStatePayloadError,
    MissingColumnsError,
    PlaceholderNotFoundError,
    ReconciliationError,
    RecordNotFoundError,
    WorksheetError,
)
from worksheet.models import EditIntent
from worksheet.spreadsheet import classify_file, read_rows
from worksheet.state_repository import StateRepository
from worksheet.state_store import StateStore

# NOTE: keep router prefixing handled in main.py (include_router(router, prefix="/api"))
router = APIRouter()
logger = logging.getLogger("worksheet.api")

_SLOT_PATHS = {
    "chart": "Chart",
    "extracted_summary": "Extracted Summary",
    "extracted-summary": "Extracted Summary",
}
_FLAG_PATHS = {
    "printed": "isPrinted",
    "done": "isDone",
    "cancelled": "isCancelled",
}


# =========================
# Payloads
# =========================

class PendingImportPayload(BaseModel):
    dos: str


class ConvertPlaceholderPayload(BaseModel):
    patient_name: str


class CellEditPayload(BaseModel):
    field: str
    value: Any = ""


class ReasonPayload(BaseModel):
    value: str


class ResultNeededPayload(BaseModel):
    name: str


class FlagPayload(BaseModel):
    value: bool


# =========================
# Dependencies / helpers
# =========================

def get_store(request: Request) -> StateStore:
    return request.app.state.store


def get_repository(request: Request) -> StateRepository:
    return request.app.state.repository


def _http_error(e: WorksheetError) -> HTTPException:
    if isinstance(e, MissingColumnsError):
        return HTTPException(status_code=422, detail={"message": str(e), "missing": e.missing})
    if isinstance(e, (DateGroupNotFoundError, RecordNotFoundError, PlaceholderNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ReconciliationError):
        return HTTPException(status_code=400, detail="Error processing primary data. Check file columns.")
    if isinstance(e, InputFormatError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Unhandled worksheet error: {e}")
    return HTTPException(status_code=500, detail=str(e))


def _respond(store: StateStore, **body: Any) -> Dict[str, Any]:
    body["notices"] = [n.model_dump() for n in store.drain_notices()]
    return body


def _slot_name(slot: str) -> str:
    return _SLOT_PATHS.get((slot or "").lower(), slot)


# =========================
# Persistence service
# =========================

@router.get("/state")
def get_state(repository: StateRepository = Depends(get_repository)):
    try:
        return repository.load_state()
    except Exception as e:
        logger.exception("Failed to load application state")
        raise HTTPException(status_code=500, detail=f"Failed to load application state: {str(e)}")


@router.put("/state", status_code=204)
@router.post("/state", status_code=204)
def put_state(payload: Any = Body(None), repository: StateRepository = Depends(get_repository)):
    """Whole replace. POST is kept for older clients."""
    try:
        repository.persist_state(payload)
    except InvalidStatePayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Failed to save application state")
        raise HTTPException(status_code=500, detail=f"Failed to save application state: {str(e)}")
    return Response(status_code=204)


# =========================
# Worksheet view
# =========================

@router.get("/worksheet")
def get_worksheet(store: StateStore = Depends(get_store)):
    return _respond(store, view=store.view())


@router.get("/worksheet/tags")
def get_tags(store: StateStore = Depends(get_store)):
    return _respond(store, tags=store.tags_view())


@router.get("/worksheet/dates/{dos}")
def get_day(dos: str, store: StateStore = Depends(get_store)):
    try:
        day = store.day_view(dos)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, day=day)


# =========================
# Imports
# =========================

@router.post("/worksheet/imports")
async def upload_import(
    file: UploadFile = File(...),
    dos: Optional[str] = Form(None),
    store: StateStore = Depends(get_store),
):
    """
    Roster or report spreadsheet, routed by file name.
    A roster sent without `dos` waits for POST /worksheet/imports/pending.
    """
    filename = file.filename or ""
    try:
        classify_file(filename)
        data = await file.read()
        rows = read_rows(data, filename)
        outcome = store.stage_file(filename, rows, date_key=dos or None)
    except WorksheetError as e:
        raise _http_error(e) from e

    return _respond(
        store,
        kind=outcome.kind.value,
        pending=outcome.pending,
        dos=outcome.date_key,
        imported=outcome.imported,
        merged=outcome.merged,
    )


@router.post("/worksheet/imports/pending")
def commit_pending_import(payload: PendingImportPayload, store: StateStore = Depends(get_store)):
    try:
        records = store.commit_pending(payload.dos)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, dos=payload.dos.strip(), imported=len(records))


@router.delete("/worksheet/imports/pending")
def discard_pending_import(store: StateStore = Depends(get_store)):
    store.discard_pending()
    return _respond(store, pending=False)


# =========================
# Appointments
# =========================

@router.post("/worksheet/dates/{dos}/appointments")
def add_appointment(dos: str, store: StateStore = Depends(get_store)):
    try:
        record = store.add_appointment(dos)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


@router.post("/worksheet/dates/{dos}/placeholders/{placeholder_id}/convert")
def convert_placeholder(
    dos: str,
    placeholder_id: str,
    payload: ConvertPlaceholderPayload,
    store: StateStore = Depends(get_store),
):
    try:
        record = store.convert_placeholder(dos, placeholder_id, payload.patient_name)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record) if record is not None else None)


@router.patch("/worksheet/dates/{dos}/appointments/{record_id}")
def edit_appointment(dos: str, record_id: str, payload: CellEditPayload, store: StateStore = Depends(get_store)):
    intent = EditIntent(record_id=record_id, field=payload.field, value=payload.value)
    try:
        record = store.apply_edit(dos, intent)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


@router.post("/worksheet/dates/{dos}/appointments/{record_id}/reasons")
def add_reason(dos: str, record_id: str, payload: ReasonPayload, store: StateStore = Depends(get_store)):
    try:
        record = store.add_reason(dos, record_id, payload.value)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


@router.delete("/worksheet/dates/{dos}/appointments/{record_id}/reasons")
def remove_reason(dos: str, record_id: str, value: str, store: StateStore = Depends(get_store)):
    try:
        record = store.remove_reason(dos, record_id, value)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


@router.post("/worksheet/dates/{dos}/appointments/{record_id}/results_needed")
def add_result_needed(dos: str, record_id: str, payload: ResultNeededPayload, store: StateStore = Depends(get_store)):
    try:
        record = store.add_result_needed(dos, record_id, payload.name)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


@router.post("/worksheet/dates/{dos}/appointments/{record_id}/results_needed/toggle")
def toggle_result_needed(dos: str, record_id: str, payload: ResultNeededPayload, store: StateStore = Depends(get_store)):
    try:
        record = store.toggle_result_needed(dos, record_id, payload.name)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


@router.delete("/worksheet/dates/{dos}/appointments/{record_id}/results_needed")
def remove_result_needed(dos: str, record_id: str, name: str, store: StateStore = Depends(get_store)):
    try:
        record = store.remove_result_needed(dos, record_id, name)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


@router.put("/worksheet/dates/{dos}/appointments/{record_id}/flags/{flag}")
def set_flag(dos: str, record_id: str, flag: str, payload: FlagPayload, store: StateStore = Depends(get_store)):
    try:
        record = store.set_flag(dos, record_id, _FLAG_PATHS.get(flag.lower(), flag), payload.value)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))


# =========================
# Attachments (upload / open / delete)
# =========================

@router.post("/worksheet/dates/{dos}/appointments/{record_id}/attachments/{slot}")
async def upload_record_attachment(
    dos: str,
    record_id: str,
    slot: str,
    file: UploadFile = File(...),
    store: StateStore = Depends(get_store),
):
    """
    Chart takes a PDF; Extracted Summary takes a PDF or an HTML export.
    A file that cannot be read leaves the slot as it was and returns a warning.
    """
    slot_name = _slot_name(slot)
    filename = file.filename or "upload"
    try:
        store.attachment(dos, record_id, slot_name)
    except WorksheetError as e:
        raise _http_error(e) from e

    try:
        data = await file.read()
    except (OSError, ValueError) as e:
        store.attachment_read_failed(filename, e)
        return _respond(store, attachment=None)

    try:
        attachment = store.attach(dos, record_id, slot_name, filename, file.content_type or "", data)
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, attachment={"name": attachment.name, "slot": slot_name})


@router.get("/worksheet/dates/{dos}/appointments/{record_id}/attachments/{slot}")
def open_record_attachment(dos: str, record_id: str, slot: str, store: StateStore = Depends(get_store)):
    slot_name = _slot_name(slot)
    try:
        attachment = store.attachment(dos, record_id, slot_name)
    except WorksheetError as e:
        raise _http_error(e) from e
    if attachment is None:
        raise HTTPException(status_code=404, detail="No file attached.")

    decoded = decode_data_url(attachment.data_url)
    if decoded is None:
        raise HTTPException(status_code=500, detail="Stored attachment could not be decoded.")
    mime, data = decoded
    safe_name = attachment.name.replace('"', "")
    return Response(
        content=data,
        media_type=mime,
        headers={"Content-Disposition": f'inline; filename="{safe_name}"'},
    )


@router.delete("/worksheet/dates/{dos}/appointments/{record_id}/attachments/{slot}")
def delete_record_attachment(dos: str, record_id: str, slot: str, store: StateStore = Depends(get_store)):
    try:
        record = store.detach(dos, record_id, _slot_name(slot))
    except WorksheetError as e:
        raise _http_error(e) from e
    return _respond(store, record=store.row_view(record))
