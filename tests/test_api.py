import asyncio
import io

import pytest
from fastapi import HTTPException, UploadFile

from conftest import ROSTER_HEADERS, roster_row
from worksheet.api import (
    CellEditPayload,
    ConvertPlaceholderPayload,
    FlagPayload,
    PendingImportPayload,
    ReasonPayload,
    add_appointment,
    add_reason,
    commit_pending_import,
    convert_placeholder,
    delete_record_attachment,
    edit_appointment,
    get_day,
    get_state,
    get_worksheet,
    open_record_attachment,
    put_state,
    set_flag,
    upload_import,
    upload_record_attachment,
)
from worksheet.state_repository import StateRepository

DOS = "2024-03-15"
PDF = b"%PDF-1.4\n%%EOF"


def _upload(data, filename):
    # no declared type: the extension decides
    return UploadFile(file=io.BytesIO(data), filename=filename)


def _seed(store):
    return store.import_roster([roster_row("DOE, JANE", "09:00 AM")], DOS)[0]


# -------------------------
# Persistence service
# -------------------------

def test_state_put_then_get(tmp_path):
    repo = StateRepository(str(tmp_path / "app.db"))
    payload = {"patientLists": {DOS: [{"id": f"{DOS}-0"}]}, "reasonTags": ["Diabetes"]}
    resp = put_state(payload, repository=repo)
    assert resp.status_code == 204
    state = get_state(repository=repo)
    assert state["patientLists"] == payload["patientLists"]
    assert state["reasonTags"] == ["Diabetes"]
    assert state["visitTypeTags"] == []


@pytest.mark.parametrize("payload", [None, {}, {"patientLists": None}, {"patientLists": [1, 2]}])
def test_state_put_rejects_bad_payload(tmp_path, payload):
    repo = StateRepository(str(tmp_path / "app.db"))
    with pytest.raises(HTTPException) as exc:
        put_state(payload, repository=repo)
    assert exc.value.status_code == 400
    assert exc.value.detail == "Invalid patientLists payload"


# -------------------------
# Imports
# -------------------------

def test_upload_roster_then_commit(store, make_xlsx):
    data = make_xlsx(ROSTER_HEADERS, [["FU", "DOE, JANE", "09:00 AM", "female", "45 Y", "AHS", "Arrived", "3"]])
    resp = asyncio.run(upload_import(file=_upload(data, "OvenCtrs_0315.xlsx"), dos=None, store=store))
    assert resp["kind"] == "roster"
    assert resp["pending"] is True

    resp = commit_pending_import(PendingImportPayload(dos=DOS), store=store)
    assert resp["imported"] == 1
    assert resp["notices"][0]["level"] == "success"

    view = get_worksheet(store=store)["view"]
    assert view["dates"][0]["dos"] == DOS


def test_upload_report_missing_columns(store, make_xlsx):
    _seed(store)
    data = make_xlsx(["Patient Name", "DOB"], [["DOE, JANE", "1980-05-02"]])
    with pytest.raises(HTTPException) as exc:
        asyncio.run(upload_import(file=_upload(data, "registry_report.xlsx"), dos=None, store=store))
    assert exc.value.status_code == 422
    assert exc.value.detail["missing"] == ["Tel No.", "Acc #"]


def test_upload_unrecognized_and_empty(store, make_xlsx):
    with pytest.raises(HTTPException) as exc:
        asyncio.run(upload_import(file=_upload(b"abc", "schedule.xlsx"), dos=None, store=store))
    assert exc.value.status_code == 400
    assert "schedule.xlsx" in exc.value.detail

    with pytest.raises(HTTPException) as exc:
        asyncio.run(upload_import(file=_upload(b"", "OvenCtrs.xlsx"), dos=DOS, store=store))
    assert exc.value.detail == "File is empty."


def test_commit_without_pending(store):
    with pytest.raises(HTTPException) as exc:
        commit_pending_import(PendingImportPayload(dos=DOS), store=store)
    assert exc.value.status_code == 400


# -------------------------
# Appointments
# -------------------------

def test_add_and_edit_appointment(store):
    _seed(store)
    record = add_appointment(DOS, store=store)["record"]
    assert record["id"].startswith(f"manual-{DOS}-")

    resp = edit_appointment(DOS, record["id"], CellEditPayload(field="Time", value="08:40 AM"), store=store)
    assert resp["record"]["Time"] == "8:40 AM"
    assert resp["record"]["isNonStandardTime"] is False


def test_edit_errors_map_to_status(store):
    record = _seed(store)
    with pytest.raises(HTTPException) as exc:
        edit_appointment(DOS, record.id, CellEditPayload(field="Chart", value="x"), store=store)
    assert exc.value.status_code == 400
    for field in ("reasons", "is_cancelled"):
        with pytest.raises(HTTPException) as exc:
            edit_appointment(DOS, record.id, CellEditPayload(field=field, value="x"), store=store)
        assert exc.value.status_code == 400
    assert record.is_cancelled is False
    with pytest.raises(HTTPException) as exc:
        edit_appointment(DOS, "missing", CellEditPayload(field="Time", value="9:00 AM"), store=store)
    assert exc.value.status_code == 404
    with pytest.raises(HTTPException) as exc:
        add_appointment("2023-01-01", store=store)
    assert exc.value.status_code == 404


def test_convert_placeholder_twice(store):
    _seed(store)
    get_day(DOS, store=store)
    pid = f"empty-{DOS}-8:20 AM"
    first = convert_placeholder(DOS, pid, ConvertPlaceholderPayload(patient_name="ROE, RICH"), store=store)
    second = convert_placeholder(DOS, pid, ConvertPlaceholderPayload(patient_name="ROE, RICH"), store=store)
    assert first["record"]["Time"] == "8:20 AM"
    assert second["record"] is None
    assert len(store.state.patient_lists[DOS]) == 2


def test_reason_and_flag_routes(store):
    record = _seed(store)
    resp = add_reason(DOS, record.id, ReasonPayload(value="Diabetes"), store=store)
    assert resp["record"]["Reason"] == ["Diabetes"]
    resp = set_flag(DOS, record.id, "done", FlagPayload(value=True), store=store)
    assert resp["record"]["isDone"] is True
    assert resp["record"]["status"] == "done"


# -------------------------
# Attachments
# -------------------------

def test_attachment_upload_open_delete(store):
    record = _seed(store)
    resp = asyncio.run(
        upload_record_attachment(DOS, record.id, "chart", file=_upload(PDF, "chart.pdf"), store=store)
    )
    assert resp["attachment"] == {"name": "chart.pdf", "slot": "Chart"}

    opened = open_record_attachment(DOS, record.id, "Chart", store=store)
    assert opened.body == PDF
    assert opened.media_type == "application/pdf"

    resp = delete_record_attachment(DOS, record.id, "chart", store=store)
    assert "Chart" in resp["record"]
    assert resp["record"]["Chart"] is None
    with pytest.raises(HTTPException) as exc:
        open_record_attachment(DOS, record.id, "chart", store=store)
    assert exc.value.status_code == 404


def test_attachment_wrong_type(store):
    record = _seed(store)
    with pytest.raises(HTTPException) as exc:
        asyncio.run(
            upload_record_attachment(
                DOS, record.id, "chart", file=_upload(b"<p>x</p>", "s.html"), store=store
            )
        )
    assert exc.value.detail == "Invalid file type. Please upload .pdf."
    assert record.chart is None


def test_attachment_read_failure(store):
    record = _seed(store)

    class BrokenUpload:
        filename = "chart.pdf"
        content_type = "application/pdf"

        async def read(self):
            raise OSError("stream closed")

    resp = asyncio.run(upload_record_attachment(DOS, record.id, "chart", file=BrokenUpload(), store=store))
    assert resp["attachment"] is None
    assert resp["notices"][-1] == {"level": "warning", "message": "Error reading file."}
    assert record.chart is None
