import copy
import io

import pytest
from openpyxl import Workbook

from worksheet.errors import PersistenceError
from worksheet.state_store import StateStore

ROSTER_HEADERS = ["Visit Type", "Patient Name", "Appt Time", "Sex", "Age", "Insurance", "Visit Sts", "Room"]


class MemoryBackend:
    """Backend double: keeps the last saved payload, can be told to fail."""

    def __init__(self, payload=None):
        self.payload = {"patientLists": {}} if payload is None else payload
        self.saves = []
        self.fail_load = False
        self.fail_save = False

    def load(self):
        if self.fail_load:
            raise PersistenceError("connection refused")
        return copy.deepcopy(self.payload)

    def save(self, payload):
        if self.fail_save:
            raise PersistenceError("Failed to save application state (HTTP 500)", status=500)
        self.saves.append(payload)
        self.payload = copy.deepcopy(payload)


def roster_row(name, appt_time, visit_type="FU", sex="female", age="45 Y"):
    return {
        "Visit Type": visit_type,
        "Patient Name": name,
        "Appt Time": appt_time,
        "Sex": sex,
        "Age": age,
        "Insurance": "AHS",
        "Visit Sts": "Arrived",
        "Room": "3",
    }


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    s = StateStore(backend, clock=lambda: 1710500000000)
    s.load()
    return s


@pytest.fixture
def make_xlsx():
    def _build(headers, rows):
        wb = Workbook()
        ws = wb.active
        ws.append(headers)
        for row in rows:
            ws.append(row)
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    return _build
