import sqlite3

import pytest

from worksheet.errors import InvalidStatePayloadError
from worksheet.state_repository import StateRepository

PAYLOAD = {
    "patientLists": {
        "2024-03-15": [{"id": "2024-03-15-0", "Patient Name": "DOE, JANE", "Reason": ["Diabetes"]}],
        "2024-03-14": [],
    },
    "reasonTags": ["Diabetes"],
    "resultsNeededTags": [],
    "visitTypeTags": ["FU"],
}


def test_empty_database(tmp_path):
    repo = StateRepository(str(tmp_path / "app.db"))
    assert repo.load_state() == {
        "patientLists": {},
        "reasonTags": [],
        "resultsNeededTags": [],
        "visitTypeTags": [],
    }


def test_round_trip(tmp_path):
    repo = StateRepository(str(tmp_path / "data" / "app.db"))
    repo.persist_state(PAYLOAD)
    assert repo.load_state() == PAYLOAD


def test_whole_replace(tmp_path):
    repo = StateRepository(str(tmp_path / "app.db"))
    repo.persist_state(PAYLOAD)
    repo.persist_state({"patientLists": {"2024-04-01": []}, "visitTypeTags": "oops"})
    state = repo.load_state()
    assert list(state["patientLists"]) == ["2024-04-01"]
    assert state["visitTypeTags"] == []
    assert state["reasonTags"] == []


@pytest.mark.parametrize("payload", [{}, {"patientLists": None}, {"patientLists": []}, None])
def test_invalid_payload_rejected(tmp_path, payload):
    repo = StateRepository(str(tmp_path / "app.db"))
    repo.persist_state(PAYLOAD)
    with pytest.raises(InvalidStatePayloadError):
        repo.persist_state(payload)
    assert repo.load_state() == PAYLOAD


def test_non_list_group_stored_as_empty(tmp_path):
    repo = StateRepository(str(tmp_path / "app.db"))
    repo.persist_state({"patientLists": {"2024-03-15": "garbage"}})
    assert repo.load_state()["patientLists"] == {"2024-03-15": []}


def test_unparseable_row_defaults_to_empty(tmp_path):
    path = str(tmp_path / "app.db")
    repo = StateRepository(path)
    repo.persist_state(PAYLOAD)
    conn = sqlite3.connect(path)
    conn.execute("UPDATE patient_lists SET data = ? WHERE dos = ?", ("{not json", "2024-03-15"))
    conn.commit()
    conn.close()
    assert repo.load_state()["patientLists"]["2024-03-15"] == []


def test_db_path_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKSHEET_DB_PATH", str(tmp_path / "env.db"))
    assert StateRepository().path == str(tmp_path / "env.db")
