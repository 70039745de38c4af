from __future__ import annotations

import json
import logging
import os
import sqlite3
from threading import Lock as ThreadLock
from typing import Any, Dict, List, Optional

from worksheet.errors import InvalidStatePayloadError

logger = logging.getLogger("worksheet.state_repository")

PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.path.join(PROJECT_ROOT, "data")
DEFAULT_DB_PATH = os.path.join(DATA_DIR, "app.db")
ENV_DB_PATH = "WORKSHEET_DB_PATH"

TAG_SETTINGS = ("reasonTags", "resultsNeededTags", "visitTypeTags")

DB_LOCK = ThreadLock()


def db_path() -> str:
    p = (os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH).strip()
    return p or DEFAULT_DB_PATH


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS patient_lists (
            dos TEXT PRIMARY KEY,
            data TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            name TEXT PRIMARY KEY,
            values_json TEXT NOT NULL
        )
        """
    )
    conn.commit()


class StateRepository:
    """
    Whole-state store: one JSON blob per date of service, one per tag vocabulary.
    No schema is enforced on the blobs; callers validate.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or db_path()

    def _connect(self) -> sqlite3.Connection:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        _ensure_schema(conn)
        return conn

    def load_state(self) -> Dict[str, Any]:
        with DB_LOCK:
            conn = self._connect()
            try:
                patient_rows = conn.execute("SELECT dos, data FROM patient_lists ORDER BY dos").fetchall()
                settings_rows = conn.execute("SELECT name, values_json FROM settings").fetchall()
            finally:
                conn.close()

        patient_lists: Dict[str, Any] = {}
        for row in patient_rows:
            try:
                patient_lists[row["dos"]] = json.loads(row["data"])
            except (TypeError, ValueError):
                logger.warning("Unable to parse patient list for %s", row["dos"])
                patient_lists[row["dos"]] = []

        settings: Dict[str, Any] = {}
        for row in settings_rows:
            try:
                settings[row["name"]] = json.loads(row["values_json"])
            except (TypeError, ValueError):
                logger.warning("Unable to parse settings value for %s", row["name"])
                settings[row["name"]] = []

        return {
            "patientLists": patient_lists,
            "reasonTags": settings.get("reasonTags") or [],
            "resultsNeededTags": settings.get("resultsNeededTags") or [],
            "visitTypeTags": settings.get("visitTypeTags") or [],
        }

    def persist_state(self, payload: Dict[str, Any]) -> None:
        """
        Replace everything in one transaction.
        Raises InvalidStatePayloadError when patientLists is not a mapping.
        """
        payload = payload if isinstance(payload, dict) else {}
        patient_lists = payload.get("patientLists")
        if not isinstance(patient_lists, dict):
            raise InvalidStatePayloadError()

        patient_rows = [
            (str(dos), json.dumps(records if isinstance(records, list) else [], ensure_ascii=False, default=str))
            for dos, records in patient_lists.items()
        ]
        settings_rows: List[tuple] = []
        for name in TAG_SETTINGS:
            values = payload.get(name)
            settings_rows.append((name, json.dumps(values if isinstance(values, list) else [], ensure_ascii=False)))

        with DB_LOCK:
            conn = self._connect()
            try:
                conn.execute("BEGIN")
                conn.execute("DELETE FROM patient_lists")
                conn.executemany("INSERT INTO patient_lists (dos, data) VALUES (?, ?)", patient_rows)
                conn.execute("DELETE FROM settings")
                conn.executemany("INSERT INTO settings (name, values_json) VALUES (?, ?)", settings_rows)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()
        logger.info(f"Persisted state: {len(patient_rows)} date(s) of service")
