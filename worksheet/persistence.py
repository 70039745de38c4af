from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Protocol

from worksheet.errors import InvalidStatePayloadError, PersistenceError
from worksheet.state_repository import StateRepository

logger = logging.getLogger("worksheet.persistence")

ENV_STATE_URL = "WORKSHEET_STATE_URL"
HTTP_TIMEOUT_SEC = float(os.getenv("WORKSHEET_HTTP_TIMEOUT_SEC", "10"))


class StateBackend(Protocol):
    def load(self) -> Any: ...

    def save(self, payload: Dict[str, Any]) -> None: ...


class LocalStateBackend:
    """Talks to the persistence service in-process."""

    def __init__(self, repository: Optional[StateRepository] = None) -> None:
        self.repository = repository or StateRepository()

    def load(self) -> Any:
        try:
            return self.repository.load_state()
        except Exception as e:
            raise PersistenceError(f"Failed to load application state: {e}") from e

    def save(self, payload: Dict[str, Any]) -> None:
        try:
            self.repository.persist_state(payload)
        except InvalidStatePayloadError as e:
            raise PersistenceError(str(e), status=400) from e
        except Exception as e:
            raise PersistenceError(f"Failed to save application state: {e}", status=500) from e


class HttpStateBackend:
    """Talks to a remote persistence service over GET/PUT {base_url}/api/state."""

    def __init__(self, base_url: str, timeout: float = HTTP_TIMEOUT_SEC) -> None:
        self.url = base_url.rstrip("/") + "/api/state"
        self.timeout = timeout

    def load(self) -> Any:
        req = urllib.request.Request(self.url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise PersistenceError(f"Failed to load application state (HTTP {e.code})", status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise PersistenceError(f"Failed to load application state: {e}") from e
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            # corrupt body is the store's concern, not a transport failure
            logger.warning("Persistence service returned a body that is not JSON")
            return None

    def save(self, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        req = urllib.request.Request(
            self.url,
            data=body,
            method="PUT",
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                resp.read()
        except urllib.error.HTTPError as e:
            raise PersistenceError(f"Failed to save application state (HTTP {e.code})", status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise PersistenceError(f"Failed to save application state: {e}") from e


def backend_from_env(repository: Optional[StateRepository] = None) -> StateBackend:
    url = (os.getenv(ENV_STATE_URL) or "").strip()
    if url:
        logger.info(f"Persisting state through {url}")
        return HttpStateBackend(url)
    return LocalStateBackend(repository)
