"""
Session Store
=============
Durable storage of session records, keyed by session id.

Stores exchange plain JSON-compatible dicts (SessionState.model_dump(mode="json"))
so the Session State Manager can validate and recover damaged records before
building models from them.

FileSessionStore:
    - one <session-id>.json file per session under a state directory
    - writes go to <file>.tmp first and are moved into place with os.replace,
      so a crash mid-write leaves the previous record intact
    - ids that are not filesystem-safe are stored under a sha256-derived name

MemorySessionStore:
    - dict-backed, for tests and single-process embedding
"""
import copy
import hashlib
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from auditor.core.errors import FileAccessError, SessionCorruptionError, SessionPersistenceError

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]{1,100}$")


def _file_stem(session_id: str) -> str:
    if _SAFE_ID.match(session_id) and not session_id.startswith("."):
        return session_id
    return "sid-" + hashlib.sha256(session_id.encode("utf-8")).hexdigest()[:16]


class FileSessionStore:
    """JSON-file store, one file per session, atomic replace on write."""

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, session_id: str) -> str:
        return os.path.join(self.directory, f"{_file_stem(session_id)}.json")

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Read the raw record for a session.

        Returns
        -------
        dict or None
            None when no record exists.

        Raises
        ------
        SessionCorruptionError
            The file exists but is not a JSON object.
        FileAccessError
            The file cannot be read.
        """
        path = self.path_for(session_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as e:
            raise SessionCorruptionError(
                f"Session file is not valid JSON: {e.msg}",
                context={"session_id": session_id, "path": path, "position": e.pos},
                component="services.session_store",
            )
        except OSError as e:
            raise FileAccessError(
                f"Cannot read session file: {e}",
                context={"session_id": session_id, "path": path},
                component="services.session_store",
            )
        if not isinstance(data, dict):
            raise SessionCorruptionError(
                "Session file does not contain a JSON object",
                context={"session_id": session_id, "path": path},
                component="services.session_store",
            )
        return data

    def save(self, session_id: str, record: Dict[str, Any]) -> None:
        """Atomically replace the stored record."""
        path = self.path_for(session_id)
        temp = path + ".tmp"
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(temp, "w", encoding="utf-8") as fh:
                json.dump(record, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(temp, path)
        except OSError as e:
            raise SessionPersistenceError(
                f"Failed to persist session: {e}",
                context={"session_id": session_id, "path": path},
                component="services.session_store",
            )
        logger.debug("Persisted session %s to %s", session_id, path)

    def list_ids(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        ids = []
        for name in sorted(os.listdir(self.directory)):
            if not name.endswith(".json"):
                continue
            try:
                with open(os.path.join(self.directory, name), "r", encoding="utf-8") as fh:
                    ids.append(json.load(fh)["id"])
            except (OSError, ValueError, KeyError, TypeError):
                logger.warning("Skipping unreadable session file %s", name)
        return ids


class MemorySessionStore:
    """In-process store; records are deep-copied in and out."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(session_id)
        return copy.deepcopy(record) if record is not None else None

    def save(self, session_id: str, record: Dict[str, Any]) -> None:
        self._records[session_id] = copy.deepcopy(record)

    def list_ids(self) -> List[str]:
        return sorted(self._records)
