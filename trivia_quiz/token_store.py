"""
Persisted state slots and the question bank session token store.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional


TOKEN_KEY = "opentdb_session_token"

logger = logging.getLogger(__name__)


class MemoryStateStore:
    """Process-local key-value state."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStateStore:
    """
    Key-value state kept in a single JSON file.

    Reads never raise: a missing, unreadable or corrupt file is reported as
    empty. Writes replace the file atomically so a concurrent reader sees
    either the old or the new content.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.warning(f"State file {self.path} is not valid JSON, ignoring it: {e}")
            return {}
        except OSError as e:
            logger.warning(f"Cannot read state file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"State file {self.path} does not hold an object, ignoring it")
            return {}
        return data

    def _save(self, data: Dict[str, Any]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            return True
        except OSError as e:
            logger.error(f"Failed to write state file {self.path}: {e}")
            return False

    def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


class SessionTokenStore:
    """Holds the question bank session token in one named state slot."""

    def __init__(self, state_store=None, key: str = TOKEN_KEY):
        """
        Args:
            state_store: Object with get/set/delete, defaults to process memory
            key: Slot name the token lives under
        """
        self._store = state_store if state_store is not None else MemoryStateStore()
        self._key = key

    def get(self) -> Optional[str]:
        """Return the persisted token, or None when absent or unreadable."""
        try:
            token = self._store.get(self._key)
        except Exception as e:
            logger.warning(f"Token storage unavailable, treating token as absent: {e}")
            return None

        if not isinstance(token, str) or not token:
            return None
        return token

    def set(self, token: str) -> None:
        try:
            self._store.set(self._key, token)
            logger.debug("Session token stored", extra={'event_type': 'token_stored'})
        except Exception as e:
            logger.error(f"Failed to persist session token: {e}")

    def clear(self) -> None:
        try:
            self._store.delete(self._key)
            logger.debug("Session token cleared", extra={'event_type': 'token_cleared'})
        except Exception as e:
            logger.error(f"Failed to clear session token: {e}")

    def compare_and_set(self, expected: Optional[str], token: Optional[str]) -> bool:
        """
        Replace the token only if the slot still holds ``expected``.

        Passing None as ``token`` clears the slot. The check and the write are
        separate store calls with no lock between them, so this narrows but does
        not close the window for concurrent writers in other processes.

        Returns:
            True if the slot was updated, False if another writer got there first
        """
        if self.get() != expected:
            logger.warning(
                "Session token changed by another writer, not overwriting",
                extra={'event_type': 'token_cas_conflict'}
            )
            return False

        if token is None:
            self.clear()
        else:
            self.set(token)
        return True
