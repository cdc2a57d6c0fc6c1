"""
Local session credential persistence.

The credential record ``{role, roomId?}`` lives in a small key/value storage
next to the client, never in the remote store. ``SessionContext`` is the only
object that reads or writes it.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from ..schemas.auth import SessionCredential

logger = logging.getLogger(__name__)


class MemoryLocalStorage:
    """Key/value storage kept in process memory."""

    def __init__(self, items: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileLocalStorage(MemoryLocalStorage):
    """Key/value storage persisted as one JSON object on disk."""

    def __init__(self, path: str):
        self.path = Path(path)
        super().__init__(self._read())

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read local storage {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Local storage {self.path} does not hold an object, ignoring it")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._items, indent=2), encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        super().set_item(key, value)
        self._write()

    def remove_item(self, key: str) -> None:
        super().remove_item(key)
        self._write()


class SessionContext:
    """Lifecycle of the local credential: load, save on login, clear on logout or self-heal."""

    def __init__(self, storage: MemoryLocalStorage, storage_key: str = "examsy_auth"):
        self.storage = storage
        self.storage_key = storage_key

    def load(self) -> Optional[SessionCredential]:
        raw = self.storage.get_item(self.storage_key)
        if not raw:
            return None
        try:
            return SessionCredential.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Error parsing saved auth: {e}")
            return None

    def save(self, credential: SessionCredential) -> None:
        self.storage.set_item(self.storage_key, json.dumps(credential.to_record()))

    def clear(self) -> None:
        self.storage.remove_item(self.storage_key)
