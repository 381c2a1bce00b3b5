"""Anonymous participant identity persisted in device-local storage."""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)

PLAYER_ID_KEY = "playerId"
PLAYER_NAME_KEY = "playerName"
DEFAULT_IDENTITY_PATH = Path.home() / ".onlinexo" / "identity.json"


class IdentityError(RuntimeError):
    """Identity storage is unavailable; no session can be entered."""


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """Volatile storage, handy for tests and throwaway clients."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStorage:
    """Key-value pairs kept in a single JSON file on the local device."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")


class IdentityProvider:
    """Stable ``playerId`` plus an optional display name for this device."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage

    def _get(self, key: str) -> Optional[str]:
        try:
            return self.storage.get(key)
        except (OSError, ValueError) as exc:
            raise IdentityError(f"Unable to read {key!r} from identity storage") from exc

    def _set(self, key: str, value: str) -> None:
        try:
            self.storage.set(key, value)
        except (OSError, ValueError) as exc:
            raise IdentityError(f"Unable to persist {key!r} to identity storage") from exc

    def get_or_create_identity(self) -> str:
        stored = self._get(PLAYER_ID_KEY)
        if stored:
            return stored
        player_id = str(uuid.uuid4())
        self._set(PLAYER_ID_KEY, player_id)
        logger.info("Allocated new player id %s", player_id)
        return player_id

    def get_stored_name(self) -> Optional[str]:
        return self._get(PLAYER_NAME_KEY) or None

    def set_name(self, name: str) -> Optional[str]:
        """Persist ``name`` trimmed; blank input is ignored and returns ``None``."""
        trimmed = (name or "").strip()
        if not trimmed:
            return None
        self._set(PLAYER_NAME_KEY, trimmed)
        return trimmed


def default_identity() -> IdentityProvider:
    path = os.environ.get("ONLINEXO_IDENTITY_PATH") or DEFAULT_IDENTITY_PATH
    return IdentityProvider(JsonFileStorage(Path(path).expanduser()))
