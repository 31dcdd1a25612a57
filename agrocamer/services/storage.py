"""Key-value persistence for positions and local analysis history.

The stores only deal in strings; JSON encoding of positions and history
entries happens in PositionStore/HistoryStore.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from agrocamer.models import Position, now_ms

logger = logging.getLogger(__name__)

GPS_CACHE_KEY = "agrocamer-last-position"
MANUAL_OVERRIDE_KEY = "agrocamer-manual-location"
HISTORY_KEY = "agrocamer-analysis-history"

MAX_HISTORY_ENTRIES = 10


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """In-process store, mostly for tests and short-lived sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class JsonFileStore:
    """A small JSON file persisted on disk (key -> string value)."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._data: Dict[str, str] = {}
        self._loaded = False

    def load(self) -> None:
        """Load the file (no-op if it does not exist yet)."""

        if self._loaded:
            return
        self._loaded = True
        if not self._path.exists():
            return
        text = self._path.read_text(encoding="utf-8").strip()
        if not text:
            return
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            self._backup(text)
            return
        if not isinstance(data, dict):
            self._backup(text)
            return
        self._data = {str(k): str(v) for k, v in data.items()}

    def _backup(self, text: str) -> None:
        # Keep a copy of the broken file and start fresh
        backup = self._path.with_suffix(self._path.suffix + ".broken")
        backup.write_text(text, encoding="utf-8")
        logger.warning("Store file %s is corrupted, backed up to %s", self._path, backup)

    def get(self, key: str) -> Optional[str]:
        self.load()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self.load()
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        self.load()
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)


class PositionStore:
    """GPS cache and manual override, each addressed by a fixed key."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def _load(self, key: str) -> Optional[Position]:
        raw = self._store.get(key)
        if not raw:
            return None
        try:
            return Position.from_snapshot(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("[Geolocation] Ignoring invalid entry under %s", key)
            return None

    def _save(self, key: str, position: Position) -> None:
        try:
            self._store.set(key, json.dumps(position.snapshot()))
        except OSError as e:
            logger.warning("[Geolocation] Failed to persist position under %s: %s", key, e)

    def load_cached(self) -> Optional[Position]:
        return self._load(GPS_CACHE_KEY)

    def save_cached(self, position: Position) -> None:
        self._save(GPS_CACHE_KEY, position)

    def load_manual(self) -> Optional[Position]:
        return self._load(MANUAL_OVERRIDE_KEY)

    def save_manual(self, position: Position) -> None:
        self._save(MANUAL_OVERRIDE_KEY, position)

    def clear_manual(self) -> None:
        self._store.remove(MANUAL_OVERRIDE_KEY)


class HistoryStore:
    """Most-recent-first list of analysis results kept on the device."""

    def __init__(self, store: KeyValueStore, key: str = HISTORY_KEY, limit: int = MAX_HISTORY_ENTRIES) -> None:
        self._store = store
        self._key = key
        self._limit = limit

    def entries(self) -> List[Dict[str, Any]]:
        raw = self._store.get(self._key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupted history under %s", self._key)
            return []
        return data if isinstance(data, list) else []

    def append(self, kind: str, result: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
        entry = {"kind": kind, "result": result, "created_at": now_ms(), **extra}
        items = [entry] + self.entries()
        self._store.set(self._key, json.dumps(items[: self._limit], ensure_ascii=False))
        return entry

    def clear(self) -> None:
        self._store.remove(self._key)
