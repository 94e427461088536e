"""KeyValueStore — keyed persistence with debounced and immediate writes.

Values live under (store name, key). ``set`` is debounced by default: a
burst of writes to one key collapses into a single backend write after a
quiet interval. ``immediate=True`` writes through before returning, for
state that must survive an abrupt shutdown.

Backend failures never raise to the caller. Reads fall back to the
default, writes and deletes return False, and a warning is logged.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dungeontracker.config import StorageConfig

logger = logging.getLogger(__name__)

DEFAULT_STORE = "settings"
_MISSING = object()


class KeyValueStore(ABC):
    """Base class: debounce bookkeeping shared by every backend.

    Subclasses implement ``_read``, ``_write``, ``_remove`` and ``_keys``.
    """

    def __init__(self, debounce_s: float = 3.0) -> None:
        self._debounce_s = debounce_s
        self._lock = threading.RLock()
        self._timers: dict[tuple[str, str], threading.Timer] = {}
        self._pending: dict[tuple[str, str], Any] = {}

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    def _read(self, key: str, store: str) -> Any:
        """Return the stored value or ``_MISSING``."""

    @abstractmethod
    def _write(self, key: str, value: Any, store: str) -> bool:
        """Persist *value*; return success."""

    @abstractmethod
    def _remove(self, key: str, store: str) -> bool:
        """Delete *key*; return success."""

    @abstractmethod
    def _keys(self, store: str) -> list[str]:
        """List keys in *store*."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, key: str, store: str = DEFAULT_STORE, default: Any = None) -> Any:
        if not self.available:
            logger.warning("Store unavailable, returning default for key %s", key)
            return default
        with self._lock:
            pending = self._pending.get((store, key), _MISSING)
        if pending is not _MISSING:
            return copy.deepcopy(pending)
        value = self._read(key, store)
        return default if value is _MISSING else value

    def set(
        self,
        key: str,
        value: Any,
        store: str = DEFAULT_STORE,
        immediate: bool = False,
    ) -> bool:
        if not self.available:
            logger.warning("Store unavailable, cannot save key %s", key)
            return False
        if immediate or self._debounce_s <= 0:
            with self._lock:
                self._cancel_pending(key, store)
                return self._write(key, value, store)
        self._schedule(key, copy.deepcopy(value), store)
        return True

    def get_json(self, key: str, store: str = DEFAULT_STORE, default: Any = None) -> Any:
        raw = self.get(key, store, None)
        if raw is None:
            return default
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError as exc:
                logger.error("Error parsing JSON from storage (key: %s): %s", key, exc)
                return default
        return raw

    def set_json(
        self,
        key: str,
        value: Any,
        store: str = DEFAULT_STORE,
        immediate: bool = False,
    ) -> bool:
        # Backends store structured values directly
        return self.set(key, value, store, immediate)

    def delete(self, key: str, store: str = DEFAULT_STORE) -> bool:
        if not self.available:
            logger.warning("Store unavailable, cannot delete key %s", key)
            return False
        # A pending debounced write would resurrect the key
        with self._lock:
            self._cancel_pending(key, store)
            return self._remove(key, store)

    def has(self, key: str, store: str = DEFAULT_STORE) -> bool:
        if not self.available:
            return False
        return self.get(key, store, _MISSING) is not _MISSING

    def get_all_keys(self, store: str = DEFAULT_STORE) -> list[str]:
        if not self.available:
            return []
        keys = set(self._keys(store))
        with self._lock:
            keys.update(k for (s, k) in self._pending if s == store)
        return sorted(keys)

    def flush_all(self) -> None:
        """Write every pending debounced value now."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            pending = list(self._pending.items())
            self._pending.clear()
            for (store, key), value in pending:
                self._write(key, value, store)

    def cleanup_pending_writes(self) -> None:
        """Drop pending debounced writes without flushing them."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._pending.clear()

    def close(self) -> None:
        self.flush_all()

    def __enter__(self) -> KeyValueStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal: debounce
    # ------------------------------------------------------------------

    def _schedule(self, key: str, value: Any, store: str) -> None:
        slot = (store, key)
        with self._lock:
            existing = self._timers.pop(slot, None)
            if existing is not None:
                existing.cancel()
            self._pending[slot] = value
            timer = threading.Timer(self._debounce_s, self._fire, args=(slot,))
            timer.daemon = True
            self._timers[slot] = timer
            timer.start()

    def _fire(self, slot: tuple[str, str]) -> None:
        with self._lock:
            if self._timers.get(slot) is not threading.current_thread():
                # Superseded by a newer schedule or cancelled
                return
            self._timers.pop(slot, None)
            value = self._pending.pop(slot, _MISSING)
            # Written under the lock so a concurrent delete cannot be undone
            if value is not _MISSING:
                store, key = slot
                self._write(key, value, store)

    def _cancel_pending(self, key: str, store: str) -> None:
        slot = (store, key)
        with self._lock:
            timer = self._timers.pop(slot, None)
            if timer is not None:
                timer.cancel()
            self._pending.pop(slot, None)


class MemoryStore(KeyValueStore):
    """In-process backend. Values are deep-copied across the boundary."""

    def __init__(self, debounce_s: float = 0.0) -> None:
        super().__init__(debounce_s=debounce_s)
        self._data: dict[str, dict[str, Any]] = {}

    def _read(self, key: str, store: str) -> Any:
        bucket = self._data.get(store, {})
        if key not in bucket:
            return _MISSING
        return copy.deepcopy(bucket[key])

    def _write(self, key: str, value: Any, store: str) -> bool:
        self._data.setdefault(store, {})[key] = copy.deepcopy(value)
        return True

    def _remove(self, key: str, store: str) -> bool:
        self._data.get(store, {}).pop(key, None)
        return True

    def _keys(self, store: str) -> list[str]:
        return list(self._data.get(store, {}))


class JsonFileStore(KeyValueStore):
    """One JSON document per store name under *root*.

    Every write replaces the whole file through a temp file and
    ``os.replace``, so a crash mid-write leaves the previous version intact.
    """

    def __init__(self, root: Path | str, debounce_s: float = 3.0) -> None:
        super().__init__(debounce_s=debounce_s)
        self._root = Path(root)
        self._io_lock = threading.Lock()
        self._available = True
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Cannot create storage directory %s, persistence disabled: %s", self._root, exc)
            self._available = False

    @property
    def available(self) -> bool:
        return self._available

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, store: str) -> Path:
        return self._root / f"{store}.json"

    def _load(self, store: str) -> dict[str, Any]:
        path = self._path(store)
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to read store %s: %s", path.name, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Store %s is not a JSON object, ignoring", path.name)
            return {}
        return data

    def _dump(self, store: str, data: dict[str, Any]) -> bool:
        path = self._path(store)
        try:
            fd, tmp = tempfile.mkstemp(dir=self._root, prefix=f".{store}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f, default=str)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to write store %s: %s", path.name, exc)
            return False
        return True

    def _read(self, key: str, store: str) -> Any:
        with self._io_lock:
            data = self._load(store)
        return data[key] if key in data else _MISSING

    def _write(self, key: str, value: Any, store: str) -> bool:
        with self._io_lock:
            data = self._load(store)
            data[key] = value
            return self._dump(store, data)

    def _remove(self, key: str, store: str) -> bool:
        with self._io_lock:
            data = self._load(store)
            if key not in data:
                return True
            del data[key]
            return self._dump(store, data)

    def _keys(self, store: str) -> list[str]:
        with self._io_lock:
            return list(self._load(store))


def build_store(config: StorageConfig) -> KeyValueStore:
    """Construct the backend named by *config*."""
    if config.backend == "memory":
        return MemoryStore(debounce_s=config.debounce_s)
    if config.backend == "json":
        return JsonFileStore(config.path, debounce_s=config.debounce_s)
    if config.backend == "mongo":
        from dungeontracker.core.mongo_store import MongoStore

        return MongoStore(
            config.resolve_mongo_uri(),
            config.mongo_db,
            debounce_s=config.debounce_s,
        )
    raise ValueError(f"Unknown storage backend: {config.backend!r}")
