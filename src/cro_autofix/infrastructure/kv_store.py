"""Key-value persistence used by the fix lifecycle store and friends.

Two interchangeable backends:

* ``InMemoryKeyValueStore`` -- process-local, for tests and one-shot runs.
* ``JsonFileKeyValueStore`` -- one JSON document per key inside a
  directory, each write going through a temp file and ``os.replace`` so a
  crash never leaves a half-written record.

Values must be JSON-serializable.  Both backends are thread-safe; callers
needing read-modify-write atomicity across keys hold their own lock.
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(ABC):
    """Abstract read/write/append persistence service."""

    @abstractmethod
    def read(self, key: str) -> Any | None:
        """Return the value stored under *key*, or ``None``."""

    @abstractmethod
    def write(self, key: str, value: Any) -> None:
        """Store *value* under *key*, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove *key*. Returns ``True`` if it existed."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """Return stored keys starting with *prefix*, sorted."""

    def __init__(self) -> None:
        self._append_guard = threading.Lock()

    def append(self, key: str, item: Any) -> int:
        """Append *item* to the list stored under *key*; return the new length."""
        with self._append_guard:
            current = self.read(key)
            items = list(current) if isinstance(current, list) else []
            items.append(item)
            self.write(key, items)
            return len(items)


class InMemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Any | None:
        with self._lock:
            value = self._data.get(key)
        return copy.deepcopy(value)

    def write(self, key: str, value: Any) -> None:
        snapshot = copy.deepcopy(value)
        with self._lock:
            self._data[key] = snapshot

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileKeyValueStore(KeyValueStore):
    """One ``<key>.json`` file per key under *directory*.

    Keys are restricted to ``[A-Za-z0-9_.-]``; other characters are replaced
    by ``_`` in the file name, and the original key is stored alongside the
    value so :meth:`keys` can report it.
    """

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        if not key:
            raise ValueError("key must be non-empty")
        return self._dir / f"{_SAFE_KEY.sub('_', key)}.json"

    def read(self, key: str) -> Any | None:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            document = json.loads(path.read_text(encoding="utf-8"))
        return document.get("value")

    def write(self, key: str, value: Any) -> None:
        path = self._path(key)
        payload = json.dumps({"key": key, "value": value}, indent=2)
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True

    def keys(self, prefix: str = "") -> list[str]:
        found: list[str] = []
        with self._lock:
            for path in self._dir.glob("*.json"):
                if path.name.startswith(".tmp-"):
                    continue
                key = json.loads(path.read_text(encoding="utf-8")).get("key", path.stem)
                if key.startswith(prefix):
                    found.append(key)
        return sorted(found)
