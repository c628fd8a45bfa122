"""Append-only stores for storefront interaction events.

The tracker posts batches of events; the pattern matcher reads the whole
log back.  ``read_all`` returns events ordered by timestamp (ties keep
insertion order) because the matcher's windows depend on ordering.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from cro_autofix.domain.values import Event
from cro_autofix.infrastructure.serialization import event_from_dict, event_to_dict

logger = logging.getLogger(__name__)


class InteractionEventStore(ABC):
    """Append-only interaction event log."""

    @abstractmethod
    def append(self, events: Iterable[Event]) -> int:
        """Store *events*; return how many were appended."""

    @abstractmethod
    def read_all(self) -> list[Event]:
        """Return every stored event ordered by timestamp."""

    def sessions(self) -> dict[str, list[Event]]:
        """Return stored events grouped by session id."""
        grouped: dict[str, list[Event]] = {}
        for event in self.read_all():
            grouped.setdefault(event.session_id, []).append(event)
        return grouped


class InMemoryEventStore(InteractionEventStore):
    """List-backed event store."""

    def __init__(self, events: Iterable[Event] = ()) -> None:
        self._events: list[Event] = list(events)
        self._lock = threading.Lock()

    def append(self, events: Iterable[Event]) -> int:
        batch = list(events)
        with self._lock:
            self._events.extend(batch)
        return len(batch)

    def read_all(self) -> list[Event]:
        with self._lock:
            snapshot = list(self._events)
        return sorted(snapshot, key=lambda e: e.timestamp)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class JsonlEventStore(InteractionEventStore):
    """One JSON object per line in a single file.

    Lines that fail to parse are logged and skipped on read so one corrupt
    record never hides the rest of the log.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, events: Iterable[Event]) -> int:
        lines = [json.dumps(event_to_dict(e)) for e in events]
        if not lines:
            return 0
        with self._lock, self._path.open("a", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        return len(lines)

    def read_all(self) -> list[Event]:
        with self._lock:
            if not self._path.exists():
                return []
            raw_lines = self._path.read_text(encoding="utf-8").splitlines()

        events: list[Event] = []
        for lineno, line in enumerate(raw_lines, start=1):
            if not line.strip():
                continue
            try:
                events.append(event_from_dict(json.loads(line)))
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping malformed event at %s:%d: %s", self._path, lineno, exc)
        return sorted(events, key=lambda e: e.timestamp)
