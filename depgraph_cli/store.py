"""In-memory store of per-file metadata keyed by canonical identity."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .models import FileRecord


class FileRecordStore:
    """Identity -> :class:`FileRecord` mapping.

    Records are replaced wholesale on :meth:`put`; nothing is merged.
    """

    def __init__(self, records: Optional[Iterable[FileRecord]] = None) -> None:
        self._records: Dict[str, FileRecord] = {}
        self._lock = threading.RLock()
        for record in records or ():
            self.put(record)

    def put(self, record: FileRecord) -> Optional[FileRecord]:
        """Insert or replace a record. Returns the record it replaced, if any."""
        with self._lock:
            previous = self._records.get(record.identity)
            self._records[record.identity] = record
            return previous

    def get(self, identity: str) -> Optional[FileRecord]:
        with self._lock:
            return self._records.get(identity)

    def remove(self, identity: str) -> Optional[FileRecord]:
        with self._lock:
            return self._records.pop(identity, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def identities(self) -> Set[str]:
        with self._lock:
            return set(self._records)

    def records(self) -> List[FileRecord]:
        """All records sorted by identity."""
        with self._lock:
            return [self._records[key] for key in sorted(self._records)]

    def by_language(self, language: str) -> List[FileRecord]:
        return [r for r in self.records() if r.language == language]

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(self.records())
