"""
Persistence seam for sealed records.

Storage durability is the collaborator's job; the engine only relies on the
contract below. ``save`` is the single-writer guarantee: a draft can produce
at most one record, and an (id, version) pair is written at most once.
"""

import threading
from abc import ABC, abstractmethod

from .errors import AlreadySealed, RecordNotFound
from .record import SealedRecord


class RecordStore(ABC):
    """Load/save sealed records by identifier."""

    @abstractmethod
    def save(self, record: SealedRecord) -> None:
        """
        Persist a new record.

        Raises:
            AlreadySealed: If the record's draft already has a record, or the
                (id, version) pair is taken
        """

    @abstractmethod
    def load(self, record_id: str, version: int | None = None) -> SealedRecord:
        """
        Load a record; the latest lineage version when version is None.

        Raises:
            RecordNotFound: If no such record exists
        """

    @abstractmethod
    def find_by_draft(self, draft_id: str) -> SealedRecord | None:
        """Record sealed from a draft, if any."""

    @abstractmethod
    def history(self, record_id: str) -> list[SealedRecord]:
        """All lineage versions of a record, oldest first."""

    def latest_version(self, record_id: str) -> int:
        """Highest lineage version stored for an id, 0 if none."""
        versions = self.history(record_id)
        return versions[-1].version if versions else 0

    def exists(self, record_id: str) -> bool:
        return bool(self.history(record_id))


class InMemoryRecordStore(RecordStore):
    """Thread-safe in-process store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, list[SealedRecord]] = {}
        self._drafts: dict[str, SealedRecord] = {}

    def save(self, record: SealedRecord) -> None:
        with self._lock:
            if record.draft_id is not None and record.draft_id in self._drafts:
                raise AlreadySealed(record.draft_id)
            lineage = self._records.setdefault(record.id, [])
            if any(existing.version == record.version for existing in lineage):
                raise AlreadySealed(record.draft_id or f"{record.id}@{record.version}")
            lineage.append(record)
            lineage.sort(key=lambda r: r.version)
            if record.draft_id is not None:
                self._drafts[record.draft_id] = record

    def load(self, record_id: str, version: int | None = None) -> SealedRecord:
        with self._lock:
            lineage = self._records.get(record_id)
            if not lineage:
                raise RecordNotFound(record_id)
            if version is None:
                return lineage[-1]
            for record in lineage:
                if record.version == version:
                    return record
        raise RecordNotFound(f"{record_id}@{version}")

    def find_by_draft(self, draft_id: str) -> SealedRecord | None:
        with self._lock:
            return self._drafts.get(draft_id)

    def history(self, record_id: str) -> list[SealedRecord]:
        with self._lock:
            return list(self._records.get(record_id, []))
