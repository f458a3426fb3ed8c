# box_tracker/storage/base.py
"""
Record store contract.

A store persists scan records, pending records and the dispatch manifest.
All mutations of scans and pending entries go through ``commit`` with a
``ChangeSet`` so that one operation is written entirely or not at all.
Readers always receive copies; mutating a returned record never touches
stored state.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from box_tracker.models import ScanRecord, PendingRecord, DispatchRecord


@dataclass
class ChangeSet:
    put_scans: List[ScanRecord] = field(default_factory=list)
    delete_scans: List[str] = field(default_factory=list)
    put_pending: List[PendingRecord] = field(default_factory=list)
    delete_pending: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.put_scans or self.delete_scans or self.put_pending or self.delete_pending)


class RecordStore(ABC):

    async def open(self) -> None:
        """Load or connect. Called once on startup."""

    async def close(self) -> None:
        """Release resources. Called once on shutdown."""

    # ------------------------------------------------------------------ scans
    @abstractmethod
    async def list_scans(self) -> List[ScanRecord]:
        """All scan records, newest first."""

    @abstractmethod
    async def scans_between(self, start: datetime, end: datetime) -> List[ScanRecord]:
        """Scan records with ``start <= timestamp < end``."""

    @abstractmethod
    async def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        ...

    @abstractmethod
    async def count_box_scans(self, box_id: str) -> int:
        """Records of ``box_id`` with status TRUE or OVERSCANNED, across all days."""

    # ---------------------------------------------------------------- pending
    @abstractmethod
    async def list_pending(self) -> List[PendingRecord]:
        """Pending entries, oldest first."""

    @abstractmethod
    async def get_pending(self, pending_id: str) -> Optional[PendingRecord]:
        ...

    # --------------------------------------------------------------- dispatch
    @abstractmethod
    async def list_dispatch(self) -> List[DispatchRecord]:
        ...

    @abstractmethod
    async def get_dispatch(self, box_id: str) -> Optional[DispatchRecord]:
        ...

    @abstractmethod
    async def replace_dispatch(self, records: List[DispatchRecord]) -> None:
        ...

    # ----------------------------------------------------------------- writes
    @abstractmethod
    async def commit(self, changes: ChangeSet) -> None:
        """Apply ``changes`` atomically; raise StorageError on failure."""
