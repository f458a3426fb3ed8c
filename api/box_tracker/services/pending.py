# box_tracker/services/pending.py
"""
Pending Queue - scans of boxes missing from the dispatch manifest.

``process_all`` is single-flight. Each entry is reconciled under the same
(box_id, day) lock the scan path uses, and its scan update and queue removal
are committed together.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional
from zoneinfo import ZoneInfo
import logging

from box_tracker.errors import TrackerError
from box_tracker.locks import KeyedLocks
from box_tracker.models import FinalStatus, PendingRecord, ScanRecord
from box_tracker.services.aggregator import DestinationAggregator
from box_tracker.services.dispatch import DispatchService
from box_tracker.storage import ChangeSet, RecordStore
from box_tracker.utils import Clock, local_day

logger = logging.getLogger(__name__)

PROCESS_KEY = "pending:process"


@dataclass
class ProcessResult:
    reconciled: List[ScanRecord] = field(default_factory=list)
    still_pending: int = 0


class PendingQueue:

    def __init__(
        self,
        store: RecordStore,
        dispatch: DispatchService,
        aggregator: DestinationAggregator,
        box_locks: KeyedLocks,
        process_lock: KeyedLocks,
        clock: Clock,
        tz: ZoneInfo,
    ):
        self.store = store
        self.dispatch = dispatch
        self.aggregator = aggregator
        self.box_locks = box_locks
        self.process_lock = process_lock
        self.clock = clock
        self.tz = tz

    def lock_key(self, record: ScanRecord):
        return (record.box_id, local_day(record.timestamp, self.tz))

    def enqueue(self, scan: ScanRecord, changes: ChangeSet) -> PendingRecord:
        """Add a queue entry for ``scan`` to ``changes``; it lands with the caller's commit."""
        entry = PendingRecord(
            scan_id=scan.id,
            box_id=scan.box_id,
            scanned_by=scan.scanned_by,
            queued_at=self.clock(),
        )
        changes.put_pending.append(entry)
        return entry

    async def list(self) -> List[PendingRecord]:
        return await self.store.list_pending()

    async def count(self) -> int:
        return len(await self.store.list_pending())

    async def entries_for_scan(self, scan_id: str) -> List[PendingRecord]:
        return [p for p in await self.store.list_pending() if p.scan_id == scan_id]

    async def discard(self, pending_id: str) -> bool:
        """Drop a queue entry together with its unresolved scan record."""
        entry = await self.store.get_pending(pending_id)
        if entry is None:
            return False
        scan = await self.store.get_scan(entry.scan_id)
        if scan is None:
            await self.store.commit(ChangeSet(delete_pending=[entry.id]))
            return True
        async with self.box_locks.hold(self.lock_key(scan)):
            scan = await self.store.get_scan(entry.scan_id)
            if await self.store.get_pending(pending_id) is None:
                return False
            changes = ChangeSet(delete_pending=[pending_id])
            if scan is not None:
                changes.delete_scans.append(scan.id)
            await self.store.commit(changes)
            self.aggregator.replace(scan, None)
        logger.info("pending entry %s for box %s discarded", pending_id, entry.box_id)
        return True

    async def process_all(self) -> ProcessResult:
        async with self.process_lock.hold(PROCESS_KEY):
            result = ProcessResult()
            entries = await self.store.list_pending()
            for entry in entries:
                try:
                    reconciled = await self._process_one(entry)
                except TrackerError as e:
                    # entry stays queued for the next run
                    logger.warning("pending entry %s (box %s) skipped: %s", entry.id, entry.box_id, e.message)
                    continue
                if reconciled is not None:
                    result.reconciled.append(reconciled)
            result.still_pending = await self.count()
        logger.info("pending processed: %d reconciled, %d still pending",
                    len(result.reconciled), result.still_pending)
        return result

    async def _process_one(self, entry: PendingRecord) -> Optional[ScanRecord]:
        scan = await self.store.get_scan(entry.scan_id)
        if scan is None:
            # scan deleted underneath the queue entry
            await self.store.commit(ChangeSet(delete_pending=[entry.id]))
            return None

        async with self.box_locks.hold(self.lock_key(scan)):
            entry = await self.store.get_pending(entry.id)
            scan = await self.store.get_scan(scan.id)
            if entry is None:
                return None
            if scan is None or scan.final_status != FinalStatus.PENDING:
                await self.store.commit(ChangeSet(delete_pending=[entry.id]))
                return None

            cls = await self.dispatch.classify(scan.box_id)
            if cls.dispatch is None:
                entry.attempts += 1
                entry.last_attempt_at = self.clock()
                await self.store.commit(ChangeSet(put_pending=[entry]))
                return None

            before = scan.model_copy()
            scan.final_status = cls.status
            scan.consignment = cls.dispatch.consignment or scan.consignment
            scan.destination = cls.dispatch.destination or scan.destination
            await self.store.commit(ChangeSet(put_scans=[scan], delete_pending=[entry.id]))
            self.aggregator.replace(before, scan)
            logger.info("pending box %s reconciled: %s -> %s",
                        scan.box_id, scan.final_status.value, scan.destination)
            return scan
