# box_tracker/services/scanning.py
"""
Scan service - duplicate detection per box and calendar day.

One instance owns the record store, the destination aggregator, the
pending queue and the key locks. For a scan of box B at time T:

    today = records of B's local day (midnight to midnight, SCAN_TIMEZONE)
    no record of B today      -> new record              (outcome: new)
    record, duplicates off    -> nothing changes         (rejected_duplicate)
    record, duplicates on     -> duplicate_count += 1    (accepted_duplicate)

The read-check-write sequence runs under a lock keyed by (B, day), so two
racing scans of B can never both come out as ``new``.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo
import logging

from box_tracker.errors import NotFound, ValidationError
from box_tracker.locks import KeyedLocks
from box_tracker.models import (
    FinalStatus, HistoryFilter, ScanOutcome, ScanRecord, ScanUpdateIn,
)
from box_tracker.services.aggregator import DestinationAggregator
from box_tracker.services.dispatch import DispatchService
from box_tracker.services.history import filter_records, mark_same_day_duplicates
from box_tracker.services.pending import PendingQueue
from box_tracker.storage import ChangeSet, RecordStore
from box_tracker.utils import Clock, day_bounds, local_day, shift_for, utc_now, zone

logger = logging.getLogger(__name__)

MAX_BOX_ID_LENGTH = 128


def normalize_box_id(box_id) -> str:
    s = "" if box_id is None else str(box_id).strip()
    if not s:
        raise ValidationError("Box ID must not be empty")
    if len(s) > MAX_BOX_ID_LENGTH:
        raise ValidationError(f"Box ID longer than {MAX_BOX_ID_LENGTH} characters")
    return s


@dataclass
class ScanResult:
    outcome: ScanOutcome
    record: ScanRecord
    message: str
    destination_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome != ScanOutcome.rejected_duplicate

    @property
    def is_duplicate(self) -> bool:
        return self.outcome != ScanOutcome.new


class ScanService:

    def __init__(
        self,
        store: RecordStore,
        tz: str | ZoneInfo = "UTC",
        lock_timeout: float = 5.0,
        shifts: Sequence[Tuple[int, str]] = (),
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.tz = tz if isinstance(tz, ZoneInfo) else zone(tz)
        self.shifts = list(shifts)
        self.clock: Clock = clock or utc_now
        self.aggregator = DestinationAggregator()
        self.box_locks = KeyedLocks(lock_timeout, name="box lock")
        self.process_lock = KeyedLocks(lock_timeout, name="pending processing")
        self.dispatch = DispatchService(store)
        self.pending = PendingQueue(
            store, self.dispatch, self.aggregator,
            self.box_locks, self.process_lock, self.clock, self.tz,
        )

    @classmethod
    def from_settings(cls, settings, store: RecordStore, clock: Optional[Clock] = None) -> "ScanService":
        return cls(
            store,
            tz=settings.SCAN_TIMEZONE,
            lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
            shifts=settings.shift_table,
            clock=clock,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> None:
        await self.store.open()
        self.aggregator.rebuild(await self.store.list_scans())

    async def close(self) -> None:
        await self.store.close()

    # =========================================================================
    # Scan
    # =========================================================================

    async def scan(self, box_id, scanned_by: str = "", allow_duplicate: bool = False) -> ScanResult:
        box = normalize_box_id(box_id)
        now = self.clock()
        day = local_day(now, self.tz)

        async with self.box_locks.hold((box, day)):
            start, end = day_bounds(day, self.tz)
            todays = [s for s in await self.store.scans_between(start, end) if s.box_id == box]
            existing = min(todays, key=lambda s: s.timestamp) if todays else None

            if existing is not None and not allow_duplicate:
                logger.info("duplicate scan rejected: box=%s by=%s", box, scanned_by)
                return ScanResult(
                    outcome=ScanOutcome.rejected_duplicate,
                    record=existing,
                    message=f"Duplicate scan! Box ID {box} has already been scanned today.",
                    destination_counts=self.aggregator.snapshot(),
                )

            if existing is not None:
                before = existing.model_copy()
                existing.is_duplicate = True
                existing.duplicate_count += 1
                existing.last_scanned = now
                await self.store.commit(ChangeSet(put_scans=[existing]))
                self.aggregator.replace(before, existing)
                logger.info("duplicate scan accepted: box=%s count=%d", box, existing.duplicate_count)
                return ScanResult(
                    outcome=ScanOutcome.accepted_duplicate,
                    record=existing,
                    message=f"Duplicate box ID {box} recorded (count: {existing.duplicate_count}).",
                    destination_counts=self.aggregator.snapshot(),
                )

            cls = await self.dispatch.classify(box)
            record = ScanRecord(
                box_id=box,
                timestamp=now,
                last_scanned=now,
                shift=shift_for(now, self.tz, self.shifts),
                consignment=cls.dispatch.consignment if cls.dispatch else None,
                destination=cls.dispatch.destination if cls.dispatch else None,
                scanned_by=scanned_by or "",
                final_status=cls.status,
            )
            changes = ChangeSet(put_scans=[record])
            if record.final_status == FinalStatus.PENDING:
                self.pending.enqueue(record, changes)
            await self.store.commit(changes)
            self.aggregator.replace(None, record)

        if record.final_status == FinalStatus.PENDING:
            message = f"Box ID {box} is not in the dispatch manifest; queued as pending."
        else:
            message = f"Box ID {box} recorded: {record.final_status.value} -> {record.destination or '-'}"
        logger.info("scan recorded: box=%s status=%s destination=%s by=%s",
                    box, record.final_status.value, record.destination, scanned_by)
        return ScanResult(
            outcome=ScanOutcome.new,
            record=record,
            message=message,
            destination_counts=self.aggregator.snapshot(),
        )

    # =========================================================================
    # Delete / update
    # =========================================================================

    async def delete(self, scan_id: str) -> bool:
        record = await self.store.get_scan(scan_id)
        if record is None:
            return False
        async with self.box_locks.hold(self.pending.lock_key(record)):
            record = await self.store.get_scan(scan_id)
            if record is None:
                return False
            queued = await self.pending.entries_for_scan(scan_id)
            await self.store.commit(ChangeSet(
                delete_scans=[scan_id],
                delete_pending=[p.id for p in queued],
            ))
            self.aggregator.replace(record, None)
        logger.info("scan %s (box %s) deleted", scan_id, record.box_id)
        return True

    async def update(self, scan_id: str, changes: ScanUpdateIn) -> ScanRecord:
        record = await self.store.get_scan(scan_id)
        if record is None:
            raise NotFound(f"Scan not found: {scan_id}")
        async with self.box_locks.hold(self.pending.lock_key(record)):
            record = await self.store.get_scan(scan_id)
            if record is None:
                raise NotFound(f"Scan not found: {scan_id}")
            before = record.model_copy()
            fields = changes.model_dump(exclude_unset=True)
            for key in ("consignment", "destination"):
                if key in fields:
                    fields[key] = (fields[key] or "").strip() or None
            if fields.get("final_status") is None:
                fields.pop("final_status", None)
            if "shift" in fields:
                fields["shift"] = (fields["shift"] or "").strip()
            updated = record.model_copy(update=fields)

            cs = ChangeSet(put_scans=[updated])
            queued = await self.pending.entries_for_scan(scan_id)
            if updated.final_status != FinalStatus.PENDING:
                cs.delete_pending.extend(p.id for p in queued)
            elif not queued:
                self.pending.enqueue(updated, cs)
            await self.store.commit(cs)
            self.aggregator.replace(before, updated)
        logger.info("scan %s updated: %s", scan_id, sorted(fields))
        return updated

    # =========================================================================
    # Queries
    # =========================================================================

    def destination_counts(self) -> Dict[str, int]:
        return self.aggregator.snapshot()

    async def recount(self) -> Dict[str, int]:
        """Full recompute over stored records (reference for ``destination_counts``)."""
        return DestinationAggregator.recompute(await self.store.list_scans())

    async def list_history(self, flt: Optional[HistoryFilter] = None) -> List[ScanRecord]:
        return filter_records(await self.store.list_scans(), flt or HistoryFilter(), self.tz)

    async def list_history_with_duplicates(self) -> List[ScanRecord]:
        return mark_same_day_duplicates(await self.store.list_scans(), self.tz)

    async def pending_count(self) -> int:
        return await self.pending.count()

    async def process_pending(self):
        return await self.pending.process_all()
