# box_tracker/storage/sql.py
"""
SQL record store (SQLAlchemy 2.0 async).

Every ``commit`` runs in one transaction; SQLAlchemy errors surface as
StorageError after rollback.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import List, Optional
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError

from box_tracker.database import Base, create_engine_and_factory, session_scope, check_db_health
from box_tracker.db_models import ScanRow, PendingRow, DispatchRow
from box_tracker.errors import StorageError
from box_tracker.models import ScanRecord, PendingRecord, DispatchRecord, FINALIZED_STATUSES
from box_tracker.storage.base import ChangeSet, RecordStore

logger = logging.getLogger(__name__)


def _to_db(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)

def _from_db(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _scan_out(r: ScanRow) -> ScanRecord:
    return ScanRecord(
        id=r.id,
        box_id=r.box_id,
        timestamp=_from_db(r.timestamp),
        last_scanned=_from_db(r.last_scanned),
        shift=r.shift,
        consignment=r.consignment,
        destination=r.destination,
        scanned_by=r.scanned_by,
        final_status=r.final_status,
        is_duplicate=r.is_duplicate,
        duplicate_count=r.duplicate_count,
    )

def _scan_fields(s: ScanRecord) -> dict:
    return {
        "box_id": s.box_id,
        "timestamp": _to_db(s.timestamp),
        "last_scanned": _to_db(s.last_scanned),
        "shift": s.shift,
        "consignment": s.consignment,
        "destination": s.destination,
        "scanned_by": s.scanned_by,
        "final_status": s.final_status,
        "is_duplicate": s.is_duplicate,
        "duplicate_count": s.duplicate_count,
    }

def _pending_out(r: PendingRow) -> PendingRecord:
    return PendingRecord(
        id=r.id,
        scan_id=r.scan_id,
        box_id=r.box_id,
        scanned_by=r.scanned_by,
        queued_at=_from_db(r.queued_at),
        attempts=r.attempts,
        last_attempt_at=_from_db(r.last_attempt_at),
    )

def _pending_fields(p: PendingRecord) -> dict:
    return {
        "scan_id": p.scan_id,
        "box_id": p.box_id,
        "scanned_by": p.scanned_by,
        "queued_at": _to_db(p.queued_at),
        "attempts": p.attempts,
        "last_attempt_at": _to_db(p.last_attempt_at),
    }

def _dispatch_out(r: DispatchRow) -> DispatchRecord:
    return DispatchRecord(
        box_id=r.box_id,
        consignment=r.consignment,
        destination=r.destination,
        expected_quantity=r.expected_quantity,
    )


class SqlRecordStore(RecordStore):

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self._engine = None
        self._factory = None

    async def open(self) -> None:
        self._engine, self._factory = create_engine_and_factory(self.database_url, echo=self.echo)
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Cannot initialize database: {e}") from e
        logger.info("sql store opened (%s)", self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._factory = None

    async def health(self) -> dict:
        return await check_db_health(self._factory)

    async def _fetch(self, stmt):
        try:
            async with session_scope(self._factory) as db:
                result = await db.execute(stmt)
                return result.scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"Database read failed: {e}") from e

    # ------------------------------------------------------------------ scans
    async def list_scans(self) -> List[ScanRecord]:
        rows = await self._fetch(select(ScanRow).order_by(ScanRow.timestamp.desc()))
        return [_scan_out(r) for r in rows]

    async def scans_between(self, start: datetime, end: datetime) -> List[ScanRecord]:
        stmt = (
            select(ScanRow)
            .where(ScanRow.timestamp >= _to_db(start), ScanRow.timestamp < _to_db(end))
            .order_by(ScanRow.timestamp.desc())
        )
        return [_scan_out(r) for r in await self._fetch(stmt)]

    async def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        rows = await self._fetch(select(ScanRow).where(ScanRow.id == scan_id))
        return _scan_out(rows[0]) if rows else None

    async def count_box_scans(self, box_id: str) -> int:
        stmt = select(func.count()).select_from(ScanRow).where(
            ScanRow.box_id == box_id,
            ScanRow.final_status.in_(FINALIZED_STATUSES),
        )
        try:
            async with session_scope(self._factory) as db:
                result = await db.execute(stmt)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise StorageError(f"Database read failed: {e}") from e

    # ---------------------------------------------------------------- pending
    async def list_pending(self) -> List[PendingRecord]:
        rows = await self._fetch(select(PendingRow).order_by(PendingRow.queued_at))
        return [_pending_out(r) for r in rows]

    async def get_pending(self, pending_id: str) -> Optional[PendingRecord]:
        rows = await self._fetch(select(PendingRow).where(PendingRow.id == pending_id))
        return _pending_out(rows[0]) if rows else None

    # --------------------------------------------------------------- dispatch
    async def list_dispatch(self) -> List[DispatchRecord]:
        rows = await self._fetch(select(DispatchRow).order_by(DispatchRow.box_id))
        return [_dispatch_out(r) for r in rows]

    async def get_dispatch(self, box_id: str) -> Optional[DispatchRecord]:
        rows = await self._fetch(select(DispatchRow).where(DispatchRow.box_id == box_id))
        return _dispatch_out(rows[0]) if rows else None

    async def replace_dispatch(self, records: List[DispatchRecord]) -> None:
        try:
            async with session_scope(self._factory) as db:
                await db.execute(delete(DispatchRow))
                for d in {r.box_id: r for r in records}.values():
                    db.add(DispatchRow(**d.model_dump()))
        except SQLAlchemyError as e:
            raise StorageError(f"Database write failed: {e}") from e

    # ----------------------------------------------------------------- writes
    async def commit(self, changes: ChangeSet) -> None:
        if changes.is_empty():
            return
        try:
            async with session_scope(self._factory) as db:
                if changes.delete_scans:
                    await db.execute(delete(ScanRow).where(ScanRow.id.in_(changes.delete_scans)))
                if changes.delete_pending:
                    await db.execute(delete(PendingRow).where(PendingRow.id.in_(changes.delete_pending)))
                for s in changes.put_scans:
                    row = await db.get(ScanRow, s.id)
                    if row is None:
                        db.add(ScanRow(id=s.id, **_scan_fields(s)))
                    else:
                        for k, v in _scan_fields(s).items():
                            setattr(row, k, v)
                for p in changes.put_pending:
                    row = await db.get(PendingRow, p.id)
                    if row is None:
                        db.add(PendingRow(id=p.id, **_pending_fields(p)))
                    else:
                        for k, v in _pending_fields(p).items():
                            setattr(row, k, v)
        except SQLAlchemyError as e:
            raise StorageError(f"Database write failed: {e}") from e
