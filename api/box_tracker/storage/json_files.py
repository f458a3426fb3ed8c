# box_tracker/storage/json_files.py
"""
JSON file record store.

Layout under the data root:
    data/records.json   {"scans": [...], "pending": [...]}
    data/dispatch.json  {"dispatch": [...], "loaded_at": "..."}

Scans and pending entries share one file so a scan and its queue entry are
replaced together by a single ``os.replace``.
"""
from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import asyncio, json, logging, os

from box_tracker.errors import StorageError
from box_tracker.models import ScanRecord, PendingRecord, DispatchRecord, FINALIZED_STATUSES
from box_tracker.storage.base import ChangeSet, RecordStore

logger = logging.getLogger(__name__)


def _read_json(p: Path) -> Dict[str, Any]:
    if not p.exists():
        return {}
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise StorageError(f"Cannot read {p.name}: {e}") from e

def _atomic_write(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    os.replace(tmp, path)


class JsonRecordStore(RecordStore):

    def __init__(self, data_root: Path):
        self.data_dir = Path(data_root).expanduser() / "data"
        self.records_path = self.data_dir / "records.json"
        self.dispatch_path = self.data_dir / "dispatch.json"
        self._scans: Dict[str, ScanRecord] = {}
        self._pending: Dict[str, PendingRecord] = {}
        self._dispatch: Dict[str, DispatchRecord] = {}
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:
        records = _read_json(self.records_path)
        dispatch = _read_json(self.dispatch_path)
        try:
            scans = [ScanRecord.model_validate(x) for x in records.get("scans", [])]
            pending = [PendingRecord.model_validate(x) for x in records.get("pending", [])]
            disp = [DispatchRecord.model_validate(x) for x in dispatch.get("dispatch", [])]
        except ValueError as e:
            raise StorageError(f"Malformed record file: {e}") from e
        self._scans = {s.id: s for s in scans}
        self._pending = {p.id: p for p in pending}
        self._dispatch = {d.box_id: d for d in disp}
        logger.info("json store opened: %d scans, %d pending, %d dispatch rows (%s)",
                    len(self._scans), len(self._pending), len(self._dispatch), self.data_dir)

    # ------------------------------------------------------------------ scans
    async def list_scans(self) -> List[ScanRecord]:
        rows = sorted(self._scans.values(), key=lambda s: s.timestamp, reverse=True)
        return [s.model_copy(deep=True) for s in rows]

    async def scans_between(self, start: datetime, end: datetime) -> List[ScanRecord]:
        return [s for s in await self.list_scans() if start <= s.timestamp < end]

    async def get_scan(self, scan_id: str) -> Optional[ScanRecord]:
        s = self._scans.get(scan_id)
        return s.model_copy(deep=True) if s else None

    async def count_box_scans(self, box_id: str) -> int:
        return sum(1 for s in self._scans.values() if s.box_id == box_id and s.final_status in FINALIZED_STATUSES)

    # ---------------------------------------------------------------- pending
    async def list_pending(self) -> List[PendingRecord]:
        rows = sorted(self._pending.values(), key=lambda p: p.queued_at)
        return [p.model_copy(deep=True) for p in rows]

    async def get_pending(self, pending_id: str) -> Optional[PendingRecord]:
        p = self._pending.get(pending_id)
        return p.model_copy(deep=True) if p else None

    # --------------------------------------------------------------- dispatch
    async def list_dispatch(self) -> List[DispatchRecord]:
        return [d.model_copy() for d in self._dispatch.values()]

    async def get_dispatch(self, box_id: str) -> Optional[DispatchRecord]:
        d = self._dispatch.get(box_id)
        return d.model_copy() if d else None

    async def replace_dispatch(self, records: List[DispatchRecord]) -> None:
        new = {d.box_id: d.model_copy() for d in records}
        payload = {
            "loaded_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "dispatch": [d.model_dump(mode="json") for d in new.values()],
        }
        async with self._write_lock:
            await self._write(self.dispatch_path, payload)
            self._dispatch = new

    # ----------------------------------------------------------------- writes
    async def commit(self, changes: ChangeSet) -> None:
        if changes.is_empty():
            return
        async with self._write_lock:
            scans = dict(self._scans)
            pending = dict(self._pending)
            for sid in changes.delete_scans:
                scans.pop(sid, None)
            for s in changes.put_scans:
                scans[s.id] = s.model_copy(deep=True)
            for pid in changes.delete_pending:
                pending.pop(pid, None)
            for p in changes.put_pending:
                pending[p.id] = p.model_copy(deep=True)

            payload = {
                "scans": [s.model_dump(mode="json") for s in scans.values()],
                "pending": [p.model_dump(mode="json") for p in pending.values()],
            }
            await self._write(self.records_path, payload)
            # cache swaps only after the file is in place
            self._scans = scans
            self._pending = pending

    async def _write(self, path: Path, payload: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(_atomic_write, path, payload)
        except OSError as e:
            raise StorageError(f"Cannot write {path.name}: {e}") from e
