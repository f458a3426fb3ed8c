# box_tracker/services/history.py
from __future__ import annotations
from typing import Dict, Iterable, List, Tuple
from zoneinfo import ZoneInfo

from box_tracker.models import HistoryFilter, ScanRecord, FinalStatus
from box_tracker.utils import date_range_bounds, local_day


def _status_ok(r: ScanRecord, status: str) -> bool:
    if status == "ALL":
        return True
    if status == "DUPLICATE":
        return r.is_duplicate
    return r.final_status == FinalStatus(status)

def _search_ok(r: ScanRecord, term: str) -> bool:
    for v in (r.box_id, r.consignment, r.destination):
        if v and term in v.lower():
            return True
    return False


def filter_records(records: Iterable[ScanRecord], flt: HistoryFilter, tz: ZoneInfo) -> List[ScanRecord]:
    """Apply date range (whole local days, inclusive), status and search filters."""
    start, end = date_range_bounds(flt.start_date, flt.end_date, tz)
    term = (flt.search or "").strip().lower()
    out: List[ScanRecord] = []
    for r in records:
        if start is not None and r.timestamp < start:
            continue
        if end is not None and r.timestamp >= end:
            continue
        if not _status_ok(r, flt.status):
            continue
        if term and not _search_ok(r, term):
            continue
        out.append(r)
    out.sort(key=lambda r: r.timestamp, reverse=True)
    return out


def mark_same_day_duplicates(records: Iterable[ScanRecord], tz: ZoneInfo) -> List[ScanRecord]:
    """
    Copies of ``records`` with duplicate flags derived from same-day groups.

    Data written before counters existed may hold several records for one
    box and day; each member then reports the group's total scan count.
    """
    records = list(records)
    groups: Dict[Tuple[str, object], int] = {}
    for r in records:
        key = (r.box_id, local_day(r.timestamp, tz))
        groups[key] = groups.get(key, 0) + r.duplicate_count
    out = []
    for r in records:
        total = groups[(r.box_id, local_day(r.timestamp, tz))]
        out.append(r.model_copy(update={"duplicate_count": total, "is_duplicate": total > 1}))
    return out
