# box_tracker/services/dispatch.py
"""
Dispatch manifest service.

Handles:
- Manifest parsing (CSV / XLSX) with tolerant header matching
- Bulk replacement of the dispatch set
- The status policy: which FinalStatus a scan of a box receives
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional
import logging

import pandas as pd

from box_tracker.errors import ValidationError
from box_tracker.models import DispatchRecord, FinalStatus
from box_tracker.storage import RecordStore
from box_tracker.utils import read_csv_smart, read_xlsx, build_header_index, pick_column, safe_suffix

logger = logging.getLogger(__name__)

_HDR_BOX = ["Box ID", "BoxId", "Box", "Box No", "Box Number", "Barcode", "Carton", "Carton ID", "Package ID"]
_HDR_CONSIGNMENT = ["Consignment", "Consignment No", "Consignment Number", "Shipment", "AWB", "Reference"]
_HDR_DESTINATION = ["Destination", "Dest", "Destination Code", "Hub", "Route"]
_HDR_QTY = ["Expected Quantity", "Expected Qty", "Quantity", "Qty", "Boxes", "Count"]

MANIFEST_EXTENSIONS = {".csv", ".xlsx"}


def _cell(row: pd.Series, col: Optional[str]) -> str:
    if col is None:
        return ""
    v = row.get(col)
    if v is None or pd.isna(v):
        return ""
    return str(v).strip()

def _qty(raw: str) -> int:
    try:
        return max(1, int(float(raw.replace(",", "."))))
    except (ValueError, OverflowError):
        return 1


def parse_manifest(filename: str, content: bytes) -> List[DispatchRecord]:
    """
    Parse an uploaded manifest into dispatch records.

    Rows without a box id are dropped; when a box id repeats, the last row wins.
    """
    ext = safe_suffix(filename)
    if ext not in MANIFEST_EXTENSIONS:
        raise ValidationError(
            f"Invalid file type '{ext or filename}'. Allowed: {', '.join(sorted(MANIFEST_EXTENSIONS))}"
        )
    if not content:
        raise ValidationError("Manifest file is empty")

    try:
        df = read_xlsx(content) if ext == ".xlsx" else read_csv_smart(content)
    except Exception as e:
        raise ValidationError(f"Failed to parse manifest: {e}") from e

    idx = build_header_index([str(c) for c in df.columns])
    col_box = pick_column(idx, _HDR_BOX)
    if col_box is None:
        raise ValidationError(f"Manifest has no box id column (columns: {list(df.columns)})")
    col_cons = pick_column(idx, _HDR_CONSIGNMENT)
    col_dest = pick_column(idx, _HDR_DESTINATION)
    col_qty = pick_column(idx, _HDR_QTY)

    out = {}
    for _, row in df.iterrows():
        box_id = _cell(row, col_box)
        if not box_id:
            continue
        qty_raw = _cell(row, col_qty)
        out[box_id] = DispatchRecord(
            box_id=box_id,
            consignment=_cell(row, col_cons) or None,
            destination=_cell(row, col_dest) or None,
            expected_quantity=_qty(qty_raw) if qty_raw else 1,
        )
    return list(out.values())


@dataclass
class Classification:
    status: FinalStatus
    dispatch: Optional[DispatchRecord]


class DispatchService:
    """Manifest ingestion plus the scan status policy."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def classify(self, box_id: str) -> Classification:
        """
        Status for a fresh scan of ``box_id``.

        Unknown box -> PENDING. Known box -> TRUE while the finalized records
        of the box stay below the expected quantity, OVERSCANNED after that.
        """
        disp = await self.store.get_dispatch(box_id)
        if disp is None:
            return Classification(FinalStatus.PENDING, None)
        seen = await self.store.count_box_scans(box_id)
        if seen >= disp.expected_quantity:
            return Classification(FinalStatus.OVERSCANNED, disp)
        return Classification(FinalStatus.TRUE, disp)

    async def load(self, filename: str, content: bytes) -> int:
        records = parse_manifest(filename, content)
        await self.store.replace_dispatch(records)
        logger.info("dispatch manifest %s loaded: %d boxes", filename, len(records))
        return len(records)

    async def list(self) -> List[DispatchRecord]:
        return await self.store.list_dispatch()
