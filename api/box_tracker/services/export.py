# box_tracker/services/export.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import List
from zoneinfo import ZoneInfo
import json

import pandas as pd

from box_tracker.errors import ValidationError
from box_tracker.models import ScanRecord
from box_tracker.utils import export_filename

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

FORMAT_ALIASES = {
    "xlsx": "xlsx",
    "excel": "xlsx",
    "spreadsheet": "xlsx",
    "json": "json",
}

COLUMNS = [
    "Box ID", "Scanned At", "Last Scanned", "Shift", "Consignment", "Destination",
    "Scanned By", "Final Status", "Duplicate", "Duplicate Count",
]


@dataclass
class ExportPayload:
    content: bytes
    media_type: str
    filename: str


def normalize_format(fmt: str) -> str:
    key = (fmt or "").strip().lower()
    if key not in FORMAT_ALIASES:
        raise ValidationError(f"Unsupported export format '{fmt}'. Use xlsx or json")
    return FORMAT_ALIASES[key]


def _local(ts: datetime, tz: ZoneInfo) -> datetime:
    # Excel has no timezone support
    return ts.astimezone(tz).replace(tzinfo=None, microsecond=0)


def records_frame(records: List[ScanRecord], tz: ZoneInfo) -> pd.DataFrame:
    rows = [
        {
            "Box ID": r.box_id,
            "Scanned At": _local(r.timestamp, tz),
            "Last Scanned": _local(r.last_scanned, tz),
            "Shift": r.shift,
            "Consignment": r.consignment or "",
            "Destination": r.destination or "",
            "Scanned By": r.scanned_by,
            "Final Status": r.final_status.value,
            "Duplicate": "YES" if r.is_duplicate else "NO",
            "Duplicate Count": r.duplicate_count,
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=COLUMNS)


def render(records: List[ScanRecord], fmt: str, tz: ZoneInfo, as_of: datetime) -> ExportPayload:
    fmt = normalize_format(fmt)
    stamp = as_of.astimezone(tz)
    if fmt == "json":
        data = [r.model_dump(mode="json") for r in records]
        return ExportPayload(
            content=json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8"),
            media_type="application/json",
            filename=export_filename("json", stamp),
        )

    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        records_frame(records, tz).to_excel(writer, index=False, sheet_name="Scans")
    return ExportPayload(
        content=buf.getvalue(),
        media_type=XLSX_MEDIA_TYPE,
        filename=export_filename("xlsx", stamp),
    )
