from __future__ import annotations
from datetime import date, datetime, time, timedelta, timezone
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo
import re

import pandas as pd

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def zone(name: str) -> ZoneInfo:
    return ZoneInfo(name or "UTC")

# ---------------------------------------------------------
# Day boundary / shifts
# ---------------------------------------------------------
def local_day(ts: datetime, tz: ZoneInfo) -> date:
    return ts.astimezone(tz).date()

def day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Local midnight-to-midnight of ``day`` as aware datetimes (end exclusive)."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end

def date_range_bounds(start_day: Optional[date], end_day: Optional[date], tz: ZoneInfo) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive whole-day range -> (start, end exclusive); open ends stay None."""
    start = day_bounds(start_day, tz)[0] if start_day else None
    end = day_bounds(end_day, tz)[1] if end_day else None
    return start, end

def shift_for(ts: datetime, tz: ZoneInfo, table: Sequence[Tuple[int, str]]) -> str:
    """
    Label of the shift active at ``ts``. Table entries are (start_hour, label)
    sorted by hour; hours before the first start belong to the last shift
    (a night shift running past midnight).
    """
    if not table:
        return ""
    hour = ts.astimezone(tz).hour
    label = table[-1][1]
    for start_hour, name in table:
        if hour >= start_hour:
            label = name
    return label

# ---------------------------------------------------------
# CSV / XLSX helpers
# ---------------------------------------------------------
def read_csv_smart(data: bytes, max_rows: int | None = None) -> pd.DataFrame:
    encodings = ["utf-8-sig", "cp1250", "latin-1"]
    seps = [",", ";", "\t", "|"]
    last_err = None
    for enc in encodings:
        for sep in seps:
            try:
                df = pd.read_csv(
                    BytesIO(data),
                    encoding=enc,
                    sep=sep,
                    dtype=str,
                    nrows=max_rows,
                    on_bad_lines="skip",
                )
                if df.shape[1] > 1:
                    return df
            except Exception as e:
                last_err = e
                continue
    # single-column manifests are legal (box ids only)
    try:
        return pd.read_csv(BytesIO(data), encoding="utf-8-sig", dtype=str, nrows=max_rows)
    except Exception as e:
        raise ValueError(f"Cannot parse CSV: {last_err or e}") from e

def read_xlsx(data: bytes) -> pd.DataFrame:
    return pd.read_excel(BytesIO(data), dtype=str, engine="openpyxl")

def norm_header(h: str) -> str:
    s = str(h or "").replace("\u00A0", " ").strip().strip('"').strip("'")
    s = s.strip("[]").lower()
    s = re.sub(r"[\s_\-]+", "", s)
    return s

def build_header_index(columns: List[str]) -> Dict[str, str]:
    return {norm_header(c): c for c in columns}

def pick_column(index: Dict[str, str], candidates: List[str]) -> Optional[str]:
    for c in candidates:
        col = index.get(norm_header(c))
        if col is not None:
            return col
    return None

def export_filename(ext: str, as_of: datetime) -> str:
    return f"scan-data_{as_of.strftime('%Y%m%d_%H%M%S')}.{ext}"

def safe_suffix(filename: str) -> str:
    return Path(filename or "").suffix.lower()
