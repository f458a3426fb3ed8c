from __future__ import annotations
from datetime import date, datetime
from typing import Optional, Dict, List, Literal
import enum
import uuid

from pydantic import BaseModel, Field, field_validator

# ============================================================================
# ENUMS
# ============================================================================

class FinalStatus(str, enum.Enum):
    TRUE = "TRUE"
    PENDING = "PENDING"
    OVERSCANNED = "OVERSCANNED"


class ScanOutcome(str, enum.Enum):
    new = "new"
    rejected_duplicate = "rejected_duplicate"
    accepted_duplicate = "accepted_duplicate"


StatusFilter = Literal["ALL", "TRUE", "PENDING", "OVERSCANNED", "DUPLICATE"]

FINALIZED_STATUSES = (FinalStatus.TRUE, FinalStatus.OVERSCANNED)


def new_id() -> str:
    return uuid.uuid4().hex

# ============================================================================
# Records
# ============================================================================

class ScanRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    box_id: str
    timestamp: datetime
    last_scanned: datetime
    shift: str = ""
    consignment: Optional[str] = None
    destination: Optional[str] = None
    scanned_by: str = ""
    final_status: FinalStatus
    is_duplicate: bool = False
    duplicate_count: int = Field(default=1, ge=1)

    @property
    def is_finalized(self) -> bool:
        return self.final_status in FINALIZED_STATUSES and bool(self.destination)


class PendingRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    scan_id: str
    box_id: str
    scanned_by: str = ""
    queued_at: datetime
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None


class DispatchRecord(BaseModel):
    box_id: str
    consignment: Optional[str] = None
    destination: Optional[str] = None
    expected_quantity: int = Field(default=1, ge=1)

    @field_validator("box_id")
    @classmethod
    def _strip_box_id(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("box_id must not be empty")
        return v

# ============================================================================
# Query / command payloads
# ============================================================================

class HistoryFilter(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: StatusFilter = "ALL"
    search: Optional[str] = None


class ScanIn(BaseModel):
    box_id: str
    scanned_by: str = ""
    allow_duplicate: bool = False

    @field_validator("box_id", mode="before")
    @classmethod
    def _numeric_box_id(cls, v):
        # numeric barcodes arrive as JSON numbers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class ScanOut(BaseModel):
    outcome: ScanOutcome
    success: bool
    is_duplicate: bool
    message: str
    record: ScanRecord
    destination_counts: Dict[str, int] = Field(default_factory=dict)


class ScanUpdateIn(BaseModel):
    consignment: Optional[str] = None
    destination: Optional[str] = None
    shift: Optional[str] = None
    final_status: Optional[FinalStatus] = None


class PendingOut(BaseModel):
    pending_count: int
    items: List[PendingRecord]


class ProcessPendingOut(BaseModel):
    reconciled: List[ScanRecord]
    pending_count: int


class DeleteOut(BaseModel):
    success: bool
    message: str
