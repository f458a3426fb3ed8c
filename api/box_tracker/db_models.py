# box_tracker/db_models.py
"""
SQLAlchemy ORM models for the SQL record store.

Datetimes are stored as naive UTC; the store converts at the boundary.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Index, CheckConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from box_tracker.database import Base
from box_tracker.models import FinalStatus

# ============================================================================
# 1. SCAN RECORDS
# ============================================================================

class ScanRow(Base):
    __tablename__ = "scan_records"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    box_id: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_scanned: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    shift: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    consignment: Mapped[Optional[str]] = mapped_column(String(255))
    destination: Mapped[Optional[str]] = mapped_column(String(255))
    scanned_by: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    final_status: Mapped[FinalStatus] = mapped_column(
        SQLEnum(FinalStatus, name="final_status"), nullable=False
    )
    is_duplicate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    duplicate_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        CheckConstraint("duplicate_count >= 1", name="chk_scan_duplicate_count"),
        Index("idx_scan_records_box_ts", "box_id", "timestamp"),
        Index("idx_scan_records_ts", "timestamp"),
    )


# ============================================================================
# 2. PENDING SCANS
# ============================================================================

class PendingRow(Base):
    __tablename__ = "pending_scans"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    scan_id: Mapped[str] = mapped_column(String(32), nullable=False)
    box_id: Mapped[str] = mapped_column(String(128), nullable=False)
    scanned_by: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    queued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_pending_scans_queued", "queued_at"),
    )


# ============================================================================
# 3. DISPATCH MANIFEST
# ============================================================================

class DispatchRow(Base):
    __tablename__ = "dispatch_records"

    box_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    consignment: Mapped[Optional[str]] = mapped_column(String(255))
    destination: Mapped[Optional[str]] = mapped_column(String(255))
    expected_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
