# box_tracker/routers/scans.py
"""
Scans Router - scan command, history, counts, pending queue, export.
"""
from __future__ import annotations
from typing import Dict, List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from box_tracker.deps import get_service, history_filter
from box_tracker.errors import NotFound
from box_tracker.models import (
    DeleteOut, HistoryFilter, PendingOut, ProcessPendingOut,
    ScanIn, ScanOut, ScanRecord, ScanUpdateIn,
)
from box_tracker.services import ScanService
from box_tracker.services.export import render

router = APIRouter(prefix="/api/scans", tags=["scans"])


@router.post("/scan", response_model=ScanOut)
async def scan_box(payload: ScanIn, svc: ScanService = Depends(get_service)):
    """
    Record a box scan.

    A second scan of the same box on the same day is rejected
    (``success: false``) unless ``allow_duplicate`` is set, in which case the
    existing record's duplicate counter is incremented.
    """
    result = await svc.scan(payload.box_id, payload.scanned_by, payload.allow_duplicate)
    return ScanOut(
        outcome=result.outcome,
        success=result.success,
        is_duplicate=result.is_duplicate,
        message=result.message,
        record=result.record,
        destination_counts=result.destination_counts,
    )


@router.get("/history", response_model=List[ScanRecord])
async def get_history(svc: ScanService = Depends(get_service)):
    """All scans with duplicate flags derived from same-day groups."""
    return await svc.list_history_with_duplicates()


@router.get("/filtered", response_model=List[ScanRecord])
async def get_filtered(
    flt: HistoryFilter = Depends(history_filter),
    svc: ScanService = Depends(get_service),
):
    return await svc.list_history(flt)


@router.get("/counts", response_model=Dict[str, int])
async def get_destination_counts(svc: ScanService = Depends(get_service)):
    return svc.destination_counts()


@router.get("/pending", response_model=PendingOut)
async def get_pending(svc: ScanService = Depends(get_service)):
    items = await svc.pending.list()
    return PendingOut(pending_count=len(items), items=items)


@router.post("/process-pending", response_model=ProcessPendingOut)
async def process_pending(svc: ScanService = Depends(get_service)):
    result = await svc.process_pending()
    return ProcessPendingOut(reconciled=result.reconciled, pending_count=result.still_pending)


@router.delete("/pending/{pending_id}", response_model=DeleteOut)
async def discard_pending(pending_id: str, svc: ScanService = Depends(get_service)):
    if not await svc.pending.discard(pending_id):
        raise NotFound(f"Pending entry not found: {pending_id}")
    return DeleteOut(success=True, message="Pending scan discarded")


@router.get("/export")
async def export_scans(
    format: str = Query(default="xlsx", description="xlsx | json"),
    flt: HistoryFilter = Depends(history_filter),
    svc: ScanService = Depends(get_service),
):
    records = await svc.list_history(flt)
    payload = render(records, format, svc.tz, svc.clock())
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={"Content-Disposition": f'attachment; filename="{payload.filename}"'},
    )


@router.patch("/{scan_id}", response_model=ScanRecord)
async def update_scan(scan_id: str, changes: ScanUpdateIn, svc: ScanService = Depends(get_service)):
    return await svc.update(scan_id, changes)


@router.delete("/{scan_id}", response_model=DeleteOut)
async def delete_scan(scan_id: str, svc: ScanService = Depends(get_service)):
    if not await svc.delete(scan_id):
        raise NotFound(f"Scan not found: {scan_id}")
    return DeleteOut(success=True, message="Scan deleted successfully")
