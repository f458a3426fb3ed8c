from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile

from box_tracker.deps import get_service
from box_tracker.errors import ValidationError
from box_tracker.models import DispatchRecord
from box_tracker.services import ScanService

router = APIRouter(prefix="/api/dispatch", tags=["dispatch"])


@router.get("", response_model=List[DispatchRecord])
async def list_dispatch(svc: ScanService = Depends(get_service)):
    return await svc.dispatch.list()


@router.post("/upload")
async def upload_dispatch(file: UploadFile = File(...), svc: ScanService = Depends(get_service)):
    """Replace the dispatch manifest with an uploaded CSV / XLSX file."""
    if not file.filename:
        raise ValidationError("No filename provided")
    content = await file.read()
    loaded = await svc.dispatch.load(file.filename, content)
    return {
        "success": True,
        "filename": file.filename,
        "records": loaded,
        "pending_count": await svc.pending_count(),
    }
