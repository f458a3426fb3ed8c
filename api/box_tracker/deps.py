from __future__ import annotations
from datetime import date
from typing import Optional

from fastapi import Query, Request

from box_tracker.models import HistoryFilter, StatusFilter
from box_tracker.services import ScanService


def get_service(request: Request) -> ScanService:
    """The ScanService created in the app lifespan."""
    return request.app.state.scan_service


def history_filter(
    start_date: Optional[date] = Query(default=None, description="First day (inclusive), YYYY-MM-DD"),
    end_date: Optional[date] = Query(default=None, description="Last day (inclusive), YYYY-MM-DD"),
    status: StatusFilter = Query(default="ALL"),
    search: Optional[str] = Query(default=None, description="Box ID / consignment / destination substring"),
) -> HistoryFilter:
    return HistoryFilter(start_date=start_date, end_date=end_date, status=status, search=search)
