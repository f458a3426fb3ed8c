# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from box_tracker.main import create_app
from box_tracker.models import DispatchRecord
from box_tracker.services import ScanService
from box_tracker.settings import Settings
from box_tracker.storage import JsonRecordStore, RecordStore, SqlRecordStore

SHIFTS = [(6, "A"), (14, "B"), (22, "C")]


class FixedClock:
    """Controllable "now" for the scan service."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def at(self, hour: int, minute: int = 0) -> "FixedClock":
        self.now = self.now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        return self

    def advance(self, **kwargs) -> "FixedClock":
        self.now = self.now + timedelta(**kwargs)
        return self


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))


def make_store(kind: str, tmp_path) -> RecordStore:
    if kind == "sql":
        return SqlRecordStore(f"sqlite+aiosqlite:///{(tmp_path / 'tracker.db').as_posix()}")
    return JsonRecordStore(tmp_path)


@pytest.fixture(params=["json", "sql"])
def store(request, tmp_path) -> RecordStore:
    return make_store(request.param, tmp_path)


@pytest_asyncio.fixture
async def service(store, clock) -> AsyncGenerator[ScanService, None]:
    svc = ScanService(store, tz="UTC", lock_timeout=2.0, shifts=SHIFTS, clock=clock)
    await svc.open()
    try:
        yield svc
    finally:
        await svc.close()


async def load_dispatch(svc: ScanService, *rows: tuple) -> None:
    """rows: (box_id, consignment, destination[, expected_quantity])"""
    records = [
        DispatchRecord(
            box_id=r[0],
            consignment=r[1],
            destination=r[2],
            expected_quantity=r[3] if len(r) > 3 else 1,
        )
        for r in rows
    ]
    await svc.store.replace_dispatch(records)


# =========================================
# HTTP client (JSON store under tmp_path)
# =========================================
@pytest.fixture
def app_settings(tmp_path) -> Settings:
    return Settings(
        BOX_TRACKER_DATA_ROOT=tmp_path,
        STORAGE_BACKEND="json",
        SCAN_TIMEZONE="UTC",
        LOCK_TIMEOUT_SECONDS=2.0,
        SHIFTS="A@06,B@14,C@22",
    )


@pytest.fixture
def client(app_settings, clock):
    app = create_app(app_settings, clock=clock)
    with TestClient(app) as c:
        yield c
