# tests/test_scanning.py
import asyncio

import pytest

from box_tracker.errors import NotFound, ValidationError
from box_tracker.models import FinalStatus, ScanOutcome, ScanUpdateIn

from conftest import load_dispatch


async def test_box123_day_example(service, clock):
    """09:00 new, 09:05 rejected, 09:10 accepted with count 2."""
    await load_dispatch(service, ("BOX123", "CN-1", "DEL"))

    r1 = await service.scan("BOX123", "alice", allow_duplicate=False)
    assert r1.outcome == ScanOutcome.new
    assert r1.record.duplicate_count == 1
    assert r1.record.is_duplicate is False
    assert r1.record.final_status == FinalStatus.TRUE

    clock.at(9, 5)
    r2 = await service.scan("BOX123", "alice", allow_duplicate=False)
    assert r2.outcome == ScanOutcome.rejected_duplicate
    assert r2.success is False
    assert r2.record.id == r1.record.id
    assert r2.record.duplicate_count == 1

    clock.at(9, 10)
    r3 = await service.scan("BOX123", "bob", allow_duplicate=True)
    assert r3.outcome == ScanOutcome.accepted_duplicate
    assert r3.record.id == r1.record.id
    assert r3.record.duplicate_count == 2
    assert r3.record.is_duplicate is True
    assert r3.record.last_scanned == clock.now

    stored = await service.store.list_scans()
    assert len(stored) == 1
    assert stored[0].duplicate_count == 2


async def test_rejected_duplicate_leaves_single_record(service, clock):
    await service.scan("B-1", "op")
    clock.advance(minutes=1)
    second = await service.scan("B-1", "op", allow_duplicate=False)

    assert second.outcome == ScanOutcome.rejected_duplicate
    scans = await service.store.list_scans()
    assert len(scans) == 1
    assert scans[0].duplicate_count == 1
    assert scans[0].is_duplicate is False


async def test_accepted_duplicate_increments_primary(service, clock):
    await service.scan("B-2", "op")
    clock.advance(minutes=1)
    await service.scan("B-2", "op", allow_duplicate=True)

    scans = await service.store.list_scans()
    assert len(scans) == 1
    assert scans[0].duplicate_count == 2


async def test_box_id_is_trimmed(service, clock):
    first = await service.scan("  BOX-7 \n", "op")
    assert first.record.box_id == "BOX-7"
    clock.advance(minutes=1)
    again = await service.scan("BOX-7", "op")
    assert again.outcome == ScanOutcome.rejected_duplicate


@pytest.mark.parametrize("bad", ["", "   ", "\t\n", None, "X" * 129])
async def test_invalid_box_id_rejected(service, bad):
    with pytest.raises(ValidationError):
        await service.scan(bad, "op")
    assert await service.store.list_scans() == []


async def test_new_day_starts_fresh(service, clock):
    clock.at(23, 59)
    await service.scan("BOX-N", "op")
    clock.advance(minutes=2)  # 00:01 next day
    second = await service.scan("BOX-N", "op", allow_duplicate=False)

    assert second.outcome == ScanOutcome.new
    assert len(await service.store.list_scans()) == 2


async def test_shift_label_from_scan_time(service, clock):
    clock.at(5, 30)
    assert (await service.scan("S-1")).record.shift == "C"
    clock.at(6, 0)
    assert (await service.scan("S-2")).record.shift == "A"
    clock.at(15, 0)
    assert (await service.scan("S-3")).record.shift == "B"
    clock.at(22, 30)
    assert (await service.scan("S-4")).record.shift == "C"


async def test_overscanned_after_expected_quantity(service, clock):
    await load_dispatch(service, ("BOX-Q", "CN-9", "BLR", 1))
    first = await service.scan("BOX-Q")
    assert first.record.final_status == FinalStatus.TRUE

    clock.advance(days=1)
    again = await service.scan("BOX-Q")
    assert again.outcome == ScanOutcome.new
    assert again.record.final_status == FinalStatus.OVERSCANNED
    assert again.record.destination == "BLR"


async def test_unknown_box_is_pending_and_queued(service):
    result = await service.scan("BOX999", "op")

    assert result.outcome == ScanOutcome.new
    assert result.record.final_status == FinalStatus.PENDING
    assert result.record.destination is None
    pending = await service.pending.list()
    assert [p.scan_id for p in pending] == [result.record.id]
    assert service.destination_counts() == {}


# =========================================
# Concurrency
# =========================================
async def test_racing_scans_yield_one_new_record(service):
    results = await asyncio.gather(*(service.scan("RACE-1", f"op{i}") for i in range(8)))

    outcomes = [r.outcome for r in results]
    assert outcomes.count(ScanOutcome.new) == 1
    assert outcomes.count(ScanOutcome.rejected_duplicate) == 7
    assert len(await service.store.list_scans()) == 1


async def test_racing_accepted_duplicates_count_every_scan(service):
    await load_dispatch(service, ("RACE-2", "CN", "HYD"))
    results = await asyncio.gather(
        *(service.scan("RACE-2", "op", allow_duplicate=True) for _ in range(6))
    )

    outcomes = [r.outcome for r in results]
    assert outcomes.count(ScanOutcome.new) == 1
    assert outcomes.count(ScanOutcome.accepted_duplicate) == 5
    scans = await service.store.list_scans()
    assert len(scans) == 1
    assert scans[0].duplicate_count == 6
    assert service.destination_counts() == {"HYD": 6}


async def test_box_locks_released_after_scans(service):
    await asyncio.gather(*(service.scan("REL", "op") for _ in range(3)))
    with pytest.raises(ValidationError):
        await service.scan("", "op")
    assert len(service.box_locks) == 0


# =========================================
# Delete / update
# =========================================
async def test_delete_missing_scan_keeps_counts(service):
    await load_dispatch(service, ("D-1", "CN", "PNQ"))
    await service.scan("D-1")
    before = service.destination_counts()

    assert await service.delete("does-not-exist") is False
    assert service.destination_counts() == before == {"PNQ": 1}


async def test_delete_decrements_destination(service, clock):
    await load_dispatch(service, ("D-2", "CN", "PNQ"), ("D-3", "CN", "PNQ"))
    r = await service.scan("D-2")
    clock.advance(minutes=1)
    await service.scan("D-2", allow_duplicate=True)
    await service.scan("D-3")
    assert service.destination_counts() == {"PNQ": 3}

    assert await service.delete(r.record.id) is True
    assert service.destination_counts() == {"PNQ": 1}
    assert await service.store.get_scan(r.record.id) is None


async def test_delete_pending_scan_drops_queue_entry(service):
    r = await service.scan("P-DEL")
    assert await service.pending_count() == 1

    assert await service.delete(r.record.id) is True
    assert await service.pending_count() == 0


async def test_update_moves_destination_count(service):
    await load_dispatch(service, ("U-1", "CN", "DEL"))
    r = await service.scan("U-1")

    updated = await service.update(r.record.id, ScanUpdateIn(destination="BOM"))
    assert updated.destination == "BOM"
    assert service.destination_counts() == {"BOM": 1}
    assert (await service.store.get_scan(r.record.id)).destination == "BOM"


async def test_update_missing_scan_raises(service):
    with pytest.raises(NotFound):
        await service.update("nope", ScanUpdateIn(shift="B"))


async def test_manual_resolution_of_pending_scan(service):
    r = await service.scan("MANUAL-1")
    updated = await service.update(
        r.record.id, ScanUpdateIn(final_status=FinalStatus.TRUE, destination="CCU")
    )
    assert updated.final_status == FinalStatus.TRUE
    assert await service.pending_count() == 0
    assert service.destination_counts() == {"CCU": 1}


# =========================================
# Aggregator equivalence
# =========================================
async def test_incremental_counts_match_recompute(service, clock):
    await load_dispatch(
        service,
        ("A-1", "CN-1", "DEL"),
        ("A-2", "CN-1", "DEL"),
        ("A-3", "CN-2", "BOM"),
    )
    ids = []
    for i, box in enumerate(["A-1", "A-2", "A-3", "A-1", "A-3", "UNKNOWN-1", "A-2"]):
        clock.advance(minutes=3)
        r = await service.scan(box, "op", allow_duplicate=(i % 2 == 1))
        ids.append(r.record.id)
        assert service.destination_counts() == await service.recount()

    await service.delete(ids[0])
    assert service.destination_counts() == await service.recount()

    await load_dispatch(service, ("A-2", "CN-1", "DEL"), ("A-3", "CN-2", "BOM"), ("UNKNOWN-1", "CN-3", "MAA"))
    await service.process_pending()
    assert service.destination_counts() == await service.recount()
    assert service.destination_counts()["MAA"] == 1


async def test_counts_rebuilt_on_reopen(store, clock):
    from box_tracker.services import ScanService

    svc = ScanService(store, clock=clock)
    await svc.open()
    await load_dispatch(svc, ("R-1", "CN", "GOI"))
    await svc.scan("R-1")
    clock.advance(minutes=1)
    await svc.scan("R-1", allow_duplicate=True)
    await svc.close()

    reopened = ScanService(store, clock=clock)
    await reopened.open()
    try:
        assert reopened.destination_counts() == {"GOI": 2}
    finally:
        await reopened.close()


async def test_overscanned_without_destination_column(service, clock):
    await service.dispatch.load("m.csv", b"Box ID,Consignment\nNODEST,CN-1\n")
    first = await service.scan("NODEST")
    assert first.record.final_status == FinalStatus.TRUE
    assert first.record.destination is None

    clock.advance(days=1)
    again = await service.scan("NODEST")
    assert again.outcome == ScanOutcome.new
    assert again.record.final_status == FinalStatus.OVERSCANNED
    assert service.destination_counts() == {}


# =========================================
# Local day boundary
# =========================================
async def test_day_rolls_over_at_local_midnight(store, clock):
    from box_tracker.services import ScanService

    svc = ScanService(store, tz="Asia/Kolkata", lock_timeout=2.0, clock=clock)
    await svc.open()
    try:
        clock.at(18, 20)  # 23:50 IST
        first = await svc.scan("IST-1")
        clock.at(18, 40)  # 00:10 IST, next local day, same UTC date
        second = await svc.scan("IST-1", allow_duplicate=False)

        assert first.outcome == ScanOutcome.new
        assert second.outcome == ScanOutcome.new
        assert second.record.id != first.record.id
        assert len(await svc.store.list_scans()) == 2
    finally:
        await svc.close()


async def test_same_local_day_across_utc_midnight(store, clock):
    from box_tracker.services import ScanService

    svc = ScanService(store, tz="Asia/Kolkata", lock_timeout=2.0, clock=clock)
    await svc.open()
    try:
        clock.at(23, 50)  # 05:20 IST on 2026-03-11
        await svc.scan("IST-2")
        clock.advance(minutes=20)  # 00:10 UTC on 2026-03-11, still 2026-03-11 in IST
        again = await svc.scan("IST-2", allow_duplicate=False)

        assert again.outcome == ScanOutcome.rejected_duplicate
    finally:
        await svc.close()
