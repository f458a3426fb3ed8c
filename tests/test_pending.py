# tests/test_pending.py
import asyncio

from box_tracker.models import FinalStatus, ScanOutcome

from conftest import load_dispatch


async def test_pending_box_waits_for_manifest(service, clock):
    """BOX999 stays queued until a dispatch record for it is loaded."""
    scanned = await service.scan("BOX999", "op")
    assert scanned.record.final_status == FinalStatus.PENDING

    clock.advance(minutes=5)
    first = await service.process_pending()
    assert first.reconciled == []
    assert first.still_pending == 1
    entry = (await service.pending.list())[0]
    assert entry.attempts == 1
    assert entry.last_attempt_at == clock.now

    await load_dispatch(service, ("BOX999", "CN-99", "JAI"))
    second = await service.process_pending()

    assert second.still_pending == 0
    assert [r.box_id for r in second.reconciled] == ["BOX999"]
    rec = await service.store.get_scan(scanned.record.id)
    assert rec.final_status == FinalStatus.TRUE
    assert rec.destination == "JAI"
    assert rec.consignment == "CN-99"
    assert service.destination_counts() == {"JAI": 1}


async def test_only_matching_entries_are_reconciled(service, clock):
    await service.scan("P-1")
    clock.advance(minutes=1)
    await service.scan("P-2")
    await load_dispatch(service, ("P-2", "CN", "LKO"))

    result = await service.process_pending()

    assert [r.box_id for r in result.reconciled] == ["P-2"]
    assert result.still_pending == 1
    assert [p.box_id for p in await service.pending.list()] == ["P-1"]


async def test_reconciled_duplicates_count_fully(service, clock):
    await service.scan("P-DUP")
    clock.advance(minutes=1)
    dup = await service.scan("P-DUP", allow_duplicate=True)
    assert dup.outcome == ScanOutcome.accepted_duplicate
    assert await service.pending_count() == 1
    assert service.destination_counts() == {}

    await load_dispatch(service, ("P-DUP", "CN", "IXC"))
    await service.process_pending()
    assert service.destination_counts() == {"IXC": 2}


async def test_overlapping_process_calls_reconcile_once(service):
    await service.scan("P-RACE")
    await load_dispatch(service, ("P-RACE", "CN", "PAT"))

    a, b = await asyncio.gather(service.process_pending(), service.process_pending())

    assert len(a.reconciled) + len(b.reconciled) == 1
    assert a.still_pending == b.still_pending == 0
    assert service.destination_counts() == {"PAT": 1}
    assert len(service.process_lock) == 0


async def test_discard_removes_entry_and_scan(service):
    r = await service.scan("P-GONE")
    entry = (await service.pending.list())[0]

    assert await service.pending.discard(entry.id) is True
    assert await service.pending_count() == 0
    assert await service.store.get_scan(r.record.id) is None
    assert await service.pending.discard(entry.id) is False


async def test_entry_of_deleted_scan_is_dropped(service):
    r = await service.scan("P-ORPHAN")
    # delete the scan behind the queue's back
    from box_tracker.storage import ChangeSet
    await service.store.commit(ChangeSet(delete_scans=[r.record.id]))

    result = await service.process_pending()
    assert result.reconciled == []
    assert result.still_pending == 0


async def test_busy_entry_is_skipped_not_fatal(store, clock):
    from box_tracker.services import ScanService

    svc = ScanService(store, lock_timeout=0.05, clock=clock)
    await svc.open()
    try:
        blocked = await svc.scan("P-BUSY")
        clock.advance(minutes=1)
        await svc.scan("P-FREE")
        await load_dispatch(svc, ("P-BUSY", "CN", "DEL"), ("P-FREE", "CN", "BOM"))

        # another operation holds P-BUSY's box lock for the whole run
        async with svc.box_locks.hold(svc.pending.lock_key(blocked.record)):
            result = await svc.process_pending()

        assert [r.box_id for r in result.reconciled] == ["P-FREE"]
        assert result.still_pending == 1
        assert [p.box_id for p in await svc.pending.list()] == ["P-BUSY"]

        retry = await svc.process_pending()
        assert [r.box_id for r in retry.reconciled] == ["P-BUSY"]
        assert svc.destination_counts() == {"BOM": 1, "DEL": 1}
    finally:
        await svc.close()
