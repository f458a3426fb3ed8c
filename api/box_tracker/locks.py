# box_tracker/locks.py
"""
In-process mutual exclusion keyed by an arbitrary hashable value.

Scans hold ``(box_id, day)``; pending processing holds a single fixed key.
Locks are created on first use and dropped once nobody holds or waits for
them, so the table only ever contains keys with live contention.
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Hashable
import asyncio

from box_tracker.errors import ConcurrencyConflict


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:

    def __init__(self, timeout: float, name: str = "lock"):
        self.timeout = timeout
        self.name = name
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise ConcurrencyConflict(
                    f"{self.name} busy for {key!r} (waited {self.timeout:g}s)"
                ) from None
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]
