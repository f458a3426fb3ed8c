# box_tracker/services/aggregator.py
"""
Destination Aggregator - running scan counts per destination.

A finalized record contributes its ``duplicate_count`` (every accepted scan
of the box) to its destination. ``recompute`` is the reference definition;
the incremental ``apply`` path must always agree with it.
"""
from __future__ import annotations
from typing import Dict, Iterable, Optional

from box_tracker.models import ScanRecord


class DestinationAggregator:

    def __init__(self) -> None:
        self._counts: Dict[str, int] = {}

    @staticmethod
    def contribution(record: ScanRecord) -> int:
        return record.duplicate_count if record.is_finalized else 0

    @classmethod
    def recompute(cls, records: Iterable[ScanRecord]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for r in records:
            n = cls.contribution(r)
            if n:
                counts[r.destination] = counts.get(r.destination, 0) + n
        return counts

    def rebuild(self, records: Iterable[ScanRecord]) -> None:
        self._counts = self.recompute(records)

    def apply(self, destination: Optional[str], delta: int) -> None:
        if not destination or not delta:
            return
        n = self._counts.get(destination, 0) + delta
        if n > 0:
            self._counts[destination] = n
        else:
            self._counts.pop(destination, None)

    def replace(self, before: Optional[ScanRecord], after: Optional[ScanRecord]) -> None:
        """Swap one record's contribution for another's (either side may be None)."""
        if before is not None:
            self.apply(before.destination, -self.contribution(before))
        if after is not None:
            self.apply(after.destination, self.contribution(after))

    def snapshot(self) -> Dict[str, int]:
        return dict(sorted(self._counts.items()))
