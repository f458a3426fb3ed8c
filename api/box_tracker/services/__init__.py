# box_tracker/services/__init__.py
"""
Business logic services for Box Tracker.
"""
from box_tracker.services.aggregator import DestinationAggregator
from box_tracker.services.dispatch import DispatchService
from box_tracker.services.pending import PendingQueue, ProcessResult
from box_tracker.services.scanning import ScanResult, ScanService

__all__ = [
    "DestinationAggregator",
    "DispatchService",
    "PendingQueue",
    "ProcessResult",
    "ScanResult",
    "ScanService",
]
