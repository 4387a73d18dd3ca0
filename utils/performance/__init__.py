"""
Performance tracking package.

Times pipeline stages, ingestion and model calls for the end-of-run report.
"""
from utils.performance.tracker import PerformanceTracker
from utils.performance.decorators import time_operation, time_operation_context
from utils.performance.tracker import get_tracker

# Process-wide instance returned by get_tracker()
tracker = PerformanceTracker()

__all__ = [
    "PerformanceTracker",
    "tracker",
    "get_tracker",
    "time_operation",
    "time_operation_context",
]
