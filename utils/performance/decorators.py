"""
Decorators and context managers for timing operations.
"""
import time
import asyncio
from typing import Optional
from functools import wraps
from contextlib import contextmanager

from utils.performance.tracker import get_tracker


def _extract_job_id(args: tuple, kwargs: dict) -> Optional[str]:
    """Find a job id in keyword arguments or on a state-like first argument."""
    job_id = kwargs.get("job_id")
    if isinstance(job_id, str):
        return job_id
    for arg in args:
        candidate = getattr(arg, "job_id", None)
        if isinstance(candidate, str):
            return candidate
        if isinstance(arg, dict) and isinstance(arg.get("job_id"), str):
            return arg["job_id"]
    return None


def time_operation(category: str):
    """
    Decorator to time an operation and add it to the tracker.

    Args:
        category: Category name for the metric (e.g., 'stage', 'ingestion')

    Returns:
        Decorated function that tracks execution time
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            job_id = _extract_job_id(args, kwargs)
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                get_tracker().add_metric_with_context(
                    category=category,
                    duration=time.time() - start_time,
                    job_id=job_id,
                    func_name=func.__name__,
                )

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            job_id = _extract_job_id(args, kwargs)
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                get_tracker().add_metric_with_context(
                    category=category,
                    duration=time.time() - start_time,
                    job_id=job_id,
                    func_name=func.__name__,
                )

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@contextmanager
def time_operation_context(category: str, job_id: Optional[str] = None, **context):
    """
    Context manager for timing operations with explicit context.

    Args:
        category: Category of the operation
        job_id: Optional job the operation belongs to
        **context: Extra fields stored with the metric (e.g. stage="wall_runs")
    """
    start_time = time.time()
    try:
        yield
    finally:
        get_tracker().add_metric_with_context(
            category=category,
            duration=time.time() - start_time,
            job_id=job_id,
            **context
        )
