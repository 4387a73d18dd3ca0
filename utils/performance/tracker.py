"""
Core PerformanceTracker class for collecting and reporting stage timings.
"""
import logging
import threading
from typing import Dict, Any, List, Optional


class PerformanceTracker:
    """
    Tracks performance metrics for pipeline stages and model calls.
    """

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {
            "stage": [],
            "api_request": [],
            "ingestion": [],
            "total_processing": [],
        }
        self.api_stats = {
            "min_time": float("inf"),
            "max_time": 0.0,
            "total_time": 0.0,
            "count": 0,
        }
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def add_metric_with_context(
        self,
        category: str,
        duration: float,
        job_id: Optional[str] = None,
        **kwargs
    ):
        """
        Add a metric with explicit context.

        When category == "api_request" the aggregate API stats are updated as well,
        so callers must not record the same event twice.

        Args:
            category: Category name for the metric (e.g., 'stage', 'api_request')
            duration: Duration of the operation in seconds
            job_id: Optional job the operation belongs to
            **kwargs: Additional context fields to store with the metric
        """
        with self._lock:
            self.metrics.setdefault(category, []).append(
                {"job_id": job_id or "unknown", "duration": duration, **kwargs}
            )
            if category == "api_request":
                self.api_stats["min_time"] = min(self.api_stats["min_time"], duration)
                self.api_stats["max_time"] = max(self.api_stats["max_time"], duration)
                self.api_stats["total_time"] += duration
                self.api_stats["count"] += 1

    def get_api_stats(self) -> Dict[str, float]:
        if self.api_stats["count"] == 0:
            return {"min_time": 0, "max_time": 0, "avg_time": 0, "count": 0, "total_time": 0}
        return {
            "min_time": self.api_stats["min_time"],
            "max_time": self.api_stats["max_time"],
            "avg_time": self.api_stats["total_time"] / self.api_stats["count"],
            "count": self.api_stats["count"],
            "total_time": self.api_stats["total_time"],
        }

    def get_average_duration(self, category: str, stage: Optional[str] = None) -> float:
        """
        Get the average duration for a category, optionally for one stage name.
        """
        metrics = self.metrics.get(category, [])
        if stage:
            metrics = [m for m in metrics if m.get("stage") == stage]
        if not metrics:
            return 0.0
        return sum(m["duration"] for m in metrics) / len(metrics)

    def report(self) -> Dict[str, Any]:
        report: Dict[str, Any] = {}
        for category, metrics in self.metrics.items():
            if not metrics:
                continue
            by_stage: Dict[str, List[float]] = {}
            for metric in metrics:
                by_stage.setdefault(metric.get("stage") or metric.get("func_name") or "-", []).append(
                    metric["duration"]
                )
            report[category] = {
                "overall_average": self.get_average_duration(category),
                "total_operations": len(metrics),
                "by_stage": {name: sum(values) / len(values) for name, values in by_stage.items()},
            }
        report["api_statistics"] = self.get_api_stats()
        return report

    def log_report(self):
        report = self.report()
        self.logger.info("=== Performance Report ===")
        for category, data in report.items():
            if category == "api_statistics":
                continue
            self.logger.info(f"Category: {category}")
            self.logger.info(f"  Overall average: {data['overall_average']:.2f}s")
            self.logger.info(f"  Total operations: {data['total_operations']}")
            for name, avg in sorted(data["by_stage"].items()):
                self.logger.info(f"    {name}: {avg:.2f}s")
        api = report["api_statistics"]
        self.logger.info(
            f"API requests: {api['count']} (avg {api['avg_time']:.2f}s, "
            f"min {api['min_time']:.2f}s, max {api['max_time']:.2f}s)"
        )

    def reset(self):
        self.__init__()


def get_tracker() -> PerformanceTracker:
    """
    Get the global performance tracker.

    Returns:
        Global PerformanceTracker instance
    """
    from utils.performance import tracker
    return tracker
