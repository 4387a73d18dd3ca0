"""
Tests for the stage timing tracker.
"""
import pytest

from utils.performance import PerformanceTracker, get_tracker, time_operation, time_operation_context


@pytest.fixture
def tracker():
    tracker = get_tracker()
    tracker.reset()
    yield tracker
    tracker.reset()


class TestPerformanceTracker:
    """Test metric collection and the report."""

    def test_api_stats(self):
        tracker = PerformanceTracker()
        tracker.add_metric_with_context("api_request", 2.0, job_id="job-1", operation="classify")
        tracker.add_metric_with_context("api_request", 4.0, job_id="job-1", operation="classify")

        stats = tracker.get_api_stats()

        assert stats["count"] == 2
        assert stats["avg_time"] == 3.0
        assert stats["min_time"] == 2.0
        assert stats["max_time"] == 4.0

    def test_empty_api_stats(self):
        assert PerformanceTracker().get_api_stats()["avg_time"] == 0

    def test_report_groups_by_stage(self):
        tracker = PerformanceTracker()
        tracker.add_metric_with_context("stage", 1.0, stage="wall_runs")
        tracker.add_metric_with_context("stage", 3.0, stage="wall_runs")
        tracker.add_metric_with_context("stage", 5.0, stage="scale_annotations")

        report = tracker.report()

        assert report["stage"]["total_operations"] == 3
        assert report["stage"]["by_stage"] == {"wall_runs": 2.0, "scale_annotations": 5.0}
        assert tracker.get_average_duration("stage", stage="wall_runs") == 2.0
        assert "ingestion" not in report


class TestTimingHelpers:
    """Test the decorator and context manager."""

    @pytest.mark.asyncio
    async def test_async_decorator_records_job(self, tracker):
        @time_operation("ingestion")
        async def ingest(file_id, job_id=None):
            return file_id

        assert await ingest("plans.pdf", job_id="job-7") == "plans.pdf"
        metric = tracker.metrics["ingestion"][0]
        assert metric["job_id"] == "job-7"
        assert metric["func_name"] == "ingest"

    def test_sync_decorator_records_on_error(self, tracker):
        @time_operation("stage")
        def explode(state):
            raise ValueError("boom")

        with pytest.raises(ValueError):
            explode({"job_id": "job-3"})
        assert tracker.metrics["stage"][0]["job_id"] == "job-3"

    def test_context_manager(self, tracker):
        with time_operation_context("stage", job_id="job-1", stage="fusion"):
            pass
        assert tracker.metrics["stage"][0]["stage"] == "fusion"
