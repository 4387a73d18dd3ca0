"""
Tests for the pipeline orchestrator, its stages and the job queue.
"""
import asyncio
import logging
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from processing.job_processor import JobProcessor, process_requests
from processing.pipeline import STAGES, Stage, process_job
from processing.pipeline.extraction import stage_classification, stage_room_mapping
from processing.pipeline.orchestrator import run_stage, serialize_option
from processing.pipeline.pool import run_bounded
from processing.pipeline.status import ProgressReporter, analysis_progress
from schemas.extraction import VisionPipe, VisionResult, VisionWall
from schemas.features import Feature, FeatureType
from schemas.job import JobRequest, JobStatus
from schemas.sheets import IngestMetadata, IngestResult, Sheet, SheetClassification
from services.cost_estimator import CostEstimator
from services.fusion_service import FusionService
from services.job_repository import JobRepository
from services.job_service import JobService
from services.labor_estimator import LaborEstimator
from services.rules_engine import RulesEngine
from services.takeoff_service import TakeoffAggregator
from utils.exceptions import ExtractionError, JobCancellationError, StageError

logger = logging.getLogger("test")

EXTRACTORS = (
    "extract_spaces",
    "extract_finishes",
    "extract_room_schedule",
    "map_rooms",
    "extract_partition_types",
    "extract_wall_runs",
    "extract_ceiling_heights",
    "extract_scales",
)


def drawing_set():
    return [
        Sheet(index=0, name="A1.1", text="FLOOR PLAN", raster=b"plan-png"),
        Sheet(index=1, name="A0.0", text="COVER SHEET", raster=b"cover-png"),
    ]


async def classify_sheet(sheet, job_id=None):
    if sheet.index == 0:
        return SheetClassification(category="floor", discipline=["A"], is_primary_plan=True, confidence=0.9)
    return SheetClassification(category="other", confidence=0.8)


async def analyze_sheet(sheet, disciplines=(), targets=(), job_id=None):
    return VisionResult(
        sheet_index=sheet.index,
        sheet_name=sheet.label,
        walls=[VisionWall(id="w1", partition_type="PT-1", length=100)],
        pipes=[VisionPipe(id="p1", service="CW", diameter=1, length=50)],
    )


def make_services(tmp_path, sheets=None, analyze=analyze_sheet):
    repository = JobRepository(str(tmp_path))
    ingestor = MagicMock()
    sheets = sheets if sheets is not None else drawing_set()
    ingestor.ingest = AsyncMock(return_value=IngestResult(
        file_id="plans.pdf", sheets=sheets, metadata=IngestMetadata(total_pages=len(sheets)),
    ))
    capability = MagicMock()
    for name in EXTRACTORS:
        setattr(capability, name, AsyncMock(return_value=None))
    capability.classify = AsyncMock(side_effect=classify_sheet)
    capability.analyze_plan_image = AsyncMock(side_effect=analyze)
    return {
        "repository": repository,
        "jobs": JobService(repository),
        "ingestor": ingestor,
        "capability": capability,
        "rules": RulesEngine(repository),
        "fusion": FusionService(),
        "takeoff": TakeoffAggregator(),
        "cost": CostEstimator(markups={}),
        "labor": LaborEstimator(productivity_overrides={}),
        "logger": logger,
        "sheet_concurrency": 2,
    }


async def new_job(services, **kwargs):
    return await services["jobs"].create_job(JobRequest(file_id="plans.pdf", **kwargs))


class TestProcessJob:
    """Test whole-job runs of the stage table."""

    @pytest.mark.asyncio
    async def test_completed_job(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)
        progress = []

        outcome = await process_job(job.job_id, services, on_progress=progress.append)

        assert outcome["status"] == "COMPLETED"
        assert outcome["failed_stages"] == []
        stored = await services["repository"].get_job(job.job_id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.progress == 100
        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert 60 in progress and 95 in progress

        # only the plan sheet kept its raster
        services["capability"].analyze_plan_image.assert_awaited_once()

        features = await services["repository"].get_features(job.job_id)
        assert sorted(feature.type.value for feature in features) == ["PIPE", "WALL"]

        materials = {material.sku: material for material in await services["repository"].get_materials(job.job_id)}
        assert materials["STUD-362-20GA"].qty == 75
        assert materials["GWB-58X-TypeX"].qty == 62.5
        assert materials["PVC-1IN"].qty == pytest.approx(53.5)

        options = stored.options
        assert options["features"] == {"count": 2}
        assert options["ingest"]["sheet_count"] == 2
        assert options["materials_summary"]["total_items"] == len(materials)
        assert options["takeoff"]["project"]["job_id"] == job.job_id
        assert options["scope_diagnosis"]["feature_counts"] == {"WALL": 1, "PIPE": 1}
        assert set(options["artifacts"]) == {"takeoff", "cost", "labor"}
        assert all(os.path.exists(path) for path in options["artifacts"].values())

    @pytest.mark.asyncio
    async def test_non_fatal_failure_is_isolated(self, tmp_path):
        services = make_services(tmp_path)
        services["fusion"] = MagicMock()
        services["fusion"].fuse.side_effect = RuntimeError("fusion exploded")
        job = await new_job(services)

        outcome = await process_job(job.job_id, services)

        assert outcome["status"] == "COMPLETED"
        assert outcome["failed_stages"] == ["final_fusion"]
        stored = await services["repository"].get_job(job.job_id)
        assert "fusion_data" not in stored.options
        assert "takeoff" in stored.options

    @pytest.mark.asyncio
    async def test_ingestion_failure_fails_job(self, tmp_path):
        services = make_services(tmp_path)
        services["ingestor"].ingest = AsyncMock(side_effect=ExtractionError("File not found: plans.pdf"))
        job = await new_job(services)

        outcome = await process_job(job.job_id, services)

        assert outcome["status"] == "FAILED"
        stored = await services["repository"].get_job(job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "ingestion: File not found: plans.pdf"
        services["capability"].classify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_analysis_result_fails_job(self, tmp_path):
        async def no_result(sheet, disciplines=(), targets=(), job_id=None):
            return None

        services = make_services(tmp_path, analyze=no_result)
        job = await new_job(services)

        outcome = await process_job(job.job_id, services)

        assert outcome["status"] == "FAILED"
        assert outcome["error"].startswith("vision_analysis:")
        assert await services["repository"].get_materials(job.job_id) == []

    @pytest.mark.asyncio
    async def test_no_rendered_sheets_fails_job(self, tmp_path):
        services = make_services(tmp_path, sheets=[Sheet(index=0, name="A1.1", text="PLAN")])
        job = await new_job(services)

        outcome = await process_job(job.job_id, services)

        assert outcome["status"] == "FAILED"
        assert "no rendered plan sheets" in outcome["error"]

    @pytest.mark.asyncio
    async def test_cancellation_during_analysis(self, tmp_path):
        holder = {}

        async def analyze_then_cancel(sheet, disciplines=(), targets=(), job_id=None):
            await holder["services"]["jobs"].cancel_job(job_id)
            return await analyze_sheet(sheet)

        services = make_services(tmp_path, analyze=analyze_then_cancel)
        holder["services"] = services
        job = await new_job(services)

        outcome = await process_job(job.job_id, services)

        assert outcome["status"] == "CANCELLED"
        stored = await services["repository"].get_job(job.job_id)
        assert stored.status == JobStatus.CANCELLED
        assert await services["repository"].get_features(job.job_id) == []

    @pytest.mark.asyncio
    async def test_cancel_after_last_checkpoint_is_kept(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)
        jobs = services["jobs"]
        checkpoints = []
        real_check = jobs.check_cancellation

        async def check_then_cancel(job_id):
            await real_check(job_id)
            checkpoints.append(job_id)
            if len(checkpoints) == 2:
                await jobs.cancel_job(job_id)

        jobs.check_cancellation = check_then_cancel
        quiet = (Stage("quiet", AsyncMock(return_value=None)),)

        outcome = await process_job(job.job_id, services, stages=quiet)

        assert len(checkpoints) == 2
        assert outcome["status"] == "CANCELLED"
        stored = await services["repository"].get_job(job.job_id)
        assert stored.status == JobStatus.CANCELLED
        assert stored.progress < 100

    @pytest.mark.asyncio
    async def test_cancel_wins_over_fatal_failure(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)

        async def cancel_then_fail(state, services):
            await services["jobs"].cancel_job(state["job_id"])
            raise RuntimeError("late failure")

        outcome = await process_job(
            job.job_id, services, stages=(Stage("late", cancel_then_fail, fatal=True),)
        )

        assert outcome["status"] == "CANCELLED"
        stored = await services["repository"].get_job(job.job_id)
        assert stored.status == JobStatus.CANCELLED
        assert stored.error is None

    @pytest.mark.asyncio
    async def test_terminal_job_is_skipped(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)
        await services["jobs"].cancel_job(job.job_id)

        outcome = await process_job(job.job_id, services)

        assert outcome["status"] == "CANCELLED"
        services["ingestor"].ingest.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rerun_clears_previous_results(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)
        await services["repository"].replace_features(
            job.job_id, [Feature(type=FeatureType.DUCT, length=10)]
        )
        failing = (Stage("boom", AsyncMock(side_effect=RuntimeError("x")), fatal=True),)

        outcome = await process_job(job.job_id, services, stages=failing)

        assert outcome["status"] == "FAILED"
        assert outcome["error"] == "boom: x"
        assert await services["repository"].get_features(job.job_id) == []


class TestRunStage:
    """Test the generic stage runner."""

    def state(self, services, job_id):
        return {
            "job_id": job_id,
            "file_id": "plans.pdf",
            "disciplines": [],
            "targets": [],
            "rule_set_id": None,
            "request_options": {},
            "options": {},
            "reporter": ProgressReporter(services["repository"], job_id, start=10),
        }

    @pytest.mark.asyncio
    async def test_output_is_merged_and_persisted(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)
        state = self.state(services, job.job_id)
        stage = Stage("demo", AsyncMock(return_value={"materials_summary": {"total_items": 3}}), progress=40)

        assert await run_stage(stage, state, services, []) is True

        assert state["options"]["materials_summary"] == {"total_items": 3}
        stored = await services["repository"].get_job(job.job_id)
        assert stored.options["materials_summary"] == {"total_items": 3}
        assert stored.progress == 40

    @pytest.mark.asyncio
    async def test_non_fatal_failure_recorded(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)
        failed = []
        stage = Stage("flaky", AsyncMock(side_effect=ValueError("bad data")), progress=40)

        assert await run_stage(stage, self.state(services, job.job_id), services, failed) is False
        assert failed == ["flaky"]
        assert (await services["repository"].get_job(job.job_id)).progress == 0

    @pytest.mark.asyncio
    async def test_fatal_failure_raises_stage_error(self, tmp_path):
        services = make_services(tmp_path)
        job = await new_job(services)
        stage = Stage("critical", AsyncMock(side_effect=ValueError("bad data")), fatal=True)

        with pytest.raises(StageError, match="critical: bad data"):
            await run_stage(stage, self.state(services, job.job_id), services, [])

    def test_serialize_option(self):
        features = [Feature(type=FeatureType.WALL, length=1)]
        assert serialize_option("features", features) == {"count": 1}
        assert serialize_option("vision_summary", {"a": 1}) == {"a": 1}

    def test_stage_table_order(self):
        names = [stage.name for stage in STAGES]
        assert names[0] == "ingestion"
        assert names.index("final_fusion") < names.index("vision_analysis") < names.index("feature_extraction")
        assert names.index("takeoff") < names.index("rules") < names.index("artifacts")
        assert [stage.name for stage in STAGES if stage.fatal] == ["ingestion", "vision_analysis", "feature_extraction"]


class TestProgress:
    """Test progress checkpoints."""

    def test_analysis_progress(self):
        assert analysis_progress(0, 4) == 25
        assert analysis_progress(2, 4) == 42
        assert analysis_progress(4, 4) == 60
        assert analysis_progress(0, 0) == 60

    @pytest.mark.asyncio
    async def test_reporter_is_monotonic_and_clamped(self):
        repository = MagicMock()
        repository.set_progress = AsyncMock()
        seen = []
        reporter = ProgressReporter(repository, "job-1", on_progress=seen.append, start=10)

        assert await reporter.update(30) == 30
        assert await reporter.update(20) == 30
        assert await reporter.update(250) == 100

        assert seen == [30, 100]
        assert repository.set_progress.await_count == 2


class TestSheetStages:
    """Test individual sheet stages."""

    def state(self, sheets, **options):
        return {
            "job_id": "job-1",
            "file_id": "plans.pdf",
            "disciplines": [],
            "targets": [],
            "rule_set_id": None,
            "request_options": {},
            "options": {"ingest": IngestResult(file_id="plans.pdf", sheets=sheets), **options},
            "reporter": MagicMock(),
        }

    @pytest.mark.asyncio
    async def test_classification_drops_unneeded_rasters(self, tmp_path):
        services = make_services(tmp_path)
        sheets = drawing_set()
        state = self.state(sheets)

        output = await stage_classification(state, services)

        assert [c.category.value for c in output["sheet_classifications"]] == ["floor", "other"]
        assert sheets[0].has_raster()
        assert not sheets[1].has_raster()
        assert sheets[1].raster_dropped
        assert sheets[1].image_bytes() is None

    @pytest.mark.asyncio
    async def test_classification_fallback(self, tmp_path):
        services = make_services(tmp_path)
        services["capability"].classify = AsyncMock(return_value=None)
        sheets = drawing_set()

        output = await stage_classification(self.state(sheets), services)

        assert all(c.category.value == "other" for c in output["sheet_classifications"])
        assert all(c.confidence == 0.0 for c in output["sheet_classifications"])
        assert not any(sheet.has_raster() for sheet in sheets)

    @pytest.mark.asyncio
    async def test_room_mapping_needs_schedule(self, tmp_path):
        services = make_services(tmp_path)
        output = await stage_room_mapping(self.state(drawing_set()), services)
        assert output == {"room_spatial_mappings": []}
        services["capability"].map_rooms.assert_not_awaited()


class TestJobProcessor:
    """Test the in-process job queue."""

    @pytest.mark.asyncio
    async def test_process_requests(self, tmp_path):
        services = make_services(tmp_path)
        outcomes = await process_requests(services, [JobRequest(file_id="plans.pdf")], concurrency=1)
        assert len(outcomes) == 1
        assert outcomes[0]["status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_worker_survives_unknown_job(self, tmp_path):
        services = make_services(tmp_path)
        processor = JobProcessor(services, concurrency=1)
        processor.start()
        try:
            await processor.enqueue("missing-job")
            job = await processor.submit(JobRequest(file_id="plans.pdf"))
            await asyncio.wait_for(processor.join(), timeout=30)
        finally:
            await processor.stop()
        assert "missing-job" not in processor.outcomes
        assert processor.outcomes[job.job_id]["status"] == "COMPLETED"


class TestRunBounded:
    """Test the bounded per-sheet pool."""

    @pytest.mark.asyncio
    async def test_results_align_with_items(self):
        async def square(value):
            await asyncio.sleep(0.01 * (5 - value))
            return value * value

        assert await run_bounded([1, 2, 3, 4], square, limit=2) == [1, 4, 9, 16]

    @pytest.mark.asyncio
    async def test_limit_is_respected(self):
        in_flight = 0
        peak = 0

        async def work(value):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return value

        await run_bounded(list(range(10)), work, limit=3)
        assert peak == 3

    @pytest.mark.asyncio
    async def test_failed_item_is_none(self):
        async def work(value):
            if value == 2:
                raise ValueError("bad sheet")
            return value

        assert await run_bounded([1, 2, 3], work, limit=2) == [1, None, 3]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        started = []

        async def work(value):
            started.append(value)
            if value == 0:
                raise JobCancellationError("job-1")
            await asyncio.sleep(1)
            return value

        with pytest.raises(JobCancellationError):
            await run_bounded([0, 1, 2, 3], work, limit=2)
        assert 3 not in started

    @pytest.mark.asyncio
    async def test_empty(self):
        assert await run_bounded([], AsyncMock(), limit=4) == []
