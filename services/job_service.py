"""
Job surface: create, inspect, cancel and read the results of takeoff jobs.
"""
import csv
import io
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from schemas.features import Feature, FeatureType
from schemas.job import Job, JobRequest, JobStatus, JobStatusView
from schemas.rules import MaterialsResponse
from schemas.takeoff import ProjectTakeoff, TakeoffResponse, TakeoffUnits
from services.job_repository import JobRepository
from services.rules_engine import price_materials
from utils.exceptions import JobCancellationError

logger = logging.getLogger(__name__)


def _base_fields(feature: Feature) -> Dict[str, Any]:
    return {"id": feature.id, "sheet_id": feature.sheet_id, "type": feature.type.value.lower()}


def _format_feature(feature: Feature) -> Dict[str, Any]:
    props = feature.props
    entry = _base_fields(feature)
    if feature.type == FeatureType.ROOM:
        entry.update(name=props.get("name"), number=props.get("number"), program=props.get("program"),
                     area=feature.area, count=feature.count or 1)
    elif feature.type == FeatureType.WALL:
        entry.update(partition_type=props.get("partitionType") or "", length=feature.length,
                     height=props.get("heightFt"))
    elif feature.type == FeatureType.OPENING:
        entry.update(opening_type=props.get("openingType") or "", width=props.get("width"),
                     height=props.get("height"), count=feature.count or 1)
    elif feature.type == FeatureType.PIPE:
        entry.update(service=props.get("service"), diameter_in=props.get("diameterIn"), length=feature.length)
    elif feature.type == FeatureType.DUCT:
        entry.update(size=props.get("size"), length=feature.length)
    elif feature.type == FeatureType.FIXTURE:
        entry.update(fixture_type=props.get("fixtureType"), count=feature.count or 1)
    return entry


def derive_units(sheet_units: List[str]) -> TakeoffUnits:
    metric = any(unit in ("m", "metric") for unit in sheet_units)
    if metric:
        return TakeoffUnits(linear="m", area="m2", volume="m3")
    return TakeoffUnits()


class JobService:
    """Caller-facing job operations on top of a JobRepository."""

    def __init__(self, repository: JobRepository):
        self.repository = repository

    async def create_job(self, request: JobRequest) -> Job:
        job = Job(
            file_id=request.file_id,
            disciplines=list(request.disciplines),
            targets=list(request.targets),
            rule_set_id=request.rule_set_id,
            options={"request": request.model_dump(mode="json")},
        )
        await self.repository.save_job(job)
        logger.info(f"Created job {job.job_id} for file {job.file_id}", extra={"job_id": job.job_id})
        return job

    async def get_job(self, job_id: str) -> Job:
        return await self.repository.get_job(job_id)

    async def get_job_status(self, job_id: str) -> JobStatusView:
        return JobStatusView.from_job(await self.repository.get_job(job_id))

    async def cancel_job(self, job_id: str) -> JobStatusView:
        """Request cancellation; the running pipeline stops at its next checkpoint."""
        job = await self.repository.get_job(job_id)
        if job.is_terminal():
            logger.info(f"Job {job_id} already {job.status.value}; nothing to cancel")
            return JobStatusView.from_job(job)
        job = await self.repository.set_status(job_id, JobStatus.CANCELLED)
        logger.info(f"Cancelled job {job_id}", extra={"job_id": job_id})
        return JobStatusView.from_job(job)

    async def check_cancellation(self, job_id: str) -> None:
        """
        Raises:
            JobCancellationError: the job has been cancelled
        """
        job = await self.repository.get_job(job_id)
        if job.status == JobStatus.CANCELLED:
            raise JobCancellationError(job_id)

    async def update_progress(self, job_id: str, progress: int) -> Job:
        return await self.repository.set_progress(job_id, progress)

    async def merge_job_options(self, job_id: str, patch: Dict[str, Any]) -> Job:
        return await self.repository.merge_job_options(job_id, patch)

    async def get_materials(self, job_id: str) -> MaterialsResponse:
        await self.repository.get_job(job_id)
        materials = await self.repository.get_materials(job_id)
        return price_materials(job_id, materials)

    async def export_materials_csv(self, job_id: str) -> str:
        response = await self.get_materials(job_id)
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["sku", "description", "qty", "uom", "category", "unit_price", "total_price", "rule_id"])
        for item in response.items:
            writer.writerow([
                item.sku, item.description or "", round(item.qty, 2), item.uom, item.category or "",
                item.unit_price, item.total_price, item.source.rule_id,
            ])
        return buffer.getvalue()

    async def get_takeoff(self, job_id: str) -> TakeoffResponse:
        job = await self.repository.get_job(job_id)
        sheets = sorted(await self.repository.get_sheets(job_id), key=lambda sheet: sheet.index)
        features = await self.repository.get_features(job_id)

        grouped: Dict[str, List[Dict[str, Any]]] = {
            "rooms": [], "walls": [], "openings": [], "pipes": [], "ducts": [], "fixtures": [],
        }
        group_for_type = {
            FeatureType.ROOM: "rooms", FeatureType.WALL: "walls", FeatureType.OPENING: "openings",
            FeatureType.PIPE: "pipes", FeatureType.DUCT: "ducts", FeatureType.FIXTURE: "fixtures",
        }
        for feature in features:
            group = group_for_type.get(feature.type)
            if group:
                grouped[group].append(_format_feature(feature))

        stored_takeoff = job.options.get("takeoff")
        return TakeoffResponse(
            units=derive_units([sheet.units for sheet in sheets if sheet.units]),
            sheets=[
                {
                    "index": sheet.index,
                    "name": sheet.name,
                    "discipline": sheet.discipline,
                    "scale": sheet.scale,
                    "units": sheet.units,
                    "category": sheet.category.value if sheet.category else None,
                }
                for sheet in sheets
            ],
            project_takeoff=ProjectTakeoff.model_validate(stored_takeoff) if stored_takeoff else None,
            meta={
                "file_id": job.file_id,
                "job_id": job.job_id,
                "status": job.status.value,
                "generated_at": datetime.now(timezone.utc).isoformat(),
            },
            **grouped,
        )
