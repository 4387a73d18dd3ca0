"""
Service dependencies for the processing pipeline.

Contains the PipelineServices TypedDict that bundles all collaborators
needed by pipeline stages.
"""
import logging
from typing import Optional, TypedDict

from openai import AsyncOpenAI

from config.settings import PARALLEL_EXTRACTION_LIMIT
from services.cost_estimator import CostEstimator
from services.extraction_capability import ExtractionCapability
from services.fusion_service import FusionService
from services.ingest_service import PdfIngestor
from services.job_repository import JobRepository
from services.job_service import JobService
from services.labor_estimator import LaborEstimator
from services.rules_engine import RulesEngine
from services.takeoff_service import TakeoffAggregator


class PipelineServices(TypedDict):
    """Bundled services required by pipeline stages.

    All stages receive this dictionary containing external dependencies.
    """
    repository: JobRepository
    jobs: JobService
    ingestor: PdfIngestor
    capability: ExtractionCapability
    rules: RulesEngine
    fusion: FusionService
    takeoff: TakeoffAggregator
    cost: CostEstimator
    labor: LaborEstimator
    logger: logging.Logger
    sheet_concurrency: int


def create_pipeline_services(
    storage_root: str,
    client: Optional[AsyncOpenAI] = None,
    logger: Optional[logging.Logger] = None,
    sheet_concurrency: int = PARALLEL_EXTRACTION_LIMIT,
) -> PipelineServices:
    """
    Wire the default collaborators around a filesystem repository.

    Without a client every model-backed extraction returns nothing, so only
    ingestion and text heuristics run; plan analysis then fails the job.
    """
    repository = JobRepository(storage_root)
    return {
        "repository": repository,
        "jobs": JobService(repository),
        "ingestor": PdfIngestor(),
        "capability": ExtractionCapability(client),
        "rules": RulesEngine(repository),
        "fusion": FusionService(),
        "takeoff": TakeoffAggregator(),
        "cost": CostEstimator(),
        "labor": LaborEstimator(),
        "logger": logger or logging.getLogger("processing.pipeline"),
        "sheet_concurrency": max(1, sheet_concurrency),
    }
