import os
import sys
import asyncio
import logging
import time

import aiofiles
from openai import AsyncOpenAI
from config.settings import OPENAI_API_KEY, STORAGE_ROOT, get_all_settings
from utils.logging_utils import setup_logging
from processing.job_processor import process_requests
from processing.pipeline.services import create_pipeline_services
from schemas.job import JobRequest, JobStatus
from services.storage_service import FileSystemStorage
from utils.performance import get_tracker
from templates.prompt_registry import verify_registry


async def load_rule_set_file(services, rule_set_file: str) -> str:
    """Store a YAML or JSON rule set from disk and return its id."""
    async with aiofiles.open(rule_set_file, "r", encoding="utf-8") as f:
        text = await f.read()
    name = os.path.splitext(os.path.basename(rule_set_file))[0]
    return await services["rules"].create_rule_set(name, "1.0", text)


async def write_outputs(services, job_id: str, output_folder: str) -> None:
    """Write the takeoff view and the priced materials of a finished job."""
    jobs = services["jobs"]
    storage = FileSystemStorage()

    takeoff = await jobs.get_takeoff(job_id)
    takeoff_path = os.path.join(output_folder, f"{job_id}_takeoff.json")
    await storage.save_json(takeoff.model_dump(mode="json"), takeoff_path)

    materials = await jobs.get_materials(job_id)
    materials_path = os.path.join(output_folder, f"{job_id}_materials.json")
    await storage.save_json(materials.model_dump(mode="json"), materials_path)

    csv_path = os.path.join(output_folder, f"{job_id}_materials.csv")
    async with aiofiles.open(csv_path, "w", encoding="utf-8", newline="") as f:
        await f.write(await jobs.export_materials_csv(job_id))

    logging.info(
        f"Materials: {materials.summary.total_items} items, "
        f"${materials.summary.total_value:,.2f} across {', '.join(materials.summary.categories) or 'no categories'}"
    )
    if takeoff.project_takeoff is not None:
        for quantity in takeoff.project_takeoff.quantities:
            logging.info(
                f"  {quantity.feature_type}: count={quantity.count} "
                f"length={quantity.length:.1f} area={quantity.area:.1f}"
            )
    logging.info(f"Outputs written to {output_folder}")


async def main_async():
    """
    Run a single drawing set through the takeoff pipeline.
    """
    if len(sys.argv) < 2:
        print("Usage: python main.py <pdf_path> [output_folder] [rule_set_file]")
        return 1

    pdf_path = sys.argv[1]
    output_folder = (
        sys.argv[2] if len(sys.argv) > 2 else os.path.join(os.path.dirname(os.path.abspath(pdf_path)), "output")
    )
    rule_set_file = sys.argv[3] if len(sys.argv) > 3 else None

    if not os.path.exists(pdf_path):
        print(f"Error: Drawing set '{pdf_path}' does not exist.")
        return 1
    if rule_set_file and not os.path.exists(rule_set_file):
        print(f"Error: Rule set file '{rule_set_file}' does not exist.")
        return 1

    run_id = time.strftime("%Y%m%d_%H%M%S")

    setup_logging(output_folder, run_id)
    logging.info(f"Processing drawing set: {pdf_path}")
    logging.info(f"Output will be saved to: {output_folder}")
    logging.info(f"Run ID: {run_id}")
    logging.info(f"Application settings: {get_all_settings()}")

    try:
        if not verify_registry():
            logging.warning("Prompt registry may not be fully populated!")

        client = AsyncOpenAI(api_key=OPENAI_API_KEY) if OPENAI_API_KEY else None
        if client is None:
            logging.warning("OPENAI_API_KEY is not set; plan analysis will not run")

        services = create_pipeline_services(STORAGE_ROOT, client)
        await services["rules"].seed_default_rule_sets()
        rule_set_id = await load_rule_set_file(services, rule_set_file) if rule_set_file else None

        start_time = time.time()

        request = JobRequest(file_id=os.path.abspath(pdf_path), rule_set_id=rule_set_id)
        outcomes = await process_requests(services, [request])

        total_time = time.time() - start_time
        logging.info(f"Total processing time: {total_time:.2f} seconds")

        get_tracker().log_report()

        if not outcomes:
            logging.error("Job did not produce an outcome")
            return 1
        outcome = outcomes[0]
        logging.info(f"Job {outcome['job_id']} finished {outcome['status']}")
        if outcome["failed_stages"]:
            logging.warning(f"Stages that failed: {', '.join(outcome['failed_stages'])}")
        if outcome["status"] != JobStatus.COMPLETED.value:
            logging.error(f"Job error: {outcome['error']}")
            return 1

        await write_outputs(services, outcome["job_id"], output_folder)
        return 0
    except Exception as e:
        logging.error(f"Unhandled exception in main process: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    try:
        exit_code = asyncio.run(main_async())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nProcess interrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"Fatal error: {str(e)}")
        sys.exit(1)
