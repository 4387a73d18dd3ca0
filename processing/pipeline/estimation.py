"""
Estimation stages of the processing pipeline: materials, cost, labor, artifacts.
"""
from typing import Any, Dict

from config.settings import DEFAULT_RULE_SET_NAME, DEFAULT_RULE_SET_VERSION
from processing.pipeline.services import PipelineServices
from processing.pipeline.types import PipelineState
from services.rules_engine import price_materials


async def stage_rules(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """Apply the job's rule set (or the default one) and store its materials."""
    job_id = state["job_id"]
    rules = services["rules"]
    rule_set_id = await rules.resolve_rule_set_id(
        state["rule_set_id"], DEFAULT_RULE_SET_NAME, DEFAULT_RULE_SET_VERSION
    )
    materials = await rules.apply_rules(job_id, rule_set_id, state["options"].get("features") or [])
    priced = price_materials(job_id, materials)
    return {
        "materials_summary": {
            "rule_set_id": rule_set_id,
            **priced.summary.model_dump(mode="json"),
        }
    }


async def stage_cost_labor(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    options = state["options"]
    features = options.get("features") or []
    diagnosis = options.get("scope_diagnosis")
    scope = diagnosis.model_dump(mode="json") if diagnosis is not None else None
    rule_set_id = (options.get("materials_summary") or {}).get("rule_set_id")

    snapshot = services["cost"].generate_cost_snapshot(
        state["job_id"], features, scope_diagnosis=scope, rule_set_id=rule_set_id
    )
    plan = services["labor"].build_labor_plan(
        state["job_id"], features, disciplines=state["disciplines"], scope_diagnosis=scope
    )
    return {"cost_intelligence": snapshot, "labor_model": plan}


async def stage_artifacts(state: PipelineState, services: PipelineServices) -> Dict[str, Any]:
    """Write the project takeoff (and any estimate) as JSON artifacts and record their paths."""
    repository = services["repository"]
    options = state["options"]
    artifacts: Dict[str, str] = {}
    for name, key in (("takeoff", "takeoff"), ("cost", "cost_intelligence"), ("labor", "labor_model")):
        value = options.get(key)
        if value is None:
            continue
        artifacts[name] = await repository.save_artifact(state["job_id"], name, value.model_dump(mode="json"))
    services["logger"].info(f"Wrote {len(artifacts)} artifacts for job {state['job_id']}")
    return {"artifacts": artifacts}
