"""
Material rules engine.

Matches a rule set against extracted features and turns every matching rule's
material lines into quantities, then consolidates them into one row per sku.
"""
import base64
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from config.default_rule_sets import (
    DEFAULT_MATERIAL_CATEGORY,
    DEFAULT_RULE_SETS,
    DEFAULT_UNIT_PRICE,
    MATERIAL_CATEGORIES,
    MATERIAL_PRICING,
)
from schemas.features import Feature, lookup_value
from schemas.rules import (
    Material,
    MaterialSource,
    MaterialsResponse,
    MaterialsSummary,
    PricedMaterial,
    Rule,
    RuleSet,
    RuleSetUnits,
    StoredRuleSet,
)
from utils.exceptions import ExpressionError, RuleSetValidationError
from utils.expression_utils import evaluate_expression
from utils.performance import time_operation

logger = logging.getLogger(__name__)


# --- rule set creation -------------------------------------------------------

def parse_rule_set_text(text: str) -> Any:
    """Parse a rule set document as YAML first, then as JSON."""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as yaml_error:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            raise RuleSetValidationError("Invalid YAML/JSON format") from yaml_error


def validate_rule_set(document: Any) -> RuleSet:
    """
    Check a parsed rule set document and return it as a RuleSet.

    Raises:
        RuleSetValidationError: the document is missing required parts
    """
    if not isinstance(document, dict):
        raise RuleSetValidationError("Rule set must have version, units, and rules")
    if not document.get("version") or not document.get("units") or document.get("rules") is None:
        raise RuleSetValidationError("Rule set must have version, units, and rules")
    if not isinstance(document["rules"], list):
        raise RuleSetValidationError("Rules must be an array")

    for rule in document["rules"]:
        if not isinstance(rule, dict) or not isinstance(rule.get("when"), dict) or rule.get("materials") is None:
            raise RuleSetValidationError('Each rule must have "when" and "materials" properties')
        if not isinstance(rule["materials"], list) or not rule["materials"]:
            raise RuleSetValidationError("Rule materials must be a non-empty array")
        for material in rule["materials"]:
            if not isinstance(material, dict) or not material.get("sku") or material.get("qty") in (None, ""):
                raise RuleSetValidationError("Each material must have sku and qty")

    try:
        return RuleSet.model_validate(document)
    except ValidationError as e:
        raise RuleSetValidationError(f"Invalid rule set: {e.error_count()} schema errors") from e


def build_rule_set(
    name: str,
    version: str,
    rules: Union[str, Dict[str, Any]],
    rule_set_id: Optional[str] = None,
) -> StoredRuleSet:
    """Parse (when given text), validate and wrap a rule set for storage."""
    document = parse_rule_set_text(rules) if isinstance(rules, str) else rules
    rule_set = validate_rule_set(document)
    return StoredRuleSet(
        id=rule_set_id or uuid.uuid4().hex,
        name=name,
        version=str(version),
        rule_set=rule_set,
    )


# --- evaluation --------------------------------------------------------------

def rule_matches(when: Dict[str, Any], feature: Dict[str, Any]) -> bool:
    """Every key of ``when`` must equal the feature's value; ``feature`` compares to the type."""
    for key, expected in when.items():
        if key == "feature":
            feature_type = feature.get("type") or (feature.get("props") or {}).get("type")
            if not feature_type or str(feature_type).upper() != str(expected).upper():
                return False
            continue
        if lookup_value(feature, key) != expected:
            return False
    return True


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return None
    return None


def build_context(feature: Dict[str, Any], variables: Dict[str, Any]) -> Dict[str, float]:
    """Identifier values for an expression: vars, then measures, then numeric props."""
    context: Dict[str, float] = {}
    for key, value in (variables or {}).items():
        number = _as_number(value)
        if number is not None:
            context[key] = number
    for key in ("length", "area", "count"):
        number = _as_number(feature.get(key))
        if number is not None:
            context[key] = number
    for key, value in (feature.get("props") or {}).items():
        number = _as_number(value)
        if number is not None:
            context[key] = number
    return context


def default_uom(expression: str, units: RuleSetUnits) -> str:
    if "area" in expression or "Area" in expression:
        return units.area or "ft2"
    if "length" in expression or "Length" in expression:
        return units.linear or "ft"
    if "volume" in expression or "Volume" in expression:
        return units.volume or "ft3"
    return "ea"


def rule_id(rule: Rule) -> str:
    """Stable id: first 8 characters of base64 over the compact JSON of ``when``."""
    encoded = json.dumps(rule.when, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.b64encode(encoded).decode("ascii")[:8]


def evaluate_features(features: Sequence[Feature], rule_set: RuleSet) -> List[Dict[str, Any]]:
    """Emit one line per matching rule material with a positive quantity."""
    lines: List[Dict[str, Any]] = []
    matched = 0
    variables = rule_set.vars or {}

    logger.info(f"Processing {len(features)} features against {len(rule_set.rules)} rules")
    for feature in features:
        record = feature.model_dump(mode="json")
        matching = [rule for rule in rule_set.rules if rule_matches(rule.when, record)]
        if matching:
            matched += 1
            logger.debug(f"Feature {feature.id} (type: {feature.type.value}) matched {len(matching)} rule(s)")
        context = build_context(record, variables)
        for rule in matching:
            for item in rule.materials:
                try:
                    qty = evaluate_expression(item.qty, context)
                except ExpressionError as e:
                    logger.warning(
                        f"Error evaluating material {item.sku} for feature {feature.id}: {str(e)} "
                        f"(length={feature.length}, area={feature.area}, count={feature.count}, "
                        f"type={feature.type.value})"
                    )
                    continue
                if qty > 0:
                    lines.append({
                        "sku": item.sku,
                        "qty": qty,
                        "uom": item.uom or default_uom(item.qty, rule_set.units),
                        "description": item.description,
                        "rule_id": rule_id(rule),
                        "feature_id": feature.id,
                        "feature_type": feature.type.value,
                    })

    logger.info(
        f"Matched {matched} out of {len(features)} features, "
        f"generated {len(lines)} material items before consolidation"
    )
    return lines


def consolidate(lines: Sequence[Dict[str, Any]]) -> List[Material]:
    """One material per sku: quantities summed, contributing feature ids accumulated."""
    by_sku: Dict[str, Material] = {}
    for line in lines:
        existing = by_sku.get(line["sku"])
        if existing is None:
            by_sku[line["sku"]] = Material(
                sku=line["sku"],
                qty=line["qty"],
                uom=line["uom"],
                description=line["description"],
                source=MaterialSource(
                    rule_id=line["rule_id"],
                    feature_type=line["feature_type"],
                    feature_ids=[line["feature_id"]],
                ),
            )
            continue
        existing.qty += line["qty"]
        if line["feature_id"] not in existing.source.feature_ids:
            existing.source.feature_ids.append(line["feature_id"])
    return list(by_sku.values())


def generate_materials(features: Sequence[Feature], rule_set: RuleSet) -> List[Material]:
    materials = consolidate(evaluate_features(features, rule_set))
    logger.info(f"Consolidated to {len(materials)} unique material SKUs")
    return materials


# --- persistence-backed operations -------------------------------------------

class RulesEngine:
    """Rule set storage and application against a JobRepository."""

    def __init__(self, repository):
        self.repository = repository

    async def create_rule_set(self, name: str, version: str, rules: Union[str, Dict[str, Any]]) -> str:
        stored = build_rule_set(name, version, rules)
        await self.repository.save_rule_set(stored)
        logger.info(f"Created rule set '{name}' v{version} ({stored.id})")
        return stored.id

    async def get_rule_set(self, rule_set_id: str) -> StoredRuleSet:
        stored = await self.repository.get_rule_set(rule_set_id)
        if stored is None:
            raise RuleSetValidationError(f"Rule set not found: {rule_set_id}")
        return stored

    async def seed_default_rule_sets(self) -> Dict[str, str]:
        """Store the built-in rule sets once; returns name -> id."""
        ids = {}
        for name, version, document in DEFAULT_RULE_SETS:
            existing = await self.repository.find_rule_set(name, version)
            if existing is None:
                ids[name] = await self.create_rule_set(name, version, document)
            else:
                ids[name] = existing.id
        return ids

    async def resolve_rule_set_id(self, rule_set_id: Optional[str], default_name: str, default_version: str) -> str:
        if rule_set_id:
            return rule_set_id
        existing = await self.repository.find_rule_set(default_name, default_version)
        if existing is None:
            ids = await self.seed_default_rule_sets()
            if default_name not in ids:
                raise RuleSetValidationError(f"Default rule set not found: {default_name} v{default_version}")
            return ids[default_name]
        return existing.id

    @time_operation("stage")
    async def apply_rules(self, job_id: str, rule_set_id: str, features: Sequence[Feature]) -> List[Material]:
        """Generate the job's materials and replace any previously stored ones."""
        logger.info(f"Applying rules {rule_set_id} to job {job_id}")
        stored = await self.get_rule_set(rule_set_id)
        materials = generate_materials(features, stored.rule_set)
        await self.repository.replace_materials(job_id, materials)
        logger.info(f"Applied {len(materials)} material items for job {job_id}")
        return materials


# --- pricing -----------------------------------------------------------------

def material_category(sku: str) -> str:
    for fragments, category in MATERIAL_CATEGORIES:
        if any(fragment in sku for fragment in fragments):
            return category
    return DEFAULT_MATERIAL_CATEGORY


def price_materials(job_id: str, materials: Sequence[Material]) -> MaterialsResponse:
    """Attach catalog prices and a summary to a job's materials."""
    items = []
    for material in materials:
        unit_price = MATERIAL_PRICING.get(material.sku, DEFAULT_UNIT_PRICE)
        items.append(PricedMaterial(
            **material.model_dump(),
            category=material_category(material.sku),
            unit_price=unit_price,
            total_price=round(unit_price * material.qty, 2),
        ))
    return MaterialsResponse(
        job_id=job_id,
        items=items,
        summary=MaterialsSummary(
            total_items=len(items),
            total_value=round(sum(item.total_price or 0 for item in items), 2),
            categories=sorted({item.category for item in items if item.category}),
            generated_at=datetime.now(timezone.utc),
        ),
    )
