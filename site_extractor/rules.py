"""
Default validation rules and rule-config loading.

The defaults are built once by default_validation_config(); callers that need
different thresholds pass a JSON override file (deep-merged over the
defaults) or construct a ValidationConfig themselves. The result is handed to
the Validator explicitly, so there is no module-level mutable rule state.
"""

import json
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from .schemas import FieldRule, GuardrailConfig, GuardrailRule, Severity, SiteSchema, ValidationConfig
from .site_types import BUSINESS_WEIGHTS, SiteType
from .exceptions import ConfigError
from .logger import get_module_logger

logger = get_module_logger("rules")

PRICE_PATTERN = r"^\$?\d+(\.\d{1,2})?$"
RATING_PATTERN = r"^(\d+(\.\d+)?\s*/\s*5|\d+(\.\d+)?)$"

# Required fields carry double accuracy weight so they dominate weighted accuracy.
DEFAULT_PENALTY_THRESHOLDS: dict[str, FieldRule] = {
    "title": FieldRule(
        required=True, min_length=10, penalty_weight=0.25, accuracy_weight=2.0,
        description="Title must be at least 10 characters", severity=Severity.HIGH,
    ),
    "main_content_summary": FieldRule(
        required=True, min_length=50, penalty_weight=0.15, accuracy_weight=2.0,
        description="Content summary must be at least 50 characters", severity=Severity.HIGH,
    ),
    "price": FieldRule(
        regex=PRICE_PATTERN, penalty_weight=0.2,
        description="Must match currency format ($XX or $XX.XX)", severity=Severity.MEDIUM,
    ),
    "rating": FieldRule(
        regex=RATING_PATTERN, penalty_weight=0.1,
        description="Must match X/5 or X.X rating format", severity=Severity.MEDIUM,
    ),
    "reviews_rating": FieldRule(
        alias_of="rating", penalty_weight=0.1,
        description="Must match X/5 or X.X rating format", severity=Severity.MEDIUM,
    ),
    "ingredients": FieldRule(
        min_items=3, penalty_weight=0.15,
        description="Recipe must have minimum 3 ingredients", severity=Severity.MEDIUM,
    ),
    "instructions": FieldRule(
        min_items=2, penalty_weight=0.15,
        description="Recipe must have minimum 2 instruction steps", severity=Severity.MEDIUM,
    ),
    "author": FieldRule(
        min_length=2, penalty_weight=0.05,
        description="Author must be at least 2 characters", severity=Severity.LOW,
    ),
    "description": FieldRule(
        min_length=20, penalty_weight=0.08,
        description="Description must be at least 20 characters", severity=Severity.LOW,
    ),
    "category": FieldRule(
        min_length=2, penalty_weight=0.05,
        description="Category must be at least 2 characters", severity=Severity.LOW,
    ),
}

DEFAULT_GUARDRAILS = GuardrailConfig(
    enabled=True,
    rules={
        "price": GuardrailRule(pattern=PRICE_PATTERN, description="Price must match currency format"),
        "ingredients": GuardrailRule(
            min_items=3, item_min_length=2, description="Ingredients must have 3+ meaningful items"
        ),
        "instructions": GuardrailRule(
            min_items=2, item_min_length=5, description="Instructions must have 2+ meaningful steps"
        ),
        "title": GuardrailRule(min_length=10, max_length=200, description="Title must be 10-200 characters"),
        "main_content_summary": GuardrailRule(
            min_length=50, max_length=1000, description="Summary must be 50-1000 characters"
        ),
    },
)

# Expected fields per site type, scored as completeness only; penalties come
# from the thresholds above.
DEFAULT_SITE_SCHEMAS: dict[SiteType, SiteSchema] = {
    SiteType.AMAZON: SiteSchema(
        required=("title", "price", "description"),
        optional=("reviews_rating", "images", "category"),
    ),
    SiteType.ALLRECIPES: SiteSchema(
        required=("title", "ingredients", "instructions"),
        optional=("author", "reviews_rating", "description"),
    ),
    SiteType.BLOOMBERG: SiteSchema(
        required=("title", "description"),
        optional=("author", "publication_date", "category", "main_content_summary"),
    ),
    SiteType.WIKIPEDIA: SiteSchema(
        required=("title", "main_content_summary"),
        optional=("category", "links", "images"),
    ),
    SiteType.MEDIUM: SiteSchema(
        required=("title", "author", "main_content_summary"),
        optional=("publication_date", "description", "category"),
    ),
    SiteType.GENERIC: SiteSchema(
        required=("title",),
        optional=("description", "author", "category"),
    ),
}


def default_validation_config() -> ValidationConfig:
    """Build the built-in rule configuration."""
    return ValidationConfig(
        penalty_thresholds=dict(DEFAULT_PENALTY_THRESHOLDS),
        sanity_guardrails=DEFAULT_GUARDRAILS,
        business_weights=dict(BUSINESS_WEIGHTS),
        site_schemas=dict(DEFAULT_SITE_SCHEMAS),
    )


def deep_merge(target: dict, source: dict) -> dict:
    """Recursively merge source into a copy of target; lists and scalars replace."""
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def merge_validation_config(
    overrides: Optional[dict[str, Any]],
    base: Optional[ValidationConfig] = None
) -> ValidationConfig:
    """Deep-merge a plain-dict override over a base config (defaults if omitted)."""
    base = base or default_validation_config()
    if not overrides:
        return base
    merged = deep_merge(base.model_dump(mode="json"), overrides)
    try:
        return ValidationConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid validation config override: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)}
        )


def load_validation_config(path: Union[str, Path, None] = None) -> ValidationConfig:
    """
    Load the rule configuration.

    Args:
        path: Optional JSON file whose contents are deep-merged over the
              defaults. Keys mirror ValidationConfig, e.g.
              {"penalty_thresholds": {"title": {"min_length": 5}}}

    Returns:
        ValidationConfig ready to hand to a Validator
    """
    if path is None:
        return default_validation_config()

    path = Path(path)
    try:
        overrides = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read validation config {path}: {e}")

    if not isinstance(overrides, dict):
        raise ConfigError(f"Validation config {path} must contain a JSON object")

    config = merge_validation_config(overrides)
    logger.info(f"Loaded validation config from {path}")
    return config
