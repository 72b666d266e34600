"""
Validation and penalty scoring for extracted records.

Pipeline position: after the Extractor.
Input:  ExtractedRecord (field name → str | None | list[str]) + site type
Output: ValidationResult with failing fields nulled and accuracy metrics

Order of work inside apply_validation_penalties():
  1. raw / weighted raw accuracy over the untouched record
  2. sanity guardrails over the untouched record; failures nulled in a copy
  3. main rule pass; each failing field nulled in the copy and penalised once
  4. validated / weighted validated accuracy over the copy
  5. penalty impact and overall success

The validator never raises: a rule that blows up is itself recorded as a
VALIDATION_RULE_ERROR penalty.
"""

import math
import re
import time
from typing import Any, Mapping, Optional, Union

from .schemas import (
    ExtractedRecord, FieldCompleteness, FieldRule, GuardrailConfig, Penalty, PenaltyReason,
    SanityFailure, Severity, SiteSchema, ValidationConfig, ValidationMetrics, ValidationResult,
)
from .rules import default_validation_config, merge_validation_config
from .site_types import SiteType
from .logger import get_module_logger

logger = get_module_logger("validator")

# Strings the model emits when it has nothing to report
SENTINEL_VALUES = frozenset({"n/a", "null", "undefined", "unknown", "not found"})


def round_percent(value: float) -> int:
    """Round half up to an integer percentage."""
    return int(math.floor(value + 0.5))


def round_tenth(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def is_field_populated(value: Any) -> bool:
    """True when a value carries real content."""
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return any(isinstance(item, str) and item.strip() for item in value)
    if isinstance(value, str):
        stripped = value.strip()
        return bool(stripped) and stripped.lower() not in SENTINEL_VALUES
    return True


def calculate_accuracy(record: Mapping[str, Any]) -> int:
    """Percentage of all fields in the record that are populated."""
    total = len(record)
    if total == 0:
        return 0
    populated = sum(1 for value in record.values() if is_field_populated(value))
    return round_percent(populated / total * 100)


def calculate_weighted_accuracy(record: Mapping[str, Any], thresholds: Mapping[str, FieldRule]) -> int:
    """
    Accuracy where each field counts with its rule's accuracy weight.

    Only fields present in both the record and the rule set contribute, so
    unconfigured extras do not dilute the score. This differs from
    calculate_accuracy(), whose denominator is every record field.
    """
    total_weight = 0.0
    populated_weight = 0.0
    for field, value in record.items():
        rule = thresholds.get(field)
        if rule is None:
            continue
        weight = rule.accuracy_weight or 1.0
        total_weight += weight
        if is_field_populated(value):
            populated_weight += weight
    if total_weight <= 0:
        return 0
    return round_percent(populated_weight / total_weight * 100)


def calculate_field_completeness(record: Mapping[str, Any], schema: Optional[SiteSchema]) -> FieldCompleteness:
    """Required, optional and overall fill rates of a record against a site schema."""
    if schema is None:
        return FieldCompleteness()
    filled_required = sum(1 for f in schema.required if is_field_populated(record.get(f)))
    filled_optional = sum(1 for f in schema.optional if is_field_populated(record.get(f)))
    total = len(schema.required) + len(schema.optional)
    return FieldCompleteness(
        required_completeness=filled_required / len(schema.required) * 100 if schema.required else 100.0,
        optional_completeness=filled_optional / len(schema.optional) * 100 if schema.optional else 0.0,
        overall_completeness=round_percent((filled_required + filled_optional) / total * 100) if total else 0,
    )


def _is_blank(value: Any) -> bool:
    return not value or (isinstance(value, str) and not value.strip())


def _emptied(value: Any) -> Any:
    """The null form of a value: [] for arrays, None for everything else."""
    return [] if isinstance(value, (list, tuple)) else None


def apply_sanity_guardrails(
    data: Mapping[str, Any],
    guardrails: GuardrailConfig
) -> tuple[list[SanityFailure], int]:
    """
    Run the coarse structural pre-filter.

    Empty values (None, "" or []) have nothing to check and are skipped.

    Returns:
        (failures, accuracy) where accuracy is the percentage of checked
        fields with no failure (100 when nothing was checked)
    """
    if not guardrails.enabled:
        return [], 100

    failures: list[SanityFailure] = []
    checked = 0
    passed = 0

    for field, rule in guardrails.rules.items():
        if field not in data:
            continue
        value = data[field]
        if value is None or (isinstance(value, (str, list, tuple)) and len(value) == 0):
            continue

        checked += 1
        field_failures: list[SanityFailure] = []
        try:
            if isinstance(value, str):
                if rule.pattern and not re.search(rule.pattern, value):
                    field_failures.append(SanityFailure(
                        type="SANITY_PATTERN_FAILURE", field=field, value=value,
                        rule=rule.description, limit=rule.pattern,
                    ))
                if rule.min_length and len(value) < rule.min_length:
                    field_failures.append(SanityFailure(
                        type="SANITY_MIN_LENGTH_FAILURE", field=field, value=value,
                        rule=rule.description, actual=len(value), limit=rule.min_length,
                    ))
                if rule.max_length and len(value) > rule.max_length:
                    field_failures.append(SanityFailure(
                        type="SANITY_MAX_LENGTH_FAILURE", field=field, value=value,
                        rule=rule.description, actual=len(value), limit=rule.max_length,
                    ))
            elif isinstance(value, (list, tuple)):
                if rule.min_items and len(value) < rule.min_items:
                    field_failures.append(SanityFailure(
                        type="SANITY_MIN_ITEMS_FAILURE", field=field, value=list(value),
                        rule=rule.description, actual=len(value), limit=rule.min_items,
                    ))
                if rule.item_min_length:
                    invalid = [
                        item for item in value
                        if not isinstance(item, str) or len(item.strip()) < rule.item_min_length
                    ]
                    if invalid:
                        field_failures.append(SanityFailure(
                            type="SANITY_ITEM_QUALITY_FAILURE", field=field, value=list(value),
                            rule=rule.description, actual=len(invalid), limit=rule.item_min_length,
                        ))
            else:
                field_failures.append(SanityFailure(
                    type="SANITY_TYPE_ERROR", field=field, value=repr(value),
                    rule=rule.description, actual=type(value).__name__, limit="string or array",
                ))
        except Exception as e:
            logger.warning(f"Sanity guardrail error for field {field}: {e}")
            field_failures.append(SanityFailure(
                type="SANITY_RULE_ERROR", field=field, value=repr(value),
                rule=rule.description, error=str(e),
            ))

        if field_failures:
            failures.extend(field_failures)
        else:
            passed += 1

    accuracy = round_percent(passed / checked * 100) if checked else 100
    logger.debug(f"Sanity guardrails: {len(failures)} failures, {accuracy}% accuracy")
    return failures, accuracy


class Validator:
    """Applies a ValidationConfig to extracted records."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or default_validation_config()

    # --- single field ---

    def validate_field(
        self,
        field: str,
        value: Any,
        rule: FieldRule,
        site_type: str = SiteType.GENERIC.value
    ) -> Optional[Penalty]:
        """
        Check one value against its rule.

        Returns a Penalty for the first failed check, or None when the value
        passes. May raise; apply_validation_penalties() turns that into a
        VALIDATION_RULE_ERROR penalty.
        """
        own_weight = rule.penalty_weight
        if rule.alias_of:
            target = self.config.penalty_thresholds.get(rule.alias_of)
            if target is not None:
                rule = target

        def penalty(reason: PenaltyReason, default_severity: Severity, **extra) -> Penalty:
            return Penalty(
                field=field,
                reason=reason,
                original=value,
                expected=rule.description,
                penalty_weight=own_weight,
                severity=rule.severity or default_severity,
                site_type=site_type,
                **extra
            )

        if _is_blank(value):
            if rule.required:
                return penalty(PenaltyReason.REQUIRED_FIELD_MISSING, Severity.HIGH)
            # Optional and empty: nothing further to check
            return None

        if isinstance(value, str):
            length = len(value.strip())
            if rule.min_length and length < rule.min_length:
                return penalty(PenaltyReason.INSUFFICIENT_LENGTH, Severity.MEDIUM,
                               actual=length, minimum=rule.min_length)
            if rule.max_length and length > rule.max_length:
                return penalty(PenaltyReason.EXCESSIVE_LENGTH, Severity.LOW,
                               actual=length, minimum=rule.max_length)
            if rule.regex and not re.search(rule.regex, value.strip()):
                return penalty(PenaltyReason.INVALID_FORMAT, Severity.MEDIUM, pattern=rule.regex)

        if rule.min_items and isinstance(value, (list, tuple)):
            valid_items = [item for item in value if isinstance(item, str) and item.strip()]
            if len(valid_items) < rule.min_items:
                return penalty(PenaltyReason.INSUFFICIENT_ITEMS, Severity.MEDIUM,
                               actual=len(valid_items), minimum=rule.min_items)

        return None

    # --- whole record ---

    def apply_validation_penalties(
        self,
        record: Any,
        site_type: Union[str, SiteType, None] = SiteType.GENERIC
    ) -> ValidationResult:
        """
        Validate a record and score it.

        Args:
            record: Field map produced by the Extractor. Anything that is not
                    a mapping is treated as an empty record.
            site_type: Site label recorded on penalties and metrics

        Returns:
            ValidationResult (never raises)
        """
        site = SiteType.parse(site_type).value
        original: ExtractedRecord = {}
        try:
            if isinstance(record, Mapping):
                original = {str(k): v for k, v in record.items()}
            else:
                logger.warning(f"Expected a mapping to validate, got {type(record).__name__}")
            return self._apply(original, site)
        except Exception as e:
            logger.exception(f"Validation aborted for {site}: {e}")
            return ValidationResult(
                success=False,
                site_type=site,
                validated_data={k: _emptied(v) for k, v in original.items()},
                penalties=[Penalty(
                    field="*",
                    reason=PenaltyReason.VALIDATION_RULE_ERROR,
                    severity=Severity.HIGH,
                    site_type=site,
                    error=str(e),
                )],
                metrics=ValidationMetrics(site_type=site, total_fields=len(original)),
            )

    def _apply(self, original: ExtractedRecord, site: str) -> ValidationResult:
        start = time.perf_counter()
        thresholds = self.config.penalty_thresholds
        validated: ExtractedRecord = dict(original)

        logger.info(f"Validating {len(original)} fields for {site}")

        raw_accuracy = calculate_accuracy(original)
        weighted_raw = calculate_weighted_accuracy(original, thresholds)

        # --- Sanity guardrails: null failures in the working copy first ---
        sanity_failures, sanity_raw_accuracy = apply_sanity_guardrails(
            original, self.config.sanity_guardrails
        )
        guardrail_fields = {failure.field for failure in sanity_failures}
        for field in guardrail_fields:
            validated[field] = _emptied(original[field])

        # --- Main rule pass ---
        penalties: list[Penalty] = []
        weak_fields: list[str] = []
        penalty_types: dict[str, int] = {}
        field_penalty_types: dict[str, int] = {}
        penalty_score = 0.0
        valid_fields = 0
        required_passed = 0
        required_total = sum(1 for rule in thresholds.values() if rule.required)

        for field, rule in thresholds.items():
            if field not in original:
                continue
            value = original[field]

            try:
                penalty = self.validate_field(field, value, rule, site)
            except Exception as e:
                logger.error(f"Validation rule error for field {field}: {e}")
                penalty = Penalty(
                    field=field,
                    reason=PenaltyReason.VALIDATION_RULE_ERROR,
                    original=value,
                    expected=rule.description,
                    penalty_weight=rule.penalty_weight,
                    severity=Severity.HIGH,
                    site_type=site,
                    error=str(e),
                )

            if penalty is None and field in guardrail_fields:
                # Nulled by a guardrail: a required field is now missing,
                # an optional one is skipped without counting as valid.
                if rule.required:
                    penalty = self.validate_field(field, validated[field], rule, site)
                if penalty is None:
                    continue

            if penalty is None:
                valid_fields += 1
                if rule.required:
                    required_passed += 1
                continue

            penalties.append(penalty)
            weak_fields.append(field)
            penalty_score += rule.penalty_weight
            validated[field] = _emptied(value)

            reason = penalty.reason.value
            penalty_types[reason] = penalty_types.get(reason, 0) + 1
            key = f"{field}:{reason}"
            field_penalty_types[key] = field_penalty_types.get(key, 0) + 1

        # --- Post-penalty metrics ---
        validated_accuracy = calculate_accuracy(validated)
        weighted_validated = calculate_weighted_accuracy(validated, thresholds)
        _, sanity_validated_accuracy = apply_sanity_guardrails(
            validated, self.config.sanity_guardrails
        )
        schemas = self.config.site_schemas
        completeness = calculate_field_completeness(
            validated, schemas.get(SiteType.parse(site), schemas.get(SiteType.GENERIC))
        )

        max_possible_penalty = sum(rule.penalty_weight for rule in thresholds.values())
        normalized = penalty_score / max_possible_penalty if max_possible_penalty > 0 else 0.0

        if weighted_raw > 0:
            penalty_impact = round_tenth((weighted_raw - weighted_validated) / weighted_raw * 100)
        else:
            penalty_impact = 0.0

        success = required_passed == required_total and valid_fields > 0

        metrics = ValidationMetrics(
            site_type=site,
            total_fields=len(original),
            valid_fields=valid_fields,
            penalized_fields=len(penalties),
            required_fields_passed=required_passed,
            required_fields_total=required_total,
            raw_accuracy=raw_accuracy,
            validated_accuracy=validated_accuracy,
            weighted_raw_accuracy=weighted_raw,
            weighted_validated_accuracy=weighted_validated,
            sanity_raw_accuracy=sanity_raw_accuracy,
            sanity_validated_accuracy=sanity_validated_accuracy,
            sanity_failures=len(sanity_failures),
            penalty_impact=penalty_impact,
            max_possible_penalty=max_possible_penalty,
            penalty_types=penalty_types,
            field_penalty_types=field_penalty_types,
            field_completeness=completeness,
            validation_time_ms=round((time.perf_counter() - start) * 1000, 3),
        )

        result = ValidationResult(
            success=success,
            site_type=site,
            validated_data=validated,
            penalties=penalties,
            sanity_guardrails=sanity_failures,
            penalty_score=penalty_score,
            normalized_penalty_score=normalized,
            weak_fields=weak_fields,
            metrics=metrics,
        )
        self._log_result(result)
        return result

    def _log_result(self, result: ValidationResult) -> None:
        m = result.metrics
        logger.info(
            f"Validation: {m.site_type} | Success: {result.success} | "
            f"Raw: {m.raw_accuracy}% -> Weighted: {m.weighted_raw_accuracy}% | "
            f"Validated: {m.validated_accuracy}% -> Weighted: {m.weighted_validated_accuracy}% | "
            f"Sanity: {m.sanity_validated_accuracy}% | Penalties: {len(result.penalties)} | "
            f"Impact: {m.penalty_impact:.1f}% | "
            f"Required: {m.required_fields_passed}/{m.required_fields_total} | "
            f"Weak fields: [{', '.join(result.weak_fields)}]"
        )
        if result.sanity_guardrails:
            logger.warning(
                "Sanity guardrail failures: "
                + ", ".join(f"{f.field}:{f.type}" for f in result.sanity_guardrails)
            )


def apply_validation_penalties(
    record: Any,
    site_type: Union[str, SiteType, None] = SiteType.GENERIC,
    rule_config: Union[ValidationConfig, dict, None] = None
) -> ValidationResult:
    """Convenience function: validate with defaults, a config, or dict overrides."""
    if isinstance(rule_config, dict):
        rule_config = merge_validation_config(rule_config)
    return Validator(rule_config).apply_validation_penalties(record, site_type)
