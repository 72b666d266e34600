"""
Cross-site aggregation of validation results.

Per-site accuracies are combined with the business weight table
(site_types.BUSINESS_WEIGHTS, or the business_weights of a rule config). A
site type without its own weight uses the generic weight; it is never counted
as zero. The report also tracks progress against a target accuracy from one
run to the next.
"""

from typing import Any, Mapping, Optional, Sequence, Union

from .schemas import (
    BusinessAccuracy, PenaltyImpactAnalysis, SiteAccuracy, TrajectoryAnalysis, ValidationResult,
    utc_timestamp,
)
from .site_types import BUSINESS_WEIGHTS, CORE_SITES, WILDCARD_SITES, SiteType, site_lookup
from .logger import get_module_logger

logger = get_module_logger("reporting")

SiteInput = Union[SiteAccuracy, ValidationResult, Mapping[str, Any]]

# (lower bound exclusive, interpretation, business value, recommendation)
IMPACT_BANDS = [
    (20, "EXCESSIVE_TEMPERING", "TOO_STRICT_STANDARDS", "RELAX_VALIDATION_SLIGHTLY"),
    (15, "HIGH_TEMPERING", "EXCELLENT_STANDARDS", "MAINTAIN_CURRENT_VALIDATION"),
    (8, "OPTIMAL_TEMPERING", "GOOD_STANDARDS", "CONTINUE_CURRENT_APPROACH"),
    (3, "LIGHT_TEMPERING", "BASIC_STANDARDS", "CONSIDER_STRICTER_VALIDATION"),
    (0, "MINIMAL_TEMPERING", "WEAK_STANDARDS", "STRENGTHEN_VALIDATION"),
]
OPTIMAL_RANGE = (8, 15)

DEFAULT_TARGET_ACCURACY = 80.0
DEFAULT_DAYS_REMAINING = 2

# (multiple of the required daily progress reached, trajectory, recommendation, urgency)
TRAJECTORY_BANDS = [
    (1.5, "AHEAD_OF_SCHEDULE", "ON_TRACK_CONTINUE", "LOW"),
    (1.0, "ON_TRACK", "MAINTAIN_CURRENT_PACE", "NORMAL"),
    (0.7, "NEEDS_SLIGHT_ACCELERATION", "INCREASE_AI_OPTIMIZATION", "MEDIUM"),
]


def _as_site_accuracy(item: SiteInput) -> SiteAccuracy:
    if isinstance(item, SiteAccuracy):
        return item
    if isinstance(item, ValidationResult):
        return SiteAccuracy.from_validation(item)
    return SiteAccuracy.model_validate(dict(item))


def _validated_score(site: SiteAccuracy) -> float:
    if site.weighted_validated_accuracy is not None:
        return site.weighted_validated_accuracy
    return site.validated_accuracy


def _group_average(sites: Sequence[SiteAccuracy], group: frozenset) -> float:
    members = [s for s in sites if s.site_type in {t.value for t in group}]
    if not members:
        return 0.0
    return sum(_validated_score(s) for s in members) / len(members)


def _merge_weights(custom_weights: Optional[Mapping[Any, float]]) -> dict[SiteType, float]:
    weights = dict(BUSINESS_WEIGHTS)
    for key, weight in (custom_weights or {}).items():
        site = SiteType.parse(key)
        if site.value == str(getattr(key, "value", key)).lower():
            weights[site] = weight
        else:
            logger.warning(f"Ignoring business weight for unknown site type '{key}'")
    return weights


def calculate_business_weighted_accuracy(
    site_results: Sequence[SiteInput],
    custom_weights: Optional[Mapping[Any, float]] = None
) -> BusinessAccuracy:
    """
    Combine per-site accuracies into one business-weighted figure.

    Weighted accuracies are preferred over plain ones when a site has them.
    """
    weights = _merge_weights(custom_weights)
    sites = [_as_site_accuracy(item) for item in site_results]

    weighted_raw = 0.0
    weighted_validated = 0.0
    total_weight = 0.0
    total_penalties = 0

    for site in sites:
        weight = site_lookup(weights, site.site_type)
        if weight <= 0:
            continue
        raw = site.weighted_raw_accuracy if site.weighted_raw_accuracy is not None else site.raw_accuracy
        weighted_raw += raw * weight
        weighted_validated += _validated_score(site) * weight
        total_weight += weight
        total_penalties += site.penalty_count

    raw_business = weighted_raw / total_weight if total_weight > 0 else 0.0
    validated_business = weighted_validated / total_weight if total_weight > 0 else 0.0
    impact = (raw_business - validated_business) / raw_business * 100 if raw_business > 0 else 0.0

    logger.info(
        f"Business-weighted accuracy: Raw {raw_business:.1f}%, "
        f"Validated {validated_business:.1f}%, Penalty Impact {impact:.1f}%"
    )
    return BusinessAccuracy(
        raw_business_accuracy=raw_business,
        validated_business_accuracy=validated_business,
        overall_penalty_impact=impact,
        total_weight=total_weight,
        total_penalties=total_penalties,
        core_accuracy=_group_average(sites, CORE_SITES),
        wildcard_accuracy=_group_average(sites, WILDCARD_SITES),
        tempering="TEMPERING_RESULTS" if impact > 0 else "NO_INFLATION",
    )


def analyze_penalty_impact(raw_accuracy: float, validated_accuracy: float) -> PenaltyImpactAnalysis:
    """Interpret how much validation pulled accuracy down."""
    impact = (raw_accuracy - validated_accuracy) / raw_accuracy * 100 if raw_accuracy > 0 else 0.0

    interpretation, business_value, recommendation = (
        "NO_PENALTY", "POSSIBLE_INFLATION", "REVIEW_VALIDATION_LOGIC"
    )
    for bound, band, value, advice in IMPACT_BANDS:
        if impact > bound:
            interpretation, business_value, recommendation = band, value, advice
            break

    low, high = OPTIMAL_RANGE
    return PenaltyImpactAnalysis(
        penalty_impact=round(impact, 1),
        interpretation=interpretation,
        business_value=business_value,
        recommendation=recommendation,
        quality_assurance="OPTIMAL_RANGE" if low <= impact <= high else "SUBOPTIMAL_RANGE",
    )


def analyze_trajectory(
    previous_accuracy: float,
    current_accuracy: float,
    target_accuracy: float = DEFAULT_TARGET_ACCURACY,
    days_remaining: int = DEFAULT_DAYS_REMAINING
) -> TrajectoryAnalysis:
    """
    Compare the progress since the previous run with the pace needed to
    reach the target accuracy in the remaining days.
    """
    progress_made = current_accuracy - previous_accuracy
    progress_needed = max(0.0, target_accuracy - current_accuracy)
    required_daily = progress_needed / days_remaining if days_remaining > 0 else progress_needed

    if current_accuracy >= target_accuracy:
        trajectory, recommendation, urgency = "TARGET_ACHIEVED", "MAINTAIN_QUALITY_STANDARDS", "LOW"
    elif days_remaining <= 0:
        trajectory, recommendation, urgency = "TARGET_MISSED", "EXTEND_TIMELINE_OR_LOWER_TARGET", "HIGH"
    else:
        trajectory, recommendation, urgency = (
            "NEEDS_SIGNIFICANT_ACCELERATION", "MAJOR_IMPROVEMENTS_REQUIRED", "HIGH"
        )
        for factor, band, advice, band_urgency in TRAJECTORY_BANDS:
            if progress_made >= required_daily * factor:
                trajectory, recommendation, urgency = band, advice, band_urgency
                break

    projected = min(100.0, current_accuracy + progress_made * max(days_remaining, 0))
    return TrajectoryAnalysis(
        trajectory=trajectory,
        recommendation=recommendation,
        urgency=urgency,
        progress_made=round(progress_made, 1),
        progress_needed=round(progress_needed, 1),
        required_daily_progress=round(required_daily, 1),
        projected_final_accuracy=round(projected, 1),
        on_track=progress_made >= required_daily * 0.8,
    )


def compile_penalty_breakdown(results: Sequence[ValidationResult]) -> dict:
    """Count penalties per reason and per field across validation results."""
    breakdown: dict[str, dict] = {}
    field_breakdown: dict[str, dict] = {}

    for result in results:
        for penalty in result.penalties:
            reason = penalty.reason.value
            entry = breakdown.setdefault(reason, {
                "count": 0, "fields": [], "total_weight": 0.0, "severities": [], "site_types": [],
            })
            entry["count"] += 1
            entry["total_weight"] += penalty.penalty_weight
            for key, value in (("fields", penalty.field),
                               ("severities", penalty.severity.value),
                               ("site_types", penalty.site_type)):
                if value not in entry[key]:
                    entry[key].append(value)

            field_entry = field_breakdown.setdefault(penalty.field, {
                "total_penalties": 0, "reasons": {}, "site_types": [], "total_weight": 0.0,
            })
            field_entry["total_penalties"] += 1
            field_entry["total_weight"] += penalty.penalty_weight
            field_entry["reasons"][reason] = field_entry["reasons"].get(reason, 0) + 1
            if penalty.site_type not in field_entry["site_types"]:
                field_entry["site_types"].append(penalty.site_type)

    logger.debug(f"Penalty breakdown: {len(breakdown)} reasons, {len(field_breakdown)} fields")
    return {"breakdown": breakdown, "field_breakdown": field_breakdown}


def generate_recommendations(
    analysis: PenaltyImpactAnalysis,
    trajectory: Optional[TrajectoryAnalysis] = None
) -> list[dict]:
    recommendations = []
    if analysis.quality_assurance == "OPTIMAL_RANGE":
        recommendations.append({
            "type": "VALIDATION", "priority": "LOW",
            "message": "Penalty impact is in the optimal range (8-15%). Keep current validation standards.",
        })
    elif analysis.penalty_impact < 5:
        recommendations.append({
            "type": "VALIDATION", "priority": "MEDIUM",
            "message": "Low penalty impact suggests validation may be too lenient. Consider stricter rules.",
        })
    elif analysis.penalty_impact > 20:
        recommendations.append({
            "type": "VALIDATION", "priority": "HIGH",
            "message": "High penalty impact suggests validation may be too strict. Review penalty thresholds.",
        })

    if trajectory is None:
        return recommendations

    recommendations.append({
        "type": "TRAJECTORY", "priority": trajectory.urgency,
        "message": f"{trajectory.recommendation} - Currently "
                   f"{trajectory.trajectory.replace('_', ' ').lower()}.",
    })
    if trajectory.on_track:
        recommendations.append({
            "type": "BUSINESS", "priority": "LOW",
            "message": "On track to reach target accuracy. Continue current approach.",
        })
    else:
        recommendations.append({
            "type": "BUSINESS", "priority": "HIGH",
            "message": "Behind trajectory for target accuracy. Review extraction prompts and validation rules.",
        })
    return recommendations


def generate_validation_report(
    results: Sequence[ValidationResult],
    site_names: Optional[Sequence[Optional[str]]] = None,
    custom_weights: Optional[Mapping[Any, float]] = None,
    previous_accuracy: float = 0.0,
    target_accuracy: float = DEFAULT_TARGET_ACCURACY,
    days_remaining: int = DEFAULT_DAYS_REMAINING
) -> dict:
    """
    Build a JSON-ready report over several validation results.

    Args:
        results: One ValidationResult per page
        site_names: Optional display names, parallel to results
        custom_weights: Business weight overrides keyed by site type
        previous_accuracy: Validated business accuracy of the previous run
        target_accuracy: Accuracy the trajectory is measured against
        days_remaining: Days left to reach the target
    """
    names = list(site_names or [])
    names += [None] * (len(results) - len(names))

    business = calculate_business_weighted_accuracy(
        [SiteAccuracy.from_validation(r, name) for r, name in zip(results, names)],
        custom_weights
    )
    analysis = analyze_penalty_impact(business.raw_business_accuracy,
                                      business.validated_business_accuracy)
    trajectory = analyze_trajectory(previous_accuracy, business.validated_business_accuracy,
                                    target_accuracy, days_remaining)
    penalties = compile_penalty_breakdown(results)

    weak_fields: list[str] = []
    for result in results:
        for field in result.weak_fields:
            if field not in weak_fields:
                weak_fields.append(field)

    sanity_failures = sum(r.metrics.sanity_failures for r in results)

    report = {
        "timestamp": utc_timestamp(),
        "executive_summary": {
            "previous_accuracy": round(previous_accuracy, 1),
            "raw_accuracy": round(business.raw_business_accuracy, 1),
            "validated_accuracy": round(business.validated_business_accuracy, 1),
            "penalty_impact": analysis.penalty_impact,
            "progress_made": trajectory.progress_made,
            "trajectory": trajectory.trajectory,
            "tempering": business.tempering,
            "weak_fields": weak_fields,
        },
        "validation_summary": {
            "total_sites": len(results),
            "valid_sites": sum(1 for r in results if r.success),
            "total_penalties": business.total_penalties,
            "quality_assurance": analysis.quality_assurance,
            "sanity_failures": sanity_failures,
        },
        "business_metrics": business.model_dump(),
        "penalty_analysis": analysis.model_dump(),
        "trajectory_analysis": trajectory.model_dump(),
        "penalty_breakdown": penalties["breakdown"],
        "field_breakdown": penalties["field_breakdown"],
        "site_performance": [
            {
                "site": name or result.site_type,
                "site_type": result.site_type,
                "success": result.success,
                "raw_accuracy": result.metrics.raw_accuracy,
                "validated_accuracy": result.metrics.validated_accuracy,
                "weighted_raw_accuracy": result.metrics.weighted_raw_accuracy,
                "weighted_validated_accuracy": result.metrics.weighted_validated_accuracy,
                "sanity_raw_accuracy": result.metrics.sanity_raw_accuracy,
                "sanity_validated_accuracy": result.metrics.sanity_validated_accuracy,
                "penalty_impact": result.metrics.penalty_impact,
                "field_completeness": result.metrics.field_completeness.model_dump(),
                "normalized_penalty_score": result.normalized_penalty_score,
                "sanity_failures": result.metrics.sanity_failures,
                "weak_fields": list(result.weak_fields),
                "penalties": [p.model_dump(mode="json") for p in result.penalties],
            }
            for result, name in zip(results, names)
        ],
        "recommendations": generate_recommendations(analysis, trajectory),
    }

    logger.info(
        f"Validation report: {report['executive_summary']['validated_accuracy']}% accuracy, "
        f"{business.total_penalties} penalties, {sanity_failures} sanity failures, "
        f"{len(weak_fields)} weak fields, {trajectory.trajectory}"
    )
    return report
