"""
Pydantic schemas defining the contracts between stages.

Data flow through the pipeline:
  HTML → page.build_page_data / collect_signals → PageData, PageSignals
  PageSignals → Classifier → ClassificationResult (informational)
  PageData → Extractor → ExtractionResult (field map + metadata)
  ExtractionResult.data → Validator → ValidationResult (nulled fields + metrics)
  [ValidationResult, ...] → reporting → BusinessAccuracy / report dict
"""

import os
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ConfigError, ErrorType, ExtractionError
from .site_types import SiteType


FieldValue = Union[str, None, list[str]]
ExtractedRecord = dict[str, Any]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# --- Validation rule configuration ---

class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    WARNING = "WARNING"


class PenaltyReason(str, Enum):
    REQUIRED_FIELD_MISSING = "REQUIRED_FIELD_MISSING"
    INSUFFICIENT_LENGTH = "INSUFFICIENT_LENGTH"
    EXCESSIVE_LENGTH = "EXCESSIVE_LENGTH"
    INVALID_FORMAT = "INVALID_FORMAT"
    INSUFFICIENT_ITEMS = "INSUFFICIENT_ITEMS"
    VALIDATION_RULE_ERROR = "VALIDATION_RULE_ERROR"


class FieldRule(BaseModel):
    """Per-field validation policy for the main penalty pass."""
    model_config = ConfigDict(frozen=True)

    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    regex: Optional[str] = None          # applied with re.search to the trimmed value
    min_items: Optional[int] = None
    alias_of: Optional[str] = None       # validate with another field's rule (one level)
    penalty_weight: float = 0.0
    accuracy_weight: float = 1.0
    severity: Optional[Severity] = None  # falls back per reason when unset
    description: str = ""


class GuardrailRule(BaseModel):
    """Coarse structural pre-filter applied before the main pass."""
    model_config = ConfigDict(frozen=True)

    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_items: Optional[int] = None
    item_min_length: Optional[int] = None
    description: str = ""


class GuardrailConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    rules: dict[str, GuardrailRule] = Field(default_factory=dict)


class SiteSchema(BaseModel):
    """Fields a site type is expected to carry, for completeness scoring."""
    model_config = ConfigDict(frozen=True)

    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()


class ValidationConfig(BaseModel):
    """Complete rule configuration handed to the Validator."""
    model_config = ConfigDict(frozen=True)

    penalty_thresholds: dict[str, FieldRule] = Field(default_factory=dict)
    sanity_guardrails: GuardrailConfig = Field(default_factory=GuardrailConfig)
    business_weights: dict[SiteType, float] = Field(default_factory=dict)
    site_schemas: dict[SiteType, SiteSchema] = Field(default_factory=dict)


# --- Validation output ---

class Penalty(BaseModel):
    """A field that failed its rule; append-only, never mutated."""
    model_config = ConfigDict(frozen=True)

    field: str
    reason: PenaltyReason
    original: Any = None
    expected: str = ""                   # rule description
    penalty_weight: float = 0.0
    severity: Severity = Severity.MEDIUM
    site_type: str = SiteType.GENERIC.value
    timestamp: str = Field(default_factory=utc_timestamp)
    actual: Optional[int] = None
    minimum: Optional[int] = None
    pattern: Optional[str] = None
    error: Optional[str] = None


class SanityFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str                            # e.g. SANITY_MIN_LENGTH_FAILURE
    field: str
    value: Any = None
    rule: str = ""
    actual: Optional[Any] = None
    limit: Optional[Any] = None
    error: Optional[str] = None


class FieldCompleteness(BaseModel):
    """Share of a site schema's fields that carry content, in percent."""
    model_config = ConfigDict(frozen=True)

    required_completeness: float = 100.0
    optional_completeness: float = 0.0
    overall_completeness: int = 0


class ValidationMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    site_type: str = SiteType.GENERIC.value
    total_fields: int = 0
    valid_fields: int = 0
    penalized_fields: int = 0
    required_fields_passed: int = 0
    required_fields_total: int = 0
    raw_accuracy: int = 0
    validated_accuracy: int = 0
    weighted_raw_accuracy: int = 0
    weighted_validated_accuracy: int = 0
    sanity_raw_accuracy: int = 0
    sanity_validated_accuracy: int = 0
    sanity_failures: int = 0
    penalty_impact: float = 0.0
    max_possible_penalty: float = 0.0
    penalty_types: dict[str, int] = Field(default_factory=dict)
    field_penalty_types: dict[str, int] = Field(default_factory=dict)
    field_completeness: FieldCompleteness = Field(default_factory=FieldCompleteness)
    validation_time_ms: float = 0.0


class ValidationResult(BaseModel):
    """Produced once per validation call; immutable after return."""
    model_config = ConfigDict(frozen=True)

    success: bool = False
    site_type: str = SiteType.GENERIC.value
    validated_data: ExtractedRecord = Field(default_factory=dict)
    penalties: list[Penalty] = Field(default_factory=list)
    sanity_guardrails: list[SanityFailure] = Field(default_factory=list)
    penalty_score: float = 0.0
    normalized_penalty_score: float = 0.0
    weak_fields: list[str] = Field(default_factory=list)
    metrics: ValidationMetrics = Field(default_factory=ValidationMetrics)

    @property
    def raw_accuracy(self) -> int:
        return self.metrics.raw_accuracy

    @property
    def weighted_raw_accuracy(self) -> int:
        return self.metrics.weighted_raw_accuracy

    @property
    def validated_accuracy(self) -> int:
        return self.metrics.validated_accuracy

    @property
    def weighted_validated_accuracy(self) -> int:
        return self.metrics.weighted_validated_accuracy

    @property
    def penalty_impact(self) -> float:
        return self.metrics.penalty_impact

    @property
    def required_fields_passed(self) -> int:
        return self.metrics.required_fields_passed


# --- Classifier ---

class ClassificationLabel(str, Enum):
    NONE = "NONE"
    SINGLE_ITEM = "SINGLE_ITEM"
    MULTI_ITEM = "MULTI_ITEM"
    UNCERTAIN = "UNCERTAIN"


class PageSignals(BaseModel):
    """Structural counts gathered from a page's DOM. Accepts camelCase keys too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    article_count: int = 0
    h1_count: int = 0
    main_count: int = 0
    word_count: int = 0
    repeating_patterns: int = 0
    has_homepage_indicators: bool = False
    has_login_indicators: bool = False


class ClassificationResult(BaseModel):
    label: ClassificationLabel
    confidence: int = Field(ge=0, le=100)
    reason: str
    signals: dict[str, Any] = Field(default_factory=dict)
    method: str = "dom-heuristic"
    duration_ms: float = 0.0


# --- Extraction ---

class PageData(BaseModel):
    """Page content handed to the Extractor."""
    url: Optional[str] = None
    title: str = ""
    text_content: str = ""
    description: str = ""
    meta: dict[str, str] = Field(default_factory=dict)


class TokenUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class LLMCompletion(BaseModel):
    """Text returned by a single successful generation call."""
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""


class ExtractionMetadata(BaseModel):
    extraction_id: str = ""
    site_type: str = SiteType.GENERIC.value
    url: Optional[str] = None
    model: str = ""
    attempt_count: int = 0
    cumulative_retry_time: float = 0.0   # seconds spent on failed attempts + backoff
    extraction_time_ms: float = 0.0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    response_size: int = 0
    parse_strategy: Optional[str] = None
    confidence_score: Optional[float] = None
    from_cache: bool = False


class ExtractionResult(BaseModel):
    """Output from the Extractor; success or a classified failure."""
    success: bool
    data: ExtractedRecord = Field(default_factory=dict)
    error: Optional[str] = None
    error_type: Optional[ErrorType] = None
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)

    def raise_for_error(self) -> "ExtractionResult":
        if not self.success:
            raise ExtractionError(
                message=self.error or "Extraction failed",
                error_type=self.error_type or ErrorType.UNKNOWN_ERROR,
                details={"extraction_id": self.metadata.extraction_id}
            )
        return self


# --- Reporting ---

class SiteAccuracy(BaseModel):
    """Per-site accuracy figures fed into business-weighted aggregation."""
    site_type: str = SiteType.GENERIC.value
    site_name: Optional[str] = None
    success: bool = True
    raw_accuracy: float = 0.0
    validated_accuracy: float = 0.0
    weighted_raw_accuracy: Optional[float] = None
    weighted_validated_accuracy: Optional[float] = None
    penalty_count: int = 0

    @classmethod
    def from_validation(cls, result: ValidationResult, site_name: Optional[str] = None) -> "SiteAccuracy":
        return cls(
            site_type=result.site_type,
            site_name=site_name,
            success=result.success,
            raw_accuracy=result.metrics.raw_accuracy,
            validated_accuracy=result.metrics.validated_accuracy,
            weighted_raw_accuracy=result.metrics.weighted_raw_accuracy,
            weighted_validated_accuracy=result.metrics.weighted_validated_accuracy,
            penalty_count=len(result.penalties),
        )


class BusinessAccuracy(BaseModel):
    raw_business_accuracy: float = 0.0
    validated_business_accuracy: float = 0.0
    overall_penalty_impact: float = 0.0
    total_weight: float = 0.0
    total_penalties: int = 0
    core_accuracy: float = 0.0
    wildcard_accuracy: float = 0.0
    tempering: str = "NO_INFLATION"


class PenaltyImpactAnalysis(BaseModel):
    penalty_impact: float
    interpretation: str
    business_value: str
    recommendation: str
    quality_assurance: str


class TrajectoryAnalysis(BaseModel):
    trajectory: str
    recommendation: str
    urgency: str
    progress_made: float
    progress_needed: float
    required_daily_progress: float
    projected_final_accuracy: float
    on_track: bool


# --- Extractor configuration ---

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class ExtractorConfig(BaseModel):
    """Settings for one Extractor; the API key is never logged."""
    endpoint: str = GEMINI_ENDPOINT      # {model} is substituted per call
    api_key: Optional[str] = Field(default=None, repr=False)
    model: str = "gemini-1.5-flash"
    temperature: float = 0.1
    max_output_tokens: int = 2048
    response_mime_type: str = "application/json"
    max_retries: int = Field(default=3, ge=1)
    jitter_max_seconds: float = 0.5
    max_backoff_seconds: float = 5.0
    max_content_length: int = 2000
    request_timeout: float = 30.0
    external_prompt_url: Optional[str] = None
    confidence_threshold: float = 50
    enable_pii_stripping: bool = True
    parallel_throttle: int = Field(default=3, ge=1)
    batch_delay_seconds: float = 1.0

    @classmethod
    def from_env(cls, **overrides) -> "ExtractorConfig":
        """Build a config from GEMINI_* / EXTRACTOR_* environment variables."""
        values: dict[str, Any] = {
            "api_key": os.getenv("GEMINI_API_KEY"),
            "external_prompt_url": os.getenv("PROMPT_CONFIG_URL"),
        }
        if os.getenv("GEMINI_MODEL"):
            values["model"] = os.getenv("GEMINI_MODEL")
        if os.getenv("GEMINI_ENDPOINT"):
            values["endpoint"] = os.getenv("GEMINI_ENDPOINT")
        if os.getenv("EXTRACTOR_MAX_RETRIES"):
            values["max_retries"] = os.getenv("EXTRACTOR_MAX_RETRIES")
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(f"Invalid extractor configuration: {e.error_count()} error(s)",
                              details={"errors": e.errors(include_url=False)})
