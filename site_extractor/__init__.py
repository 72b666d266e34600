"""
Site Extractor

Turns web pages into validated, scored field maps.
- Classifier: rule-based page layout label
- Extractor: LLM-backed field extraction with retry and JSON recovery
- Validator: per-field rules, sanity guardrails and penalty scoring
- Reporting: business-weighted accuracy across sites

Public API surface:
  Pipeline         : SitePipeline, PipelineResult
  Stage classes    : Classifier, Extractor, Validator
  Page helpers     : build_page_data, collect_signals
  Data models      : PageData, PageSignals, ExtractorConfig, ExtractionResult,
                     ValidationConfig, ValidationResult, Penalty
  Error types      : SiteExtractorError, ConfigError, ExtractionError, ErrorType
  Caching          : ExtractionCache
"""

# --- Pipeline and stage classes ---
from .main import SitePipeline, PipelineResult
from .classifier import Classifier, classify
from .extractor import Extractor
from .validator import Validator, apply_validation_penalties, is_field_populated
from .page import build_page_data, collect_signals

# --- Rules and reporting ---
from .rules import default_validation_config, load_validation_config
from .reporting import (
    analyze_penalty_impact, analyze_trajectory, calculate_business_weighted_accuracy,
    compile_penalty_breakdown, generate_validation_report,
)

# --- Data models ---
from .site_types import SiteType
from .schemas import (
    ClassificationLabel, ClassificationResult, ExtractionResult, ExtractorConfig,
    PageData, PageSignals, Penalty, PenaltyReason, ValidationConfig, ValidationResult,
)

# --- LLM clients ---
from .llm_client import LLMClient, LLMProvider, BaseLLMClient

# --- Exceptions ---
from .exceptions import ConfigError, ErrorType, ExtractionError, SiteExtractorError

# --- Cache ---
from .extraction_cache import ExtractionCache

__version__ = "0.1.0"
__all__ = [
    "SitePipeline",
    "PipelineResult",
    "Classifier",
    "classify",
    "Extractor",
    "Validator",
    "apply_validation_penalties",
    "is_field_populated",
    "build_page_data",
    "collect_signals",
    "default_validation_config",
    "load_validation_config",
    "analyze_penalty_impact",
    "analyze_trajectory",
    "calculate_business_weighted_accuracy",
    "compile_penalty_breakdown",
    "generate_validation_report",
    "SiteType",
    "ClassificationLabel",
    "ClassificationResult",
    "ExtractionResult",
    "ExtractorConfig",
    "PageData",
    "PageSignals",
    "Penalty",
    "PenaltyReason",
    "ValidationConfig",
    "ValidationResult",
    "LLMClient",
    "LLMProvider",
    "BaseLLMClient",
    "ConfigError",
    "ErrorType",
    "ExtractionError",
    "SiteExtractorError",
    "ExtractionCache",
]
