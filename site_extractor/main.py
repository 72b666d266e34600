"""
Main orchestrator for the site extractor.

Coordinates the stages for one page:
  page (HTML → PageData + PageSignals) → Classifier → Extractor → Validator

The classification is informational; extraction runs whatever the label.
"""

from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel

from .page import build_page_data, collect_signals, parse_html
from .classifier import Classifier
from .extractor import Extractor
from .validator import Validator
from .rules import load_validation_config
from .reporting import generate_validation_report
from .schemas import (
    ClassificationResult, ExtractionResult, ExtractorConfig, ValidationConfig, ValidationResult,
)
from .site_types import SiteType, detect_site_type
from .llm_client import BaseLLMClient, LLMProvider
from .extraction_cache import ExtractionCache
from .logger import get_module_logger, setup_logger

logger = get_module_logger("main")


class PipelineResult(BaseModel):
    """Everything produced for one page."""
    url: Optional[str] = None
    site_type: str
    classification: ClassificationResult
    extraction: ExtractionResult
    validation: Optional[ValidationResult] = None   # None when extraction failed

    @property
    def success(self) -> bool:
        return self.extraction.success and self.validation is not None and self.validation.success


class SitePipeline:
    """
    Main orchestrator for page extraction.

    Owns one Classifier, one Extractor and one Validator; the rule config and
    cache are built once here and passed down.
    """

    def __init__(
        self,
        config: Optional[ExtractorConfig] = None,
        llm_client: Optional[BaseLLMClient] = None,
        provider: Union[LLMProvider, str, None] = None,
        validation_config: Optional[ValidationConfig] = None,
        rules_path: Union[str, Path, None] = None,
        cache: Optional[ExtractionCache] = None,
        log_level: int = None
    ):
        if log_level is not None:
            setup_logger(level=log_level)

        self.classifier = Classifier()
        self.extractor = Extractor(llm_client=llm_client, config=config, cache=cache, provider=provider)
        self.validator = Validator(validation_config or load_validation_config(rules_path))

        logger.info("SitePipeline initialized")

    async def aclose(self) -> None:
        await self.extractor.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def process_html(
        self,
        html: str,
        url: Optional[str] = None,
        site_type: Union[str, SiteType, None] = None
    ) -> PipelineResult:
        """
        Run every stage over one page.

        Args:
            html: Raw HTML string
            url: Page URL (used for site detection and homepage signals)
            site_type: Override for the detected site type

        Returns:
            PipelineResult
        """
        site = SiteType.parse(site_type) if site_type else detect_site_type(url)
        logger.info(f"Processing {url or 'page'} as {site.value}")

        soup = parse_html(html)
        page = build_page_data(html, url, soup=soup)
        classification = self.classifier.classify(collect_signals(html, url, soup=soup))

        extraction = await self.extractor.extract(page, site, url)
        validation = None
        if extraction.success:
            validation = self.validator.apply_validation_penalties(extraction.data, site)

        result = PipelineResult(
            url=url,
            site_type=site.value,
            classification=classification,
            extraction=extraction,
            validation=validation,
        )
        logger.info(f"Complete: {url or 'page'} success={result.success}")
        return result

    async def process_file(
        self,
        file_path: Union[str, Path],
        url: Optional[str] = None,
        site_type: Union[str, SiteType, None] = None
    ) -> PipelineResult:
        """Process an HTML file."""
        html = Path(file_path).read_text(encoding="utf-8", errors="replace")
        return await self.process_html(html, url=url, site_type=site_type)

    def report(self, results: list[PipelineResult], previous_accuracy: float = 0.0) -> dict:
        """
        Validation report over the pages that made it through extraction,
        weighted with the rule config's business weights.
        """
        validated = [r for r in results if r.validation is not None]
        return generate_validation_report(
            [r.validation for r in validated],
            site_names=[r.url for r in validated],
            custom_weights=self.validator.config.business_weights,
            previous_accuracy=previous_accuracy,
        )
