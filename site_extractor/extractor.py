"""
LLM-backed field extractor.

Builds a prompt from page content, calls the configured LLM with bounded
retries, recovers a JSON object from the reply and post-processes it into a
flat field map.

Pipeline position: after page.build_page_data(), before the Validator.
Input:  PageData + site type
Output: ExtractionResult (never raises to the caller)

Steps inside extract():
  1. input and credential checks          → CONFIG_ERROR, no network call
  2. cache lookup (optional)
  3. prompt build (external overrides loaded once)
  4. retry loop with exponential backoff   → RETRY_EXHAUSTED et al.
  5. JSON recovery                         → PARSE_ERROR, no retry
  6. alias remap, PII redaction, date standardisation, length limits
  7. confidence check                      → GENERATION_ERROR
"""

import asyncio
import random
import re
import time
import uuid
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from .schemas import (
    ExtractedRecord, ExtractionMetadata, ExtractionResult, ExtractorConfig,
    LLMCompletion, PageData,
)
from .site_types import FIELD_ALIASES, SiteType, detect_site_type, site_lookup
from .prompts import PromptOverrides, build_prompt, load_external_prompt_config
from .json_parser import parse_json_response
from .llm_client import BaseLLMClient, LLMClient, LLMProvider
from .extraction_cache import ExtractionCache
from .exceptions import (
    ConfigError, ErrorType, ExtractionError, LLMClientError, ResponseParseError, classify_error,
)
from .logger import get_module_logger

logger = get_module_logger("extractor")

# --- Post-processing tables ---

# Order matters: card and SSN numbers would otherwise be eaten by the phone pattern
PII_PATTERNS = [
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[EMAIL_REDACTED]"),
    (re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"), "[CARD_REDACTED]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN_REDACTED]"),
    (re.compile(r"(?<!\d)(\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?!\d)"), "[PHONE_REDACTED]"),
]

DATE_FIELDS = ("publication_date", "publishdate")

# (pattern, group order) for numeric dates; first match wins
NUMERIC_DATE_PATTERNS = [
    (re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})(?:[T\s].*)?$"), ("y", "m", "d")),  # ISO
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), ("m", "d", "y")),                     # US
    (re.compile(r"^(\d{1,2})[-.](\d{1,2})[-.](\d{4})$"), ("d", "m", "y")),               # EU
]
LONG_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%d %B %Y", "%b. %d, %Y")

STRING_LIMITS = {"title": 200, "description": 1000, "main_content_summary": 2000, "summary": 2000}
LIST_LIMITS = {"ingredients": 50, "instructions": 30}

CONFIDENCE_FIELD = "confidence_score"


def strip_pii(text: str) -> str:
    for pattern, replacement in PII_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def standardize_date(value: Any) -> Optional[str]:
    """Return the date as YYYY-MM-DD, or None when the format is not recognised."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()

    for pattern, order in NUMERIC_DATE_PATTERNS:
        match = pattern.match(text)
        if match:
            parts = dict(zip(order, (int(g) for g in match.groups()[:3])))
            try:
                return date(parts["y"], parts["m"], parts["d"]).isoformat()
            except ValueError:
                return None

    for fmt in LONG_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def remap_aliases(data: ExtractedRecord, site_type: Union[str, SiteType]) -> ExtractedRecord:
    """
    Rename site-specific keys to the standard field names.

    The alias key is always dropped; its value only lands on the target when
    the target is not already populated.
    """
    aliases = site_lookup(FIELD_ALIASES, site_type)
    if not aliases:
        return data
    remapped = dict(data)
    for alias, target in aliases.items():
        if alias not in remapped:
            continue
        value = remapped.pop(alias)
        if not remapped.get(target):
            remapped[target] = value
    return remapped


def post_process(data: ExtractedRecord, strip_personal_data: bool = True) -> ExtractedRecord:
    """Date standardisation, PII redaction and length limits."""
    processed = dict(data)

    for field in DATE_FIELDS:
        standardized = standardize_date(processed.get(field))
        if standardized:
            processed[field] = standardized

    if strip_personal_data:
        for key, value in processed.items():
            if isinstance(value, str):
                processed[key] = strip_pii(value)
            elif isinstance(value, list):
                processed[key] = [strip_pii(v) if isinstance(v, str) else v for v in value]

    for field, limit in STRING_LIMITS.items():
        if isinstance(processed.get(field), str):
            processed[field] = processed[field][:limit]
    for field, limit in LIST_LIMITS.items():
        if isinstance(processed.get(field), list):
            processed[field] = processed[field][:limit]

    return processed


class Extractor:
    """
    Async LLM extractor with retry, JSON recovery and post-processing.

    sleep, clock and jitter are injectable so the retry timing can be driven
    by a fake clock in tests.
    """

    def __init__(
        self,
        llm_client: Optional[BaseLLMClient] = None,
        config: Optional[ExtractorConfig] = None,
        cache: Optional[ExtractionCache] = None,
        provider: Union[LLMProvider, str, None] = None,
        prompt_overrides: Optional[PromptOverrides] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        jitter: Callable[[float, float], float] = random.uniform
    ):
        self.config = config or ExtractorConfig.from_env()
        self.cache = cache
        self.sleep = sleep
        self.clock = clock
        self.jitter = jitter
        self._prompt_overrides = prompt_overrides
        # Created on first use so it binds to the running event loop
        self._overrides_lock: Optional[asyncio.Lock] = None

        # Lazy-create the LLM client only if one wasn't injected
        self._owns_client = llm_client is None
        if llm_client is None:
            try:
                llm_client = LLMClient.create(provider=provider)
            except LLMClientError as e:
                raise ConfigError(f"Failed to initialize LLM client: {e.message}",
                                  details={"provider": e.provider})
        self.llm_client = llm_client

    async def aclose(self) -> None:
        if self._owns_client:
            await self.llm_client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    # --- helpers ---

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt N: min(2^(N-1), cap) + jitter."""
        base = min(2 ** (attempt - 1), self.config.max_backoff_seconds)
        return base + self.jitter(0, self.config.jitter_max_seconds)

    async def _get_prompt_overrides(self) -> PromptOverrides:
        if self._prompt_overrides is None:
            if self._overrides_lock is None:
                self._overrides_lock = asyncio.Lock()
            async with self._overrides_lock:
                if self._prompt_overrides is None:
                    self._prompt_overrides = await load_external_prompt_config(
                        self.config.external_prompt_url
                    )
        return self._prompt_overrides

    @staticmethod
    def _check_page(page: Any) -> PageData:
        if isinstance(page, PageData):
            checked = page
        elif isinstance(page, Mapping):
            try:
                checked = PageData.model_validate(dict(page))
            except ValidationError as e:
                raise ConfigError(f"Invalid page data provided: {e.error_count()} error(s)")
        else:
            raise ConfigError("Invalid page data provided to extractor")

        if not (checked.title or checked.text_content or checked.description):
            raise ConfigError("Invalid page data: no title, text or description")
        return checked

    async def _complete_with_retries(
        self,
        prompt: str,
        extraction_id: str,
        progress: dict
    ) -> LLMCompletion:
        """
        Call the LLM up to max_retries times.

        progress["attempt_count"] and progress["cumulative_retry_time"] are
        kept current so a failure result can still report them.
        """
        max_retries = self.config.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            progress["attempt_count"] = attempt
            attempt_start = self.clock()
            logger.info(f"[{extraction_id}] API attempt {attempt}/{max_retries}")
            try:
                return await self.llm_client.complete(prompt, self.config)
            except Exception as e:
                last_error = e
                progress["cumulative_retry_time"] += self.clock() - attempt_start
                logger.warning(f"[{extraction_id}] Attempt {attempt} failed: {e}")

            if attempt < max_retries:
                delay = self.backoff_delay(attempt)
                await self.sleep(delay)
                progress["cumulative_retry_time"] += delay

        message = f"AI extraction failed after {max_retries} attempts: {last_error}"
        raise ExtractionError(message, error_type=classify_error(message))

    # --- public API ---

    async def extract(
        self,
        page: Union[PageData, Mapping[str, Any]],
        site_type: Union[str, SiteType, None] = None,
        url: Optional[str] = None
    ) -> ExtractionResult:
        """
        Extract a field map from page content.

        Args:
            page: PageData (or a mapping with the same keys)
            site_type: Site label; detected from the URL when omitted
            url: Page URL, defaults to page.url

        Returns:
            ExtractionResult; failures carry error and error_type
        """
        start = self.clock()
        extraction_id = f"ext_{uuid.uuid4().hex[:12]}"
        page_url = url or (page.get("url") if isinstance(page, Mapping) else getattr(page, "url", None))
        site = SiteType.parse(site_type) if site_type else detect_site_type(page_url)
        progress = {"attempt_count": 0, "cumulative_retry_time": 0.0}
        meta = ExtractionMetadata(
            extraction_id=extraction_id,
            site_type=site.value,
            url=page_url,
            model=self.llm_client.model or self.config.model,
        )

        def finish(**fields) -> ExtractionMetadata:
            return meta.model_copy(update={
                **progress,
                "extraction_time_ms": round((self.clock() - start) * 1000, 3),
                **fields,
            })

        try:
            logger.info(f"[{extraction_id}] Starting extraction for {site.value}")

            if not (self.config.api_key or self.llm_client.api_key):
                raise ConfigError("AI configuration or API key missing")
            checked_page = self._check_page(page)

            if self.cache is not None:
                cached = self.cache.get(checked_page, site)
                if cached is not None:
                    logger.info(f"[{extraction_id}] Served from cache")
                    return ExtractionResult(success=True, data=cached,
                                            metadata=finish(from_cache=True))

            prompt = build_prompt(
                checked_page, site, url=page_url,
                overrides=await self._get_prompt_overrides(),
                max_content_length=self.config.max_content_length,
            )
            completion = await self._complete_with_retries(prompt, extraction_id, progress)

            data, strategy = parse_json_response(completion.text)
            data = remap_aliases(data, site)
            data = post_process(data, strip_personal_data=self.config.enable_pii_stripping)

            confidence = data.pop(CONFIDENCE_FIELD, None)
            if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
                confidence = None
            if confidence is not None and confidence < self.config.confidence_threshold:
                raise ExtractionError(f"CONFIDENCE_TOO_LOW: {confidence}%",
                                      error_type=ErrorType.GENERATION_ERROR)

            if self.cache is not None:
                self.cache.put(checked_page, site, data, extra_info={"model": completion.model})

            result = ExtractionResult(
                success=True,
                data=data,
                metadata=finish(
                    model=completion.model or meta.model,
                    usage=completion.usage,
                    response_size=len(completion.text),
                    parse_strategy=strategy,
                    confidence_score=confidence,
                ),
            )
            logger.info(
                f"[{extraction_id}] Extraction complete: {len(data)} fields, "
                f"{result.metadata.attempt_count} attempt(s), parse={strategy}"
            )
            return result

        except Exception as e:
            if isinstance(e, ExtractionError):
                error_type = e.error_type
            elif isinstance(e, ConfigError):
                error_type = ErrorType.CONFIG_ERROR
            elif isinstance(e, ResponseParseError):
                error_type = ErrorType.PARSE_ERROR
            else:
                error_type = classify_error(str(e))

            message = getattr(e, "message", None) or str(e) or type(e).__name__
            logger.error(f"[{extraction_id}] Extraction failed ({error_type.value}): {message}")
            return ExtractionResult(
                success=False,
                error=message,
                error_type=error_type,
                metadata=finish(),
            )

    async def extract_many(
        self,
        pages: Sequence[Union[PageData, Mapping[str, Any]]],
        site_type: Union[str, SiteType, None] = None
    ) -> list[ExtractionResult]:
        """
        Extract several pages with bounded concurrency.

        Runs batches of parallel_throttle extractions concurrently, waits for
        each batch to finish, then sleeps batch_delay_seconds before the next.
        Results come back in input order.
        """
        throttle = self.config.parallel_throttle
        results: list[ExtractionResult] = []

        for batch_start in range(0, len(pages), throttle):
            if batch_start:
                await self.sleep(self.config.batch_delay_seconds)
            batch = pages[batch_start:batch_start + throttle]
            logger.info(f"Extracting batch {batch_start // throttle + 1}: {len(batch)} page(s)")
            results.extend(await asyncio.gather(
                *(self.extract(page, site_type) for page in batch)
            ))

        logger.info(f"Batch extraction complete: {sum(r.success for r in results)}/{len(results)} succeeded")
        return results
