"""
Prompt construction for the Extractor.

The prompt is assembled from four parts:
  base instructions  (embedded, or "basePrompt" from an external config)
  header             (SITE TYPE / URL / SCHEMA VERSION)
  site instructions  (per SiteType, generic fallback)
  page content       (title, truncated text, truncated meta, description)
"""

import json
from typing import Optional, Union

import httpx
from pydantic import BaseModel, Field

from .schemas import PageData
from .site_types import SiteType, site_lookup
from .logger import get_module_logger

logger = get_module_logger("prompts")

SCHEMA_VERSION = "site-extractor-v1"
META_PREVIEW_LENGTH = 500

# The JSON shape in the prompt is the strongest hint the model gets; keep it
# in sync with json_parser.EXTRACTION_FIELDS.
BASE_PROMPT = """You are a data extraction specialist. Extract structured fields from the page content below.

RULES:
1. Output JSON only. No markdown, no explanations.
2. Use null when a field is not present on the page. Never guess.
3. Rate your own extraction with confidence_score (0-100).
4. Dates as YYYY-MM-DD.
5. Do not include personal data (emails, phone numbers, addresses).

SCHEMA ({schemaVersion}):
{
  "title": "string",
  "author": "string",
  "publication_date": "YYYY-MM-DD",
  "main_content_summary": "string",
  "category": "string",
  "description": "string",
  "price": "string",
  "reviews_rating": "string",
  "ingredients": ["string"],
  "instructions": ["string"],
  "links": ["string"],
  "images": ["string"],
  "confidence_score": 85
}

FIELD FORMATS:
- price: "$XX.XX"
- reviews_rating: "X.X/5"
- ingredients: 3 or more items, otherwise []
- instructions: 2 or more steps, otherwise []
- title up to 200 characters, description up to 1000 characters"""

SITE_INSTRUCTIONS: dict[SiteType, str] = {
    SiteType.AMAZON: (
        "ECOMMERCE (Amazon): Priority: price, reviews_rating, description, title. "
        "Required fields: title, price, description."
    ),
    SiteType.ALLRECIPES: (
        "RECIPE (AllRecipes): Priority: ingredients, instructions, title. "
        "Required fields: title, ingredients, instructions. "
        "Ingredients need 3+ items, instructions 2+ steps."
    ),
    SiteType.BLOOMBERG: (
        "NEWS (Bloomberg): Priority: title, author, publication_date, main_content_summary. "
        "Required fields: title, description, category, main_content_summary."
    ),
    SiteType.WIKIPEDIA: (
        "WIKI (Wikipedia): Priority: title, main_content_summary, category. "
        "Required fields: title, description, main_content_summary."
    ),
    SiteType.MEDIUM: (
        "BLOG (Medium): Priority: title, author, publication_date, description. "
        "Required fields: title, description, author, publication_date."
    ),
    SiteType.GENERIC: "GENERIC: Extract title, description, main_content_summary, category.",
}


class PromptOverrides(BaseModel):
    """Prompt parts loaded from an external prompt config."""
    base_prompt: Optional[str] = None
    site_instructions: dict[SiteType, str] = Field(default_factory=dict)


async def load_external_prompt_config(
    url: Optional[str],
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = 10.0
) -> PromptOverrides:
    """
    Fetch prompt overrides from a URL.

    Expects JSON with optional "basePrompt" and "siteInstructions" keys.
    Any failure falls back to the embedded prompts.
    """
    if not url:
        return PromptOverrides()

    client = http_client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await client.get(url)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("prompt config is not a JSON object")

        site_instructions = {}
        for key, text in (payload.get("siteInstructions") or {}).items():
            site_type = SiteType.parse(key)
            if isinstance(text, str) and (site_type.value == str(key).lower()):
                site_instructions[site_type] = text

        base_prompt = payload.get("basePrompt")
        overrides = PromptOverrides(
            base_prompt=base_prompt if isinstance(base_prompt, str) else None,
            site_instructions=site_instructions,
        )
        logger.info(f"External prompt config loaded from {url}")
        return overrides
    except (httpx.HTTPError, ValueError, AttributeError) as e:
        logger.warning(f"External prompt config failed, using embedded: {e}")
        return PromptOverrides()
    finally:
        if http_client is None:
            await client.aclose()


def get_base_prompt(overrides: Optional[PromptOverrides] = None,
                    schema_version: str = SCHEMA_VERSION) -> str:
    template = overrides.base_prompt if overrides and overrides.base_prompt else BASE_PROMPT
    return template.replace("{schemaVersion}", schema_version)


def get_site_instructions(site_type: Union[str, SiteType, None],
                          overrides: Optional[PromptOverrides] = None) -> str:
    table = dict(SITE_INSTRUCTIONS)
    if overrides:
        table.update(overrides.site_instructions)
    return site_lookup(table, site_type)


def render_page_content(page: PageData, max_content_length: int = 2000) -> str:
    """Render page fields as labelled blocks, truncating the long ones."""
    content = []
    if page.title:
        content.append(f"TITLE: {page.title}")
    if page.text_content:
        content.append(f"TEXT: {page.text_content[:max_content_length]}")
    if page.meta:
        content.append(f"META: {json.dumps(page.meta)[:META_PREVIEW_LENGTH]}")
    if page.description:
        content.append(f"DESCRIPTION: {page.description}")
    return "\n\n".join(content)


def build_prompt(
    page: PageData,
    site_type: Union[str, SiteType, None],
    url: Optional[str] = None,
    overrides: Optional[PromptOverrides] = None,
    max_content_length: int = 2000,
    schema_version: str = SCHEMA_VERSION
) -> str:
    """Assemble the full extraction prompt."""
    site = SiteType.parse(site_type)
    return (
        f"{get_base_prompt(overrides, schema_version)}\n\n"
        f"SITE TYPE: {site.value.upper()}\n"
        f"URL: {url or page.url or 'unknown'}\n"
        f"SCHEMA VERSION: {schema_version}\n\n"
        f"{get_site_instructions(site, overrides)}\n\n"
        f"PAGE CONTENT TO EXTRACT FROM:\n\n"
        f"{render_page_content(page, max_content_length)}\n\n"
        "Return ONLY valid JSON matching the schema. No explanations, no markdown."
    )
