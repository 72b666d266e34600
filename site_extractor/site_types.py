"""
Closed set of site types and the per-site lookup tables.

Every table is keyed by SiteType and must carry a GENERIC entry; lookups go
through site_lookup() so an unrecognised site type always lands on the
generic entry instead of silently yielding nothing.
"""

import re
from enum import Enum
from typing import Mapping, Optional, TypeVar, Union
from urllib.parse import urlparse

from .logger import get_module_logger

logger = get_module_logger("site_types")

T = TypeVar("T")


class SiteType(str, Enum):
    """Site categories that select rule, instruction and mapping tables."""
    AMAZON = "amazon"
    ALLRECIPES = "allrecipes"
    BLOOMBERG = "bloomberg"
    WIKIPEDIA = "wikipedia"
    MEDIUM = "medium"
    GENERIC = "generic"

    @classmethod
    def parse(cls, value: Union[str, "SiteType", None]) -> "SiteType":
        """Coerce a label to a SiteType, falling back to GENERIC."""
        if isinstance(value, SiteType):
            return value
        if value:
            try:
                return cls(str(value).strip().lower())
            except ValueError:
                logger.debug(f"Unknown site type '{value}', using generic")
        return cls.GENERIC


def site_lookup(table: Mapping[SiteType, T], site_type: Union[str, SiteType, None]) -> T:
    """Look up a per-site entry with the mandatory generic fallback."""
    if SiteType.GENERIC not in table:
        raise KeyError("Site table has no generic entry")
    return table.get(SiteType.parse(site_type), table[SiteType.GENERIC])


# --- Domain detection ---
# First matching pattern wins.

DOMAIN_PATTERNS = [
    (re.compile(r"amazon\."), SiteType.AMAZON),
    (re.compile(r"(allrecipes\.|food\.com|recipe)"), SiteType.ALLRECIPES),
    (re.compile(r"bloomberg"), SiteType.BLOOMBERG),
    (re.compile(r"wikipedia\."), SiteType.WIKIPEDIA),
    (re.compile(r"(medium\.|substack\.)"), SiteType.MEDIUM),
]


def detect_site_type(url: Optional[str]) -> SiteType:
    """Derive the site type from a URL's host name."""
    if not url:
        return SiteType.GENERIC
    host = urlparse(url if "//" in url else f"//{url}").netloc.lower()
    for pattern, site_type in DOMAIN_PATTERNS:
        if pattern.search(host):
            return site_type
    return SiteType.GENERIC


# --- Business weights used when aggregating accuracy across sites ---

BUSINESS_WEIGHTS: dict[SiteType, float] = {
    SiteType.AMAZON: 0.3,
    SiteType.BLOOMBERG: 0.25,
    SiteType.ALLRECIPES: 0.2,
    SiteType.WIKIPEDIA: 0.15,
    SiteType.MEDIUM: 0.07,
    SiteType.GENERIC: 0.03,
}

CORE_SITES = frozenset({SiteType.AMAZON, SiteType.ALLRECIPES,
                        SiteType.BLOOMBERG, SiteType.WIKIPEDIA})
WILDCARD_SITES = frozenset({SiteType.MEDIUM, SiteType.GENERIC})


# --- Field aliases applied to parsed model output ---
# The model sometimes answers with a news site's own vocabulary.

FIELD_ALIASES: dict[SiteType, dict[str, str]] = {
    SiteType.BLOOMBERG: {
        "headline": "title",
        "byline": "author",
        "publishedAt": "publication_date",
        "body": "main_content_summary",
        "summary": "description",
        "topic": "category",
    },
    SiteType.GENERIC: {},
}
