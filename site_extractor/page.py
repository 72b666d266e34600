"""
Page module: turns raw HTML into the inputs of the later stages.

- collect_signals()  → PageSignals for the Classifier
- build_page_data()  → PageData for the Extractor

Design principle: NEVER FAIL on bad HTML. Malformed markup still yields
signals and page data, just sparser ones.

Input:  raw HTML string (possibly malformed)
Output: PageSignals / PageData
"""

from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Comment

from .schemas import PageData, PageSignals
from .logger import get_module_logger

logger = get_module_logger("page")

# Card-like elements that repeat on listing pages. A selector only counts
# once it matches more than REPEATING_MIN elements.
REPEATING_SELECTORS = [
    ".product-card",
    ".product-item",
    ".post-card",
    ".post-preview",
    ".listing-item",
    ".search-result",
    ".grid-item",
    '[data-component="product-card"]',
    '[data-testid="product-tile"]',
]
REPEATING_MIN = 5

HOMEPAGE_CLASS_MARKERS = ("homepage", "home-page", "index")
HOMEPAGE_PATHS = ("/", "/index.html")
LOGIN_TITLE_MARKERS = ("login", "sign in", "error", "404", "access denied")
MIN_CONTENT_WORDS = 50

# Meta tags worth passing to the model
META_NAMES = ("description", "keywords", "author", "og:title", "og:description",
              "og:type", "og:site_name", "article:published_time", "article:author")

# Elements whose text never reaches the reader
NON_CONTENT_ELEMENTS = ["script", "style", "noscript", "template"]


def _sanitize(html: str) -> str:
    """String-level fixes for bytes that trip up parsers."""
    if "\x00" in html:
        html = html.replace("\x00", "")
    control_chars = "".join(chr(c) for c in range(32) if c not in (9, 10, 13))
    if any(c in html for c in control_chars):
        html = html.translate(str.maketrans("", "", control_chars))
    return html.replace("\r\n", "\n").replace("\r", "\n")


def parse_html(html: Optional[str]) -> BeautifulSoup:
    """
    Parse HTML with html5lib, falling back to the built-in parser.

    Comments and non-content elements are removed so text extraction only
    sees what a reader would see.
    """
    sanitized = _sanitize(html or "")
    try:
        soup = BeautifulSoup(sanitized, "html5lib")
    except Exception as e:
        logger.warning(f"html5lib parsing failed, using html.parser: {e}")
        soup = BeautifulSoup(sanitized, "html.parser")

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for element in soup.find_all(NON_CONTENT_ELEMENTS):
        element.decompose()
    return soup


def _body_text(soup: BeautifulSoup) -> str:
    root = soup.body or soup
    return " ".join(root.get_text(separator=" ").split())


def _document_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return " ".join(soup.title.string.split())
    return ""


def collect_signals(
    html: Optional[str],
    url: Optional[str] = None,
    title: Optional[str] = None,
    soup: Optional[BeautifulSoup] = None
) -> PageSignals:
    """
    Count the structural signals the Classifier looks at.

    Args:
        html: Raw HTML string
        url: Page URL; a root path marks the page as a homepage
        title: Document title override (defaults to <title>)
        soup: Already parsed document, to avoid parsing twice

    Returns:
        PageSignals
    """
    soup = soup if soup is not None else parse_html(html)

    word_count = len(_body_text(soup).split())

    repeating = 0
    for selector in REPEATING_SELECTORS:
        count = len(soup.select(selector))
        if count > REPEATING_MIN:
            repeating = max(repeating, count)

    body = soup.body
    body_class = " ".join(body.get("class", [])).lower() if body is not None else ""
    path = urlparse(url).path if url else None
    has_homepage = (
        any(marker in body_class for marker in HOMEPAGE_CLASS_MARKERS)
        or path in HOMEPAGE_PATHS
    )

    page_title = (title if title is not None else _document_title(soup)).lower()
    has_login = (
        any(marker in page_title for marker in LOGIN_TITLE_MARKERS)
        or word_count < MIN_CONTENT_WORDS
    )

    signals = PageSignals(
        article_count=len(soup.find_all("article")),
        h1_count=len(soup.find_all("h1")),
        main_count=len(soup.find_all("main")),
        word_count=word_count,
        repeating_patterns=repeating,
        has_homepage_indicators=has_homepage,
        has_login_indicators=has_login,
    )
    logger.debug(f"Signals: {signals.model_dump()}")
    return signals


def _collect_meta(soup: BeautifulSoup) -> dict[str, str]:
    meta: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        name = (tag.get("name") or tag.get("property") or "").strip().lower()
        content = (tag.get("content") or "").strip()
        if name in META_NAMES and content and name not in meta:
            meta[name] = content
    return meta


def build_page_data(
    html: Optional[str],
    url: Optional[str] = None,
    soup: Optional[BeautifulSoup] = None
) -> PageData:
    """
    Build the page content record handed to the Extractor.

    Returns:
        PageData with title, visible text, meta description and a small
        meta map
    """
    soup = soup if soup is not None else parse_html(html)
    meta = _collect_meta(soup)
    title = _document_title(soup)
    if not title:
        h1 = soup.find("h1")
        title = " ".join(h1.get_text(" ").split()) if h1 else ""

    page = PageData(
        url=url,
        title=title,
        text_content=_body_text(soup),
        description=meta.get("description") or meta.get("og:description", ""),
        meta=meta,
    )
    logger.debug(f"Page data: title={page.title[:60]!r}, {len(page.text_content)} chars")
    return page
