"""
Tests for HTML → PageSignals / PageData.
"""

from site_extractor.page import build_page_data, collect_signals, parse_html
from site_extractor.classifier import classify
from site_extractor.schemas import ClassificationLabel


def words(count: int, word: str = "content") -> str:
    return " ".join([word] * count)


def page(body: str, title: str = "Example Page", head: str = "", body_attrs: str = "") -> str:
    return (
        f"<html><head><title>{title}</title>{head}</head>"
        f"<body{body_attrs}>{body}</body></html>"
    )


class TestCollectSignals:

    def test_structural_counts(self):
        html = page(
            f"<main><h1>Heading</h1><article><p>{words(120)}</p></article></main>"
        )
        signals = collect_signals(html)
        assert signals.article_count == 1
        assert signals.h1_count == 1
        assert signals.main_count == 1
        assert signals.word_count == 121
        assert signals.has_login_indicators is False

    def test_repeating_cards(self):
        cards = "".join(f'<div class="product-card">Item {i}</div>' for i in range(8))
        signals = collect_signals(page(cards + f"<p>{words(60)}</p>"))
        assert signals.repeating_patterns == 8

    def test_few_cards_do_not_count(self):
        cards = "".join(f'<div class="product-card">Item {i}</div>' for i in range(5))
        signals = collect_signals(page(cards + f"<p>{words(60)}</p>"))
        assert signals.repeating_patterns == 0

    def test_homepage_from_root_url(self):
        signals = collect_signals(page(f"<p>{words(60)}</p>"), url="https://example.com/")
        assert signals.has_homepage_indicators is True

    def test_homepage_from_body_class(self):
        html = page(f"<p>{words(60)}</p>", body_attrs=' class="layout homepage"')
        signals = collect_signals(html, url="https://example.com/news/today")
        assert signals.has_homepage_indicators is True

    def test_deep_url_is_not_homepage(self):
        signals = collect_signals(page(f"<p>{words(60)}</p>"), url="https://example.com/a/b")
        assert signals.has_homepage_indicators is False

    def test_login_title(self):
        signals = collect_signals(page(f"<p>{words(200)}</p>", title="Sign In - Example"))
        assert signals.has_login_indicators is True

    def test_thin_page_counts_as_login(self):
        signals = collect_signals(page("<p>Please wait</p>"))
        assert signals.has_login_indicators is True

    def test_scripts_and_comments_are_not_words(self):
        html = page(
            f"<script>{words(500, 'var')}</script><!-- {words(100, 'hidden')} -->"
            f"<style>body {{ color: red; }}</style><p>{words(10)}</p>"
        )
        assert collect_signals(html).word_count == 10

    def test_malformed_html(self):
        signals = collect_signals("<div><article><h1>Broken<p>" + words(70) + "\x00\x07")
        assert signals.article_count == 1
        assert signals.word_count >= 70

    def test_empty_input(self):
        signals = collect_signals(None)
        assert signals.word_count == 0
        assert signals.has_login_indicators is True


class TestBuildPageData:

    def test_fields(self):
        head = (
            '<meta name="description" content="An easy weeknight chili.">'
            '<meta property="og:title" content="Weeknight Chili">'
            '<meta name="viewport" content="width=device-width">'
        )
        html = page(f"<h1>Chili</h1><p>{words(20)}</p>", title="  Weeknight   Chili ", head=head)
        data = build_page_data(html, url="https://www.allrecipes.com/recipe/1/chili")

        assert data.url == "https://www.allrecipes.com/recipe/1/chili"
        assert data.title == "Weeknight Chili"
        assert data.description == "An easy weeknight chili."
        assert data.meta == {"description": "An easy weeknight chili.", "og:title": "Weeknight Chili"}
        assert data.text_content.startswith("Chili content")

    def test_title_falls_back_to_h1(self):
        data = build_page_data("<html><body><h1>Only  Heading</h1><p>text</p></body></html>")
        assert data.title == "Only Heading"

    def test_og_description_fallback(self):
        head = '<meta property="og:description" content="Shared summary">'
        data = build_page_data(page("<p>text</p>", head=head))
        assert data.description == "Shared summary"

    def test_shared_soup(self):
        html = page(f"<article><h1>Story</h1><p>{words(600)}</p></article>")
        soup = parse_html(html)
        data = build_page_data(html, soup=soup)
        signals = collect_signals(html, soup=soup)
        assert data.title == "Example Page"
        assert classify(signals).label == ClassificationLabel.SINGLE_ITEM
