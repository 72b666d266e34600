"""
Tests for the rule-based page layout classifier.
"""

import pytest

from site_extractor.classifier import Classifier, classify
from site_extractor.schemas import ClassificationLabel, PageSignals


NONE = ClassificationLabel.NONE
SINGLE = ClassificationLabel.SINGLE_ITEM
MULTI = ClassificationLabel.MULTI_ITEM
UNCERTAIN = ClassificationLabel.UNCERTAIN


def test_listing_with_many_articles():
    result = classify({"articleCount": 5, "h1Count": 1, "wordCount": 800})
    assert result.label == MULTI
    assert result.confidence == 95
    assert result.signals["article_count"] == 5
    assert result.method == "dom-heuristic"


@pytest.mark.parametrize("signals, label, confidence", [
    (dict(has_login_indicators=True, article_count=10, word_count=1000), NONE, 100),
    (dict(article_count=4, word_count=1000), MULTI, 95),
    (dict(repeating_patterns=6, word_count=1000), MULTI, 95),
    (dict(has_homepage_indicators=True, article_count=2, word_count=1000), MULTI, 90),
    (dict(article_count=1, h1_count=1, word_count=501), SINGLE, 100),
    (dict(main_count=1, h1_count=1, word_count=301), SINGLE, 95),
    (dict(h1_count=1, word_count=201), SINGLE, 85),
    (dict(article_count=1, repeating_patterns=3, word_count=100), UNCERTAIN, 60),
    (dict(h1_count=2, word_count=100), UNCERTAIN, 55),
    (dict(h1_count=5, word_count=100), UNCERTAIN, 50),
])
def test_guard_order(signals, label, confidence):
    result = Classifier().classify(PageSignals(**signals))
    assert result.label == label
    assert result.confidence == confidence


def test_boundaries_are_strict():
    # Exactly 3 articles or 5 repeating items is not enough for MULTI_ITEM
    assert classify(PageSignals(article_count=3, word_count=1000)).label != MULTI
    assert classify(PageSignals(repeating_patterns=5, word_count=1000)).label != MULTI
    # A single article needs more than 500 words for full confidence
    result = classify(PageSignals(article_count=1, h1_count=1, word_count=500))
    assert result.confidence != 100


def test_fallback_reason():
    result = classify(PageSignals())
    assert result.label == UNCERTAIN
    assert result.confidence == 50
    assert result.reason == "Unclear structure, needs semantic analysis"


def test_reason_mentions_counts():
    result = classify(PageSignals(article_count=7))
    assert "7" in result.reason


def test_snake_case_mapping():
    result = classify({"article_count": 1, "h1_count": 1, "word_count": 900})
    assert result.label == SINGLE
    assert result.confidence == 100


def test_invalid_signals_do_not_raise():
    result = classify({"articleCount": "many"})
    assert result.label == UNCERTAIN
    assert result.confidence == 50
    assert result.reason.startswith("Error:")


def test_failing_guard_does_not_raise():
    def broken(signals):
        raise RuntimeError("guard exploded")

    classifier = Classifier(guards=[(broken, SINGLE, 100, lambda s: "never")])
    result = classifier.classify(PageSignals())
    assert result.label == UNCERTAIN
    assert result.reason == "Error: guard exploded"
