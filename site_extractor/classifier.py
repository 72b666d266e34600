"""
Rule-based page layout classifier.

Labels a page as NONE (login/error/empty), SINGLE_ITEM (one article or
product), MULTI_ITEM (listing or homepage) or UNCERTAIN from structural
signal counts. The label is informational; extraction runs regardless.

Input:  PageSignals (or a plain mapping of the same counts)
Output: ClassificationResult
"""

import time
from typing import Any, Callable, Mapping, Union

from .schemas import ClassificationLabel, ClassificationResult, PageSignals
from .logger import get_module_logger

logger = get_module_logger("classifier")

Guard = tuple[Callable[[PageSignals], bool], ClassificationLabel, int, Callable[[PageSignals], str]]

# Evaluated top to bottom; the first matching guard wins.
GUARDS: list[Guard] = [
    (lambda s: s.has_login_indicators,
     ClassificationLabel.NONE, 100,
     lambda s: "Login/error page or too few words"),
    (lambda s: s.article_count > 3,
     ClassificationLabel.MULTI_ITEM, 95,
     lambda s: f"Multiple articles detected ({s.article_count})"),
    (lambda s: s.repeating_patterns > 5,
     ClassificationLabel.MULTI_ITEM, 95,
     lambda s: f"Repeating patterns detected ({s.repeating_patterns} items)"),
    (lambda s: s.has_homepage_indicators and s.article_count > 1,
     ClassificationLabel.MULTI_ITEM, 90,
     lambda s: "Homepage with multiple articles"),
    (lambda s: s.article_count == 1 and s.h1_count == 1 and s.word_count > 500,
     ClassificationLabel.SINGLE_ITEM, 100,
     lambda s: "Single article with one H1, substantial content"),
    (lambda s: s.main_count == 1 and s.h1_count == 1 and s.word_count > 300,
     ClassificationLabel.SINGLE_ITEM, 95,
     lambda s: "Single main content area with one H1"),
    (lambda s: s.article_count == 0 and s.h1_count == 1 and s.word_count > 200,
     ClassificationLabel.SINGLE_ITEM, 85,
     lambda s: "Single H1 with substantial content (no article tag)"),
    (lambda s: s.article_count > 0 and s.repeating_patterns > 0,
     ClassificationLabel.UNCERTAIN, 60,
     lambda s: "Mixed signals: has articles and repeating patterns"),
    (lambda s: 1 < s.h1_count <= 3,
     ClassificationLabel.UNCERTAIN, 55,
     lambda s: "Multiple H1s detected (could be sections or multiple items)"),
]

FALLBACK_CONFIDENCE = 50
FALLBACK_REASON = "Unclear structure, needs semantic analysis"


class Classifier:
    """Ordered-guard layout classifier. Never raises."""

    def __init__(self, guards: list[Guard] = None):
        self.guards = guards if guards is not None else GUARDS

    def classify(self, signals: Union[PageSignals, Mapping[str, Any]]) -> ClassificationResult:
        start = time.perf_counter()
        try:
            if not isinstance(signals, PageSignals):
                signals = PageSignals.model_validate(dict(signals))

            label, confidence = ClassificationLabel.UNCERTAIN, FALLBACK_CONFIDENCE
            reason = FALLBACK_REASON
            for predicate, guard_label, guard_confidence, describe in self.guards:
                if predicate(signals):
                    label, confidence, reason = guard_label, guard_confidence, describe(signals)
                    break

            result = ClassificationResult(
                label=label,
                confidence=confidence,
                reason=reason,
                signals=signals.model_dump(),
                duration_ms=round((time.perf_counter() - start) * 1000, 3),
            )
            logger.info(f"Classified as {label.value} ({confidence}% confident): {reason}")
            return result

        except Exception as e:
            logger.error(f"Classification failed: {e}")
            return ClassificationResult(
                label=ClassificationLabel.UNCERTAIN,
                confidence=FALLBACK_CONFIDENCE,
                reason=f"Error: {e}",
            )


def classify(signals: Union[PageSignals, Mapping[str, Any]]) -> ClassificationResult:
    """Convenience function to classify a page from its signals."""
    return Classifier().classify(signals)
