"""
Exceptions and error taxonomy for the site extractor.

Error philosophy:
  - Stages raise these internally; each stage boundary converts them into a
    structured result so nothing reaches the caller as an exception.
  - Extractor    → failure ExtractionResult with an ErrorType.
  - Validator    → rule errors become VALIDATION_RULE_ERROR penalties.
  - Classifier   → errors become a low-confidence UNCERTAIN result.
"""

import re
from enum import Enum
from typing import Optional


class ErrorType(str, Enum):
    """Failure classification carried by structured results."""
    CONFIG_ERROR = "CONFIG_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    QUOTA_ERROR = "QUOTA_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    GENERATION_ERROR = "GENERATION_ERROR"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
    VALIDATION_RULE_ERROR = "VALIDATION_RULE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Checked in order; the first group with a matching keyword wins.
_ERROR_KEYWORDS = [
    (ErrorType.QUOTA_ERROR, ("quota", "429", "rate limit", "rate-limit",
                             "resource_exhausted", "token limit")),
    (ErrorType.CONFIG_ERROR, ("api key", "api_key", "apikey", "credential",
                              "401", "403", "unauthorized", "permission",
                              "invalid page data", "configuration")),
    (ErrorType.NETWORK_ERROR, ("network", "timeout", "timed out",
                               "connection", "connect", "dns")),
    (ErrorType.PARSE_ERROR, ("parse", "json", "decode")),
    (ErrorType.GENERATION_ERROR, ("generation", "candidate", "safety",
                                  "blocked", "confidence_too_low")),
    (ErrorType.RETRY_EXHAUSTED, ("failed after", "exhausted")),
]

# "429" must not match inside longer numbers such as "14290"
_NUMERIC_KEYWORD = re.compile(r"^\d+$")


def classify_error(message: Optional[str]) -> ErrorType:
    """Map an error message to an ErrorType by case-insensitive keyword match."""
    if not message:
        return ErrorType.UNKNOWN_ERROR
    text = str(message).lower()
    for error_type, keywords in _ERROR_KEYWORDS:
        for keyword in keywords:
            if _NUMERIC_KEYWORD.match(keyword):
                if re.search(rf"(?<!\d){keyword}(?!\d)", text):
                    return error_type
            elif keyword in text:
                return error_type
    return ErrorType.UNKNOWN_ERROR


class SiteExtractorError(Exception):
    """Base exception for all site extractor errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigError(SiteExtractorError):
    """Missing credential, bad configuration file or invalid input."""
    pass


class LLMClientError(SiteExtractorError):
    """Raised when a single call to the generation API fails."""

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.provider = provider  # "gemini", "openai" or "anthropic"
        self.status_code = status_code


class ResponseParseError(SiteExtractorError):
    """No JSON object could be recovered from the generated text."""

    def __init__(self, message: str, response_text: str = "", details: Optional[dict] = None):
        super().__init__(message, details)
        self.response_text = response_text


class ExtractionError(SiteExtractorError):
    """
    Raised by ExtractionResult.raise_for_error() for callers that prefer
    exceptions over inspecting the success flag.
    """

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.UNKNOWN_ERROR,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.error_type = error_type

    def to_response(self) -> dict:
        return {
            "error": self.error_type.value,
            "message": self.message,
            "details": self.details
        }
