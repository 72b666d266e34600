"""
Logging configuration for the site extractor.

All modules log through children of the "site_extractor" logger. Handlers
attached here mask API keys, since the Gemini endpoint carries its key in
the query string and httpx logs request URLs.
"""

import logging
import re
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# key=... in URLs, "api_key": "..." in dumped dicts
_SECRET_PATTERNS = [
    re.compile(r"([?&]key=)[^&\s\"']+"),
    re.compile(r"((?:api[_-]?key|x-goog-api-key)[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+", re.IGNORECASE),
]


class SecretFilter(logging.Filter):
    """Masks credentials in the formatted message of every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = message
        for pattern in _SECRET_PATTERNS:
            masked = pattern.sub(r"\1***", masked)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _make_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(SecretFilter())
    return handler


def setup_logger(
    name: str = "site_extractor",
    level: int = logging.INFO,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up and return the package logger.

    Safe to call again: later calls change the level (and add a file
    handler if a new log_file is given) without duplicating console output.

    Args:
        name: Logger name
        level: Logging level (default: INFO)
        log_file: Optional file path for logging

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        logger.addHandler(_make_handler(logging.StreamHandler(sys.stdout), level))
    else:
        for handler in logger.handlers:
            handler.setLevel(level)

    if log_file and not any(
        isinstance(h, logging.FileHandler) and h.baseFilename.endswith(log_file)
        for h in logger.handlers
    ):
        logger.addHandler(_make_handler(logging.FileHandler(log_file), level))

    # httpx logs every request URL at INFO, including the ?key= parameter
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))

    return logger


logger = setup_logger()


def get_module_logger(module_name: str) -> logging.Logger:
    """
    Get a child logger for one module, e.g. "site_extractor.validator".

    Records propagate to the package logger, so they share its handlers,
    level and secret masking.
    """
    return logging.getLogger(f"site_extractor.{module_name}")
