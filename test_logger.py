"""
Tests for logging setup and credential masking.
"""

import logging

from site_extractor.logger import SecretFilter, get_module_logger, setup_logger


def masked(message, *args):
    record = logging.LogRecord("site_extractor.test", logging.INFO, __file__, 1, message, args, None)
    SecretFilter().filter(record)
    return record.getMessage()


def test_masks_query_key():
    assert masked("POST https://host/v1/models/m:generateContent?key=AIzaSECRET&alt=json") == (
        "POST https://host/v1/models/m:generateContent?key=***&alt=json"
    )


def test_masks_key_in_args():
    assert masked("config %s", {"api_key": "sk-SECRET"}) == "config {'api_key': '***'}"


def test_plain_messages_untouched():
    message = "AI configuration or API key missing"
    assert masked(message) == message


def test_setup_is_idempotent():
    logger = setup_logger(level=logging.DEBUG)
    handlers = list(logger.handlers)
    logger = setup_logger(level=logging.INFO)

    assert logger.handlers == handlers
    assert logger.level == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING
    assert get_module_logger("validator").name == "site_extractor.validator"
