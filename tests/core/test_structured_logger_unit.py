import logging

from core.error_handler import (
    StructuredLogger,
    get_correlation_id,
    set_correlation_id,
    setup_logging,
)


def test_structured_logger_redacts_sensitive_keys(monkeypatch):
    logger = StructuredLogger("tests")
    monkeypatch.setenv("ENVIRONMENT", "test")

    data = {
        "prompt": "placeholder prompt",
        "raw_body": "{\"response\":\"hi\"}",
        "fragment_text": "hi",
        "chars": 2,
        "model": "llama3",
    }
    sanitized = logger._sanitize_data(data)

    assert sanitized["prompt"] == "[REDACTED]"
    assert sanitized["raw_body"] == "[REDACTED]"
    assert sanitized["fragment_text"] == "[REDACTED]"
    assert sanitized["chars"] == 2
    assert sanitized["model"] == "llama3"


def test_structured_logger_nested_redaction():
    logger = StructuredLogger("tests")
    sanitized = logger._sanitize_data(
        {"request": {"system": "secret instructions", "options": [{"token": "x"}]}}
    )
    assert sanitized["request"]["system"] == "[REDACTED]"
    assert sanitized["request"]["options"][0]["token"] == "[REDACTED]"


def test_explicit_correlation_id_used(caplog):
    logger = StructuredLogger("tests.cid")
    set_correlation_id("ctx-id")
    with caplog.at_level(logging.INFO, logger="tests.cid"):
        logger.info("Decode session finished", correlation_id="session-1", chars=5)

    assert "[session-1] Decode session finished chars=5" in caplog.text
    assert get_correlation_id() == "ctx-id"


def test_correlation_id_generated_when_missing():
    set_correlation_id(None)
    first = get_correlation_id()
    assert first
    assert get_correlation_id() == first


def test_setup_logging_idempotent():
    setup_logging()
    handlers = list(logging.getLogger().handlers)
    setup_logging()
    assert logging.getLogger().handlers == handlers
