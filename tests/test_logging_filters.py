"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import logging
from io import StringIO

from abuse_guard.core.logging import JsonFormatter, SensitiveDataFilter, scrub_identifiers


def _capture_logger(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_api_keys():
    logger, stream = _capture_logger("test_redaction")

    logger.info(
        "test_event",
        extra={
            "api_key": "sk-secret-123",
            "x-api-key": "another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_raw_client_identifiers():
    logger, stream = _capture_logger("test_identifier_redaction")

    logger.info(
        "rate_limit.exceeded",
        extra={
            "ip": "203.0.113.7",
            "wallet_address": "0xAbC0000000000000000000000000000000000001",
            "email": "alice@example.com",
            "hashed_client_id": "0123456789abcdef",
        },
    )

    output = stream.getvalue()

    assert "203.0.113.7" not in output
    assert "0xAbC0000000000000000000000000000000000001" not in output
    assert "alice@example.com" not in output
    assert "0123456789abcdef" in output


def test_scrub_identifiers_masks_free_text():
    text = "blocked alice@example.com using 0x" + "a" * 40

    scrubbed = scrub_identifiers(text)

    assert "alice@example.com" not in scrubbed
    assert "[REDACTED_EMAIL]" in scrubbed
    assert "[REDACTED_WALLET]" in scrubbed


def test_sensitive_filter_allows_safe_fields():
    logger, stream = _capture_logger("test_safe_fields")

    logger.info(
        "safe_event",
        extra={
            "request_id": "req-123",
            "route": "/v1/rate-limits/status/status",
            "status": 200,
            "duration_ms": 150.5,
        },
    )

    output = stream.getvalue()

    assert "req-123" in output
    assert "/v1/rate-limits/status/status" in output
    assert "[REDACTED]" not in output


def test_sensitive_filter_redacts_nested_dicts():
    logger, stream = _capture_logger("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "x-forwarded-for": "198.51.100.4",
                "user-agent": "pytest",
            },
            "safe_data": {"count": 5},
        },
    )

    output = stream.getvalue()

    assert "198.51.100.4" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output
