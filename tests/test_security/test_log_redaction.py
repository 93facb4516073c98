"""Tests for the structlog redaction processor."""

from escrow_settlement.logging_config import REDACTED, redact_sensitive


def test_sensitive_keys_are_replaced() -> None:
    event = redact_sensitive(
        None,
        "info",
        {"event": "dispute.filed", "description": "card ending 4242", "ip": "203.0.113.7"},
    )
    assert event == {"event": "dispute.filed", "description": REDACTED, "ip": REDACTED}


def test_other_keys_and_none_values_untouched() -> None:
    event = redact_sensitive(None, "info", {"event": "x", "escrow_id": "e-1", "notes": None})
    assert event == {"event": "x", "escrow_id": "e-1", "notes": None}
