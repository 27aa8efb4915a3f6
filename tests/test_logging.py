"""
Tests for structured logging and audit payload sanitizing.
"""

import logging

from advisor.util.logging import audit_event, logger, sanitize_payload


class TestSanitize:

    def test_sensitive_fields_are_redacted(self):
        payload = {"action_id": "a1", "token": "secret-token", "nested": {"password": "pw"}}

        sanitized = sanitize_payload(payload)

        assert sanitized["action_id"] == "a1"
        assert sanitized["token"] == "[REDACTED]"
        assert sanitized["nested"]["password"] == "[REDACTED]"

    def test_long_strings_are_truncated(self):
        assert sanitize_payload("x" * 150) == "x" * 100 + "..."

    def test_reveal_sensitive(self):
        assert sanitize_payload({"token": "t"}, reveal_sensitive=True) == {"token": "t"}


class TestStructuredLogger:

    def test_audit_event_redacts_payload(self, caplog):
        with caplog.at_level(logging.INFO, logger="advisor"):
            audit_event("pending_action.created", {"action_id": "a1"}, {"action_data": {"amount": "10"}})

        assert "pending_action_created" in caplog.text
        assert "[REDACTED]" in caplog.text
        assert "'amount'" not in caplog.text

    def test_discrepancy_logged_as_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="advisor"):
            logger.log_reconciliation("fees", "fee ledger total", "sum of class-wise collections", 2500, False)

        assert any(r.levelno == logging.WARNING for r in caplog.records)
