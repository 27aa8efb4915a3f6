"""
Structured operation logging and audit helpers for the advisor.
"""

import logging
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['action_data', 'content', 'message', 'token', 'secret', 'password']


class StructuredLogger:
    """Structured logger for advisor operations."""

    def __init__(self, name: str = "advisor"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_pending_action(self, action_id: str, transition: str, actor: str, details: Dict[str, Any] = None):
        """Log a pending action state transition."""
        log_details = {"action_id": action_id, "actor": actor}
        if details:
            log_details.update(details)

        self.log_operation(f"pending_action.{transition}", "success", log_details)

    def log_action_rejected(self, action_id: str, attempted: str, actor: str, reason: str):
        """Log a refused transition (expired, forbidden, lost race)."""
        log_details = {
            "action_id": action_id,
            "actor": actor,
            "reason": reason[:100] if reason else ""
        }
        self.log_operation(f"pending_action.{attempted}", "rejected", log_details)

    def log_reconciliation(self, domain: str, source_a: str, source_b: str, discrepancy: Any, is_valid: bool):
        """Log a reconciliation result; invalid results are logged as warnings."""
        log_details = {
            "domain": domain,
            "source_a": source_a,
            "source_b": source_b,
            "discrepancy": str(discrepancy)
        }
        if is_valid:
            self.log_operation("reconciliation.check", "valid", log_details)
        else:
            self.logger.warning(f"Operation: reconciliation.check, Status: discrepancy, Details: {log_details}")

    def log_guardrail_verdict(self, attempt: int, allowed: bool, flagged_terms: List[str]):
        """Log a guardrail filter verdict."""
        log_details = {
            "attempt": attempt,
            "flagged_terms": flagged_terms[:5]
        }
        self.log_operation("guardrail.check", "accepted" if allowed else "rejected", log_details)

    def log_generation(self, model: str, duration_ms: float, status: str = "success", details: Dict[str, Any] = None):
        """Log an external generator call."""
        log_details = {"model": model, "duration_ms": round(duration_ms, 2)}
        if details:
            log_details.update(details)

        self.log_operation("generator.call", status, log_details)

    def log_hard_stop(self, user_id: str, domain: str, reason: str):
        """Log a query answered with the fixed refusal instead of generated text."""
        self.log_operation("assembler.hard_stop", "refused", {
            "user_id": user_id,
            "domain": domain,
            "reason": reason
        })

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
