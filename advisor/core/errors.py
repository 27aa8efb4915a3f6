"""
Advisor error taxonomy.

Every failure the advisor surfaces to a caller is one of these classes.
Callers branch on the class (or on ``code``) and on ``retryable``; error
message text is for humans only and is never parsed.
"""

from typing import Any, Dict, Optional


class AdvisorError(Exception):
    """Base class for all advisor failures."""

    code = "advisor_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "retryable": self.retryable}


class Unauthenticated(AdvisorError):
    code = "unauthenticated"
    status_code = 401


class Forbidden(AdvisorError):
    code = "forbidden"
    status_code = 403


class NotFound(AdvisorError):
    code = "not_found"
    status_code = 404


class InvalidAction(AdvisorError):
    """Action type unknown or action_data does not match its schema."""
    code = "invalid_action"
    status_code = 422


class DataUnavailable(AdvisorError):
    """A store read for a domain failed or found nothing."""
    code = "data_unavailable"
    status_code = 503
    retryable = True

    def __init__(self, domain: str, message: str = ""):
        super().__init__(message or f"No verified {domain} data available", {"domain": domain})
        self.domain = domain


class Expired(AdvisorError):
    code = "expired"
    status_code = 410


class AlreadyExecuted(AdvisorError):
    code = "already_executed"
    status_code = 409


class AlreadyHandled(AdvisorError):
    """Another request already moved the action out of the expected state."""
    code = "already_handled"
    status_code = 409


class GenerationFailed(AdvisorError):
    code = "generation_failed"
    status_code = 502
    retryable = True


class GuardrailRejected(AdvisorError):
    code = "guardrail_rejected"
    status_code = 422


class ExecutionFailed(AdvisorError):
    """The store failed mid-execution; the action stays CONFIRMED."""
    code = "execution_failed"
    status_code = 500
    retryable = True

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None, retryable: bool = True):
        super().__init__(message, details)
        self.retryable = retryable
