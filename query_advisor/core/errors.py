# query_advisor/core/errors.py

"""
Error types for the SQL query advisor.

Only input validation, free-tier admission, configuration and the reasoning
engine boundary can fail. Structure extraction and pattern detection never raise.
"""

from typing import Optional, Any


class AdvisorError(Exception):
    """Base exception for all advisor errors"""

    kind = "advisor_error"
    http_status = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class InvalidInput(AdvisorError):
    """Missing or empty query, or missing database on the paid path"""

    kind = "invalid_input"
    http_status = 400


class Unauthenticated(AdvisorError):
    """Caller identity could not be established"""

    kind = "unauthenticated"
    http_status = 401


class AdmissionDenied(AdvisorError):
    """Free analysis refused for an anonymous caller"""

    http_status = 403

    NO_FREE_TOKEN = "no_free_token"
    FREE_LIMIT_REACHED = "free_limit_reached"

    def __init__(self, reason: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, details)
        self.kind = reason


class EngineUnavailable(AdvisorError):
    """Reasoning engine returned a non-success response or could not be reached"""

    kind = "engine_unavailable"


class EngineReplyMalformed(AdvisorError):
    """Reasoning engine answered but the body is not the required JSON object"""

    kind = "engine_reply_malformed"


class InternalFailure(AdvisorError):
    """Anything else unexpected"""

    kind = "internal_failure"


class ConfigurationError(InternalFailure):
    """Required configuration (e.g. the engine API key) is missing"""

    kind = "configuration_error"
