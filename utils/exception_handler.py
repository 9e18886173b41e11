"""
Exception Handler Module
Domain exceptions for issue lifecycle and payment reconciliation, and their
translation into HTTP errors
"""

import logging
from typing import Optional

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class CivicIssueError(Exception):
    """Base class for domain errors; carries the HTTP status it maps to"""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(CivicIssueError):
    """Malformed identifiers or request bodies"""

    status_code = 400
    error_code = "validation_error"


class AuthError(CivicIssueError):
    """Missing or rejected identity token"""

    status_code = 401
    error_code = "unauthorized"


class NotFoundError(CivicIssueError):
    """Issue, user or payment session absent"""

    status_code = 404
    error_code = "not_found"


class InvalidSessionError(NotFoundError):
    """Payment session reference unknown to the processor, or malformed"""

    error_code = "invalid_session"

    def __init__(self, message: str, session_reference: Optional[str] = None):
        self.session_reference = session_reference
        super().__init__(message)


class InvalidStatusTransitionError(CivicIssueError):
    """Requested issue status change is not allowed from the current status"""

    status_code = 409
    error_code = "invalid_status_transition"

    def __init__(self, current_status: str, requested_status: str, message: Optional[str] = None):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            message or f"Cannot change issue status from '{current_status}' to '{requested_status}'"
        )


class ExternalServiceError(CivicIssueError):
    """Payment processor or identity provider unavailable; never retried here"""

    status_code = 502
    error_code = "external_service_error"

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


def to_http_exception(error: CivicIssueError) -> HTTPException:
    """Translate a domain error into the HTTPException a handler raises"""
    if error.status_code >= 500:
        logger.error(f"❌ {error.error_code.upper()}: {error.message}")
    return HTTPException(
        status_code=error.status_code,
        detail={"success": False, "error": error.error_code, "message": error.message},
    )
