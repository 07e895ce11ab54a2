"""
Error taxonomy for the triage engine.

The orchestrator raises these; ``helpdesk.main`` maps them to HTTP responses.
"""
from typing import Dict, List, Optional


class HelpdeskError(Exception):
    status_code = 500
    public_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationFailed(HelpdeskError):
    """Malformed or missing input. Carries a field -> messages map."""

    status_code = 422
    public_message = "Please check your input and try again"

    def __init__(self, message: Optional[str] = None, field_errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.field_errors = field_errors or {}

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailed":
        return cls(message, {field: [message]})


class Forbidden(HelpdeskError):
    status_code = 403
    public_message = "You do not have permission to perform this action"


class NotFound(HelpdeskError):
    status_code = 404
    public_message = "The requested resource was not found"


class StateConflict(HelpdeskError):
    status_code = 409
    public_message = "The ticket is not in a state that allows this action"


class StorageFailure(HelpdeskError):
    status_code = 500
    public_message = "File upload failed. Please try again."


class RoutingFailure(HelpdeskError):
    """No eligible active staff. Reported through AssignmentOutcome, not raised to callers."""

    public_message = "No eligible staff member is available"
