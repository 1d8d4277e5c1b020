"""Approval workflow error taxonomy.

Every error carries the HTTP status the API layer answers with. Errors
raised before a write leave the database untouched; errors raised after
one roll the whole transaction back.
"""


class ApprovalError(Exception):
    """Base class for approval workflow errors."""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ApprovalValidationError(ApprovalError):
    """Request is malformed: missing comment, invalid outcome, empty workflow."""

    status_code = 422


class ApprovalNotFound(ApprovalError):
    """Record, item or board does not exist."""

    status_code = 404


class AlreadyDecided(ApprovalError):
    """Record is no longer pending."""

    status_code = 409

    def __init__(self, record_id: str, status: str):
        super().__init__(f"Approval {record_id} is already {status}")
        self.record_id = record_id
        self.status = status


class NotEligible(ApprovalError):
    """Actor may not decide at this level."""

    status_code = 403

    def __init__(self, actor_id: str, level: int, reason: str | None = None):
        message = f"User {actor_id} is not eligible to decide level {level}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.actor_id = actor_id
        self.level = level


class AlreadySubmitted(ApprovalError):
    """Item already has an open or closed chain that forbids a new submission."""

    status_code = 409


class NotEditable(ApprovalError):
    """Item is not waiting for a resubmission."""

    status_code = 409


class StorageConflict(ApprovalError):
    """Write lost against a concurrent transaction. Safe to retry once."""

    status_code = 409
