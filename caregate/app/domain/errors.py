"""Access-control error taxonomy.

These are authorization outcomes, not transient failures, so nothing here
is ever retried. ``create_app`` maps each class to its status code.
"""
from fastapi import status


class AccessControlError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "access_control_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(AccessControlError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Forbidden(AccessControlError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class Conflict(AccessControlError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class PolicyDenied(AccessControlError):
    """The caller may hold a grant, but not the attributes a sealed record requires."""

    status_code = status.HTTP_423_LOCKED
    code = "policy_denied"


class AccessRequested(AccessControlError):
    """No access yet, but a pending request to the patient was filed instead."""

    status_code = status.HTTP_202_ACCEPTED
    code = "access_request_sent"
