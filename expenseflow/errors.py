"""Error taxonomy for the approval engine and its HTTP surface."""
from __future__ import annotations


class ExpenseFlowError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    default_message = "Internal server error."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(ExpenseFlowError):
    status_code = 400
    default_message = "Invalid request."


class NotFoundError(ExpenseFlowError):
    status_code = 404
    default_message = "Not found."


class AlreadyProcessedError(ExpenseFlowError):
    """Decision submitted against an expense that is no longer pending."""

    status_code = 400
    default_message = "Expense already processed."


class UnauthorizedApproverError(ExpenseFlowError):
    status_code = 403
    default_message = "You are not an approver for the current step of this expense."


class ConflictError(ExpenseFlowError):
    """Concurrent modification detected; the only retryable error."""

    status_code = 409
    default_message = "The expense was modified concurrently. Please retry."


class ConfigurationError(ExpenseFlowError):
    """No usable approval flow governs the expense."""

    status_code = 422
    default_message = "No approval flow configured for this expense; admin override required."


class DuplicateNameError(ExpenseFlowError):
    """A flow or rule with this name already exists in the company."""

    status_code = 409
    default_message = "Name already in use."
