"""Approval routes for whoever is a current approver of an expense."""
from __future__ import annotations

from typing import Any

from flask_login import current_user, login_required

from expenseflow.models import ApprovalDecisionStatus
from expenseflow.services import approval_engine, store
from expenseflow.utils.helpers import json_payload, json_response

from . import approvals_bp


@approvals_bp.route("/pending", methods=["GET"])
@login_required
def pending_approvals() -> Any:
    """Return pending expenses waiting on the current user's decision."""
    expenses = approval_engine.pending_for_user(current_user)
    return json_response({"pending": [expense.to_dict() for expense in expenses]})


@approvals_bp.route("/<int:expense_id>/approvers", methods=["GET"])
@login_required
def current_approvers(expense_id: int) -> Any:
    """Return the users who may decide at the expense's current step."""
    expense = store.load_expense(expense_id)
    if expense is None or expense.company_id != current_user.company_id:
        return json_response({"error": "Expense not found."}, status=404)
    approvers = approval_engine.get_current_approvers(expense_id)
    return json_response({"expense_id": expense_id, "approvers": approvers})


def _decide(expense_id: int, decision: ApprovalDecisionStatus) -> Any:
    comments = json_payload().get("comments") or ""
    result = approval_engine.submit_decision(expense_id, current_user.id, decision, comments)
    return json_response(
        {
            "message": f"Decision recorded: {result.action.value}.",
            **result.to_dict(),
        }
    )


@approvals_bp.route("/<int:expense_id>/approve", methods=["POST"])
@login_required
def approve_expense(expense_id: int) -> Any:
    """Approve an expense at its current step."""
    return _decide(expense_id, ApprovalDecisionStatus.APPROVED)


@approvals_bp.route("/<int:expense_id>/reject", methods=["POST"])
@login_required
def reject_expense(expense_id: int) -> Any:
    """Reject an expense; rejection closes it immediately."""
    return _decide(expense_id, ApprovalDecisionStatus.REJECTED)
