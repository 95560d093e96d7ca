"""Privileged admin override of an expense's workflow state.

Overrides skip approver authorization and rule evaluation entirely and can
move an expense out of any status, including a terminal one. They are kept
apart from :mod:`expenseflow.services.approval_engine` so that its
guarantees are never weakened by a flag.
"""
from __future__ import annotations

import enum
import logging
from typing import Optional

from expenseflow.errors import NotFoundError, ValidationError
from expenseflow.models import ApprovalDecisionStatus, AuditLog, Expense, ExpenseStatus
from expenseflow.services import store
from expenseflow.services.approval_engine import run_with_retry

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class OverrideAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SET_STATUS = "setStatus"


def parse_override_action(value: str) -> OverrideAction:
    normalized = str(value or "").strip().replace("_", "").lower()
    for action in OverrideAction:
        if action.value.lower() == normalized:
            return action
    raise ValidationError("Invalid action. Use approve, reject or setStatus.")


def parse_status(value: Optional[str]) -> ExpenseStatus:
    if not value:
        raise ValidationError("status required for setStatus.")
    try:
        return ExpenseStatus[str(value).strip().upper()]
    except KeyError:
        raise ValidationError("Invalid status.") from None


def _override_once(
    expense_id: int,
    admin_id: int,
    action: OverrideAction,
    status: Optional[ExpenseStatus],
    comment: Optional[str],
) -> Expense:
    expense = store.load_expense(expense_id)
    if expense is None:
        raise NotFoundError("Expense not found.")

    previous = expense.status
    if action == OverrideAction.APPROVE:
        expense.record_decision(
            admin_id,
            ApprovalDecisionStatus.APPROVED,
            comment or "Approved by admin override",
            role_at_approval=ADMIN_ROLE,
        )
        expense.status = ExpenseStatus.APPROVED
    elif action == OverrideAction.REJECT:
        expense.record_decision(
            admin_id,
            ApprovalDecisionStatus.REJECTED,
            comment or "Rejected by admin override",
            role_at_approval=ADMIN_ROLE,
        )
        expense.status = ExpenseStatus.REJECTED
    else:
        # No approval history entry for a raw status change.
        expense.status = status
        AuditLog.record(
            entity_type="expense",
            entity_id=expense.id,
            action="override_set_status",
            user_id=admin_id,
            company_id=expense.company_id,
            extra_data={"from": previous.value, "to": status.value, "comment": comment},
        )

    return store.save_expense(expense)


def override_expense(
    expense_id: int,
    admin_id: int,
    action: OverrideAction | str,
    status: Optional[ExpenseStatus | str] = None,
    comment: Optional[str] = None,
) -> Expense:
    """Force an expense to approved, rejected or an arbitrary status."""
    if not isinstance(action, OverrideAction):
        action = parse_override_action(action)
    if action == OverrideAction.SET_STATUS and not isinstance(status, ExpenseStatus):
        status = parse_status(status)

    expense = run_with_retry(
        lambda: _override_once(expense_id, admin_id, action, status, comment),
        expense_id,
    )
    logger.info("Admin %s applied override '%s' to expense %s", admin_id, action.value, expense_id)
    return expense
