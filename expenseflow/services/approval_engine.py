"""Multi-step approval state machine.

This is the only code path, apart from admin overrides, that mutates an
expense's workflow fields. Each decision runs as one read-evaluate-write
cycle against a freshly loaded expense; the write is guarded by the expense's
version column and the whole cycle is retried on a concurrent modification.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Tuple, TypeVar

from flask import current_app

from expenseflow.errors import (
    AlreadyProcessedError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    UnauthorizedApproverError,
    ValidationError,
)
from expenseflow.models import ApprovalDecisionStatus, Expense, ExpenseStatus, User
from expenseflow.services import rule_evaluator, store
from expenseflow.services.approver_resolver import resolve_step_approvers
from expenseflow.services.flow_registry import ResolvedFlow, Step, resolve_flow

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3


class DecisionAction(str, enum.Enum):
    REJECTED = "rejected"
    FINALIZED = "finalized"
    ADVANCED = "advanced"
    PENDING = "pending"


@dataclass(frozen=True)
class DecisionResult:
    expense: Expense
    action: DecisionAction
    # Who must act next; empty once the expense is terminal.
    next_approvers: FrozenSet[int] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "expense": self.expense.to_dict(),
            "next_approvers": sorted(self.next_approvers),
        }


def parse_decision(value: str) -> ApprovalDecisionStatus:
    try:
        return ApprovalDecisionStatus[str(value).strip().upper()]
    except (AttributeError, KeyError):
        raise ValidationError("Decision must be one of: approved, rejected, escalated.") from None


def run_with_retry(operation: Callable[[], T], expense_id: int) -> T:
    """Run ``operation`` again from scratch while it hits write conflicts."""
    attempts = max(1, int(current_app.config.get("APPROVAL_MAX_RETRIES", DEFAULT_MAX_RETRIES)))
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConflictError:
            if attempt >= attempts:
                logger.error("Giving up on expense %s after %d conflicting attempts", expense_id, attempts)
                raise
            logger.warning("Write conflict on expense %s, retrying (%d/%d)", expense_id, attempt, attempts)
    raise ConflictError()  # pragma: no cover


def _load_expense(expense_id: int) -> Expense:
    expense = store.load_expense(expense_id)
    if expense is None:
        raise NotFoundError("Expense not found.")
    return expense


def _resolve_current_step(expense: Expense) -> Tuple[ResolvedFlow, Step]:
    resolved = resolve_flow(expense)
    if resolved is None:
        raise ConfigurationError()
    step = resolved.step_at(expense.current_step_index)
    if step is None:
        raise ConfigurationError(
            f"Expense is at step {expense.current_step_index + 1} but flow "
            f"'{resolved.name}' has {len(resolved.steps)} step(s); admin override required."
        )
    return resolved, step


def _current_approvers(expense: Expense) -> FrozenSet[int]:
    if not expense.is_pending:
        return frozenset()
    resolved = resolve_flow(expense)
    if resolved is None:
        return frozenset()
    step = resolved.step_at(expense.current_step_index)
    if step is None:
        return frozenset()
    return resolve_step_approvers(step, expense)


def _submit_once(
    expense_id: int,
    approver_id: int,
    decision: ApprovalDecisionStatus,
    comments: Optional[str],
) -> DecisionResult:
    expense = _load_expense(expense_id)
    if not expense.is_pending:
        raise AlreadyProcessedError()

    resolved, step = _resolve_current_step(expense)
    approvers = resolve_step_approvers(step, expense)
    if approver_id not in approvers:
        raise UnauthorizedApproverError()

    step_index = expense.current_step_index
    expense.record_decision(approver_id, decision, comments)

    if decision == ApprovalDecisionStatus.REJECTED:
        expense.status = ExpenseStatus.REJECTED
        store.save_expense(expense)
        return DecisionResult(expense, DecisionAction.REJECTED)

    history = expense.history
    rule = resolved.rule_for(step_index)
    if rule.is_active:
        outcome = rule_evaluator.evaluate(rule, step_index, approvers, history)
        complete, finalize = outcome.satisfied, outcome.finalize
    else:
        complete = rule_evaluator.step_complete(step, step_index, approvers, history)
        finalize = False

    if complete and (finalize or resolved.is_last_step(step_index)):
        expense.status = ExpenseStatus.APPROVED
        action = DecisionAction.FINALIZED
        next_approvers: FrozenSet[int] = frozenset()
    elif complete:
        expense.current_step_index = step_index + 1
        action = DecisionAction.ADVANCED
        next_approvers = resolve_step_approvers(resolved.step_at(step_index + 1), expense)
    else:
        action = DecisionAction.PENDING
        next_approvers = approvers

    store.save_expense(expense)
    return DecisionResult(expense, action, next_approvers)


def submit_decision(
    expense_id: int,
    approver_id: int,
    decision: ApprovalDecisionStatus | str,
    comments: Optional[str] = None,
) -> DecisionResult:
    """Record ``approver_id``'s decision on an expense and advance its workflow.

    Raises NotFoundError, AlreadyProcessedError, ConfigurationError or
    UnauthorizedApproverError without modifying the expense. Write conflicts
    are retried; ConflictError escapes only once retries are exhausted.
    """
    if not isinstance(decision, ApprovalDecisionStatus):
        decision = parse_decision(decision)

    result = run_with_retry(
        lambda: _submit_once(expense_id, approver_id, decision, comments),
        expense_id,
    )
    logger.info(
        "User %s %s expense %s: %s (step %d)",
        approver_id,
        decision.value.lower(),
        expense_id,
        result.action.value,
        result.expense.current_step_index,
    )
    return result


def is_current_approver(expense_id: int, user_id: int) -> bool:
    return user_id in _current_approvers(_load_expense(expense_id))


def get_current_approvers(expense_id: int) -> List[int]:
    return sorted(_current_approvers(_load_expense(expense_id)))


def pending_for_user(user: User) -> List[Expense]:
    """Pending expenses of the user's company awaiting the user's decision."""
    results = []
    for expense in store.list_pending_expenses(user.company_id):
        try:
            approvers = _current_approvers(expense)
        except ConfigurationError as exc:
            logger.warning("Skipping expense %s in pending list: %s", expense.id, exc.message)
            continue
        if user.id in approvers:
            results.append(expense)
    return results
