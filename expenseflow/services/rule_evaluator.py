"""Step-completion and conditional-rule evaluation.

Everything here is a pure function of the rule, the current step and the
approval history; nothing touches the database.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Iterable, Set

from expenseflow.models import ApprovalDecisionStatus, ApprovalRuleType, ExpenseApproval
from expenseflow.services.flow_registry import Rule, Step


@dataclass(frozen=True)
class RuleOutcome:
    satisfied: bool
    # True when satisfaction approves the whole expense rather than the step.
    finalize: bool = False


NOT_SATISFIED = RuleOutcome(satisfied=False)


def approved_at_step(history: Iterable[ExpenseApproval], step_index: int) -> Set[int]:
    """Distinct approvers with an APPROVED entry at ``step_index``."""
    return {
        entry.approver_user_id
        for entry in history
        if entry.step_index == step_index and entry.decision == ApprovalDecisionStatus.APPROVED
    }


def specific_satisfied(rule: Rule, history: Iterable[ExpenseApproval]) -> bool:
    # Scans the whole history, not only the current step.
    if rule.specific_approver_id is None:
        return False
    return any(
        entry.decision == ApprovalDecisionStatus.APPROVED
        and entry.approver_user_id == rule.specific_approver_id
        for entry in history
    )


def percentage_satisfied(
    rule: Rule,
    step_index: int,
    current_approvers: AbstractSet[int],
    history: Iterable[ExpenseApproval],
) -> bool:
    if rule.percentage_threshold is None or not current_approvers:
        return False
    approved = approved_at_step(history, step_index) & set(current_approvers)
    ratio = len(approved) / len(current_approvers) * 100
    return ratio >= rule.percentage_threshold


def evaluate(
    rule: Rule,
    step_index: int,
    current_approvers: AbstractSet[int],
    history: Iterable[ExpenseApproval],
) -> RuleOutcome:
    """Decide whether ``rule`` is met for the current step.

    SPECIFIC finalizes the expense; PERCENTAGE only completes the step.
    HYBRID checks the specific approver first so that it takes priority.
    """
    history = list(history)

    if rule.rule_type == ApprovalRuleType.SPECIFIC:
        if specific_satisfied(rule, history):
            return RuleOutcome(satisfied=True, finalize=True)
        return NOT_SATISFIED

    if rule.rule_type == ApprovalRuleType.PERCENTAGE:
        if percentage_satisfied(rule, step_index, current_approvers, history):
            return RuleOutcome(satisfied=True, finalize=False)
        return NOT_SATISFIED

    if rule.rule_type == ApprovalRuleType.HYBRID:
        if specific_satisfied(rule, history):
            return RuleOutcome(satisfied=True, finalize=True)
        if percentage_satisfied(rule, step_index, current_approvers, history):
            return RuleOutcome(satisfied=True, finalize=False)
        return NOT_SATISFIED

    return NOT_SATISFIED


def step_complete(
    step: Step,
    step_index: int,
    current_approvers: AbstractSet[int],
    history: Iterable[ExpenseApproval],
) -> bool:
    """Default completion when no rule applies."""
    if not current_approvers:
        return False
    approved = approved_at_step(history, step_index) & set(current_approvers)
    if step.require_all:
        return approved == set(current_approvers)
    return bool(approved)
