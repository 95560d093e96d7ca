"""Approval flow definitions and flow resolution.

Stored flows keep their steps and inline rule as JSON. This module parses
that JSON into typed values (one dataclass per step type, a single ``Rule``
value with an explicit ``NO_RULE`` sentinel) and decides which flow governs
a given expense.

A flow's rule applies to every step unless a step carries its own ``rule``,
which replaces the flow rule for that step only (``{"rule_type": "none"}``
turns rule evaluation off for the step).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from expenseflow.errors import ConfigurationError, ValidationError
from expenseflow.models import ApprovalFlow, ApprovalRule, ApprovalRuleType, Company, Expense, UserRole
from expenseflow.services import store

logger = logging.getLogger(__name__)


# Rules ---------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    rule_type: ApprovalRuleType
    percentage_threshold: Optional[float] = None
    specific_approver_id: Optional[int] = None
    enabled: bool = True

    @property
    def is_active(self) -> bool:
        return self.enabled and self.rule_type != ApprovalRuleType.NONE

    def to_dict(self) -> dict:
        return {
            "rule_type": self.rule_type.value,
            "percentage_threshold": self.percentage_threshold,
            "specific_approver_id": self.specific_approver_id,
            "enabled": self.enabled,
        }


NO_RULE = Rule(ApprovalRuleType.NONE)


def _parse_user_id(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"'{field}' must be a user id.")
    try:
        user_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be a user id.") from None
    if user_id <= 0:
        raise ValidationError(f"'{field}' must be a user id.")
    return user_id


def parse_rule_type(value: Any) -> ApprovalRuleType:
    try:
        return ApprovalRuleType[str(value).strip().upper()]
    except (AttributeError, KeyError):
        raise ValidationError("Invalid rule_type.") from None


def parse_rule(payload: Mapping[str, Any]) -> Rule:
    """Validate a rule definition."""
    if not isinstance(payload, Mapping):
        raise ValidationError("'rule' must be an object.")

    rule_type = parse_rule_type(payload.get("rule_type") or payload.get("type"))

    enabled = payload.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ValidationError("'enabled' must be a boolean.")

    threshold = payload.get("percentage_threshold")
    if rule_type in (ApprovalRuleType.PERCENTAGE, ApprovalRuleType.HYBRID):
        if threshold is None or isinstance(threshold, bool):
            raise ValidationError("'percentage_threshold' is required for this rule type.")
        try:
            threshold = float(threshold)
        except (TypeError, ValueError):
            raise ValidationError("'percentage_threshold' must be a number.") from None
        if not 1 <= threshold <= 100:
            raise ValidationError("'percentage_threshold' must be between 1 and 100.")
    else:
        threshold = None

    approver = payload.get("specific_approver_id")
    if rule_type in (ApprovalRuleType.SPECIFIC, ApprovalRuleType.HYBRID):
        if approver is None:
            raise ValidationError("'specific_approver_id' is required for this rule type.")
        approver = _parse_user_id(approver, "specific_approver_id")
    else:
        approver = None

    return Rule(rule_type, threshold, approver, enabled)


def rule_from_model(rule: ApprovalRule) -> Rule:
    return Rule(
        rule.rule_type,
        float(rule.percentage_threshold) if rule.percentage_threshold is not None else None,
        rule.specific_approver_id,
        rule.enabled,
    )


# Steps ---------------------------------------------------------------------


def _step_dict(step: "Step") -> dict:
    data = {"type": step.type, "require_all": step.require_all, "min_amount": step.min_amount}
    if step.rule is not None:
        data["rule"] = step.rule.to_dict()
    return data


@dataclass(frozen=True)
class ManagerStep:
    """The submitter's direct manager approves."""

    require_all: bool = True
    min_amount: float = 0.0
    rule: Optional[Rule] = None

    type: ClassVar[str] = "manager"

    def to_dict(self) -> dict:
        return _step_dict(self)


@dataclass(frozen=True)
class UserStep:
    """A single named user approves."""

    user_id: int
    require_all: bool = True
    min_amount: float = 0.0
    rule: Optional[Rule] = None

    type: ClassVar[str] = "user"

    def to_dict(self) -> dict:
        return {**_step_dict(self), "value": self.user_id}


@dataclass(frozen=True)
class RoleStep:
    """Every user of the company holding ``role`` approves."""

    role: UserRole
    require_all: bool = True
    min_amount: float = 0.0
    rule: Optional[Rule] = None

    type: ClassVar[str] = "role"

    def to_dict(self) -> dict:
        return {**_step_dict(self), "value": self.role.value}


@dataclass(frozen=True)
class GroupStep:
    """An explicit list of users approves."""

    user_ids: Tuple[int, ...]
    require_all: bool = True
    min_amount: float = 0.0
    rule: Optional[Rule] = None

    type: ClassVar[str] = "group"

    def to_dict(self) -> dict:
        return {**_step_dict(self), "value": list(self.user_ids)}


Step = Union[ManagerStep, UserStep, RoleStep, GroupStep]

STEP_TYPES = ("manager", "user", "role", "group")


def parse_step(payload: Mapping[str, Any]) -> Step:
    """Build a typed step from its stored or submitted JSON form."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Each step must be an object.")

    step_type = str(payload.get("type") or "").lower()
    if step_type not in STEP_TYPES:
        raise ValidationError(f"Step type must be one of: {', '.join(STEP_TYPES)}.")

    require_all = payload.get("require_all", True)
    if not isinstance(require_all, bool):
        raise ValidationError("'require_all' must be a boolean.")

    try:
        min_amount = float(payload.get("min_amount") or 0)
    except (TypeError, ValueError):
        raise ValidationError("'min_amount' must be a number.") from None
    if min_amount < 0:
        raise ValidationError("'min_amount' cannot be negative.")

    rule = parse_rule(payload["rule"]) if payload.get("rule") else None

    options = {"require_all": require_all, "min_amount": min_amount, "rule": rule}
    value = payload.get("value")

    if step_type == "manager":
        return ManagerStep(**options)

    if step_type == "user":
        return UserStep(_parse_user_id(value, "value"), **options)

    if step_type == "role":
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Role steps require a non-empty role name.")
        try:
            role = UserRole[value.strip().upper()]
        except KeyError:
            raise ValidationError(f"Unknown role '{value}'.") from None
        return RoleStep(role, **options)

    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError("Group steps require a non-empty list of user ids.")
    user_ids: List[int] = []
    for item in value:
        user_id = _parse_user_id(item, "value")
        if user_id not in user_ids:
            user_ids.append(user_id)
    return GroupStep(tuple(user_ids), **options)


def parse_steps(payload: Any) -> Tuple[Step, ...]:
    if not isinstance(payload, (list, tuple)):
        raise ValidationError("'steps' must be a list.")
    return tuple(parse_step(item) for item in payload)


# Resolution ----------------------------------------------------------------


def normalize_rule(flow: ApprovalFlow, company_rules: Sequence[ApprovalRule]) -> Rule:
    """Collapse inline rules, rule references and "no rule" into one value.

    Dangling references, disabled rules and rules of type NONE all become
    ``NO_RULE`` so callers only ever branch on the rule type.
    """
    if flow.rule:
        rule = parse_rule(flow.rule)
    elif flow.rule_id is not None:
        model = next((r for r in company_rules if r.id == flow.rule_id), None)
        if model is None:
            logger.warning("Flow %s references missing rule %s", flow.name, flow.rule_id)
            return NO_RULE
        rule = rule_from_model(model)
    else:
        return NO_RULE
    return rule if rule.is_active else NO_RULE


@dataclass(frozen=True)
class ResolvedFlow:
    flow: ApprovalFlow
    steps: Tuple[Step, ...]
    rule: Rule
    company: Company

    @property
    def name(self) -> str:
        return self.flow.name

    def step_at(self, index: int) -> Optional[Step]:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def rule_for(self, index: int) -> Rule:
        """The rule governing step ``index``: its own rule, else the flow's."""
        step = self.step_at(index)
        if step is None or step.rule is None:
            return self.rule
        return step.rule if step.rule.is_active else NO_RULE

    def is_last_step(self, index: int) -> bool:
        return index >= len(self.steps) - 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flow": self.flow.name,
            "steps": [step.to_dict() for step in self.steps],
            "rule": self.rule.to_dict(),
        }


def select_flow(expense: Expense, flows: Sequence[ApprovalFlow]) -> Optional[ApprovalFlow]:
    """Pick the governing flow from the company's flows, in stored order."""
    if expense.approval_flow_name:
        # An explicit selection wins even over an inactive flow.
        return next((f for f in flows if f.name == expense.approval_flow_name), None)
    default = next((f for f in flows if f.is_default), None)
    if default is not None:
        return default
    return flows[0] if flows else None


def resolve_flow(expense: Expense) -> Optional[ResolvedFlow]:
    """Return the flow, rule and company governing ``expense``.

    Returns ``None`` when no flow applies; callers treat that as "admin
    override required". Stored configuration that no longer parses raises
    :class:`ConfigurationError`.
    """
    company = store.get_company(expense.company_id)
    if company is None:
        return None

    flow = select_flow(expense, store.get_company_flows(company.id))
    if flow is None:
        return None

    try:
        steps = parse_steps(flow.steps or [])
        rule = normalize_rule(flow, store.get_company_rules(company.id))
    except ValidationError as exc:
        raise ConfigurationError(f"Approval flow '{flow.name}' is misconfigured: {exc.message}") from exc

    return ResolvedFlow(flow=flow, steps=steps, rule=rule, company=company)
