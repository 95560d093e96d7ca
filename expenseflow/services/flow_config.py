"""Company approval flow and rule configuration.

Writes validate step and rule definitions up front so the approval engine
only ever reads well-formed configuration, and keep at most one default flow
per company.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from expenseflow import db
from expenseflow.errors import DuplicateNameError, NotFoundError, ValidationError
from expenseflow.models import ApprovalFlow, ApprovalRule, AuditLog, User
from expenseflow.services.flow_registry import GroupStep, UserStep, parse_rule, parse_rule_type, parse_steps

logger = logging.getLogger(__name__)


def _require_bool(payload: Mapping[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"'{key}' must be a boolean.")
    return value


def _clear_other_defaults(company_id: int, keep: ApprovalFlow) -> None:
    for flow in ApprovalFlow.query.filter_by(company_id=company_id, is_default=True).all():
        if flow is not keep:
            flow.is_default = False


def _check_company_user(company_id: int, user_id: Optional[int], field: str) -> None:
    if user_id is None:
        return
    user = db.session.get(User, user_id)
    if user is None or user.company_id != company_id:
        raise ValidationError(f"'{field}' must reference a user of your company.")


def _apply_rule_fields(flow: ApprovalFlow, payload: Mapping[str, Any]) -> None:
    """Set the flow's rule, inline or by reference; one replaces the other."""
    inline = payload.get("rule")
    rule_id = payload.get("rule_id")
    if inline and rule_id is not None:
        raise ValidationError("Provide either an inline 'rule' or a 'rule_id', not both.")

    if "rule" in payload:
        if inline:
            rule = parse_rule(inline)
            _check_company_user(flow.company_id, rule.specific_approver_id, "specific_approver_id")
            flow.rule = rule.to_dict()
            flow.rule_id = None
        else:
            flow.rule = None
    if "rule_id" in payload:
        if rule_id is not None:
            referenced = db.session.get(ApprovalRule, rule_id)
            if referenced is None or referenced.company_id != flow.company_id:
                raise ValidationError("'rule_id' must reference a rule of your company.")
            flow.rule = None
        flow.rule_id = rule_id


def _apply_steps(flow: ApprovalFlow, steps_payload: Any) -> None:
    steps = parse_steps(steps_payload)
    if not steps:
        raise ValidationError("A flow needs at least one step.")
    for step in steps:
        if isinstance(step, UserStep):
            user_ids = (step.user_id,)
        elif isinstance(step, GroupStep):
            user_ids = step.user_ids
        else:
            user_ids = ()
        for user_id in user_ids:
            _check_company_user(flow.company_id, user_id, "value")
        if step.rule is not None:
            _check_company_user(flow.company_id, step.rule.specific_approver_id, "specific_approver_id")
    flow.steps = [step.to_dict() for step in steps]


def get_flow(company_id: int, flow_id: int) -> ApprovalFlow:
    flow = db.session.get(ApprovalFlow, flow_id)
    if flow is None or flow.company_id != company_id:
        raise NotFoundError("Flow not found.")
    return flow


def create_flow(company_id: int, payload: Mapping[str, Any], admin_id: Optional[int] = None) -> ApprovalFlow:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationError("'name' is required.")
    if ApprovalFlow.query.filter_by(company_id=company_id, name=name).first():
        raise DuplicateNameError("Flow name exists.")

    flow = ApprovalFlow(
        company_id=company_id,
        name=name,
        description=payload.get("description") or "",
        is_default=_require_bool(payload, "is_default", False),
        active=_require_bool(payload, "active", True),
    )
    _apply_steps(flow, payload.get("steps", []))
    _apply_rule_fields(flow, payload)

    db.session.add(flow)
    db.session.flush()
    if flow.is_default:
        _clear_other_defaults(company_id, keep=flow)

    AuditLog.record("approval_flow", flow.id, "create", user_id=admin_id, company_id=company_id)
    db.session.commit()
    logger.info("Approval flow '%s' created for company %s", flow.name, company_id)
    return flow


def update_flow(
    company_id: int,
    flow_id: int,
    payload: Mapping[str, Any],
    admin_id: Optional[int] = None,
) -> ApprovalFlow:
    """Replace the given fields of a flow.

    In-flight expenses bind to flows by name and step index, so editing steps
    changes what their current step means.
    """
    flow = get_flow(company_id, flow_id)

    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationError("'name' cannot be empty.")
        clash = ApprovalFlow.query.filter_by(company_id=company_id, name=name).first()
        if clash is not None and clash.id != flow.id:
            raise DuplicateNameError("Flow name exists.")
        flow.name = name
    if "description" in payload:
        flow.description = payload.get("description") or ""
    if "steps" in payload:
        _apply_steps(flow, payload.get("steps"))
    _apply_rule_fields(flow, payload)
    if "active" in payload:
        flow.active = _require_bool(payload, "active", flow.active)
    if "is_default" in payload:
        flow.is_default = _require_bool(payload, "is_default", flow.is_default)
        if flow.is_default:
            _clear_other_defaults(company_id, keep=flow)

    AuditLog.record(
        "approval_flow",
        flow.id,
        "update",
        user_id=admin_id,
        company_id=company_id,
        extra_data={"fields": sorted(payload.keys())},
    )
    db.session.commit()
    logger.info("Approval flow '%s' updated for company %s", flow.name, company_id)
    return flow


def delete_flow(company_id: int, flow_id: int, admin_id: Optional[int] = None) -> None:
    flow = get_flow(company_id, flow_id)
    AuditLog.record(
        "approval_flow",
        flow.id,
        "delete",
        user_id=admin_id,
        company_id=company_id,
        extra_data={"name": flow.name},
    )
    db.session.delete(flow)
    db.session.commit()
    logger.info("Approval flow %s deleted for company %s", flow_id, company_id)


# Rules ---------------------------------------------------------------------


def _rule_fields(company_id: int, payload: Mapping[str, Any]) -> Dict[str, Any]:
    rule = parse_rule(payload)
    _check_company_user(company_id, rule.specific_approver_id, "specific_approver_id")
    return {
        "rule_type": rule.rule_type,
        "percentage_threshold": rule.percentage_threshold,
        "specific_approver_id": rule.specific_approver_id,
        "enabled": rule.enabled,
    }


def get_rule(company_id: int, rule_id: int) -> ApprovalRule:
    rule = db.session.get(ApprovalRule, rule_id)
    if rule is None or rule.company_id != company_id:
        raise NotFoundError("Rule not found.")
    return rule


def create_rule(company_id: int, payload: Mapping[str, Any], admin_id: Optional[int] = None) -> ApprovalRule:
    name = (payload.get("name") or "").strip()
    if not name or not (payload.get("rule_type") or payload.get("type")):
        raise ValidationError("'name' and 'rule_type' are required.")
    if ApprovalRule.query.filter_by(company_id=company_id, name=name).first():
        raise DuplicateNameError("Rule name exists.")

    rule = ApprovalRule(
        company_id=company_id,
        name=name,
        description=payload.get("description") or "",
        **_rule_fields(company_id, payload),
    )
    db.session.add(rule)
    db.session.flush()
    AuditLog.record("approval_rule", rule.id, "create", user_id=admin_id, company_id=company_id)
    db.session.commit()
    logger.info("Approval rule '%s' created for company %s", rule.name, company_id)
    return rule


def update_rule(
    company_id: int,
    rule_id: int,
    payload: Mapping[str, Any],
    admin_id: Optional[int] = None,
) -> ApprovalRule:
    rule = get_rule(company_id, rule_id)

    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationError("'name' cannot be empty.")
        clash = ApprovalRule.query.filter_by(company_id=company_id, name=name).first()
        if clash is not None and clash.id != rule.id:
            raise DuplicateNameError("Rule name exists.")
        rule.name = name
    if "description" in payload:
        rule.description = payload.get("description") or ""

    # Re-validate the merged definition so partial updates cannot break it.
    merged = {
        "rule_type": rule.rule_type.value,
        "percentage_threshold": float(rule.percentage_threshold)
        if rule.percentage_threshold is not None
        else None,
        "specific_approver_id": rule.specific_approver_id,
        "enabled": rule.enabled,
    }
    for key in ("percentage_threshold", "specific_approver_id", "enabled"):
        if key in payload:
            merged[key] = payload[key]
    if payload.get("rule_type") or payload.get("type"):
        merged["rule_type"] = parse_rule_type(payload.get("rule_type") or payload.get("type")).value
    for key, value in _rule_fields(company_id, merged).items():
        setattr(rule, key, value)

    AuditLog.record(
        "approval_rule",
        rule.id,
        "update",
        user_id=admin_id,
        company_id=company_id,
        extra_data={"fields": sorted(payload.keys())},
    )
    db.session.commit()
    logger.info("Approval rule '%s' updated for company %s", rule.name, company_id)
    return rule


def delete_rule(company_id: int, rule_id: int, admin_id: Optional[int] = None) -> None:
    rule = get_rule(company_id, rule_id)
    # Flows pointing at this rule fall back to "no rule".
    for flow in ApprovalFlow.query.filter_by(company_id=company_id, rule_id=rule.id).all():
        flow.rule_id = None
    AuditLog.record(
        "approval_rule",
        rule.id,
        "delete",
        user_id=admin_id,
        company_id=company_id,
        extra_data={"name": rule.name, "type": rule.rule_type.value},
    )
    db.session.delete(rule)
    db.session.commit()
    logger.info("Approval rule %s deleted for company %s", rule_id, company_id)
