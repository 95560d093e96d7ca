"""Administrative routes: approval configuration and expense overrides."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Any

from flask import request
from flask_login import current_user, login_required

from expenseflow.errors import ValidationError
from expenseflow.models import ApprovalFlow, ApprovalRule, Expense, UserRole
from expenseflow.services import admin_override, flow_config, store
from expenseflow.utils.helpers import json_payload, json_response, role_required

from . import admin_bp


@admin_bp.route("/approval-flows", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def approval_flows() -> Any:
    """List the company's approval flows."""
    flows = ApprovalFlow.query.filter_by(company_id=current_user.company_id).order_by(ApprovalFlow.id).all()
    return json_response({"flows": [flow.to_dict() for flow in flows]})


@admin_bp.route("/approval-flows", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def create_flow() -> Any:
    """Create an approval flow."""
    flow = flow_config.create_flow(current_user.company_id, json_payload(), admin_id=current_user.id)
    return json_response({"message": "Approval flow created.", "flow": flow.to_dict()}, status=201)


@admin_bp.route("/approval-flows/<int:flow_id>", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def get_flow(flow_id: int) -> Any:
    flow = flow_config.get_flow(current_user.company_id, flow_id)
    return json_response({"flow": flow.to_dict()})


@admin_bp.route("/approval-flows/<int:flow_id>", methods=["PATCH"])
@login_required
@role_required(UserRole.ADMIN)
def update_flow(flow_id: int) -> Any:
    """Update an approval flow."""
    flow = flow_config.update_flow(current_user.company_id, flow_id, json_payload(), admin_id=current_user.id)
    return json_response({"message": "Approval flow saved.", "flow": flow.to_dict()})


@admin_bp.route("/approval-flows/<int:flow_id>", methods=["DELETE"])
@login_required
@role_required(UserRole.ADMIN)
def delete_flow(flow_id: int) -> Any:
    flow_config.delete_flow(current_user.company_id, flow_id, admin_id=current_user.id)
    return json_response({"message": "Flow deleted."})


@admin_bp.route("/approval-rules", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def approval_rules() -> Any:
    """List the company's approval rules."""
    rules = ApprovalRule.query.filter_by(company_id=current_user.company_id).order_by(ApprovalRule.id).all()
    return json_response({"rules": [rule.to_dict() for rule in rules]})


@admin_bp.route("/approval-rules", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def create_rule() -> Any:
    """Create an approval rule that flows can reference by id."""
    rule = flow_config.create_rule(current_user.company_id, json_payload(), admin_id=current_user.id)
    return json_response({"message": "Approval rule created.", "rule": rule.to_dict()}, status=201)


@admin_bp.route("/approval-rules/<int:rule_id>", methods=["PATCH"])
@login_required
@role_required(UserRole.ADMIN)
def update_rule(rule_id: int) -> Any:
    rule = flow_config.update_rule(current_user.company_id, rule_id, json_payload(), admin_id=current_user.id)
    return json_response({"message": "Approval rule saved.", "rule": rule.to_dict()})


@admin_bp.route("/approval-rules/<int:rule_id>", methods=["DELETE"])
@login_required
@role_required(UserRole.ADMIN)
def delete_rule(rule_id: int) -> Any:
    flow_config.delete_rule(current_user.company_id, rule_id, admin_id=current_user.id)
    return json_response({"message": "Rule deleted."})


MAX_PAGE_SIZE = 200


def _parse_day(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid '{name}' date. Use YYYY-MM-DD.") from None


@admin_bp.route("/expenses", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def list_expenses() -> Any:
    """Company-wide expense list, newest first, with optional filters."""
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 50, type=int)
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"'page' must be >= 1 and 'limit' between 1 and {MAX_PAGE_SIZE}.")

    query = Expense.query.filter_by(company_id=current_user.company_id)

    status = request.args.get("status", "").strip()
    if status:
        query = query.filter(Expense.status == admin_override.parse_status(status))

    submitted_by = request.args.get("submitted_by", "").strip()
    if submitted_by:
        if not submitted_by.isdigit():
            raise ValidationError("'submitted_by' must be a user id.")
        query = query.filter(Expense.submitter_user_id == int(submitted_by))

    if request.args.get("from"):
        start = _parse_day(request.args["from"], "from")
        query = query.filter(Expense.created_at >= datetime.combine(start, time.min))
    if request.args.get("to"):
        end = _parse_day(request.args["to"], "to")
        query = query.filter(Expense.created_at < datetime.combine(end + timedelta(days=1), time.min))

    pagination = query.order_by(Expense.created_at.desc(), Expense.id.desc()).paginate(
        page=page, per_page=limit, error_out=False
    )
    return json_response(
        {
            "expenses": [expense.to_dict(include_history=False) for expense in pagination.items],
            "page": page,
            "limit": limit,
            "total": pagination.total,
        }
    )


@admin_bp.route("/expenses/<int:expense_id>/override", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def override_expense(expense_id: int) -> Any:
    """Force-approve, force-reject or set the status of an expense."""
    expense = store.load_expense(expense_id)
    if expense is None:
        return json_response({"error": "Expense not found."}, status=404)
    if expense.company_id != current_user.company_id:
        return json_response({"error": "Forbidden."}, status=403)

    payload = json_payload()
    expense = admin_override.override_expense(
        expense_id,
        current_user.id,
        payload.get("action"),
        status=payload.get("status"),
        comment=payload.get("comment") or "",
    )
    return json_response({"message": "Override applied.", "expense": expense.to_dict()})
