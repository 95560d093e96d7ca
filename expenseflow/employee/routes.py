"""Employee-facing routes."""
from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import current_app
from flask_login import current_user, login_required

from expenseflow import db
from expenseflow.errors import ConfigurationError
from expenseflow.models import ApprovalFlow, Expense, ExpenseStatus
from expenseflow.services import approval_engine
from expenseflow.utils.helpers import json_payload, json_response

from . import employee_bp


def _current_approvers(expense_id: int) -> list[int]:
    # The expense is already committed; a misconfigured flow only empties the list.
    try:
        return approval_engine.get_current_approvers(expense_id)
    except ConfigurationError as exc:
        current_app.logger.warning("No approvers for expense %s: %s", expense_id, exc.message)
        return []


def _parse_amount(value: Any) -> Decimal | None:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError):
        return None
    return amount if amount > 0 else None


@employee_bp.route("/expenses", methods=["GET"])
@login_required
def list_expenses() -> Any:
    """List expenses submitted by the current user."""
    expenses = (
        Expense.query.filter_by(submitter_user_id=current_user.id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .all()
    )
    return json_response({"expenses": [expense.to_dict() for expense in expenses]})


@employee_bp.route("/expenses", methods=["POST"])
@login_required
def submit_expense() -> Any:
    """Submit a new expense; it enters the approval flow at its first step."""
    payload = json_payload()

    required_fields = {"amount", "currency", "date_spent"}
    if missing := required_fields - payload.keys():
        return json_response({"error": f"Missing fields: {', '.join(sorted(missing))}"}, status=400)

    amount_original = _parse_amount(payload["amount"])
    if amount_original is None:
        return json_response({"error": "Invalid amount."}, status=400)

    try:
        spent_date = date.fromisoformat(payload["date_spent"])
    except (TypeError, ValueError):
        return json_response({"error": "Invalid 'date_spent' format. Use YYYY-MM-DD."}, status=400)

    company = current_user.company
    currency = str(payload["currency"]).upper()
    company_currency = (company.currency_code or current_app.config["DEFAULT_CURRENCY"]).upper()

    # Amounts arrive already converted; only same-currency expenses may omit it.
    if payload.get("amount_in_company_currency") is not None:
        converted_amount = _parse_amount(payload["amount_in_company_currency"])
        if converted_amount is None:
            return json_response({"error": "Invalid 'amount_in_company_currency'."}, status=400)
    elif currency == company_currency:
        converted_amount = amount_original
    else:
        return json_response(
            {"error": f"'amount_in_company_currency' is required for {currency} expenses."},
            status=400,
        )

    flow_name = payload.get("approval_flow_name") or None
    if flow_name and not ApprovalFlow.query.filter_by(company_id=company.id, name=flow_name).first():
        return json_response({"error": f"Unknown approval flow '{flow_name}'."}, status=400)

    expense = Expense(
        company_id=company.id,
        submitter_user_id=current_user.id,
        amount_original=amount_original,
        currency_original=currency,
        amount_in_company_currency=converted_amount,
        category=payload.get("category"),
        description=payload.get("description"),
        date_spent=spent_date,
        status=ExpenseStatus.PENDING,
        approval_flow_name=flow_name,
        current_step_index=0,
    )
    db.session.add(expense)
    db.session.commit()

    current_app.logger.info("Expense %s submitted by user %s", expense.id, current_user.id)

    return json_response(
        {
            "message": "Expense submitted.",
            "expense": expense.to_dict(),
            "current_approvers": _current_approvers(expense.id),
        },
        status=201,
    )


@employee_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@login_required
def expense_detail(expense_id: int) -> Any:
    """View an own expense with its approval history."""
    expense = Expense.query.filter_by(id=expense_id, submitter_user_id=current_user.id).first()
    if not expense:
        return json_response({"error": "Expense not found."}, status=404)

    return json_response(
        {
            "expense": expense.to_dict(),
            "current_approvers": _current_approvers(expense.id),
        }
    )
