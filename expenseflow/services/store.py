"""Data access for the approval engine.

Thin query helpers over the Flask-SQLAlchemy session. The engine reads
company configuration and the user roster through these functions and writes
expenses exclusively through :func:`save_expense`.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm.exc import StaleDataError

from expenseflow import db
from expenseflow.errors import ConflictError
from expenseflow.models import (
    ApprovalFlow,
    ApprovalRule,
    Company,
    Expense,
    ExpenseStatus,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)


def get_company(company_id: int) -> Optional[Company]:
    return db.session.get(Company, company_id)


def get_company_flows(company_id: int) -> List[ApprovalFlow]:
    """Return the company's flows in stored order."""
    return ApprovalFlow.query.filter_by(company_id=company_id).order_by(ApprovalFlow.id).all()


def get_company_rules(company_id: int) -> List[ApprovalRule]:
    return ApprovalRule.query.filter_by(company_id=company_id).order_by(ApprovalRule.id).all()


def get_user(user_id: int) -> Optional[User]:
    return db.session.get(User, user_id)


def find_users(company_id: int, role: UserRole) -> List[User]:
    # Unbounded on purpose: role steps need the full roster.
    return User.query.filter_by(company_id=company_id, role=role).order_by(User.id).all()


def load_expense(expense_id: int) -> Optional[Expense]:
    return db.session.get(Expense, expense_id, populate_existing=True)


def list_pending_expenses(company_id: int) -> List[Expense]:
    return (
        Expense.query.filter_by(company_id=company_id, status=ExpenseStatus.PENDING)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .all()
    )


def save_expense(expense: Expense) -> Expense:
    """Commit pending changes to ``expense`` with an optimistic version check.

    Raises :class:`ConflictError` when another writer committed first; the
    session is rolled back so nothing from the failed attempt is persisted.
    """
    expense_id = expense.id
    expense.touch()
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification of expense %s detected", expense_id)
        raise ConflictError() from exc
    return expense
