"""Application data models exposed for easy imports."""
from expenseflow import db  # noqa: F401
from .company import Company  # noqa: F401
from .user import User, UserRole  # noqa: F401
from .approval import (
    ApprovalFlow,
    ApprovalRule,
    ApprovalRuleType,
    ExpenseApproval,
    ApprovalDecisionStatus,
)  # noqa: F401
from .expense import Expense, ExpenseStatus  # noqa: F401
from .audit import AuditLog  # noqa: F401

__all__ = [
    "db",
    "Company",
    "User",
    "UserRole",
    "Expense",
    "ExpenseStatus",
    "ExpenseApproval",
    "ApprovalDecisionStatus",
    "ApprovalFlow",
    "ApprovalRule",
    "ApprovalRuleType",
    "AuditLog",
]
