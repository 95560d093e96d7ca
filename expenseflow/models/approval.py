"""Approval-related models."""
from __future__ import annotations

import enum

from expenseflow import db


class ApprovalDecisionStatus(enum.Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"


class ApprovalRuleType(enum.Enum):
    NONE = "NONE"
    PERCENTAGE = "PERCENTAGE"
    SPECIFIC = "SPECIFIC"
    HYBRID = "HYBRID"


class ExpenseApproval(db.Model):
    """One entry of an expense's approval history."""

    __tablename__ = "expense_approvals"

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, index=True)
    approver_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    step_index = db.Column(db.Integer, nullable=False, default=0)
    decision = db.Column(
        db.Enum(ApprovalDecisionStatus, name="approval_decision_status"),
        nullable=False,
    )
    comment = db.Column(db.Text, nullable=True)
    role_at_approval = db.Column(db.String(50), nullable=True)
    acted_at = db.Column(db.DateTime, nullable=False)

    expense = db.relationship("Expense", back_populates="approval_entries")
    approver = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "approver_user_id": self.approver_user_id,
            "step_index": self.step_index,
            "decision": self.decision.value if self.decision else None,
            "comment": self.comment,
            "role_at_approval": self.role_at_approval,
            "acted_at": self.acted_at.isoformat() if self.acted_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<ExpenseApproval expense_id={self.expense_id} step={self.step_index} "
            f"decision={self.decision.value if self.decision else None}>"
        )


class ApprovalFlow(db.Model):
    __tablename__ = "approval_flows"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_approval_flows_company_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    steps = db.Column(db.JSON, nullable=False, default=list)
    # Either an inline rule definition or a reference into approval_rules.
    rule = db.Column(db.JSON, nullable=True)
    rule_id = db.Column(db.Integer, db.ForeignKey("approval_rules.id", ondelete="SET NULL"), nullable=True)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    company = db.relationship("Company", back_populates="approval_flows")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "steps": self.steps,
            "rule": self.rule,
            "rule_id": self.rule_id,
            "is_default": self.is_default,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalFlow {self.name}>"


class ApprovalRule(db.Model):
    __tablename__ = "approval_rules"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_approval_rules_company_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    rule_type = db.Column(db.Enum(ApprovalRuleType, name="approval_rule_type"), nullable=False)
    percentage_threshold = db.Column(db.Numeric(5, 2), nullable=True)
    specific_approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    company = db.relationship("Company", back_populates="approval_rules")
    specific_approver = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "rule_type": self.rule_type.value if self.rule_type else None,
            "percentage_threshold": float(self.percentage_threshold)
            if self.percentage_threshold is not None
            else None,
            "specific_approver_id": self.specific_approver_id,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalRule id={self.id} type={self.rule_type.value if self.rule_type else None}>"
