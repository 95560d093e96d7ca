"""Expense model definitions."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional, Tuple

from expenseflow import db
from expenseflow.models.approval import ApprovalDecisionStatus, ExpenseApproval


class ExpenseStatus(enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    submitter_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount_original = db.Column(db.Numeric(12, 2), nullable=False)
    currency_original = db.Column(db.String(10), nullable=False)
    amount_in_company_currency = db.Column(db.Numeric(12, 2), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)
    date_spent = db.Column(db.Date, nullable=False)
    status = db.Column(db.Enum(ExpenseStatus, name="expense_status"), nullable=False, default=ExpenseStatus.PENDING)
    approval_flow_name = db.Column(db.String(255), nullable=True)
    current_step_index = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    company = db.relationship("Company", back_populates="expenses", lazy="joined")
    submitter = db.relationship("User", lazy="joined")
    # Append-only; go through record_decision() and read through history.
    approval_entries = db.relationship(
        "ExpenseApproval",
        back_populates="expense",
        lazy="selectin",
        order_by="ExpenseApproval.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def history(self) -> Tuple[ExpenseApproval, ...]:
        return tuple(self.approval_entries)

    @property
    def is_pending(self) -> bool:
        return self.status == ExpenseStatus.PENDING

    def record_decision(
        self,
        approver_id: int,
        decision: ApprovalDecisionStatus,
        comment: Optional[str] = None,
        role_at_approval: Optional[str] = None,
    ) -> ExpenseApproval:
        """Append a decision at the current step to the audit trail."""
        entry = ExpenseApproval(
            approver_user_id=approver_id,
            decision=decision,
            comment=comment,
            step_index=self.current_step_index,
            role_at_approval=role_at_approval,
            acted_at=datetime.utcnow(),
        )
        self.approval_entries.append(entry)
        return entry

    def touch(self) -> None:
        """Mark the row dirty so the version check runs on the next flush."""
        self.updated_at = datetime.utcnow()

    def to_dict(self, include_history: bool = True) -> dict:
        payload = {
            "id": self.id,
            "company_id": self.company_id,
            "submitter_user_id": self.submitter_user_id,
            "amount_original": float(self.amount_original) if self.amount_original is not None else None,
            "currency_original": self.currency_original,
            "amount_in_company_currency": float(self.amount_in_company_currency)
            if self.amount_in_company_currency is not None
            else None,
            "category": self.category,
            "description": self.description,
            "date_spent": self.date_spent.isoformat() if self.date_spent else None,
            "status": self.status.value if self.status else None,
            "approval_flow_name": self.approval_flow_name,
            "current_step_index": self.current_step_index,
            "version": self.version_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_history:
            payload["approval_history"] = [entry.to_dict() for entry in self.history]
        return payload

    def __repr__(self) -> str:
        return f"<Expense id={self.id} status={self.status.value if self.status else None}>"
