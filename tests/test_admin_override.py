"""Tests for privileged overrides."""
import pytest

from expenseflow.errors import NotFoundError, ValidationError
from expenseflow.models import ApprovalDecisionStatus, AuditLog, ExpenseStatus
from expenseflow.services import store
from expenseflow.services.admin_override import OverrideAction, override_expense, parse_override_action
from expenseflow.services.approval_engine import submit_decision


@pytest.fixture
def pending_expense(make_flow, make_expense, employee):
    make_flow([{"type": "manager"}, {"type": "role", "value": "ADMIN"}])
    return make_expense(employee)


def test_approve_records_admin_entry(pending_expense, admin):
    expense = override_expense(pending_expense.id, admin.id, "approve")

    assert expense.status == ExpenseStatus.APPROVED
    entry = expense.history[-1]
    assert entry.approver_user_id == admin.id
    assert entry.decision == ApprovalDecisionStatus.APPROVED
    assert entry.role_at_approval == "admin"
    assert entry.comment == "Approved by admin override"
    assert entry.step_index == 0


def test_reject_with_comment(pending_expense, admin):
    expense = override_expense(pending_expense.id, admin.id, OverrideAction.REJECT, comment="Duplicate claim")

    assert expense.status == ExpenseStatus.REJECTED
    assert expense.history[-1].comment == "Duplicate claim"
    assert expense.history[-1].decision == ApprovalDecisionStatus.REJECTED


def test_works_without_any_flow(make_expense, employee, admin):
    expense = override_expense(make_expense(employee).id, admin.id, "approve")
    assert expense.status == ExpenseStatus.APPROVED


def test_can_reopen_a_terminal_expense(pending_expense, admin, manager):
    submit_decision(pending_expense.id, manager.id, ApprovalDecisionStatus.REJECTED)

    expense = override_expense(pending_expense.id, admin.id, "setStatus", status="pending")

    assert expense.status == ExpenseStatus.PENDING
    assert len(expense.history) == 1


def test_set_status_writes_audit_entry_not_history(pending_expense, admin):
    expense = override_expense(pending_expense.id, admin.id, "set_status", status=ExpenseStatus.PAID)

    assert expense.status == ExpenseStatus.PAID
    assert expense.history == ()
    audit = AuditLog.query.filter_by(entity_type="expense", entity_id=expense.id).one()
    assert audit.action == "override_set_status"
    assert audit.user_id == admin.id
    assert audit.extra_data["from"] == "PENDING"
    assert audit.extra_data["to"] == "PAID"


def test_override_bumps_version(pending_expense, admin):
    version = pending_expense.version_id
    expense = override_expense(pending_expense.id, admin.id, "approve")
    assert expense.version_id > version


@pytest.mark.parametrize(
    "action, status",
    [("escalate", None), ("", None), ("setStatus", None), ("setStatus", "archived")],
)
def test_invalid_requests(pending_expense, admin, action, status):
    with pytest.raises(ValidationError):
        override_expense(pending_expense.id, admin.id, action, status=status)
    assert store.load_expense(pending_expense.id).status == ExpenseStatus.PENDING


def test_missing_expense(admin):
    with pytest.raises(NotFoundError):
        override_expense(999, admin.id, "approve")


def test_parse_override_action_is_lenient_about_case():
    assert parse_override_action("SetStatus") == OverrideAction.SET_STATUS
    assert parse_override_action(" APPROVE ") == OverrideAction.APPROVE
