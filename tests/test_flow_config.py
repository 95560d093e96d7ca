"""Tests for approval flow and rule administration."""
import pytest

from expenseflow.errors import ConflictError, DuplicateNameError, NotFoundError, ValidationError
from expenseflow.models import ApprovalFlow, ApprovalRuleType, AuditLog, Company
from expenseflow.services import flow_config
from expenseflow.services.approval_engine import run_with_retry
from expenseflow.services.flow_registry import NO_RULE, resolve_flow


@pytest.fixture
def company_id(company):
    return company.id


class TestFlows:
    def test_create_normalizes_steps(self, company_id, admin, manager):
        flow = flow_config.create_flow(
            company_id,
            {
                "name": "Standard",
                "steps": [{"type": "manager"}, {"type": "group", "value": [manager.id, str(admin.id)]}],
                "is_default": True,
            },
            admin_id=admin.id,
        )

        assert flow.steps == [
            {"type": "manager", "require_all": True, "min_amount": 0.0},
            {"type": "group", "require_all": True, "min_amount": 0.0, "value": [manager.id, admin.id]},
        ]
        assert flow.is_default is True
        assert AuditLog.query.filter_by(entity_type="approval_flow", action="create").count() == 1

    def test_only_one_default_per_company(self, db, company_id):
        first = flow_config.create_flow(company_id, {"name": "A", "steps": [{"type": "manager"}], "is_default": True})
        second = flow_config.create_flow(company_id, {"name": "B", "steps": [{"type": "manager"}], "is_default": True})

        assert second.is_default is True
        assert db.session.get(ApprovalFlow, first.id).is_default is False

        flow_config.update_flow(company_id, first.id, {"is_default": True})
        assert ApprovalFlow.query.filter_by(company_id=company_id, is_default=True).one().id == first.id

    def test_duplicate_name_conflicts(self, company_id):
        flow_config.create_flow(company_id, {"name": "Standard", "steps": [{"type": "manager"}]})
        with pytest.raises(DuplicateNameError) as excinfo:
            flow_config.create_flow(company_id, {"name": "Standard", "steps": [{"type": "manager"}]})
        assert excinfo.value.status_code == 409
        assert not isinstance(excinfo.value, ConflictError)

    def test_duplicate_name_is_not_retried(self, company_id):
        flow_config.create_flow(company_id, {"name": "Standard", "steps": [{"type": "manager"}]})
        attempts = []

        def create_again():
            attempts.append(1)
            return flow_config.create_flow(company_id, {"name": "Standard", "steps": [{"type": "manager"}]})

        with pytest.raises(DuplicateNameError):
            run_with_retry(create_again, expense_id=0)
        assert len(attempts) == 1

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "", "steps": [{"type": "manager"}]},
            {"name": "Empty", "steps": []},
            {"name": "Bad", "steps": [{"type": "role", "value": ""}]},
            {"name": "Flag", "steps": [{"type": "manager"}], "active": "no"},
        ],
    )
    def test_invalid_flows_are_rejected(self, company_id, payload):
        with pytest.raises(ValidationError):
            flow_config.create_flow(company_id, payload)
        assert ApprovalFlow.query.count() == 0

    def test_steps_must_reference_company_users(self, db, company_id, make_user):
        globex = Company(name="Globex", country="Canada", currency_code="CAD")
        db.session.add(globex)
        db.session.commit()
        outsider = make_user("Gil Globex", company_id=globex.id)

        with pytest.raises(ValidationError):
            flow_config.create_flow(company_id, {"name": "Ghost", "steps": [{"type": "user", "value": 999}]})
        with pytest.raises(ValidationError):
            flow_config.create_flow(
                company_id, {"name": "Outsider", "steps": [{"type": "group", "value": [outsider.id]}]}
            )

    def test_inline_rule_and_reference_are_exclusive(self, company_id, manager, make_rule):
        rule = make_rule(ApprovalRuleType.SPECIFIC, specific_approver=manager)
        with pytest.raises(ValidationError):
            flow_config.create_flow(
                company_id,
                {
                    "name": "Both",
                    "steps": [{"type": "manager"}],
                    "rule": {"rule_type": "percentage", "percentage_threshold": 50},
                    "rule_id": rule.id,
                },
            )

    def test_switching_to_rule_reference_clears_inline_rule(self, company_id, manager, make_rule):
        flow = flow_config.create_flow(
            company_id,
            {
                "name": "Standard",
                "steps": [{"type": "manager"}],
                "rule": {"rule_type": "percentage", "percentage_threshold": 50},
            },
        )
        rule = make_rule(ApprovalRuleType.SPECIFIC, specific_approver=manager)

        flow = flow_config.update_flow(company_id, flow.id, {"rule_id": rule.id})

        assert flow.rule is None
        assert flow.rule_id == rule.id

    def test_rename_clash(self, company_id):
        flow_config.create_flow(company_id, {"name": "A", "steps": [{"type": "manager"}]})
        b = flow_config.create_flow(company_id, {"name": "B", "steps": [{"type": "manager"}]})

        with pytest.raises(DuplicateNameError):
            flow_config.update_flow(company_id, b.id, {"name": "A"})

    def test_other_company_flow_is_not_found(self, db, company_id):
        globex = Company(name="Globex", country="Canada", currency_code="CAD")
        db.session.add(globex)
        db.session.commit()
        theirs = flow_config.create_flow(globex.id, {"name": "Theirs", "steps": [{"type": "manager"}]})

        with pytest.raises(NotFoundError):
            flow_config.get_flow(company_id, theirs.id)
        with pytest.raises(NotFoundError):
            flow_config.delete_flow(company_id, theirs.id)

    def test_delete(self, company_id, admin):
        flow = flow_config.create_flow(company_id, {"name": "Standard", "steps": [{"type": "manager"}]})

        flow_config.delete_flow(company_id, flow.id, admin_id=admin.id)

        assert ApprovalFlow.query.count() == 0
        assert AuditLog.query.filter_by(action="delete").one().extra_data == {"name": "Standard"}


class TestRules:
    def test_create_and_reference(self, company_id, manager, make_expense, employee):
        rule = flow_config.create_rule(
            company_id,
            {"name": "CFO", "rule_type": "specific", "specific_approver_id": manager.id},
        )
        flow_config.create_flow(company_id, {"name": "Standard", "steps": [{"type": "manager"}], "rule_id": rule.id})

        resolved = resolve_flow(make_expense(employee))

        assert resolved.rule.rule_type == ApprovalRuleType.SPECIFIC
        assert resolved.rule.specific_approver_id == manager.id

    def test_name_and_type_required(self, company_id):
        with pytest.raises(ValidationError):
            flow_config.create_rule(company_id, {"name": "No type"})

    def test_duplicate_rule_name(self, company_id):
        flow_config.create_rule(company_id, {"name": "Half", "rule_type": "percentage", "percentage_threshold": 50})
        with pytest.raises(DuplicateNameError):
            flow_config.create_rule(
                company_id, {"name": "Half", "rule_type": "percentage", "percentage_threshold": 60}
            )

    def test_partial_update_is_revalidated(self, company_id, manager):
        rule = flow_config.create_rule(
            company_id, {"name": "Half", "rule_type": "percentage", "percentage_threshold": 50}
        )

        with pytest.raises(ValidationError):
            flow_config.update_rule(company_id, rule.id, {"rule_type": "hybrid"})

    def test_update_threshold(self, company_id):
        rule = flow_config.create_rule(
            company_id, {"name": "Half", "rule_type": "percentage", "percentage_threshold": 50}
        )

        rule = flow_config.update_rule(company_id, rule.id, {"percentage_threshold": 75})

        assert float(rule.percentage_threshold) == 75.0
        assert rule.rule_type == ApprovalRuleType.PERCENTAGE

    def test_delete_detaches_flows(self, db, company_id, manager, make_expense, employee):
        rule = flow_config.create_rule(
            company_id, {"name": "CFO", "rule_type": "specific", "specific_approver_id": manager.id}
        )
        flow = flow_config.create_flow(
            company_id, {"name": "Standard", "steps": [{"type": "manager"}], "rule_id": rule.id}
        )

        flow_config.delete_rule(company_id, rule.id)

        assert db.session.get(ApprovalFlow, flow.id).rule_id is None
        assert resolve_flow(make_expense(employee)).rule is NO_RULE

    def test_missing_rule(self, company_id):
        with pytest.raises(NotFoundError):
            flow_config.get_rule(company_id, 404)
