"""Shared fixtures: an app on in-memory SQLite with a seeded company."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from flask import g

from expenseflow import create_app
from expenseflow import db as _db
from expenseflow.models import ApprovalFlow, ApprovalRule, Company, Expense, User, UserRole


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def company(db):
    company = Company(name="Acme Corp", country="United States", currency_code="USD")
    db.session.add(company)
    db.session.commit()
    return company


@pytest.fixture
def make_user(db, company):
    def _make(name, role=UserRole.EMPLOYEE, manager=None, company_id=None):
        user = User(
            name=name,
            email=f"{name.lower().replace(' ', '.')}@acme.test",
            role=role,
            company_id=company_id or company.id,
            manager_id=manager.id if manager else None,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_flow(db, company):
    def _make(steps, rule=None, name="Standard", is_default=True, active=True, rule_id=None):
        flow = ApprovalFlow(
            company_id=company.id,
            name=name,
            steps=steps,
            rule=rule,
            rule_id=rule_id,
            is_default=is_default,
            active=active,
        )
        db.session.add(flow)
        db.session.commit()
        return flow

    return _make


@pytest.fixture
def make_rule(db, company):
    def _make(rule_type, name="Rule", percentage_threshold=None, specific_approver=None, enabled=True):
        rule = ApprovalRule(
            company_id=company.id,
            name=name,
            rule_type=rule_type,
            percentage_threshold=percentage_threshold,
            specific_approver_id=specific_approver.id if specific_approver else None,
            enabled=enabled,
        )
        db.session.add(rule)
        db.session.commit()
        return rule

    return _make


@pytest.fixture
def make_expense(db):
    def _make(submitter, flow_name=None, amount="120.00"):
        expense = Expense(
            company_id=submitter.company_id,
            submitter_user_id=submitter.id,
            amount_original=Decimal(amount),
            currency_original="USD",
            amount_in_company_currency=Decimal(amount),
            category="Travel",
            description="Client visit",
            date_spent=date(2026, 10, 1),
            approval_flow_name=flow_name,
        )
        db.session.add(expense)
        db.session.commit()
        return expense

    return _make


@pytest.fixture
def manager(make_user):
    return make_user("Morgan Manager", role=UserRole.MANAGER)


@pytest.fixture
def employee(make_user, manager):
    return make_user("Erin Employee", manager=manager)


@pytest.fixture
def admin(make_user):
    return make_user("Ada Admin", role=UserRole.ADMIN)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Put ``user`` in the session the way the auth service would."""
    def _login(user):
        with client.session_transaction() as session:
            session["_user_id"] = str(user.id)
            session["_fresh"] = True
        # Requests share the fixture's app context, so drop the cached user.
        g.pop("_login_user", None)

    return _login
