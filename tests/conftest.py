from __future__ import annotations

import itertools
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app, db
from app.models import (
    ApprovalRule,
    ApprovalRuleType,
    ApprovalWorkflow,
    ApprovalWorkflowStep,
    Company,
    EmployeeProfile,
    Expense,
    ExpenseStatus,
    User,
    UserRole,
)


class Seed:
    """Creates committed rows in a short-lived app context and returns their ids."""

    def __init__(self, app):
        self.app = app
        self._counter = itertools.count(1)

    def _save(self, *objects) -> int:
        with self.app.app_context():
            db.session.add_all(objects)
            db.session.commit()
            return objects[0].id

    def company(self, name=None, currency="USD") -> int:
        number = next(self._counter)
        return self._save(
            Company(name=name or f"Company {number}", country="United States", currency_code=currency)
        )

    def user(
        self,
        company_id,
        role=UserRole.EMPLOYEE,
        first_name=None,
        manager_id=None,
        is_manager_approver=False,
    ) -> int:
        number = next(self._counter)
        with self.app.app_context():
            user = User(
                first_name=first_name or f"User{number}",
                last_name="Tester",
                email=f"user{number}@example.com",
                role=role,
                company_id=company_id,
                is_manager_approver=is_manager_approver,
            )
            db.session.add(user)
            db.session.flush()
            if role != UserRole.ADMIN:
                db.session.add(EmployeeProfile(user_id=user.id, manager_id=manager_id))
            db.session.commit()
            return user.id

    def expense(self, company_id, submitter_id, amount, status=ExpenseStatus.PENDING) -> int:
        amount = Decimal(str(amount))
        return self._save(
            Expense(
                company_id=company_id,
                submitter_user_id=submitter_id,
                amount_original=amount,
                currency_original="USD",
                amount_in_company_currency=amount,
                exchange_rate=Decimal("1"),
                category="Travel",
                date_spent=date(2025, 3, 14),
                status=status,
            )
        )

    def workflow(self, company_id, steps, min_amount=0, max_amount=None, is_active=True, name=None) -> int:
        """``steps`` is a list of ``(approver_id, is_required)`` in step order."""
        workflow = ApprovalWorkflow(
            company_id=company_id,
            name=name or f"Workflow {next(self._counter)}",
            min_amount=Decimal(str(min_amount)),
            max_amount=Decimal(str(max_amount)) if max_amount is not None else None,
            is_active=is_active,
        )
        workflow.steps = [
            ApprovalWorkflowStep(step_order=order, approver_id=approver_id, is_required=required)
            for order, (approver_id, required) in enumerate(steps, start=1)
        ]
        return self._save(workflow)

    def rule(
        self,
        company_id,
        rule_type,
        threshold=None,
        approver_id=None,
        min_amount=0,
        max_amount=None,
        is_active=True,
        name=None,
    ) -> int:
        return self._save(
            ApprovalRule(
                company_id=company_id,
                name=name or f"Rule {next(self._counter)}",
                rule_type=rule_type,
                percentage_threshold=Decimal(str(threshold)) if threshold is not None else None,
                specific_approver_id=approver_id,
                min_amount=Decimal(str(min_amount)),
                max_amount=Decimal(str(max_amount)) if max_amount is not None else None,
                is_active=is_active,
            )
        )


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Application context for calling services directly."""
    with app.app_context():
        yield
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seed(app):
    return Seed(app)


@pytest.fixture
def login(client):
    def _login(user_id: int):
        with client.session_transaction() as sess:
            sess["_user_id"] = str(user_id)
            sess["_fresh"] = True
        return client

    return _login


@pytest.fixture
def org(seed):
    """One company: an admin, two managers and an employee reporting to the first manager."""
    company_id = seed.company()
    admin_id = seed.user(company_id, role=UserRole.ADMIN, first_name="Ada")
    manager_a = seed.user(company_id, role=UserRole.MANAGER, first_name="Mina", is_manager_approver=True)
    manager_b = seed.user(company_id, role=UserRole.MANAGER, first_name="Bo")
    employee_id = seed.user(company_id, first_name="Eve", manager_id=manager_a)

    return SimpleNamespace(
        company=company_id,
        admin=admin_id,
        manager_a=manager_a,
        manager_b=manager_b,
        employee=employee_id,
    )
