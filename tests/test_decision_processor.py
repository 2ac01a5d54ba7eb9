"""Tests for recording approver decisions and resolving the expense."""
from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from app import db
from app.models import (
    ApprovalDecisionStatus,
    ApprovalRuleType,
    AuditLog,
    Expense,
    ExpenseApproval,
    ExpenseStatus,
    UserRole,
)
from app.services import approval_engine
from app.services.approval_engine import assign_workflow, override_decision, record_decision
from app.services.errors import NotFound, PreconditionFailed, TransientStoreError, ValidationError
from app.services.repository import ApprovalRepository


def _silent(expense_id, approver_id):
    return None


def _route(seed, org, amount, steps, **band):
    seed.workflow(org.company, steps, **band)
    expense_id = seed.expense(org.company, org.employee, amount)
    assign_workflow(expense_id, org.company, notifier=_silent)
    return expense_id


def _status(expense_id):
    db.session.expire_all()
    return db.session.get(Expense, expense_id).status


def test_single_rejection_outweighs_every_approval(ctx, seed, org):
    approvers = [seed.user(org.company, role=UserRole.MANAGER) for _ in range(10)]
    expense_id = _route(seed, org, 900, [(approver, True) for approver in approvers])

    for approver in approvers[:9]:
        assert record_decision(expense_id, approver, "approved").status == "pending"
    result = record_decision(expense_id, approvers[9], "rejected", comments="Not in policy")

    assert result.status == "rejected"
    assert result.message == "Expense rejected"
    assert _status(expense_id) == ExpenseStatus.REJECTED


def test_optional_step_keeps_expense_waiting_without_rules(ctx, seed, org):
    expense_id = _route(
        seed, org, 500, [(org.manager_a, True), (org.manager_b, False)], min_amount=0, max_amount=1000
    )

    result = record_decision(expense_id, org.manager_a, "approved")
    assert result.status == "pending"
    assert result.message == "Waiting for more approvals"

    assert record_decision(expense_id, org.manager_b, "approved").status == "pending"
    assert _status(expense_id) == ExpenseStatus.PENDING


def test_optional_step_with_percentage_rule(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=60)
    expense_id = _route(seed, org, 500, [(org.manager_a, True), (org.manager_b, False)])

    assert record_decision(expense_id, org.manager_a, "approved").status == "pending"
    result = record_decision(expense_id, org.manager_b, "approved")

    assert result.status == "approved"
    assert _status(expense_id) == ExpenseStatus.APPROVED


def test_required_steps_gate_percentage_rule(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=60, name="Sixty percent")
    expense_id = _route(
        seed, org, 2000, [(org.manager_a, True), (org.manager_b, True), (org.admin, True)]
    )

    record_decision(expense_id, org.manager_a, "approved")
    assert record_decision(expense_id, org.manager_b, "approved").status == "pending"

    result = record_decision(expense_id, org.admin, "approved")
    assert result.status == "approved"
    assert result.rule == "Sixty percent"


def test_percentage_rule_counts_undecided_optional_steps(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=60)
    expense_id = _route(
        seed, org, 2000, [(org.manager_a, True), (org.manager_b, True), (org.admin, False)]
    )

    record_decision(expense_id, org.manager_a, "approved")
    result = record_decision(expense_id, org.manager_b, "approved")

    assert result.status == "approved"


def test_specific_approver_rule_closes_expense(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.SPECIFIC_APPROVER, approver_id=org.admin, name="CFO")
    expense_id = _route(seed, org, 300, [(org.admin, True), (org.manager_b, False)])

    result = record_decision(expense_id, org.admin, "approved")

    assert result.status == "approved"
    assert result.rule == "CFO"
    pending = ExpenseApproval.query.filter_by(expense_id=expense_id, approver_user_id=org.manager_b).one()
    assert pending.status == ApprovalDecisionStatus.PENDING


def test_hybrid_rule_on_percentage_branch(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.HYBRID, threshold=50, approver_id=org.admin)
    expense_id = _route(seed, org, 300, [(org.manager_a, True), (org.manager_b, False)])

    assert record_decision(expense_id, org.manager_a, "approved").status == "approved"


def test_rule_outside_band_does_not_apply(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=10, min_amount=5000)
    expense_id = _route(seed, org, 300, [(org.manager_a, True), (org.manager_b, False)])

    assert record_decision(expense_id, org.manager_a, "approved").status == "pending"


def test_fallback_manager_needs_a_rule_to_close(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=100)
    expense_id = seed.expense(org.company, org.employee, 40)
    assign_workflow(expense_id, org.company, notifier=_silent)

    result = record_decision(expense_id, org.manager_a, "approved", comments="  looks fine  ")

    assert result.status == "approved"
    approval = ExpenseApproval.query.filter_by(expense_id=expense_id).one()
    assert approval.comments == "looks fine"
    assert isinstance(approval.approved_at, datetime)


def test_decided_expense_cannot_change(ctx, seed, org):
    expense_id = _route(seed, org, 300, [(org.manager_a, True), (org.manager_b, True)])
    record_decision(expense_id, org.manager_a, "rejected")

    with pytest.raises(PreconditionFailed):
        record_decision(expense_id, org.manager_b, "approved")

    assert _status(expense_id) == ExpenseStatus.REJECTED


def test_deciding_twice_is_refused(ctx, seed, org):
    expense_id = _route(seed, org, 300, [(org.manager_a, True), (org.manager_b, True)])
    record_decision(expense_id, org.manager_a, "approved")

    with pytest.raises(PreconditionFailed, match="already made a decision"):
        record_decision(expense_id, org.manager_a, "rejected")


def test_outsider_cannot_decide(ctx, seed, org):
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])

    with pytest.raises(PreconditionFailed, match="not an approver"):
        record_decision(expense_id, org.manager_b, "approved")


@pytest.mark.parametrize("decision", ["maybe", "pending", "", None])
def test_invalid_decision_changes_nothing(ctx, seed, org, decision):
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])

    with pytest.raises(ValidationError):
        record_decision(expense_id, org.manager_a, decision)

    approval = ExpenseApproval.query.filter_by(expense_id=expense_id).one()
    assert approval.status == ApprovalDecisionStatus.PENDING
    assert _status(expense_id) == ExpenseStatus.PENDING


def test_decision_is_case_insensitive(ctx, seed, org):
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])

    assert record_decision(expense_id, org.manager_a, " REJECTED ").status == "rejected"


def test_overlong_comments_are_refused(ctx, seed, org):
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])

    with pytest.raises(ValidationError):
        record_decision(expense_id, org.manager_a, "approved", comments="x" * 1001)


def test_expense_outside_company_is_not_found(ctx, seed, org):
    other_company = seed.company()
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])

    with pytest.raises(NotFound):
        record_decision(expense_id, org.manager_a, "approved", company_id=other_company)


def test_failure_during_evaluation_rolls_back(ctx, seed, org, monkeypatch):
    seed.rule(org.company, ApprovalRuleType.SPECIFIC_APPROVER, approver_id=org.admin)
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])

    def explode(*args, **kwargs):
        raise RuntimeError("rule store unavailable")

    monkeypatch.setattr(approval_engine, "evaluate_conditional_rules", explode)

    with pytest.raises(RuntimeError):
        record_decision(expense_id, org.manager_a, "approved")

    db.session.expire_all()
    approval = ExpenseApproval.query.filter_by(expense_id=expense_id).one()
    assert approval.status == ApprovalDecisionStatus.PENDING
    assert approval.approved_at is None
    assert AuditLog.query.filter_by(action="approval.approved").count() == 0


def test_store_error_rolls_back_and_reports_unavailable(ctx, seed, org, monkeypatch):
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])

    def unavailable(self, expense_id):
        raise OperationalError("SELECT count(expense_approvals.id)", {}, Exception("database is locked"))

    monkeypatch.setattr(ApprovalRepository, "approval_counts", unavailable)

    with pytest.raises(TransientStoreError) as excinfo:
        record_decision(expense_id, org.manager_a, "approved")

    assert excinfo.value.status_code == 503
    db.session.expire_all()
    approval = ExpenseApproval.query.filter_by(expense_id=expense_id).one()
    assert approval.status == ApprovalDecisionStatus.PENDING
    assert approval.approved_at is None
    assert _status(expense_id) == ExpenseStatus.PENDING


def test_missing_company_amount_stops_rule_evaluation(ctx, seed, org):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=50)
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])
    db.session.get(Expense, expense_id).amount_in_company_currency = None
    db.session.commit()

    with pytest.raises(ValidationError):
        record_decision(expense_id, org.manager_a, "approved")

    db.session.expire_all()
    assert ExpenseApproval.query.filter_by(expense_id=expense_id).one().status == ApprovalDecisionStatus.PENDING


def test_conditional_update_refuses_decided_row(ctx, seed, org):
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])
    repo = ApprovalRepository(db.session)
    approval = repo.get_approval(expense_id, org.manager_a)

    assert repo.mark_decision(approval, ApprovalDecisionStatus.APPROVED, None, datetime(2025, 3, 15)) is True
    assert repo.mark_decision(approval, ApprovalDecisionStatus.REJECTED, None, datetime(2025, 3, 16)) is False
    db.session.commit()
    assert approval.status == ApprovalDecisionStatus.APPROVED


def test_decisions_are_audited(ctx, seed, org):
    expense_id = _route(seed, org, 300, [(org.manager_a, True)])
    record_decision(expense_id, org.manager_a, "rejected", comments="Duplicate")

    actions = [entry.action for entry in AuditLog.query.filter_by(entity_id=expense_id).order_by(AuditLog.id)]
    assert actions == ["approval.assigned", "approval.rejected", "expense.rejected"]


class TestOverride:

    def test_admin_closes_limbo_expense(self, ctx, seed, org):
        expense_id = _route(seed, org, 500, [(org.manager_a, True), (org.manager_b, False)])
        record_decision(expense_id, org.manager_a, "approved")

        result = override_decision(expense_id, org.admin, "approve", reason="Month end")

        assert result.status == "approved"
        assert _status(expense_id) == ExpenseStatus.APPROVED
        override = ExpenseApproval.query.filter_by(expense_id=expense_id, step_order=0).one()
        assert override.approver_user_id == org.admin
        assert override.is_required is False
        assert override.comments == "Admin override: Month end"

    def test_unassigned_expense_can_be_rejected(self, ctx, seed, org):
        expense_id = seed.expense(org.company, seed.user(org.company), 80)
        assign_workflow(expense_id, org.company, notifier=_silent)

        assert override_decision(expense_id, org.admin, "reject").status == "rejected"
        override = ExpenseApproval.query.filter_by(expense_id=expense_id).one()
        assert override.comments == "Admin override: No reason provided"

    def test_only_admins_override(self, ctx, seed, org):
        expense_id = seed.expense(org.company, org.employee, 80)

        with pytest.raises(PreconditionFailed):
            override_decision(expense_id, org.manager_a, "approve")

    def test_final_expense_cannot_be_overridden(self, ctx, seed, org):
        expense_id = seed.expense(org.company, org.employee, 80, status=ExpenseStatus.REJECTED)

        with pytest.raises(PreconditionFailed):
            override_decision(expense_id, org.admin, "approve")

    def test_unknown_action(self, ctx, seed, org):
        expense_id = seed.expense(org.company, org.employee, 80)

        with pytest.raises(ValidationError):
            override_decision(expense_id, org.admin, "escalate")
