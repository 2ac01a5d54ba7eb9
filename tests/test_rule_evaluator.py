"""Tests for the conditional approval rule evaluator."""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from app import db
from app.models import ApprovalDecisionStatus, ApprovalRuleType, Expense, ExpenseApproval
from app.services.repository import ApprovalCounts, ApprovalRepository
from app.services.rule_evaluator import (
    evaluate_conditional_rules,
    evaluate_percentage_rules,
    hybrid_met,
    percentage_met,
    specific_approver_met,
)

APPROVED = ApprovalDecisionStatus.APPROVED
PENDING = ApprovalDecisionStatus.PENDING
REJECTED = ApprovalDecisionStatus.REJECTED


def _approval(approver_id, status):
    return SimpleNamespace(approver_user_id=approver_id, status=status)


class TestPercentage:

    def test_boundary_is_inclusive(self):
        assert percentage_met(3, 5, 60) is True
        assert percentage_met(1, 2, 50) is True

    def test_below_threshold(self):
        assert percentage_met(2, 5, 60) is False
        assert percentage_met(2, 3, 67) is False

    def test_two_of_three_meets_sixty(self):
        assert percentage_met(2, 3, 60) is True

    def test_zero_total_never_matches(self):
        assert percentage_met(0, 0, 1) is False

    def test_missing_threshold_never_matches(self):
        assert percentage_met(3, 3, None) is False

    def test_decimal_threshold(self):
        assert percentage_met(2, 3, "66.66") is True
        assert percentage_met(2, 3, "66.67") is False


class TestSpecificAndHybrid:

    def test_specific_approver_must_have_approved(self):
        rule = SimpleNamespace(specific_approver_id=7)
        assert specific_approver_met(rule, [_approval(7, APPROVED)]) is True
        assert specific_approver_met(rule, [_approval(7, PENDING)]) is False
        assert specific_approver_met(rule, [_approval(8, APPROVED)]) is False

    def test_specific_approver_rejection_is_just_no_match(self):
        rule = SimpleNamespace(specific_approver_id=7)
        assert specific_approver_met(rule, [_approval(7, REJECTED)]) is False

    def test_hybrid_matches_on_specific_approver_alone(self):
        rule = SimpleNamespace(specific_approver_id=7, percentage_threshold=100)
        counts = ApprovalCounts(total=4, approved=1, rejected=0, pending_required=0)
        assert hybrid_met(rule, [_approval(7, APPROVED)], counts) is True

    def test_hybrid_matches_on_percentage_alone(self):
        rule = SimpleNamespace(specific_approver_id=7, percentage_threshold=50)
        counts = ApprovalCounts(total=4, approved=2, rejected=0, pending_required=0)
        assert hybrid_met(rule, [_approval(7, PENDING)], counts) is True

    def test_hybrid_needs_one_of_the_two(self):
        rule = SimpleNamespace(specific_approver_id=7, percentage_threshold=75)
        counts = ApprovalCounts(total=4, approved=2, rejected=0, pending_required=0)
        assert hybrid_met(rule, [_approval(7, PENDING)], counts) is False


def _decide(expense_id, approver_id, status):
    approval = ExpenseApproval.query.filter_by(expense_id=expense_id, approver_user_id=approver_id).one()
    approval.status = status
    db.session.commit()


@pytest.fixture
def approvals(seed, org):
    """An expense of 500 with approvals from both managers and the admin."""
    expense_id = seed.expense(org.company, org.employee, 500)
    with seed.app.app_context():
        db.session.add_all(
            ExpenseApproval(expense_id=expense_id, approver_user_id=approver_id, step_order=order)
            for order, approver_id in enumerate((org.manager_a, org.manager_b, org.admin), start=1)
        )
        db.session.commit()
    return expense_id


def test_strictest_percentage_rule_wins(ctx, seed, org, approvals):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=50)
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=90)
    _decide(approvals, org.manager_a, APPROVED)
    _decide(approvals, org.manager_b, APPROVED)

    repo = ApprovalRepository(db.session)
    expense = db.session.get(Expense, approvals)
    outcome = evaluate_percentage_rules(expense, repo.approval_counts(approvals), repo)

    assert outcome.approved is False


def test_percentage_rule_outside_band_is_ignored(ctx, seed, org, approvals):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=10, min_amount=1000)
    _decide(approvals, org.manager_a, APPROVED)

    repo = ApprovalRepository(db.session)
    expense = db.session.get(Expense, approvals)
    assert evaluate_percentage_rules(expense, repo.approval_counts(approvals), repo).approved is False


def test_percentage_rule_matches(ctx, seed, org, approvals):
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=60, name="Majority")
    _decide(approvals, org.manager_a, APPROVED)
    _decide(approvals, org.manager_b, APPROVED)

    repo = ApprovalRepository(db.session)
    expense = db.session.get(Expense, approvals)
    outcome = evaluate_percentage_rules(expense, repo.approval_counts(approvals), repo)

    assert outcome.approved is True
    assert outcome.rule == "Majority"


def test_first_satisfied_conditional_rule_wins(ctx, seed, org, approvals):
    seed.rule(org.company, ApprovalRuleType.SPECIFIC_APPROVER, approver_id=org.manager_b, name="Bo signs")
    seed.rule(org.company, ApprovalRuleType.SPECIFIC_APPROVER, approver_id=org.admin, name="Admin signs")
    seed.rule(org.company, ApprovalRuleType.HYBRID, approver_id=org.manager_a, threshold=30, name="Hybrid")
    _decide(approvals, org.admin, APPROVED)
    _decide(approvals, org.manager_a, APPROVED)

    repo = ApprovalRepository(db.session)
    outcome = evaluate_conditional_rules(db.session.get(Expense, approvals), repo)

    assert outcome.approved is True
    assert outcome.rule == "Admin signs"


def test_inactive_and_percentage_rules_are_not_conditional(ctx, seed, org, approvals):
    seed.rule(org.company, ApprovalRuleType.SPECIFIC_APPROVER, approver_id=org.admin, is_active=False)
    seed.rule(org.company, ApprovalRuleType.PERCENTAGE, threshold=1)
    _decide(approvals, org.admin, APPROVED)

    repo = ApprovalRepository(db.session)
    outcome = evaluate_conditional_rules(db.session.get(Expense, approvals), repo)

    assert outcome.approved is False
