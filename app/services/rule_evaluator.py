"""Conditional approval rules: percentage, specific approver and hybrid.

The evaluator never rejects an expense. It only reports whether one of the
company's early-approval shortcuts is satisfied once every required approval
has been resolved.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from app.models import (
    ApprovalDecisionStatus,
    ApprovalRule,
    ApprovalRuleType,
    Expense,
    ExpenseApproval,
)
from app.services.errors import ValidationError
from app.services.repository import ApprovalCounts, ApprovalRepository

logger = logging.getLogger(__name__)

CONDITIONAL_RULE_TYPES = (ApprovalRuleType.SPECIFIC_APPROVER, ApprovalRuleType.HYBRID)


@dataclass(frozen=True)
class RuleOutcome:
    approved: bool
    rule: Optional[str] = None


NO_MATCH = RuleOutcome(approved=False)


def percentage_met(approved: int, total: int, threshold) -> bool:
    """``approved / total * 100 >= threshold``; never true without approvals to count."""
    if not total or threshold is None:
        return False
    return Decimal(approved) * 100 >= Decimal(str(threshold)) * Decimal(total)


def specific_approver_met(rule: ApprovalRule, approvals: Iterable[ExpenseApproval]) -> bool:
    if rule.specific_approver_id is None:
        return False
    return any(
        approval.approver_user_id == rule.specific_approver_id
        and approval.status == ApprovalDecisionStatus.APPROVED
        for approval in approvals
    )


def hybrid_met(rule: ApprovalRule, approvals: Iterable[ExpenseApproval], counts: ApprovalCounts) -> bool:
    return specific_approver_met(rule, approvals) or percentage_met(
        counts.approved, counts.total, rule.percentage_threshold
    )


def _amount(expense: Expense) -> Decimal:
    amount = expense.amount_in_company_currency
    if amount is None:
        raise ValidationError(f"Expense {expense.id} has no amount in the company currency.")
    return Decimal(str(amount))


def evaluate_conditional_rules(
    expense: Expense,
    repository: ApprovalRepository,
    counts: Optional[ApprovalCounts] = None,
) -> RuleOutcome:
    """First satisfied specific-approver or hybrid rule, in repository order."""
    rules = repository.find_applicable_rules(
        expense.company_id, _amount(expense), CONDITIONAL_RULE_TYPES
    )
    if not rules:
        return NO_MATCH

    approvals = repository.list_approvals(expense.id)
    if counts is None:
        counts = repository.approval_counts(expense.id)

    for rule in rules:
        if rule.rule_type == ApprovalRuleType.SPECIFIC_APPROVER:
            matched = specific_approver_met(rule, approvals)
        else:
            matched = hybrid_met(rule, approvals, counts)
        if matched:
            logger.info("Expense %s satisfied approval rule '%s'", expense.id, rule.name)
            return RuleOutcome(approved=True, rule=rule.name)
    return NO_MATCH


def evaluate_percentage_rules(
    expense: Expense,
    counts: ApprovalCounts,
    repository: ApprovalRepository,
) -> RuleOutcome:
    """Check the strictest in-band percentage rule against the approval counts."""
    if not counts.total:
        return NO_MATCH
    rule = repository.find_strictest_percentage_rule(expense.company_id, _amount(expense))
    if rule is None:
        return NO_MATCH
    if percentage_met(counts.approved, counts.total, rule.percentage_threshold):
        logger.info(
            "Expense %s reached %s%% approval threshold of rule '%s'",
            expense.id,
            rule.percentage_threshold,
            rule.name,
        )
        return RuleOutcome(approved=True, rule=rule.name)
    return NO_MATCH
