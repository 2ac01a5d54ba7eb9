"""Approval engine for multi-step and conditional expense approval.

Two entry points change state:

* :func:`assign_workflow` runs once per submitted expense and creates the
  pending approval rows, either from the matching amount-banded workflow or
  from the submitter's direct manager.
* :func:`record_decision` applies one approver's verdict and decides whether
  the expense becomes ``approved``, ``rejected`` or stays ``pending``.

Both own their transaction: the expense row is locked for the duration, and
any failure rolls back every write made by the call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from flask import current_app

from app import db
from app.models import (
    ApprovalDecisionStatus,
    ApprovalWorkflow,
    AuditLog,
    Expense,
    ExpenseApproval,
    ExpenseStatus,
    UserRole,
)
from app.services import notification_service
from app.services.errors import (
    ConfigurationAmbiguity,
    NotFound,
    PreconditionFailed,
    ValidationError,
)
from app.services.repository import (
    DEFAULT_PAGE_SIZE,
    ApprovalRepository,
    page_window,
    pagination,
)
from app.services.rule_evaluator import evaluate_conditional_rules, evaluate_percentage_rules

logger = logging.getLogger(__name__)

Notifier = Callable[[int, int], Any]

MAX_COMMENT_LENGTH = 1000
OVERRIDE_ACTIONS = {
    "approve": ExpenseStatus.APPROVED,
    "reject": ExpenseStatus.REJECTED,
}


@dataclass(frozen=True)
class DecisionResult:
    status: str
    message: str
    rule: Optional[str] = None

    def to_dict(self) -> dict:
        payload = {"status": self.status, "message": self.message}
        if self.rule:
            payload["rule"] = self.rule
        return payload


WAITING = DecisionResult(ExpenseStatus.PENDING.value, "Waiting for more approvals")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _repository(repository: Optional[ApprovalRepository]) -> ApprovalRepository:
    return repository if repository is not None else ApprovalRepository(db.session)


def _coerce_decision(decision: Union[str, ApprovalDecisionStatus]) -> ApprovalDecisionStatus:
    if isinstance(decision, ApprovalDecisionStatus):
        status = decision
    else:
        try:
            status = ApprovalDecisionStatus(str(decision).strip().lower())
        except ValueError:
            status = None
    if status not in (ApprovalDecisionStatus.APPROVED, ApprovalDecisionStatus.REJECTED):
        raise ValidationError("Decision must be 'approved' or 'rejected'.")
    return status


def _clean_comments(comments: Optional[str]) -> Optional[str]:
    if comments is None:
        return None
    comments = str(comments).strip()
    if len(comments) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comments cannot exceed {MAX_COMMENT_LENGTH} characters.")
    return comments or None


def _notify_safely(notifier: Notifier, expense_id: int, approver_id: int) -> None:
    try:
        notifier(expense_id, approver_id)
    except Exception:
        logger.exception(
            "Notification for expense %s to approver %s failed; approvals are kept",
            expense_id,
            approver_id,
        )


# Workflow assignment --------------------------------------------------------


def _select_workflow(expense: Expense, workflows: List[ApprovalWorkflow], strict: bool) -> ApprovalWorkflow:
    if len(workflows) == 1:
        return workflows[0]
    names = ", ".join(workflow.name for workflow in workflows)
    if strict:
        raise ConfigurationAmbiguity(
            f"{len(workflows)} active approval workflows match expense {expense.id}: {names}."
        )
    logger.warning(
        "Expense %s matches %d active workflows (%s); using '%s'",
        expense.id,
        len(workflows),
        names,
        workflows[0].name,
    )
    return workflows[0]


def assign_workflow(
    expense_id: int,
    company_id: int,
    amount_in_company_currency=None,
    repository: Optional[ApprovalRepository] = None,
    notifier: Optional[Notifier] = None,
    strict: Optional[bool] = None,
) -> List[ExpenseApproval]:
    """Create the pending approvals for a newly submitted expense.

    The first approver (lowest step order, or the fallback manager) is
    notified once the approvals are committed. When neither a workflow nor an
    approving manager exists, no approval is created and the expense waits
    for an administrator override.
    """
    repo = _repository(repository)
    notifier = notifier or notification_service.notify
    if strict is None:
        strict = current_app.config.get("APPROVAL_STRICT_WORKFLOW_MATCH", True)

    approvals: List[ExpenseApproval] = []
    first_approver_id: Optional[int] = None

    with repo.transaction() as session:
        expense = repo.get_expense(expense_id, company_id=company_id, for_update=True)
        if expense is None:
            raise NotFound("Expense not found.")
        if repo.has_approvals(expense_id):
            raise PreconditionFailed("Approvals have already been assigned to this expense.")

        amount = amount_in_company_currency
        if amount is None:
            amount = expense.amount_in_company_currency
        if amount is None:
            raise ValidationError("Expense has no amount in the company currency.")

        workflows = repo.find_active_workflows_for_amount(company_id, amount)
        workflow = _select_workflow(expense, workflows, strict) if workflows else None

        if workflow is not None:
            for step in workflow.steps:
                approvals.append(
                    ExpenseApproval(
                        expense_id=expense_id,
                        approver_user_id=step.approver_id,
                        workflow_step_id=step.id,
                        step_order=step.step_order,
                        is_required=step.is_required,
                        status=ApprovalDecisionStatus.PENDING,
                    )
                )
        else:
            manager = repo.direct_manager(expense.submitter_user_id)
            if manager is not None and manager.is_manager_approver:
                approvals.append(
                    ExpenseApproval(
                        expense_id=expense_id,
                        approver_user_id=manager.id,
                        step_order=1,
                        is_required=True,
                        status=ApprovalDecisionStatus.PENDING,
                    )
                )

        session.add_all(approvals)

        if approvals:
            first_approver_id = min(approvals, key=lambda item: item.step_order).approver_user_id
            AuditLog.record(
                session,
                "approval.assigned",
                expense_id,
                workflow_id=workflow.id if workflow is not None else None,
                approver_ids=[approval.approver_user_id for approval in approvals],
            )
        else:
            logger.warning(
                "No workflow or approving manager for expense %s; it needs an administrator",
                expense_id,
            )
            AuditLog.record(session, "expense.unassigned", expense_id)

    if first_approver_id is not None:
        _notify_safely(notifier, expense_id, first_approver_id)

    logger.info("Assigned %d approval(s) to expense %s", len(approvals), expense_id)
    return approvals


# Decision processing --------------------------------------------------------


def _finalize(session, expense: Expense, status: ExpenseStatus, user_id: Optional[int], **extra) -> None:
    expense.status = status
    expense.updated_at = _utcnow()
    AuditLog.record(session, f"expense.{status.value}", expense.id, user_id=user_id, **extra)


def _resolve_expense(
    session,
    expense: Expense,
    decision: ApprovalDecisionStatus,
    approver_id: int,
    repo: ApprovalRepository,
) -> DecisionResult:
    if decision == ApprovalDecisionStatus.REJECTED:
        _finalize(session, expense, ExpenseStatus.REJECTED, approver_id)
        return DecisionResult(ExpenseStatus.REJECTED.value, "Expense rejected")

    counts = repo.approval_counts(expense.id)
    if counts.rejected:
        _finalize(session, expense, ExpenseStatus.REJECTED, approver_id)
        return DecisionResult(ExpenseStatus.REJECTED.value, "Expense rejected")

    if counts.pending_required:
        return WAITING

    outcome = evaluate_conditional_rules(expense, repo, counts)
    if not outcome.approved:
        outcome = evaluate_percentage_rules(expense, counts, repo)
    if outcome.approved:
        _finalize(session, expense, ExpenseStatus.APPROVED, approver_id, rule=outcome.rule)
        return DecisionResult(ExpenseStatus.APPROVED.value, "Expense approved", outcome.rule)

    # Every required step is done but no rule closed the expense; it waits
    # for further approvals or an administrator override.
    return WAITING


def record_decision(
    expense_id: int,
    approver_id: int,
    decision: Union[str, ApprovalDecisionStatus],
    comments: Optional[str] = None,
    company_id: Optional[int] = None,
    repository: Optional[ApprovalRepository] = None,
) -> DecisionResult:
    """Apply one approver's decision and re-evaluate the expense."""
    status = _coerce_decision(decision)
    comments = _clean_comments(comments)
    repo = _repository(repository)

    with repo.transaction() as session:
        expense = repo.get_expense(expense_id, company_id=company_id, for_update=True)
        if expense is None:
            raise NotFound("Expense not found.")
        if expense.status != ExpenseStatus.PENDING:
            raise PreconditionFailed("Expense is not pending approval.")

        approval = repo.get_approval(expense_id, approver_id)
        if approval is None:
            raise PreconditionFailed("You are not an approver for this expense.")
        if approval.status != ApprovalDecisionStatus.PENDING:
            raise PreconditionFailed("You have already made a decision on this expense.")
        if not repo.mark_decision(approval, status, comments, _utcnow()):
            raise PreconditionFailed("You have already made a decision on this expense.")

        AuditLog.record(
            session,
            f"approval.{status.value}",
            expense_id,
            user_id=approver_id,
            approval_id=approval.id,
            comments=comments,
        )
        result = _resolve_expense(session, expense, status, approver_id, repo)

    logger.info(
        "Approver %s %s expense %s -> %s", approver_id, status.value, expense_id, result.status
    )
    return result


def override_decision(
    expense_id: int,
    admin_id: int,
    action: str,
    reason: Optional[str] = None,
    company_id: Optional[int] = None,
    repository: Optional[ApprovalRepository] = None,
) -> DecisionResult:
    """Let an administrator close out an expense that is still open."""
    target = OVERRIDE_ACTIONS.get(str(action).strip().lower()) if action else None
    if target is None:
        raise ValidationError("Invalid action. Must be 'approve' or 'reject'.")
    reason = _clean_comments(reason)
    repo = _repository(repository)

    with repo.transaction() as session:
        admin = repo.get_user(admin_id, company_id=company_id)
        if admin is None or admin.role != UserRole.ADMIN:
            raise PreconditionFailed("Only admins can override approvals.")

        expense = repo.get_expense(expense_id, company_id=admin.company_id, for_update=True)
        if expense is None:
            raise NotFound("Expense not found.")
        if expense.is_final:
            raise PreconditionFailed("Expense is already finalized.")

        decided = (
            ApprovalDecisionStatus.APPROVED
            if target == ExpenseStatus.APPROVED
            else ApprovalDecisionStatus.REJECTED
        )
        session.add(
            ExpenseApproval(
                expense_id=expense_id,
                approver_user_id=admin_id,
                step_order=0,
                is_required=False,
                status=decided,
                comments=f"Admin override: {reason or 'No reason provided'}",
                approved_at=_utcnow(),
            )
        )
        _finalize(session, expense, target, admin_id, override=True, reason=reason)

    logger.info("Admin %s overrode expense %s to %s", admin_id, expense_id, target.value)
    verb = "approved" if target == ExpenseStatus.APPROVED else "rejected"
    return DecisionResult(target.value, f"Expense {verb} by admin override")


# Read projections -----------------------------------------------------------


def get_approval_history(
    expense_id: int,
    company_id: Optional[int] = None,
    repository: Optional[ApprovalRepository] = None,
) -> List[Dict[str, Any]]:
    """Approvals of an expense in creation order, with approver identity."""
    repo = _repository(repository)
    if repo.get_expense(expense_id, company_id=company_id) is None:
        raise NotFound("Expense not found.")

    history = []
    for approval in repo.list_approvals(expense_id):
        approver = approval.approver
        history.append(
            {
                "status": approval.status.value,
                "comments": approval.comments,
                "approved_at": approval.approved_at.isoformat() if approval.approved_at else None,
                "step_order": approval.step_order,
                "is_required": approval.is_required,
                "approver": {
                    "id": approver.id,
                    "first_name": approver.first_name,
                    "last_name": approver.last_name,
                    "role": approver.role.value,
                }
                if approver
                else None,
            }
        )
    return history


def pending_approvals_for(
    approver_id: int,
    company_id: int,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    repository: Optional[ApprovalRepository] = None,
) -> Dict[str, Any]:
    """Open approvals waiting on ``approver_id``, newest expense first, one page at a time."""
    repo = _repository(repository)
    page, limit, offset = page_window(page, limit)
    approvals = repo.pending_approvals_for(approver_id, company_id, limit=limit, offset=offset)
    return {
        "approvals": [
            {"approval": approval.to_dict(), "expense": approval.expense.to_dict()}
            for approval in approvals
        ],
        "pagination": pagination(page, limit, repo.count_pending_approvals(approver_id, company_id)),
    }


def approval_summary(
    company_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    repository: Optional[ApprovalRepository] = None,
) -> Dict[str, Any]:
    if start and end and start > end:
        raise ValidationError("Start date must be on or before the end date.")
    return _repository(repository).status_summary(company_id, start, end)
