"""Typed data access for the approval engine."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import (
    ApprovalDecisionStatus,
    ApprovalNotification,
    ApprovalRule,
    ApprovalRuleType,
    ApprovalWorkflow,
    EmployeeProfile,
    Expense,
    ExpenseApproval,
    ExpenseStatus,
    User,
)
from app.services.errors import TransientStoreError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class ApprovalCounts:
    total: int
    approved: int
    rejected: int
    pending_required: int


def _in_band(model, amount: Decimal):
    return and_(
        or_(model.min_amount.is_(None), model.min_amount <= amount),
        or_(model.max_amount.is_(None), model.max_amount >= amount),
    )


def page_window(page: Optional[int] = 1, limit: Optional[int] = DEFAULT_PAGE_SIZE) -> Tuple[int, int, int]:
    """Clamp ``page``/``limit`` and return ``(page, limit, offset)``."""
    page = max(page or 1, 1)
    limit = min(max(limit or DEFAULT_PAGE_SIZE, 1), MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def pagination(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }


class ApprovalRepository:
    """Query and write helpers bound to one SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit on success, roll back on any failure."""
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Approval transaction failed; rolled back")
            raise TransientStoreError("The approval store is temporarily unavailable.") from exc
        except Exception:
            self.session.rollback()
            raise

    # Configuration ----------------------------------------------------------

    def find_active_workflows_for_amount(self, company_id: int, amount) -> List[ApprovalWorkflow]:
        amount = Decimal(str(amount))
        stmt = (
            select(ApprovalWorkflow)
            .where(
                ApprovalWorkflow.company_id == company_id,
                ApprovalWorkflow.is_active.is_(True),
                _in_band(ApprovalWorkflow, amount),
            )
            .order_by(ApprovalWorkflow.id)
        )
        return list(self.session.execute(stmt).unique().scalars())

    def find_applicable_rules(
        self,
        company_id: int,
        amount,
        rule_types: Optional[Iterable[ApprovalRuleType]] = None,
    ) -> List[ApprovalRule]:
        amount = Decimal(str(amount))
        stmt = select(ApprovalRule).where(
            ApprovalRule.company_id == company_id,
            ApprovalRule.is_active.is_(True),
            _in_band(ApprovalRule, amount),
        )
        if rule_types is not None:
            stmt = stmt.where(ApprovalRule.rule_type.in_(list(rule_types)))
        return list(self.session.execute(stmt.order_by(ApprovalRule.id)).unique().scalars())

    def find_strictest_percentage_rule(self, company_id: int, amount) -> Optional[ApprovalRule]:
        amount = Decimal(str(amount))
        stmt = (
            select(ApprovalRule)
            .where(
                ApprovalRule.company_id == company_id,
                ApprovalRule.is_active.is_(True),
                ApprovalRule.rule_type == ApprovalRuleType.PERCENTAGE,
                _in_band(ApprovalRule, amount),
            )
            .order_by(ApprovalRule.percentage_threshold.desc(), ApprovalRule.id)
            .limit(1)
        )
        return self.session.execute(stmt).unique().scalars().first()

    def list_workflows(self, company_id: int, limit: Optional[int] = None, offset: int = 0) -> List[ApprovalWorkflow]:
        stmt = (
            select(ApprovalWorkflow)
            .where(ApprovalWorkflow.company_id == company_id)
            .order_by(ApprovalWorkflow.created_at.desc(), ApprovalWorkflow.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).unique().scalars())

    def count_workflows(self, company_id: int) -> int:
        stmt = select(func.count(ApprovalWorkflow.id)).where(ApprovalWorkflow.company_id == company_id)
        return int(self.session.execute(stmt).scalar_one())

    def list_rules(self, company_id: int, limit: Optional[int] = None, offset: int = 0) -> List[ApprovalRule]:
        stmt = (
            select(ApprovalRule)
            .where(ApprovalRule.company_id == company_id)
            .order_by(ApprovalRule.created_at.desc(), ApprovalRule.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).unique().scalars())

    def count_rules(self, company_id: int) -> int:
        stmt = select(func.count(ApprovalRule.id)).where(ApprovalRule.company_id == company_id)
        return int(self.session.execute(stmt).scalar_one())

    # Users ------------------------------------------------------------------

    def get_user(self, user_id: int, company_id: Optional[int] = None) -> Optional[User]:
        user = self.session.get(User, user_id)
        if user is None or (company_id is not None and user.company_id != company_id):
            return None
        return user

    def users_in_company(self, user_ids: Sequence[int], company_id: int) -> List[User]:
        if not user_ids:
            return []
        stmt = select(User).where(User.id.in_(list(user_ids)), User.company_id == company_id)
        return list(self.session.execute(stmt).unique().scalars())

    def direct_manager(self, user_id: int) -> Optional[User]:
        stmt = select(EmployeeProfile).where(EmployeeProfile.user_id == user_id)
        profile = self.session.execute(stmt).unique().scalars().first()
        return profile.manager if profile else None

    # Expenses and approvals -------------------------------------------------

    def get_expense(
        self,
        expense_id: int,
        company_id: Optional[int] = None,
        for_update: bool = False,
    ) -> Optional[Expense]:
        stmt = select(Expense).where(Expense.id == expense_id)
        if company_id is not None:
            stmt = stmt.where(Expense.company_id == company_id)
        if for_update:
            stmt = stmt.with_for_update(of=Expense).execution_options(populate_existing=True)
        return self.session.execute(stmt).unique().scalars().first()

    def get_approval(self, expense_id: int, approver_id: int) -> Optional[ExpenseApproval]:
        stmt = (
            select(ExpenseApproval)
            .where(
                ExpenseApproval.expense_id == expense_id,
                ExpenseApproval.approver_user_id == approver_id,
            )
            .order_by(
                case((ExpenseApproval.status == ApprovalDecisionStatus.PENDING, 0), else_=1),
                ExpenseApproval.step_order,
                ExpenseApproval.id,
            )
        )
        return self.session.execute(stmt).unique().scalars().first()

    def list_approvals(self, expense_id: int) -> List[ExpenseApproval]:
        stmt = (
            select(ExpenseApproval)
            .where(ExpenseApproval.expense_id == expense_id)
            .order_by(ExpenseApproval.created_at, ExpenseApproval.id)
        )
        return list(self.session.execute(stmt).unique().scalars())

    def has_approvals(self, expense_id: int) -> bool:
        stmt = select(func.count(ExpenseApproval.id)).where(ExpenseApproval.expense_id == expense_id)
        return bool(self.session.execute(stmt).scalar_one())

    def approval_counts(self, expense_id: int) -> ApprovalCounts:
        status = ExpenseApproval.status
        stmt = select(
            func.count(ExpenseApproval.id),
            func.count(case((status == ApprovalDecisionStatus.APPROVED, 1))),
            func.count(case((status == ApprovalDecisionStatus.REJECTED, 1))),
            func.count(
                case(
                    (
                        and_(
                            ExpenseApproval.is_required.is_(True),
                            status == ApprovalDecisionStatus.PENDING,
                        ),
                        1,
                    )
                )
            ),
        ).where(ExpenseApproval.expense_id == expense_id)
        total, approved, rejected, pending_required = self.session.execute(stmt).one()
        return ApprovalCounts(
            total=int(total or 0),
            approved=int(approved or 0),
            rejected=int(rejected or 0),
            pending_required=int(pending_required or 0),
        )

    def mark_decision(
        self,
        approval: ExpenseApproval,
        status: ApprovalDecisionStatus,
        comments: Optional[str],
        decided_at: datetime,
    ) -> bool:
        """Resolve a still-pending approval; ``False`` when it was already decided."""
        stmt = (
            update(ExpenseApproval)
            .where(
                ExpenseApproval.id == approval.id,
                ExpenseApproval.status == ApprovalDecisionStatus.PENDING,
            )
            .values(status=status, comments=comments, approved_at=decided_at)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.expire(approval)
        return result.rowcount == 1

    def _pending_filters(self, approver_id: int, company_id: int) -> list:
        return [
            ExpenseApproval.approver_user_id == approver_id,
            ExpenseApproval.status == ApprovalDecisionStatus.PENDING,
            Expense.company_id == company_id,
            Expense.status == ExpenseStatus.PENDING,
        ]

    def pending_approvals_for(
        self,
        approver_id: int,
        company_id: int,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ExpenseApproval]:
        stmt = (
            select(ExpenseApproval)
            .join(Expense, ExpenseApproval.expense_id == Expense.id)
            .where(*self._pending_filters(approver_id, company_id))
            .order_by(Expense.created_at.desc(), ExpenseApproval.id)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).unique().scalars())

    def count_pending_approvals(self, approver_id: int, company_id: int) -> int:
        stmt = (
            select(func.count(ExpenseApproval.id))
            .join(Expense, ExpenseApproval.expense_id == Expense.id)
            .where(*self._pending_filters(approver_id, company_id))
        )
        return int(self.session.execute(stmt).scalar_one())

    def status_summary(
        self,
        company_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> dict:
        filters = [Expense.company_id == company_id]
        if start is not None:
            filters.append(Expense.date_spent >= start)
        if end is not None:
            filters.append(Expense.date_spent <= end)

        expense_rows = self.session.execute(
            select(Expense.status, func.count(Expense.id)).where(*filters).group_by(Expense.status)
        ).all()
        approval_rows = self.session.execute(
            select(ExpenseApproval.status, func.count(ExpenseApproval.id))
            .join(Expense, ExpenseApproval.expense_id == Expense.id)
            .where(*filters)
            .group_by(ExpenseApproval.status)
        ).all()

        expenses = {status.value: 0 for status in ExpenseStatus}
        expenses.update({status.value: count for status, count in expense_rows})
        approvals = {status.value: 0 for status in ApprovalDecisionStatus}
        approvals.update({status.value: count for status, count in approval_rows})
        return {
            "total_expenses": sum(expenses.values()),
            "expenses": expenses,
            "total_approvals": sum(approvals.values()),
            "approvals": approvals,
        }

    # Notifications ----------------------------------------------------------

    def list_notifications(self, approver_id: int, limit: int = 10, offset: int = 0) -> List[ApprovalNotification]:
        stmt = (
            select(ApprovalNotification)
            .where(ApprovalNotification.approver_id == approver_id)
            .order_by(ApprovalNotification.created_at.desc(), ApprovalNotification.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.execute(stmt).unique().scalars())

    def count_notifications(self, approver_id: int) -> int:
        stmt = select(func.count(ApprovalNotification.id)).where(
            ApprovalNotification.approver_id == approver_id
        )
        return int(self.session.execute(stmt).scalar_one())

    def get_notification(self, notification_id: int, approver_id: int) -> Optional[ApprovalNotification]:
        stmt = select(ApprovalNotification).where(
            ApprovalNotification.id == notification_id,
            ApprovalNotification.approver_id == approver_id,
        )
        return self.session.execute(stmt).unique().scalars().first()
