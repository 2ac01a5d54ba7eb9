"""Approval-related models."""
from __future__ import annotations

import enum

from app import db


class ApprovalDecisionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalRuleType(enum.Enum):
    PERCENTAGE = "percentage"
    SPECIFIC_APPROVER = "specific_approver"
    HYBRID = "hybrid"


def _money(value):
    return float(value) if value is not None else None


class AmountBandMixin:
    """``[min_amount, max_amount]`` columns; a missing maximum is unbounded."""

    min_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_amount = db.Column(db.Numeric(12, 2), nullable=True)


class ApprovalWorkflow(AmountBandMixin, db.Model):
    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now(), nullable=False
    )

    company = db.relationship("Company", back_populates="approval_workflows", lazy="joined")
    steps = db.relationship(
        "ApprovalWorkflowStep",
        back_populates="workflow",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="ApprovalWorkflowStep.step_order",
    )

    def to_dict(self, include_steps: bool = False) -> dict:
        payload = {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "min_amount": _money(self.min_amount),
            "max_amount": _money(self.max_amount),
            "is_active": self.is_active,
            "step_count": len(self.steps),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_steps:
            payload["steps"] = [step.to_dict() for step in self.steps]
        return payload

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.name}>"


class ApprovalWorkflowStep(db.Model):
    __tablename__ = "approval_workflow_steps"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "step_order", name="uq_workflow_step_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_order = db.Column(db.Integer, nullable=False)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    is_required = db.Column(db.Boolean, default=True, nullable=False)

    workflow = db.relationship("ApprovalWorkflow", back_populates="steps")
    approver = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        approver = self.approver
        return {
            "id": self.id,
            "step_order": self.step_order,
            "is_required": self.is_required,
            "approver": {
                "id": approver.id,
                "first_name": approver.first_name,
                "last_name": approver.last_name,
                "role": approver.role.value,
            }
            if approver
            else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalWorkflowStep workflow={self.workflow_id} order={self.step_order}>"


class ApprovalRule(AmountBandMixin, db.Model):
    __tablename__ = "approval_rules"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    rule_type = db.Column(db.Enum(ApprovalRuleType, name="approval_rule_type"), nullable=False)
    percentage_threshold = db.Column(db.Numeric(5, 2), nullable=True)
    specific_approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now(), nullable=False
    )

    company = db.relationship("Company", back_populates="approval_rules", lazy="joined")
    specific_approver = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        approver = self.specific_approver
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "rule_type": self.rule_type.value if self.rule_type else None,
            "percentage_threshold": float(self.percentage_threshold)
            if self.percentage_threshold is not None
            else None,
            "specific_approver": {
                "id": approver.id,
                "first_name": approver.first_name,
                "last_name": approver.last_name,
            }
            if approver
            else None,
            "min_amount": _money(self.min_amount),
            "max_amount": _money(self.max_amount),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalRule id={self.id} type={self.rule_type.value if self.rule_type else None}>"


class ExpenseApproval(db.Model):
    __tablename__ = "expense_approvals"

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, index=True)
    approver_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    workflow_step_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflow_steps.id", ondelete="SET NULL"), nullable=True
    )
    step_order = db.Column(db.Integer, nullable=False, default=1)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(
        db.Enum(ApprovalDecisionStatus, name="approval_decision_status"),
        nullable=False,
        default=ApprovalDecisionStatus.PENDING,
    )
    comments = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    expense = db.relationship("Expense", back_populates="approvals", lazy="joined")
    approver = db.relationship("User", back_populates="approvals", lazy="joined")
    workflow_step = db.relationship("ApprovalWorkflowStep", lazy="select")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_id": self.expense_id,
            "approver_user_id": self.approver_user_id,
            "workflow_step_id": self.workflow_step_id,
            "step_order": self.step_order,
            "is_required": self.is_required,
            "status": self.status.value if self.status else None,
            "comments": self.comments,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<ExpenseApproval expense_id={self.expense_id} "
            f"status={self.status.value if self.status else None}>"
        )


class ApprovalNotification(db.Model):
    __tablename__ = "approval_notifications"

    id = db.Column(db.Integer, primary_key=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=False, index=True)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    notification_type = db.Column(db.String(50), nullable=False, default="approval_request")
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, server_default=db.func.now(), nullable=False)

    expense = db.relationship("Expense", lazy="joined")
    approver = db.relationship("User", lazy="joined")

    def to_dict(self) -> dict:
        expense = self.expense
        return {
            "id": self.id,
            "type": self.notification_type,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expense": expense.to_dict() if expense else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalNotification expense_id={self.expense_id} approver_id={self.approver_id}>"
