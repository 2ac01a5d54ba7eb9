"""Application data models exposed for easy imports."""
from app import db  # noqa: F401
from .company import Company  # noqa: F401
from .user import APPROVER_ROLES, User, UserRole, EmployeeProfile  # noqa: F401
from .expense import FINAL_EXPENSE_STATUSES, Expense, ExpenseStatus  # noqa: F401
from .approval import (
    ApprovalDecisionStatus,
    ApprovalNotification,
    ApprovalRule,
    ApprovalRuleType,
    ApprovalWorkflow,
    ApprovalWorkflowStep,
    ExpenseApproval,
)  # noqa: F401
from .audit import AuditLog  # noqa: F401

__all__ = [
    "db",
    "Company",
    "User",
    "UserRole",
    "APPROVER_ROLES",
    "EmployeeProfile",
    "Expense",
    "ExpenseStatus",
    "FINAL_EXPENSE_STATUSES",
    "ExpenseApproval",
    "ApprovalDecisionStatus",
    "ApprovalNotification",
    "ApprovalWorkflow",
    "ApprovalWorkflowStep",
    "ApprovalRule",
    "ApprovalRuleType",
    "AuditLog",
]
