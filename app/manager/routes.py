"""Approver routes: pending work, decisions, history and notifications."""
from __future__ import annotations

from datetime import date
from typing import Any, Optional

from flask import request
from flask_login import current_user, login_required

from app import db
from app.models import Expense, UserRole
from app.services import approval_engine, notification_service
from app.services.errors import ValidationError
from app.utils.helpers import (
    form_data,
    form_error_response,
    json_response,
    page_args,
    request_payload,
    role_required,
)

from . import manager_bp
from .forms import ApprovalDecisionForm


def _parse_date(name: str) -> Optional[date]:
    value = request.args.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid '{name}' format. Use YYYY-MM-DD.") from None


@manager_bp.route("/pending", methods=["GET"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def pending_approvals() -> Any:
    """Return pending approvals assigned to the current approver."""
    page, limit = page_args()
    return json_response(
        approval_engine.pending_approvals_for(current_user.id, current_user.company_id, page=page, limit=limit)
    )


@manager_bp.route("/expenses/<int:expense_id>/decision", methods=["POST"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def decide_expense(expense_id: int) -> Any:
    """Approve or reject an expense on behalf of the current approver."""
    form = ApprovalDecisionForm(formdata=form_data(request_payload()))
    if not form.validate():
        return form_error_response(form)

    result = approval_engine.record_decision(
        expense_id,
        current_user.id,
        form.status.data,
        comments=form.comments.data,
        company_id=current_user.company_id,
    )
    expense = db.session.get(Expense, expense_id)
    return json_response(
        {
            "message": result.message,
            "decision": form.status.data,
            "result": result.to_dict(),
            "expense": expense.to_dict() if expense else None,
        }
    )


@manager_bp.route("/expenses/<int:expense_id>/history", methods=["GET"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def approval_history(expense_id: int) -> Any:
    """Return the approval trail of an expense in the approver's company."""
    history = approval_engine.get_approval_history(expense_id, company_id=current_user.company_id)
    expense = db.session.get(Expense, expense_id)
    return json_response(
        {
            "expense_id": expense_id,
            "status": expense.status.value,
            "approval_history": history,
        }
    )


@manager_bp.route("/notifications", methods=["GET"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def notifications() -> Any:
    page, limit = page_args()
    return json_response(notification_service.list_notifications(current_user.id, page=page, limit=limit))


@manager_bp.route("/notifications/<int:notification_id>/read", methods=["PUT"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def mark_notification_read(notification_id: int) -> Any:
    notification_service.mark_notification_read(notification_id, current_user.id)
    return json_response({"message": "Notification marked as read."})


@manager_bp.route("/stats/summary", methods=["GET"])
@login_required
@role_required(UserRole.MANAGER, UserRole.ADMIN)
def approval_stats() -> Any:
    """Company-wide expense and approval counts, optionally by spend date."""
    summary = approval_engine.approval_summary(
        current_user.company_id,
        start=_parse_date("start_date"),
        end=_parse_date("end_date"),
    )
    return json_response({"summary": summary})
