"""Employee-facing routes."""
from __future__ import annotations

from typing import Any

from flask import current_app
from flask_login import current_user, login_required

from app import db
from app.models import Expense, ExpenseStatus, UserRole
from app.services import approval_engine, currency_service
from app.utils.helpers import (
    form_data,
    form_error_response,
    json_response,
    request_payload,
    role_required,
)

from . import employee_bp
from .forms import ExpenseForm

SUBMITTER_ROLES = (UserRole.EMPLOYEE, UserRole.MANAGER, UserRole.ADMIN)


@employee_bp.route("/expenses", methods=["GET"])
@login_required
@role_required(*SUBMITTER_ROLES)
def list_expenses() -> Any:
    """List expenses submitted by the current user."""
    expenses = (
        Expense.query.filter_by(submitter_user_id=current_user.id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
        .all()
    )
    return json_response({"expenses": [expense.to_dict() for expense in expenses]})


@employee_bp.route("/expenses", methods=["POST"])
@login_required
@role_required(*SUBMITTER_ROLES)
def submit_expense() -> Any:
    """Submit a new expense and route it to its approvers."""
    form = ExpenseForm(formdata=form_data(request_payload()))
    if not form.validate():
        return form_error_response(form)

    company = current_user.company
    target_currency = company.currency_code or current_app.config.get("DEFAULT_CURRENCY", "USD")
    converted_amount, rate = currency_service.convert_currency(
        form.amount.data, form.currency.data, target_currency
    )

    expense = Expense(
        company_id=company.id,
        submitter_user_id=current_user.id,
        amount_original=form.amount.data,
        currency_original=form.currency.data.upper(),
        amount_in_company_currency=converted_amount,
        exchange_rate=rate,
        category=form.category.data,
        description=form.description.data or None,
        date_spent=form.date_spent.data,
        status=ExpenseStatus.PENDING,
    )

    # The expense commits together with its approvals; a failed assignment
    # rolls both back.
    db.session.add(expense)
    db.session.flush()
    approvals = approval_engine.assign_workflow(expense.id, company.id, converted_amount)

    return json_response(
        {
            "message": "Expense submitted.",
            "expense": expense.to_dict(),
            "approvals": [approval.to_dict() for approval in approvals],
        },
        status=201,
    )


@employee_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@login_required
@role_required(*SUBMITTER_ROLES)
def expense_detail(expense_id: int) -> Any:
    """View an expense of the current user with its approval history."""
    expense = Expense.query.filter_by(id=expense_id, submitter_user_id=current_user.id).first()
    if not expense:
        return json_response({"error": "Expense not found."}, status=404)

    history = approval_engine.get_approval_history(expense_id, company_id=current_user.company_id)
    return json_response({"expense": expense.to_dict(), "approval_history": history})
