"""Administrative routes: approval workflows, approval rules and overrides."""
from __future__ import annotations

from typing import Any

from flask_login import current_user, login_required

from app.models import UserRole
from app.services import approval_engine, workflow_admin
from app.utils.helpers import (
    form_data,
    form_error_response,
    json_response,
    page_args,
    request_payload,
    role_required,
)

from . import admin_bp
from .forms import ApprovalRuleForm, ApprovalWorkflowForm, OverrideForm


# Approval workflows ---------------------------------------------------------


@admin_bp.route("/approval-workflows", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def approval_workflows() -> Any:
    """List the company's approval workflows."""
    page, limit = page_args()
    return json_response(workflow_admin.list_workflows(current_user.company_id, page=page, limit=limit))


@admin_bp.route("/approval-workflows/<int:workflow_id>", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def approval_workflow_detail(workflow_id: int) -> Any:
    workflow = workflow_admin.get_workflow(workflow_id, current_user.company_id)
    return json_response({"workflow": workflow.to_dict(include_steps=True)})


@admin_bp.route("/approval-workflows", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def create_approval_workflow() -> Any:
    """Create an amount-banded workflow with its ordered approver steps."""
    payload = request_payload()
    form = ApprovalWorkflowForm(formdata=form_data(payload))
    if not form.validate():
        return form_error_response(form)

    workflow = workflow_admin.create_workflow(
        current_user.company_id,
        form.name.data,
        min_amount=form.min_amount.data,
        max_amount=form.max_amount.data,
        steps=payload.get("steps"),
    )
    return json_response(
        {"message": "Approval workflow created.", "workflow": workflow.to_dict(include_steps=True)},
        status=201,
    )


@admin_bp.route("/approval-workflows/<int:workflow_id>", methods=["PUT"])
@login_required
@role_required(UserRole.ADMIN)
def update_approval_workflow(workflow_id: int) -> Any:
    payload = request_payload()
    form = ApprovalWorkflowForm(formdata=form_data(payload))
    if not form.validate():
        return form_error_response(form)

    workflow = workflow_admin.update_workflow(
        workflow_id,
        current_user.company_id,
        form.name.data,
        min_amount=form.min_amount.data,
        max_amount=form.max_amount.data,
        steps=payload.get("steps"),
    )
    return json_response(
        {"message": "Approval workflow updated.", "workflow": workflow.to_dict(include_steps=True)}
    )


@admin_bp.route("/approval-workflows/<int:workflow_id>/toggle", methods=["PUT"])
@login_required
@role_required(UserRole.ADMIN)
def toggle_approval_workflow(workflow_id: int) -> Any:
    workflow = workflow_admin.toggle_workflow(workflow_id, current_user.company_id)
    state = "activated" if workflow.is_active else "deactivated"
    return json_response({"message": f"Approval workflow {state}.", "workflow": workflow.to_dict()})


@admin_bp.route("/approval-workflows/<int:workflow_id>", methods=["DELETE"])
@login_required
@role_required(UserRole.ADMIN)
def delete_approval_workflow(workflow_id: int) -> Any:
    workflow_admin.delete_workflow(workflow_id, current_user.company_id)
    return json_response({"message": "Approval workflow deleted."})


# Approval rules -------------------------------------------------------------


@admin_bp.route("/approval-rules", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def approval_rules() -> Any:
    """List the company's conditional approval rules."""
    page, limit = page_args()
    return json_response(workflow_admin.list_rules(current_user.company_id, page=page, limit=limit))


@admin_bp.route("/approval-rules/<int:rule_id>", methods=["GET"])
@login_required
@role_required(UserRole.ADMIN)
def approval_rule_detail(rule_id: int) -> Any:
    rule = workflow_admin.get_rule(rule_id, current_user.company_id)
    return json_response({"rule": rule.to_dict()})


def _rule_arguments(form: ApprovalRuleForm) -> dict:
    return {
        "name": form.name.data,
        "rule_type": form.rule_type.data,
        "percentage_threshold": form.percentage_threshold.data,
        "specific_approver_id": form.specific_approver_id.data,
        "min_amount": form.min_amount.data,
        "max_amount": form.max_amount.data,
    }


@admin_bp.route("/approval-rules", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def create_approval_rule() -> Any:
    """Create a percentage, specific-approver or hybrid rule."""
    form = ApprovalRuleForm(formdata=form_data(request_payload()))
    if not form.validate():
        return form_error_response(form)

    rule = workflow_admin.create_rule(current_user.company_id, **_rule_arguments(form))
    return json_response({"message": "Approval rule created.", "rule": rule.to_dict()}, status=201)


@admin_bp.route("/approval-rules/<int:rule_id>", methods=["PUT"])
@login_required
@role_required(UserRole.ADMIN)
def update_approval_rule(rule_id: int) -> Any:
    form = ApprovalRuleForm(formdata=form_data(request_payload()))
    if not form.validate():
        return form_error_response(form)

    rule = workflow_admin.update_rule(rule_id, current_user.company_id, **_rule_arguments(form))
    return json_response({"message": "Approval rule updated.", "rule": rule.to_dict()})


@admin_bp.route("/approval-rules/<int:rule_id>/toggle", methods=["PUT"])
@login_required
@role_required(UserRole.ADMIN)
def toggle_approval_rule(rule_id: int) -> Any:
    rule = workflow_admin.toggle_rule(rule_id, current_user.company_id)
    state = "activated" if rule.is_active else "deactivated"
    return json_response({"message": f"Approval rule {state}.", "rule": rule.to_dict()})


@admin_bp.route("/approval-rules/<int:rule_id>", methods=["DELETE"])
@login_required
@role_required(UserRole.ADMIN)
def delete_approval_rule(rule_id: int) -> Any:
    workflow_admin.delete_rule(rule_id, current_user.company_id)
    return json_response({"message": "Approval rule deleted."})


# Overrides ------------------------------------------------------------------


@admin_bp.route("/expenses/<int:expense_id>/override", methods=["POST"])
@login_required
@role_required(UserRole.ADMIN)
def override_expense(expense_id: int) -> Any:
    """Close out an open expense regardless of its pending approvals."""
    form = OverrideForm(formdata=form_data(request_payload()))
    if not form.validate():
        return form_error_response(form)

    result = approval_engine.override_decision(
        expense_id,
        current_user.id,
        form.action.data,
        reason=form.reason.data,
        company_id=current_user.company_id,
    )
    return json_response({"message": result.message, "result": result.to_dict()})
