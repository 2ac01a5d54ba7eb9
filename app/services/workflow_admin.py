"""Administration of approval workflows and conditional approval rules."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app import db
from app.models import (
    APPROVER_ROLES,
    ApprovalRule,
    ApprovalRuleType,
    ApprovalWorkflow,
    ApprovalWorkflowStep,
)
from app.services.errors import NotFound, ValidationError
from app.services.repository import (
    DEFAULT_PAGE_SIZE,
    ApprovalRepository,
    page_window,
    pagination,
)

logger = logging.getLogger(__name__)

StepSpec = Tuple[int, int, bool]


def _repository(repository: Optional[ApprovalRepository]) -> ApprovalRepository:
    return repository if repository is not None else ApprovalRepository(db.session)


def _decimal(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"'{field}' must be a number.") from None


def _validate_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not 3 <= len(name) <= 255:
        raise ValidationError("Name must be between 3 and 255 characters.")
    return name


def validate_amount_band(min_amount: Any = None, max_amount: Any = None) -> Tuple[Decimal, Optional[Decimal]]:
    """Normalise an amount band; ``max_amount`` of ``None`` leaves it unbounded."""
    minimum = Decimal("0") if min_amount in (None, "") else _decimal(min_amount, "min_amount")
    maximum = None if max_amount in (None, "") else _decimal(max_amount, "max_amount")
    if minimum < 0 or (maximum is not None and maximum < 0):
        raise ValidationError("Amounts cannot be negative.")
    if maximum is not None and minimum >= maximum:
        raise ValidationError("Minimum amount must be less than maximum amount.")
    return minimum, maximum


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _require_approvers(repo: ApprovalRepository, approver_ids: Iterable[int], company_id: int) -> None:
    wanted = set(approver_ids)
    found = repo.users_in_company(sorted(wanted), company_id)
    if len(found) != len(wanted):
        raise NotFound("One or more approvers not found.")
    if any(user.role not in APPROVER_ROLES for user in found):
        raise ValidationError("All approvers must be managers or admins.")


def _validate_steps(steps: Any, company_id: int, repo: ApprovalRepository) -> List[StepSpec]:
    if not isinstance(steps, (list, tuple)) or not steps:
        raise ValidationError("At least one approval step is required.")

    parsed: List[StepSpec] = []
    for raw in steps:
        if not isinstance(raw, dict):
            raise ValidationError("Each step must be an object.")
        try:
            order = int(raw["step_order"])
            approver_id = int(raw["approver_id"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("Each step needs an integer 'step_order' and 'approver_id'.") from None
        if order < 1:
            raise ValidationError("Step orders start at 1.")
        parsed.append((order, approver_id, _as_bool(raw.get("is_required"), default=True)))

    orders = [order for order, _, _ in parsed]
    if len(set(orders)) != len(orders):
        raise ValidationError("Step orders must be unique.")

    _require_approvers(repo, [approver_id for _, approver_id, _ in parsed], company_id)
    return sorted(parsed)


# Workflows ------------------------------------------------------------------


def _get_workflow(repo: ApprovalRepository, workflow_id: int, company_id: int) -> ApprovalWorkflow:
    workflow = repo.session.get(ApprovalWorkflow, workflow_id)
    if workflow is None or workflow.company_id != company_id:
        raise NotFound("Approval workflow not found.")
    return workflow


def list_workflows(
    company_id: int,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    repository: Optional[ApprovalRepository] = None,
) -> Dict[str, Any]:
    """One page of the company's workflows, newest first."""
    repo = _repository(repository)
    page, limit, offset = page_window(page, limit)
    workflows = repo.list_workflows(company_id, limit=limit, offset=offset)
    return {
        "workflows": [workflow.to_dict() for workflow in workflows],
        "pagination": pagination(page, limit, repo.count_workflows(company_id)),
    }


def get_workflow(workflow_id: int, company_id: int, repository: Optional[ApprovalRepository] = None) -> ApprovalWorkflow:
    return _get_workflow(_repository(repository), workflow_id, company_id)


def create_workflow(
    company_id: int,
    name: str,
    min_amount: Any = None,
    max_amount: Any = None,
    steps: Any = None,
    repository: Optional[ApprovalRepository] = None,
) -> ApprovalWorkflow:
    """Create a workflow and all of its steps in one transaction."""
    repo = _repository(repository)
    name = _validate_name(name)
    minimum, maximum = validate_amount_band(min_amount, max_amount)
    parsed = _validate_steps(steps, company_id, repo)

    with repo.transaction() as session:
        workflow = ApprovalWorkflow(
            company_id=company_id,
            name=name,
            min_amount=minimum,
            max_amount=maximum,
            is_active=True,
        )
        workflow.steps = [
            ApprovalWorkflowStep(step_order=order, approver_id=approver_id, is_required=required)
            for order, approver_id, required in parsed
        ]
        session.add(workflow)

    logger.info("Created approval workflow '%s' with %d step(s)", name, len(parsed))
    return workflow


def update_workflow(
    workflow_id: int,
    company_id: int,
    name: str,
    min_amount: Any = None,
    max_amount: Any = None,
    steps: Any = None,
    repository: Optional[ApprovalRepository] = None,
) -> ApprovalWorkflow:
    """Replace a workflow's band, name and complete step list."""
    repo = _repository(repository)
    workflow = _get_workflow(repo, workflow_id, company_id)
    name = _validate_name(name)
    minimum, maximum = validate_amount_band(min_amount, max_amount)
    parsed = _validate_steps(steps, company_id, repo)

    with repo.transaction() as session:
        workflow.name = name
        workflow.min_amount = minimum
        workflow.max_amount = maximum
        workflow.steps.clear()
        # Old rows must be gone before new ones reuse their step orders.
        session.flush()
        workflow.steps.extend(
            ApprovalWorkflowStep(step_order=order, approver_id=approver_id, is_required=required)
            for order, approver_id, required in parsed
        )

    logger.info("Updated approval workflow %s", workflow_id)
    return workflow


def toggle_workflow(workflow_id: int, company_id: int, repository: Optional[ApprovalRepository] = None) -> ApprovalWorkflow:
    repo = _repository(repository)
    workflow = _get_workflow(repo, workflow_id, company_id)
    with repo.transaction():
        workflow.is_active = not workflow.is_active
    return workflow


def delete_workflow(workflow_id: int, company_id: int, repository: Optional[ApprovalRepository] = None) -> None:
    repo = _repository(repository)
    workflow = _get_workflow(repo, workflow_id, company_id)
    with repo.transaction() as session:
        session.delete(workflow)
    logger.info("Deleted approval workflow %s", workflow_id)


# Rules ----------------------------------------------------------------------


def _validate_rule(
    repo: ApprovalRepository,
    company_id: int,
    rule_type: Any,
    percentage_threshold: Any,
    specific_approver_id: Any,
) -> Tuple[ApprovalRuleType, Optional[Decimal], Optional[int]]:
    if isinstance(rule_type, ApprovalRuleType):
        kind = rule_type
    else:
        try:
            kind = ApprovalRuleType(str(rule_type).strip().lower())
        except ValueError:
            raise ValidationError(
                "Rule type must be 'percentage', 'specific_approver' or 'hybrid'."
            ) from None

    threshold = None
    if percentage_threshold not in (None, ""):
        threshold = _decimal(percentage_threshold, "percentage_threshold")
        if not 1 <= threshold <= 100:
            raise ValidationError("Percentage threshold must be between 1 and 100.")

    approver_id = None
    if specific_approver_id not in (None, ""):
        try:
            approver_id = int(specific_approver_id)
        except (TypeError, ValueError):
            raise ValidationError("'specific_approver_id' must be an integer.") from None

    if kind in (ApprovalRuleType.PERCENTAGE, ApprovalRuleType.HYBRID) and threshold is None:
        raise ValidationError(f"A {kind.value} rule requires a percentage threshold.")
    if kind in (ApprovalRuleType.SPECIFIC_APPROVER, ApprovalRuleType.HYBRID) and approver_id is None:
        raise ValidationError(f"A {kind.value} rule requires a specific approver.")

    if approver_id is not None:
        approver = repo.get_user(approver_id, company_id=company_id)
        if approver is None:
            raise NotFound("Specific approver not found.")
        if approver.role not in APPROVER_ROLES:
            raise ValidationError("Specific approver must be a manager or admin.")

    return kind, threshold, approver_id


def _get_rule(repo: ApprovalRepository, rule_id: int, company_id: int) -> ApprovalRule:
    rule = repo.session.get(ApprovalRule, rule_id)
    if rule is None or rule.company_id != company_id:
        raise NotFound("Approval rule not found.")
    return rule


def list_rules(
    company_id: int,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    repository: Optional[ApprovalRepository] = None,
) -> Dict[str, Any]:
    repo = _repository(repository)
    page, limit, offset = page_window(page, limit)
    rules = repo.list_rules(company_id, limit=limit, offset=offset)
    return {
        "rules": [rule.to_dict() for rule in rules],
        "pagination": pagination(page, limit, repo.count_rules(company_id)),
    }


def get_rule(rule_id: int, company_id: int, repository: Optional[ApprovalRepository] = None) -> ApprovalRule:
    return _get_rule(_repository(repository), rule_id, company_id)


def create_rule(
    company_id: int,
    name: str,
    rule_type: Any,
    percentage_threshold: Any = None,
    specific_approver_id: Any = None,
    min_amount: Any = None,
    max_amount: Any = None,
    repository: Optional[ApprovalRepository] = None,
) -> ApprovalRule:
    repo = _repository(repository)
    name = _validate_name(name)
    kind, threshold, approver_id = _validate_rule(
        repo, company_id, rule_type, percentage_threshold, specific_approver_id
    )
    minimum, maximum = validate_amount_band(min_amount, max_amount)

    with repo.transaction() as session:
        rule = ApprovalRule(
            company_id=company_id,
            name=name,
            rule_type=kind,
            percentage_threshold=threshold,
            specific_approver_id=approver_id,
            min_amount=minimum,
            max_amount=maximum,
            is_active=True,
        )
        session.add(rule)

    logger.info("Created %s approval rule '%s'", kind.value, name)
    return rule


def update_rule(
    rule_id: int,
    company_id: int,
    name: str,
    rule_type: Any,
    percentage_threshold: Any = None,
    specific_approver_id: Any = None,
    min_amount: Any = None,
    max_amount: Any = None,
    repository: Optional[ApprovalRepository] = None,
) -> ApprovalRule:
    repo = _repository(repository)
    rule = _get_rule(repo, rule_id, company_id)
    name = _validate_name(name)
    kind, threshold, approver_id = _validate_rule(
        repo, company_id, rule_type, percentage_threshold, specific_approver_id
    )
    minimum, maximum = validate_amount_band(min_amount, max_amount)

    with repo.transaction():
        rule.name = name
        rule.rule_type = kind
        rule.percentage_threshold = threshold
        rule.specific_approver_id = approver_id
        rule.min_amount = minimum
        rule.max_amount = maximum
    return rule


def toggle_rule(rule_id: int, company_id: int, repository: Optional[ApprovalRepository] = None) -> ApprovalRule:
    repo = _repository(repository)
    rule = _get_rule(repo, rule_id, company_id)
    with repo.transaction():
        rule.is_active = not rule.is_active
    return rule


def delete_rule(rule_id: int, company_id: int, repository: Optional[ApprovalRepository] = None) -> None:
    repo = _repository(repository)
    rule = _get_rule(repo, rule_id, company_id)
    with repo.transaction() as session:
        session.delete(rule)