from __future__ import annotations

from decimal import Decimal

from flask_wtf import FlaskForm
from wtforms import DecimalField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, ValidationError


class AmountBandForm(FlaskForm):
    min_amount = DecimalField("Minimum amount", validators=[Optional(), NumberRange(min=Decimal("0"))])
    max_amount = DecimalField("Maximum amount", validators=[Optional(), NumberRange(min=Decimal("0"))])

    def validate_max_amount(self, field):  # pylint: disable=missing-docstring
        minimum = self.min_amount.data or Decimal("0")
        if field.data is not None and minimum >= field.data:
            raise ValidationError("Minimum amount must be less than maximum amount.")


class ApprovalRuleForm(AmountBandForm):
    name = StringField("Rule name", validators=[DataRequired(), Length(min=3, max=255)])
    rule_type = SelectField(
        "Rule type",
        validators=[DataRequired()],
        choices=[
            ("percentage", "Percentage of approvers"),
            ("specific_approver", "Specific approver"),
            ("hybrid", "Specific approver or percentage"),
        ],
    )
    percentage_threshold = DecimalField(
        "Percentage threshold", validators=[Optional(), NumberRange(min=1, max=100)]
    )
    specific_approver_id = IntegerField("Specific approver", validators=[Optional()])


class OverrideForm(FlaskForm):
    action = SelectField(
        "Action",
        validators=[DataRequired()],
        choices=[("approve", "Approve"), ("reject", "Reject")],
    )
    reason = TextAreaField("Reason", validators=[Optional(), Length(max=1000)])


class ApprovalWorkflowForm(AmountBandForm):
    name = StringField("Workflow name", validators=[DataRequired(), Length(min=3, max=255)])
