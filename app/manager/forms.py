from __future__ import annotations

from flask_wtf import FlaskForm
from wtforms import SelectField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional


class ApprovalDecisionForm(FlaskForm):
    status = SelectField(
        "Decision",
        validators=[DataRequired()],
        choices=[("approved", "Approve"), ("rejected", "Reject")],
    )
    comments = TextAreaField("Comments", validators=[Optional(), Length(max=1000)])
