from __future__ import annotations

from decimal import Decimal

from flask_wtf import FlaskForm
from wtforms import DecimalField, StringField, TextAreaField
from wtforms.fields import DateField
from wtforms.validators import DataRequired, Length, NumberRange, Optional


class ExpenseForm(FlaskForm):
    amount = DecimalField(
        "Amount",
        places=2,
        rounding=None,
        validators=[DataRequired(), NumberRange(min=Decimal("0.01"))],
    )
    currency = StringField("Currency", validators=[DataRequired(), Length(min=3, max=3)])
    category = StringField("Category", validators=[DataRequired(), Length(max=120)])
    date_spent = DateField("Date of expense", validators=[DataRequired()])
    description = TextAreaField("Description", validators=[Optional(), Length(max=500)])
