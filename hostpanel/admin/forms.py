from wtforms import BooleanField, DateTimeField, DecimalField, IntegerField, StringField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional

from hostpanel.billing.forms import JSONForm
from hostpanel.models import PromocodeType

ISO_FORMATS = ["%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d"]


class BalanceAdjustmentForm(JSONForm):
    operation = StringField("Operation", validators=[DataRequired(), AnyOf(["deposit", "withdraw", "bonus"])])
    amount = DecimalField("Amount", places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    description = StringField("Description", validators=[Optional(), Length(max=255)])


class RefundForm(JSONForm):
    reason = StringField("Reason", validators=[Optional(), Length(max=255)])


class InvoiceForm(JSONForm):
    # line items are read from the raw JSON body (nested list)
    user_id = IntegerField("User", validators=[DataRequired()])
    description = StringField("Description", validators=[Optional(), Length(max=255)])
    tax = DecimalField("Tax", places=2, validators=[Optional(), NumberRange(min=0)])
    due_date = DateTimeField("Due date", format=ISO_FORMATS, validators=[Optional()])


class PromocodeCreateForm(JSONForm):
    code = StringField("Code", validators=[DataRequired(), Length(max=40)])
    type = StringField("Type", validators=[DataRequired(), AnyOf([t.value for t in PromocodeType])])
    value = DecimalField("Value", places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    min_amount = DecimalField("Minimum amount", places=2, validators=[Optional(), NumberRange(min=0)])
    max_uses = IntegerField("Max uses", validators=[Optional(), NumberRange(min=1)])
    max_uses_per_user = IntegerField("Max uses per user", validators=[Optional(), NumberRange(min=1)])
    valid_from = DateTimeField("Valid from", format=ISO_FORMATS, validators=[Optional()])
    valid_until = DateTimeField("Valid until", format=ISO_FORMATS, validators=[Optional()])


class MassBonusForm(JSONForm):
    # user_ids is read from the raw JSON body (list)
    amount = DecimalField("Amount", places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    reason = StringField("Reason", validators=[Optional(), Length(max=255)])
    send_email = BooleanField("Send email", false_values=(False, "false", "0", ""))


class GiftCertificateForm(JSONForm):
    amount = DecimalField("Amount", places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    code = StringField("Code", validators=[Optional(), Length(max=32)])
    expires_at = DateTimeField("Expires at", format=ISO_FORMATS, validators=[Optional()])
