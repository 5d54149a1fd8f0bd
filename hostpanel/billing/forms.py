from flask_wtf import FlaskForm
from wtforms import BooleanField, DecimalField, StringField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, URL

from hostpanel.services.providers import PROVIDERS


class JSONForm(FlaskForm):
    """Bound to the JSON body (Flask-WTF reads request.get_json()); no CSRF for the API."""

    class Meta:
        csrf = False


class PaymentForm(JSONForm):
    provider = StringField("Provider", validators=[DataRequired(), AnyOf(PROVIDERS)])
    amount = DecimalField("Amount", places=2, validators=[DataRequired(), NumberRange(min=0.01)])
    currency = StringField("Currency", validators=[Optional(), Length(min=3, max=5)])
    return_url = StringField("Return URL", validators=[Optional(), URL(require_tld=False)])


class PromocodeForm(JSONForm):
    code = StringField("Code", validators=[DataRequired(), Length(max=40)])
    amount = DecimalField("Order amount", places=2, validators=[Optional(), NumberRange(min=0)])


class ReferralCodeForm(JSONForm):
    code = StringField("Referral code", validators=[DataRequired(), Length(max=10)])


class AutoRenewForm(JSONForm):
    # JSON false arrives as a real bool
    enabled = BooleanField("Auto-renew", false_values=(False, "false", "0", ""))


class GiftCertificateRedeemForm(JSONForm):
    code = StringField("Certificate code", validators=[DataRequired(), Length(max=32)])
