# hostpanel/errors.py
"""Typed failures raised by the billing core."""


class BillingError(Exception):
    status_code = 400
    code = "billing_error"

    def __init__(self, message: str | None = None, **context):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.context:
            payload["details"] = self.context
        return payload


class InvalidAmount(BillingError):
    """Amount must be greater than zero."""
    code = "invalid_amount"


class UserNotFound(BillingError):
    """User not found."""
    status_code = 404
    code = "user_not_found"


class InsufficientFunds(BillingError):
    """Insufficient funds."""
    status_code = 402
    code = "insufficient_funds"


class InsufficientBalance(InsufficientFunds):
    """Insufficient balance for renewal."""
    code = "insufficient_balance"


class TransactionNotFound(BillingError):
    """Transaction not found."""
    status_code = 404
    code = "transaction_not_found"


class NotRefundable(BillingError):
    """Only purchases can be refunded."""
    status_code = 409
    code = "not_refundable"


class AlreadyRefunded(BillingError):
    """Transaction has already been refunded."""
    status_code = 409
    code = "already_refunded"


class AlreadyUsed(BillingError):
    """Promocode already used."""
    status_code = 409
    code = "already_used"


class PromocodeError(BillingError):
    """Promocode cannot be applied."""
    code = "promocode_invalid"


class ReferralError(BillingError):
    """Referral code cannot be applied."""
    code = "referral_invalid"


class InvoiceNotFound(BillingError):
    """Invoice not found."""
    status_code = 404
    code = "invoice_not_found"


class InvalidInvoiceTransition(BillingError):
    """Invoice status cannot change."""
    status_code = 409
    code = "invalid_invoice_transition"


class ServerNotFound(BillingError):
    """Server not found."""
    status_code = 404
    code = "server_not_found"


class PaymentError(BillingError):
    """Payment cannot be created."""
    code = "payment_error"


class ImmutableTransactionError(BillingError):
    """Monetary fields of a settled transaction cannot change."""
    status_code = 500
    code = "immutable_transaction"


class ExchangeRateUnavailable(PaymentError):
    """No exchange rate for the requested currency."""
    status_code = 502
    code = "exchange_rate_unavailable"


class GiftCertificateNotFound(BillingError):
    """Gift certificate not found."""
    status_code = 404
    code = "gift_certificate_not_found"


class GiftCertificateError(BillingError):
    """Gift certificate cannot be redeemed."""
    code = "gift_certificate_invalid"
