"""
Domain events emitted by the billing core.

Business operations send these only after their unit of work has committed.
Receivers (notifications, provisioning) must never raise back into the sender.
"""

from blinker import Namespace

_signals = Namespace()

# sender: user_id; kwargs: transaction_id, amount, new_balance, provider
payment_confirmed = _signals.signal("payment-confirmed")

# sender: user_id; kwargs: transaction_id, amount, new_balance, reason
bonus_credited = _signals.signal("bonus-credited")

# sender: provider name; kwargs: payment_id, reason, count
payment_failed = _signals.signal("payment-failed")

# sender: server; kwargs: amount, new_expires_at, transaction_id
server_renewed = _signals.signal("server-renewed")

# sender: server; kwargs: reason, required_amount, current_balance
server_suspended = _signals.signal("server-suspended")

# sender: server; kwargs: days_left, can_auto_renew, required_amount, current_balance
server_expiring = _signals.signal("server-expiring")

# sender: server; no kwargs
server_terminated = _signals.signal("server-terminated")

# sender: invoice; kwargs: html
invoice_issued = _signals.signal("invoice-issued")


def emit(signal, sender, **kwargs) -> int:
    """Send a signal and return how many receivers handled it."""
    return len(signal.send(sender, **kwargs))
