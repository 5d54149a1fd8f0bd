# hostpanel/cron/routes.py
import hmac

from flask import current_app, jsonify, request

from hostpanel.services import invoices, renewal

from . import cron_bp


def _authorized():
    """None when the bearer token matches CRON_SECRET, else an error response."""
    secret = current_app.config.get("CRON_SECRET") or ""
    if not secret:
        current_app.logger.error("CRON_SECRET is not configured; refusing cron request")
        return jsonify({"error": "cron_not_configured"}), 500

    header = request.headers.get("Authorization", "")
    token = header[len("Bearer "):] if header.startswith("Bearer ") else ""
    if not token or not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        current_app.logger.warning("Cron request with invalid token from %s", request.remote_addr)
        return jsonify({"error": "unauthorized"}), 401
    return None


@cron_bp.route("/renewals", methods=["GET", "POST"])
def renewals():
    denied = _authorized()
    if denied is not None:
        return denied

    summary = renewal.process_server_renewals()
    overdue = invoices.check_overdue_invoices()

    return jsonify({"success": True, "renewals": summary.to_dict(), "overdue_invoices": overdue})
