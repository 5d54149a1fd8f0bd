from flask import Blueprint

billing_bp = Blueprint("billing", __name__, url_prefix="/billing")

# Import routes AFTER blueprint is created
from . import routes  # noqa: E402,F401
