import logging
import os
import sqlite3
from decimal import Decimal

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .errors import BillingError
from .extensions import db, login_manager, migrate

PRODUCTION_SETTINGS = (
    "SECRET_KEY",
    "DATABASE_URL",
    "SENDGRID_API_KEY",
    "MAIL_DEFAULT_SENDER",
    "CRON_SECRET",
    "APP_URL",
)


def _check_production_settings():
    missing = [name for name in PRODUCTION_SETTINGS if not os.getenv(name)]
    if missing:
        raise RuntimeError("Missing required production settings: " + ", ".join(missing))


def _sqlite_in_instance(app):
    # Relative sqlite paths resolve against the instance folder
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if uri.startswith("sqlite:///") and not uri.startswith("sqlite:////"):
        db_file = os.path.join(app.instance_path, os.path.basename(uri[len("sqlite:///"):]) or "billing.db")
        app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///" + db_file.replace("\\", "/")


def _register_error_handlers(app):
    @app.errorhandler(BillingError)
    def handle_billing_error(e):
        db.session.rollback()
        log = app.logger.error if e.status_code >= 500 else app.logger.info
        log("Billing error: %s %s", e.code, e.context)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.name.lower().replace(" ", "_"), "message": e.description}), e.code


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    os.makedirs(app.instance_path, exist_ok=True)

    env = os.getenv("FLASK_ENV", "development").lower()
    if config_object is None:
        config_object = "config.ProductionConfig" if env == "production" else "config.DevelopmentConfig"
    app.config.from_object(config_object)

    if app.config.get("ENV") == "production" and not app.config.get("TESTING"):
        _check_production_settings()

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    hops = app.config.get("PROXY_FIX_HOPS", 0)
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)

    _sqlite_in_instance(app)

    db.init_app(app)
    # Numeric columns on sqlite
    sqlite3.register_adapter(Decimal, str)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    from .models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "unauthorized", "message": "Login required"}), 401

    _register_error_handlers(app)

    from hostpanel.admin import admin_bp
    from hostpanel.billing import billing_bp
    from hostpanel.cli import billing_cli
    from hostpanel.cron import cron_bp
    from hostpanel.payments import payments_bp

    app.register_blueprint(billing_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(billing_cli)

    from hostpanel.services import notifications
    notifications.init_app(app)

    app.logger.debug("Billing app created (env=%s)", app.config.get("ENV"))
    return app
