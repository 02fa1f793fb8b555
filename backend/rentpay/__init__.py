# backend/rentpay/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.commission import commission_bp
    from .routes.payments import payments_bp
    from .routes.webhooks import webhooks_bp
    from .routes.landlord_accounts import landlord_accounts_bp
    from .routes.payouts import payouts_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(commission_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(landlord_accounts_bp)
    app.register_blueprint(payouts_bp)
    app.register_blueprint(audit_bp)

    if not app.config.get("STRIPE_WEBHOOK_SECRET"):
        app.logger.warning("STRIPE_WEBHOOK_SECRET is not set; /api/webhooks/stripe will reject all events")

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
