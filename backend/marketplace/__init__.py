# backend/marketplace/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=Config, payment_provider=None, email_sender=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Collaborators (tests pass fakes)
    from .services.email_service import LoggingEmailSender
    from .services.payment_provider import StripePaymentProvider

    app.extensions["payment_provider"] = payment_provider or StripePaymentProvider.from_config(app.config)
    app.extensions["email_sender"] = email_sender or LoggingEmailSender()

    # Register blueprints
    from .routes.auth import auth_bp
    from .routes.balances import balances_bp
    from .routes.checkout import checkout_bp
    from .routes.draft_orders import draft_orders_bp
    from .routes.inventory import inventory_bp
    from .routes.orders import orders_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(balances_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(draft_orders_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(webhooks_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
