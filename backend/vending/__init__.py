# backend/vending/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, migrate



def _apply_engine_options(app: Flask) -> None:
    # Bound the wait on SQLite's write lock so ledger calls fail fast and retry
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if not uri.startswith("sqlite"):
        return
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    connect_args = dict(options.get("connect_args") or {})
    connect_args.setdefault("timeout", app.config["LEDGER_LOCK_TIMEOUT_SECONDS"])
    options["connect_args"] = connect_args
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    _apply_engine_options(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Collaborators consulted by the sale lifecycle
    from .services.pricing_service import CatalogPriceResolver
    from .services.payment_service import PreauthorizedPaymentGateway

    app.extensions.setdefault("vending.price_resolver", CatalogPriceResolver())
    app.extensions.setdefault("vending.payment_gateway", PreauthorizedPaymentGateway())

    # Register blueprints
    from .routes.sales import sales_bp
    from .routes.slots import slots_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(slots_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
