# backend/valepos/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Configuration cache lives as long as the app
    from .services.config_service import ConfigurationProvider, EXTENSION_KEY
    app.extensions[EXTENSION_KEY] = ConfigurationProvider(
        ttl_seconds=app.config["CONFIG_CACHE_TTL_SECONDS"],
    )

    # Post-commit receivers
    from .integrations.invoicing import LoggingInvoiceIssuer, register_invoice_issuer
    register_invoice_issuer(app, LoggingInvoiceIssuer())

    # Register blueprints
    from .routes.system import system_bp
    from .routes.vouchers import vouchers_bp
    from .routes.sales import sales_bp
    from .routes.stock import stock_bp
    from .routes.settings import settings_bp
    from .routes.shifts import shifts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(vouchers_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(shifts_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor-Id, X-Actor-Role"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
