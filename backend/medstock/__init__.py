# backend/medstock/__init__.py
from flask import Flask

from .config import Config
from .errors import InventoryError
from .extensions import db, migrate
from .logging_config import configure_logging
from .services.concurrency import engine_options


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Bound how long any statement may block (lock waits included)
    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options(app.config["SQLALCHEMY_DATABASE_URI"], app.config.get("STATEMENT_TIMEOUT_MS", 15000)),
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.catalog import products_bp, suppliers_bp
    from .routes.inventory import inventory_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.reports import reports_bp

    app.register_blueprint(products_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(reports_bp)

    @app.errorhandler(InventoryError)
    def handle_inventory_error(error: InventoryError):
        return error.to_dict(), error.http_status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
