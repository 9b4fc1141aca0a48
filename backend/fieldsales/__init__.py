# backend/fieldsales/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate
from .validation import FieldSalesError


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.inventory import inventory_bp
    from .routes.stores import stores_bp
    from .routes.orders import orders_bp
    from .routes.visits import visits_bp
    from .routes.reports import reports_bp
    from .routes.users import users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(visits_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(users_bp)

    @app.errorhandler(FieldSalesError)
    def handle_service_error(e):
        db.session.rollback()
        return e.to_dict(), e.http_status

    @app.errorhandler(500)
    def handle_unexpected(e):
        # Flask has already logged the original exception through app.logger
        db.session.rollback()
        return {"error": "Internal server error", "kind": "internal"}, 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
