# backend/app/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.clients import clients_bp
    from .routes.clothes import clothes_bp, cloth_types_bp
    from .routes.entities import branches_bp, factories_bp
    from .routes.workshops import workshops_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.custody import custody_bp
    from .routes.transfers import transfers_bp
    from .routes.factory_orders import factory_orders_bp
    from .routes.employees import employees_bp
    from .routes.cashboxes import cashboxes_bp
    from .routes.notifications import notifications_bp
    from .routes.reports import reports_bp
    from .routes.rents import rents_bp
    from .routes.expenses import expenses_bp
    from .routes.receivables import receivables_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(clothes_bp)
    app.register_blueprint(cloth_types_bp)
    app.register_blueprint(branches_bp)
    app.register_blueprint(factories_bp)
    app.register_blueprint(workshops_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(custody_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(factory_orders_bp)
    app.register_blueprint(employees_bp)
    app.register_blueprint(cashboxes_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(rents_bp)
    app.register_blueprint(expenses_bp)
    app.register_blueprint(receivables_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
