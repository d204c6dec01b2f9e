# backend/erp/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, mail, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Pool sizing only applies to server databases
    if not str(app.config["SQLALCHEMY_DATABASE_URI"]).startswith("sqlite"):
        engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
        engine_options.setdefault("pool_size", app.config["DB_POOL_MIN"])
        engine_options.setdefault("max_overflow", max(app.config["DB_POOL_MAX"] - app.config["DB_POOL_MIN"], 0))
        engine_options.setdefault("pool_timeout", app.config["DB_POOL_TIMEOUT"])
        engine_options.setdefault("pool_pre_ping", True)
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    mail.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notification_bus import approval_events
    approval_events.queue_limit = app.config.get("APPROVAL_EVENTS_QUEUE_LIMIT", 10)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.administration import administration_bp
    from .routes.approvals import approvals_bp
    from .routes.master_data import master_data_bp
    from .routes.bom import bom_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(administration_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(master_data_bp)
    app.register_blueprint(bom_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
