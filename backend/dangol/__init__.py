# backend/dangol/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate, celery_init_app


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    celery_init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401
    # Register Celery tasks
    from . import tasks  # noqa: F401

    # Push transport, built once and shared by request handlers and tasks
    from .push import build_push_sender
    app.extensions["push_sender"] = build_push_sender(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.merchants import merchants_bp
    from .routes.customers import customers_bp
    from .routes.admin import admin_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(merchants_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(admin_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS", ()))
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
