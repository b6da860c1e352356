# backend/warranty/__init__.py
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
    from .routes.barcodes import barcodes_bp
    from .routes.claims import claims_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(barcodes_bp)
    app.register_blueprint(claims_bp)

    # Default notification sink: log and forget
    from .services.notification_service import LoggingSink, set_sink
    set_sink(app, LoggingSink())

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
