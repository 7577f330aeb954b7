# backend/poscore/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides land before init_app: Flask-SQLAlchemy binds the engine there
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.offline import offline_bp
    from .routes.shifts import shifts_bp
    from .routes.transfers import transfers_bp
    from .routes.inventory import inventory_bp
    from .routes.purchases import purchases_bp
    from .routes.expenses import expenses_bp
    from .routes.ledger import ledger_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(offline_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(expenses_bp)
    app.register_blueprint(ledger_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
