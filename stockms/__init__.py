# stockms/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


DEFAULT_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
}


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    # Overrides must land before extensions read the database URI
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(str(app.config.get("LOG_LEVEL") or "INFO").upper())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.locations import locations_bp
    from .routes.deliveries import deliveries_bp
    from .routes.issues import issues_bp
    from .routes.transfers import transfers_bp
    from .routes.periods import periods_bp
    from .routes.approvals import approvals_bp
    from .routes.prfs import prfs_bp
    from .routes.pos import pos_bp
    from .routes.ncrs import ncrs_bp
    from .routes.ledger import ledger_bp
    from .routes.reports import reports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(locations_bp)
    app.register_blueprint(deliveries_bp)
    app.register_blueprint(issues_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(periods_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(prfs_bp)
    app.register_blueprint(pos_bp)
    app.register_blueprint(ncrs_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(reports_bp)

    extra = {o.strip() for o in str(app.config.get("CORS_ORIGINS") or "").split(",") if o.strip()}
    allowed_origins = DEFAULT_CORS_ORIGINS | extra

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
