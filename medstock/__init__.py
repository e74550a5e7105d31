from flask import Flask, current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .extensions import db
from .routes import barcodes, errors
from .stock_count import routes as stock_count_routes
from .stock_count.cli import register_cli
from .utils.logging import configure_logging
from config import Config
from . import models  # ensure models are registered with SQLAlchemy


def _ping_database() -> None:
    """Raise :class:`OperationalError` when the configured database is unreachable."""

    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def create_app(config_override=None):
    app = Flask(__name__)

    # load configuration from environment variables
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    app.config.setdefault("DATABASE_AVAILABLE", True)
    app.config.setdefault("DATABASE_ERROR", None)

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///:memory:"):
        engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_options.setdefault("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine_options.setdefault("poolclass", StaticPool)

    configure_logging(app)
    db.init_app(app)

    database_available = True
    database_error_message = None

    # create tables if they do not exist
    with app.app_context():
        try:
            _ping_database()
        except OperationalError as exc:
            database_available = False
            details = str(getattr(exc, "orig", exc)).strip()
            database_error_message = (
                "Unable to connect to the configured database. Start the "
                "PostgreSQL service or update the DB_URL setting, then restart."
            )
            if details:
                database_error_message += f" (Error: {details})"
            current_app.logger.error(
                "Database connection unavailable during startup%s",
                f": {details}" if details else "",
                exc_info=current_app.debug,
            )
            db.session.remove()
            db.engine.dispose()
        else:
            try:
                db.create_all()
            except SQLAlchemyError as exc:
                database_available = False
                database_error_message = (
                    "The database schema could not be initialized. Review the logs "
                    "and run alembic -c alembic.ini upgrade head."
                )
                current_app.logger.exception(
                    "Database initialization failed during startup", exc_info=exc
                )
                db.session.rollback()

    app.config["DATABASE_AVAILABLE"] = database_available
    app.config["DATABASE_ERROR"] = database_error_message

    app.register_blueprint(errors.bp)
    app.register_blueprint(barcodes.bp)
    app.register_blueprint(stock_count_routes.bp)
    register_cli(app)

    return app
