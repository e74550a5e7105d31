import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from medstock import models  # noqa: F401  register tables on the metadata
from medstock.extensions import db

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = db.Model.metadata


def _get_database_url() -> str | None:
    url = config.get_main_option("sqlalchemy.url")
    if url and not url.startswith("env://"):
        return url
    env_key = url.split("env://", 1)[1] if url else ""
    return os.getenv(env_key or "DB_URL")


def _configure_options(url: str) -> dict:
    # SQLite cannot ALTER constraints in place; batch mode rebuilds the table.
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = _get_database_url()
    if not url:
        raise RuntimeError("Database URL must be provided via DB_URL for offline migrations")
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section) or {}
    url = _get_database_url()
    if not url:
        raise RuntimeError("Database URL must be provided via DB_URL")
    section["sqlalchemy.url"] = url

    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options(url))

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
