from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context

# `alembic` runs from backend/; make `app` importable without an install.
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import database_url  # noqa: E402
from app.db import _make_engine  # noqa: E402
from app.models import Base  # noqa: E402


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _migration_options(url: str) -> dict:
    # SQLite cannot ALTER most constraints in place; batch mode rebuilds the table.
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = database_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_migration_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = database_url()
    # Same engine setup as the app, so SQLite migrations run with foreign keys on.
    engine = _make_engine(url)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_migration_options(url))
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
