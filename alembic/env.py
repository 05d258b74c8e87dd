from __future__ import annotations

import pathlib
import sys
from logging.config import fileConfig

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from alembic import context  # noqa: E402
from dotenv import load_dotenv  # noqa: E402
from sqlalchemy import engine_from_config, pool  # noqa: E402

load_dotenv()

from api.config import settings  # noqa: E402
from api.models.base import Base  # noqa: E402
from api.models import (  # noqa: E402,F401
    documents,
    events,
    login_tokens,
    reminder_jobs,
    user_sessions,
    users,
)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", settings.database_url)
target_metadata = Base.metadata


def _configure_options(url: str) -> dict:
    # SQLite cannot ALTER most columns in place
    return {"compare_type": True, "render_as_batch": url.startswith("sqlite")}


def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            **_configure_options(settings.database_url),
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
