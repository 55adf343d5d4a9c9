# migrations/env.py
from logging.config import fileConfig
import os

from alembic import context

from models.base import Base, make_engine_from_env
from models import schema  # noqa: F401 - registers purchases/payments tables

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(**kw):
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        # SQLite (tests/dev) cannot ALTER constraints in place
        render_as_batch=(os.getenv("DATABASE_URL") or "").startswith("sqlite"),
        **kw,
    )


if context.is_offline_mode():
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    _configure(url=url, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = make_engine_from_env()
    with engine.connect() as connection:
        _configure(connection=connection)
        with context.begin_transaction():
            context.run_migrations()
