import logging
import sys
from pathlib import Path

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection

# project modules live one level up when alembic is run from the command line
BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

import models  # noqa: E402,F401  registers the cache tables on Base.metadata
from config import get_settings  # noqa: E402
from database import Base  # noqa: E402

logger = logging.getLogger("alembic.env")

config = context.config
target_metadata = Base.metadata


def _migrate(connection: Connection) -> None:
    # batch mode lets ALTER-style operations work on SQLite
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    shared = config.attributes.get("connection")
    if shared is not None:
        _migrate(shared)
        return

    url = config.get_main_option("sqlalchemy.url") or (
        f"sqlite:///{get_settings().database_path}"
    )
    logger.info(f"migrating: url={url}")
    engine = create_engine(url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        _migrate(connection)


if context.is_offline_mode():
    raise RuntimeError("Offline SQL generation is not supported for the cache schema")
run_migrations_online()
