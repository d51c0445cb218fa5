"""Initialize the trust & safety database tables."""

from pathlib import Path

from loguru import logger
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

import repositories.db_models  # noqa: F401  (registers the tables)
from core.logging_config import configure_logging
from models.config import settings
from repositories.database import Base, engine


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-based SQLite database."""
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix):]
    if not path or path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def init_db(bind: Engine | None = None) -> list[str]:
    """
    Create every table that does not exist yet.

    Args:
        bind: Engine to use, defaults to the application engine

    Returns:
        Names of the tables present after initialization
    """
    target = bind or engine
    _ensure_sqlite_directory(str(target.url))
    Base.metadata.create_all(bind=target)

    tables = sorted(inspect(target).get_table_names())
    logger.info(f"Database initialized with tables: {', '.join(tables)}")
    return tables


if __name__ == "__main__":
    configure_logging(settings.ENVIRONMENT, settings.LOG_DIR)
    init_db()
