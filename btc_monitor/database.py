"""SQLModel database engine and session management."""

import logging

from sqlmodel import SQLModel, create_engine

from btc_monitor.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import btc_monitor.models  # noqa: F401  (registers table metadata)

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ensured")
