"""Database engine for the sync tables and the (read-only) product table."""
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from catalogsync.config import get_settings

_engine = None


def create_db_engine(database_url: str) -> Engine:
    """Build an engine for `database_url` and make sure every table exists."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sessions are opened from FastAPI's threadpool as well as the event loop
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, connect_args=connect_args)

    from catalogsync.models.product import Product  # noqa: F401
    from catalogsync.models.sync import DeadLetterItem, SyncLogEntry, SyncRecord  # noqa: F401
    SQLModel.metadata.create_all(engine)
    return engine


def get_engine() -> Engine:
    """Process-wide engine built from DATABASE_URL on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_settings().database_url)
    return _engine
