"""SQLModel engine singleton and session dependency."""
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from starshelf.config import get_settings

_engine = None


def build_engine(database_url: str):
    """Create an engine and make sure the schema is current."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # sessions cross asyncio task boundaries
    engine = create_engine(database_url, connect_args=connect_args)

    # Import all models so metadata is populated before create_all
    from starshelf.models.repository import Release, Repository  # noqa
    from starshelf.models.sync import SyncStatus  # noqa
    from starshelf.models.user import User  # noqa
    SQLModel.metadata.create_all(engine)

    from starshelf.db.migrations import run_migrations
    run_migrations(engine)
    return engine


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    with Session(get_engine()) as session:
        yield session
