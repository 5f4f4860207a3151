from sqlmodel import create_engine, SQLModel
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from typing import Optional
import os

from skids_sync.core.config import settings


def make_engine(url: Optional[str] = None) -> Engine:
    """
    Create the engine backing the local cache.

    In-memory SQLite URLs get a StaticPool so every session sees the same
    database; file URLs get a regular pool.
    """
    url = url or settings.LOCAL_DB_URL
    kwargs = {"echo": True if os.getenv("DEBUG") else False}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    return create_engine(url, **kwargs)


def create_db_and_tables(engine: Engine):
    # Register the tables on SQLModel.metadata before create_all
    from skids_sync.models import cache  # noqa: F401

    SQLModel.metadata.create_all(engine)
