"""
Database engine and session factory.

The URL is read from NUTRIENT_OPTIMIZER_DATABASE_URL and defaults to a
SQLite file in the working directory.
"""
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nutrient_optimizer.models.database_models import Base

DEFAULT_DATABASE_URL = "sqlite:///./nutrient_optimizer.db"
DATABASE_URL = os.environ.get("NUTRIENT_OPTIMIZER_DATABASE_URL", DEFAULT_DATABASE_URL)


def make_engine(url: str = DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live only as long as their connection
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def init_db(bind: Engine = engine) -> None:
    """Create the catalog tables if they do not exist."""
    Base.metadata.create_all(bind=bind)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
