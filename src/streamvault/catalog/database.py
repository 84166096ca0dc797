"""Engine and session management for the catalog database."""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event, pool
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from streamvault.catalog.models import Base

logger = logging.getLogger(__name__)


def create_catalog_engine(database_url: str) -> Engine:
    """Create an engine for database_url and make sure the schema exists.

    SQLite enforces foreign keys. An in-memory database is held on a single
    shared connection; the parent directory of a file database is created
    when missing.
    """
    url = make_url(database_url)
    dialect_name = url.get_dialect().name

    engine_kwargs = {}
    if dialect_name == "sqlite":
        engine_kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs["poolclass"] = pool.StaticPool
    else:
        engine_kwargs = {"pool_pre_ping": True, "pool_recycle": 1800}

    engine = create_engine(database_url, **engine_kwargs)

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        if dialect_name == "sqlite":
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)
    logger.info("Catalog database initialized", extra={"dialect": dialect_name})
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Catalog transaction failed: {e}")
        raise
    finally:
        session.close()
