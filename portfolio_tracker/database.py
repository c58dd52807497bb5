# database.py
import os
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

Base = declarative_base()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./portfolio.db")

# ─── Connection-pool tuning ────────────────────────────────────────
# Only applied to server databases; SQLite gets its own pool below.
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))           # steady-state connections
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))     # burst above pool_size
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))     # seconds to wait for a conn
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "1800"))   # recycle every 30 min


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless this pragma is set per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str = DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # one shared connection, otherwise every checkout sees an empty db
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        logger.info("DB engine configured: sqlite")
        return engine

    engine = create_engine(
        url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,  # test connection liveness before checkout
    )
    logger.info(
        "DB pool configured: size=%d, max_overflow=%d, recycle=%ds, pre_ping=True",
        POOL_SIZE, MAX_OVERFLOW, POOL_RECYCLE,
    )
    return engine


def create_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


def init_db(bind: Engine) -> None:
    from portfolio_tracker import models  # noqa: F401  registers every table on Base

    Base.metadata.create_all(bind=bind)


engine = create_db_engine(DATABASE_URL)
