from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from streamledger.core.settings import settings


Base = declarative_base()


def build_engine(database_url: str, lock_timeout_ms: int | None = None) -> Engine:
    lock_timeout_ms = int(lock_timeout_ms if lock_timeout_ms is not None else settings.db_lock_timeout_ms)
    url = make_url(database_url)

    if (url.drivername or "").startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": max(lock_timeout_ms, 1) / 1000.0},
        )

        # SQLite has no row locks: take the database write lock when the
        # transaction starts so a read-then-write never sees a stale balance.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(database_url, pool_pre_ping=True, isolation_level="READ COMMITTED")


def build_sessionmaker(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(settings.database_url)
SessionLocal = build_sessionmaker(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
