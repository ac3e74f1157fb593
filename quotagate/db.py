import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


def _on_sqlite_connect(dbapi_conn, _record) -> None:
    # Let the "begin" hook below issue BEGIN instead of pysqlite.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(conn) -> None:
    # Take the write lock up front; a deferred transaction that upgrades
    # mid-statement gets SQLITE_BUSY instead of waiting.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url, connect_args={"check_same_thread": False, "timeout": 30}
        )
        event.listen(engine, "connect", _on_sqlite_connect)
        event.listen(engine, "begin", _on_sqlite_begin)
        return engine
    return create_engine(database_url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Rows handed out by the registry outlive their session.
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def wait_for_db(engine: Engine, max_attempts: int = 30, sleep_s: float = 1.0) -> None:
    last_exc = None
    for _ in range(max_attempts):
        try:
            with engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return
        except Exception as exc:
            last_exc = exc
            time.sleep(sleep_s)
    raise RuntimeError(f"Database not ready after {max_attempts} attempts: {last_exc}")
