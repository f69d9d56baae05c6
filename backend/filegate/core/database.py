from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for all database models
Base = declarative_base()


def _enable_sqlite_wal(dbapi_connection, connection_record):
    # WAL lets readers proceed while an upload commits its row
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """
    Create the engine for the metadata index.

    SQLite files get their parent directory created, are shared across the
    request threadpool and run in WAL mode.
    """
    if database_url.startswith("sqlite"):
        db_file = database_url.split("///", 1)[-1]
        if db_file and db_file != ":memory:":
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            database_url, connect_args={"check_same_thread": False}
        )
        event.listen(engine, "connect", _enable_sqlite_wal)
        return engine
    return create_engine(database_url, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    # autocommit=False: changes require explicit commit
    # expire_on_commit=False: records stay readable after the session closes
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
