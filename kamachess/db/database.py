"""Generate database sessions"""

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from kamachess.core.config import Settings
from kamachess.db.schema import Base


def build_engine(settings: Settings) -> Engine:
    """Create the engine and make sure all tables exist."""
    connect_args = {}
    if settings.database_url.startswith("sqlite"):
        # sessions are handed out per inbound update, possibly from worker threads
        connect_args["check_same_thread"] = False
    engine = create_engine(settings.database_url, connect_args=connect_args)

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    # Ensure all tables are created
    Base.metadata.create_all(bind=engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
