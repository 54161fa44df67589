from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from tenant_guard.core.config import settings


def _enable_sqlite_transactions(engine: Engine) -> None:
    """
    Let SQLAlchemy own transaction boundaries on pysqlite.

    The driver's implicit BEGIN breaks SAVEPOINT handling; BEGIN IMMEDIATE
    takes the write lock up front so concurrent writers serialize.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine with the per-backend connection settings."""
    backend = make_url(url).get_backend_name()
    connect_args = dict(kwargs.pop("connect_args", {}))
    if backend.startswith("postgresql"):
        connect_args.setdefault("options", "-c timezone=utc")
    elif backend == "sqlite":
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)

    engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args, **kwargs)
    if backend == "sqlite":
        _enable_sqlite_transactions(engine)
    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
