from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
from milesconnect.config import settings

_engine_kwargs: dict = {"pool_pre_ping": True}
if "sqlite" in settings.DATABASE_URL:
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
else:
    _engine_kwargs["pool_size"] = settings.DB_POOL_SIZE
    _engine_kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

if "sqlite" in settings.DATABASE_URL:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    """Create all tables. Called on first run or after schema changes."""
    from milesconnect.models import Base  # noqa: F401 -- ensure all models are registered
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _run_migrations(bind)


def _run_migrations(bind) -> None:
    """Idempotent ALTER TABLE migrations for columns added after the initial schema.

    Fleets created before live tracking and route simulation existed lack the
    route columns on ``vehicles``. Column existence is checked first so real
    SQL errors (syntax, permissions) propagate.
    """
    from sqlalchemy import inspect as sa_inspect, text

    inspector = sa_inspect(bind)

    # (table_name, column_name, column_type_sql)
    column_migrations = [
        ("vehicles", "current_route", "JSON"),
        ("vehicles", "route_index", "INTEGER DEFAULT 0"),
        ("vehicles", "eta", "TIMESTAMP"),
        ("vehicles", "tracking_mode", "VARCHAR(9) DEFAULT 'SIMULATED'"),
    ]

    _col_cache: dict[str, set[str]] = {}

    with bind.connect() as conn:
        for table_name, col_name, col_type in column_migrations:
            if table_name not in _col_cache:
                _col_cache[table_name] = {
                    c["name"] for c in inspector.get_columns(table_name)
                }
            if col_name not in _col_cache[table_name]:
                conn.execute(text(
                    f"ALTER TABLE {table_name} ADD COLUMN {col_name} {col_type}"
                ))
                conn.commit()
                _col_cache[table_name].add(col_name)
