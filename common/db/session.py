from contextlib import contextmanager
import os
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/store.db")


def _ensure_sqlite_dir(url: str) -> None:
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if url.startswith("sqlite:///") and ":memory:" not in url:
        db_path = url.split("sqlite:///")[-1]
        try:
            parent = Path(db_path).expanduser().resolve().parent
            parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            # best-effort; real error will surface on connect if still invalid
            pass


def build_engine(url: str):
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    _ensure_sqlite_dir(url)
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        eng = create_engine(url, future=True, **kwargs)

        @event.listens_for(eng, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return eng
    return create_engine(url, future=True, pool_pre_ping=True)


def _scoped(factory):
    @contextmanager
    def session_scope():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope


def build_session_factory(url_or_engine):
    """Return a ``get_session``-style context manager bound to the given URL or engine."""
    eng = build_engine(url_or_engine) if isinstance(url_or_engine, str) else url_or_engine
    factory = sessionmaker(bind=eng, autoflush=False, expire_on_commit=False, future=True)
    scope = _scoped(factory)
    scope.engine = eng
    return scope


def init_db(bind) -> None:
    """Create every table registered on the declarative base."""
    from ..models import Base

    Base.metadata.create_all(bind=bind)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
get_session = _scoped(SessionLocal)
get_session.engine = engine
