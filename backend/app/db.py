from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core.config import settings


def _ensure_sqlite_path(url: str) -> None:
    if not url.startswith("sqlite"):
        return

    database = make_url(url).database
    if not database or database == ":memory:":
        return

    Path(database).parent.mkdir(parents=True, exist_ok=True)


def _create_engine(url: str) -> Engine:
    connect_args: dict[str, object] = {}
    engine_kwargs: dict[str, object] = {
        "echo": settings.debug,
        "future": True,
        "pool_pre_ping": True,
    }

    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        # The scheduler thread, scan workers and caller threads share the pool.
        connect_args["check_same_thread"] = False
        _ensure_sqlite_path(url)
    else:
        engine_kwargs["pool_recycle"] = 300
        if backend.startswith("postgresql"):
            connect_args.setdefault("keepalives", 1)
            connect_args.setdefault("keepalives_idle", 120)
            connect_args.setdefault("keepalives_interval", 30)
            connect_args.setdefault("keepalives_count", 5)

    if connect_args:
        engine_kwargs["connect_args"] = connect_args

    return create_engine(url, **engine_kwargs)


def _create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)


def build_db_components(url: str) -> tuple[Engine, sessionmaker[Session]]:
    engine = _create_engine(url)
    return engine, _create_session_factory(engine)


engine, SessionLocal = build_db_components(settings.resolved_database_url)
Base = declarative_base()


@contextmanager
def session_scope(session_factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind: Engine | None = None) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
