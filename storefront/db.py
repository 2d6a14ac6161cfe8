"""SQLAlchemy engine, declarative base and transaction helpers.

All tables share one ``Base``. ``Database`` wraps the engine and exposes
``transaction()``, the explicit unit-of-work boundary used by the ledger,
the placement saga and the lifecycle manager.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from . import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_engine(url: str | None = None) -> Engine:
    """Create an engine for ``url`` (defaults to ``settings.DATABASE_URL``).

    SQLite engines are configured for multi-threaded use. Every transaction
    starts with ``BEGIN IMMEDIATE`` and a generous busy timeout, so concurrent
    writers queue on the database lock instead of failing mid-transaction.
    """
    url = url or getattr(settings, "DATABASE_URL")
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})

        @event.listens_for(engine, "connect")
        def _no_implicit_begin(dbapi_conn, _record):
            dbapi_conn.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine
    return create_engine(url, pool_pre_ping=True)


class Database:
    """Engine plus session factory.

    Args:
        engine: SQLAlchemy engine; when omitted one is created from
            ``settings.DATABASE_URL``.
    """

    def __init__(self, engine: Engine | None = None):
        self.engine = engine or make_engine()
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)

    def create_all(self) -> None:
        # import models so every table is registered on Base.metadata
        from .addresses import models as _addresses  # noqa: F401
        from .cart import models as _cart  # noqa: F401
        from .inventory import models as _inventory  # noqa: F401
        from .orders import models as _orders  # noqa: F401
        from .payments import models as _payments  # noqa: F401

        Base.metadata.create_all(self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("select 1"))
        return True

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a plain session; the caller commits explicitly."""
        with self._sessions() as s:
            yield s

    @contextmanager
    def transaction(self, session: Optional[Session] = None) -> Iterator[Session]:
        """Run a block inside one database transaction.

        When ``session`` is given the block joins it and nothing is
        committed here; the owner of that session decides. Otherwise a new
        session is opened, committed on success and rolled back when the
        block raises.

        Args:
            session: Optional session of an enclosing unit of work.

        Yields:
            Session: The session to use for every statement of the block.
        """
        if session is not None:
            yield session
            return
        with self._sessions() as s:
            with s.begin():
                yield s
