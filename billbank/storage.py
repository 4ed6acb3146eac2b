"""
Storage Backend Module

Relational storage on SQLAlchemy. Provides the declarative base shared by all
entities, engine construction for SQLite (local use, testing) and PostgreSQL
(production), and the atomic session scope every service works in.
All monetary columns are Numeric and read back as Decimal.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence
from uuid import uuid4
import time

from sqlalchemy import DateTime, MetaData, String, create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_config
from .logging_config import get_logger


logger = get_logger("billbank.storage")

_naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=_naming_convention)

_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite://", "sqlite+pysqlite:///:memory:")


class Base(DeclarativeBase):
    metadata = metadata


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_uuid() -> str:
    return str(uuid4())


class StorageRecord:
    """Columns shared by all stored records"""
    
    id: Mapped[int] = mapped_column(primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=generate_uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


def _install_sqlite_events(engine: Engine) -> None:
    """
    Take over transaction control from pysqlite.
    
    Every transaction starts with BEGIN IMMEDIATE so the write lock is held
    from the first read; savepoints work and check-then-update sequences
    cannot interleave between connections.
    """
    
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()
    
    @event.listens_for(engine, "begin")
    def _on_begin(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def _install_slow_query_events(engine: Engine, threshold_ms: int) -> None:
    
    @event.listens_for(engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = time.perf_counter()
    
    @event.listens_for(engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start = getattr(context, "_query_start_time", None)
        if start is None:
            return
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if elapsed_ms >= threshold_ms:
            # Parameters are left out, they may carry authorization keys
            logger.warning("Slow query: %.1f ms | %s", elapsed_ms, statement)


class Database:
    """Engine and session factory for one database"""
    
    def __init__(self, url: Optional[str] = None, echo: Optional[bool] = None):
        config = get_config()
        self.url = url or config.database_url
        self.engine = self._create_engine(
            self.url,
            config.database_echo if echo is None else echo
        )
        _install_slow_query_events(self.engine, config.database_slow_query_ms)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
    
    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        """Create engine with backend-specific settings"""
        if url.startswith("sqlite"):
            options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if url in _MEMORY_URLS:
                # One shared connection, otherwise every checkout sees an empty database
                options["poolclass"] = StaticPool
            engine = create_engine(url, echo=echo, **options)
            _install_sqlite_events(engine)
            return engine
        
        config = get_config()
        logger.info("Creating engine for %s", url.split("@")[-1])
        return create_engine(
            url,
            echo=echo,
            pool_size=config.database_pool_size,
            max_overflow=config.database_pool_overflow,
            pool_timeout=config.database_pool_timeout,
            pool_pre_ping=True,
        )
    
    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name
    
    def create_all(self) -> None:
        """Create all tables that do not exist yet"""
        # Models must be imported so their tables are registered on the metadata
        from . import models  # noqa: F401
        Base.metadata.create_all(self.engine)
    
    def drop_all(self) -> None:
        from . import models  # noqa: F401
        Base.metadata.drop_all(self.engine)
    
    @contextmanager
    def atomic(self) -> Iterator[Session]:
        """Session whose work commits on success and rolls back on any error"""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
    
    @contextmanager
    def scope(self, session: Optional[Session] = None) -> Iterator[Session]:
        """Join the caller's session when given, otherwise open an atomic one"""
        if session is not None:
            yield session
            return
        with self.atomic() as new_session:
            yield new_session
    
    def close(self) -> None:
        """Dispose of pooled connections"""
        self.engine.dispose()


def upsert(
    session: Session,
    model: type,
    values: Dict[str, Any],
    index_elements: Sequence[str],
    update_columns: Optional[List[str]] = None
) -> None:
    """
    INSERT ... ON CONFLICT (index_elements) DO UPDATE for SQLite and PostgreSQL.
    
    Conflicting rows get ``update_columns`` from the proposed row (the
    conflict columns themselves when omitted) plus a fresh ``updated_at``.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        statement = postgresql.insert(model)
    elif dialect == "sqlite":
        statement = sqlite.insert(model)
    else:
        raise NotImplementedError(f"Upsert is not supported for dialect {dialect}")
    
    statement = statement.values(**values)
    columns = update_columns or list(index_elements)
    set_ = {column: statement.excluded[column] for column in columns}
    set_["updated_at"] = utcnow()
    session.execute(statement.on_conflict_do_update(index_elements=list(index_elements), set_=set_))
