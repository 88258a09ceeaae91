"""
Engine, sessions and table definitions.

Storage is SQLAlchemy Core over PostgreSQL in production and SQLite in
development and tests. Counter and subscription writes go through
dialect-native INSERT ... ON CONFLICT so each write is one statement.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional
import logging

from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Index,
    UniqueConstraint,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from aifaq.core.config import settings


logger = logging.getLogger(__name__)

metadata = MetaData()

POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600
SQLITE_BUSY_TIMEOUT = 30

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _build_engine(url: str) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(
            url,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
        )

    connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    if parsed.database in (None, "", ":memory:"):
        # In-memory SQLite lives in one connection; share it or every checkout sees an empty database
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, connect_args=connect_args)


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)bind the module engine, to DATABASE_URL unless database_url is given."""
    global _engine, _SessionLocal

    url = database_url or settings.DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL is not configured")

    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(url)
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False)
    logger.debug("database.engine_ready", extra={"backend": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


@contextmanager
def get_db_session():
    """Session that commits on success and rolls back on any exception."""
    if _SessionLocal is None:
        init_engine()
    session: Session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(bind=get_engine())


def reset_database() -> None:
    """Drop and recreate every table. Tests only."""
    engine = get_engine()
    metadata.drop_all(bind=engine)
    metadata.create_all(bind=engine)


def _dialect_insert(session: Session, table: Table):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect: {dialect}")
    return dialect_insert(table)


def upsert(session: Session, table: Table, values: Dict, conflict_columns: Iterable[str], set_: Dict):
    """
    Build INSERT ... ON CONFLICT (conflict_columns) DO UPDATE SET set_.

    The whole write is one statement, so expressions such as
    ``table.c.count + 1`` in ``set_`` are applied atomically by the database.
    """
    stmt = _dialect_insert(session, table).values(**values)
    return stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=set_)


def insert_if_absent(session: Session, table: Table, values: Dict, conflict_columns: Iterable[str]):
    """Build INSERT ... ON CONFLICT DO NOTHING."""
    stmt = _dialect_insert(session, table).values(**values)
    return stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))


# Subscriptions: one row per shop, owned by the billing service
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('shop', String(255), primary_key=True),
    Column('plan', String(50), nullable=False, default='free'),
    Column('status', String(20), nullable=False, default='active'),
    Column('pending_plan', String(50), nullable=True),
    Column('external_charge_id', String(255), nullable=True),
    Column('external_confirmation_url', Text, nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
    Index('idx_subscriptions_external_charge_id', 'external_charge_id'),
)

# Usage counters: one row per (shop, type, billing_period)
usage_records = Table(
    'usage_records',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('shop', String(255), nullable=False),
    Column('type', String(50), nullable=False),
    Column('billing_period', String(7), nullable=False),  # YYYY-MM
    Column('count', Integer, nullable=False, default=0),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
    UniqueConstraint('shop', 'type', 'billing_period', name='uq_usage_records_shop_type_period'),
    Index('idx_usage_records_shop_period', 'shop', 'billing_period'),
)

# Generated / published FAQ sets per product
product_faqs = Table(
    'product_faqs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('shop', String(255), nullable=False),
    Column('product_id', String(255), nullable=False),
    Column('faqs', JSON, nullable=False),
    Column('is_published', Boolean, nullable=False, default=False),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
    UniqueConstraint('shop', 'product_id', name='uq_product_faqs_shop_product'),
    # Published-count queries: (shop, is_published)
    Index('idx_product_faqs_shop_published', 'shop', 'is_published'),
)

# Per-shop AI provider settings; api_key is stored encrypted
shop_settings = Table(
    'shop_settings',
    metadata,
    Column('shop', String(255), primary_key=True),
    Column('ai_provider', String(50), nullable=False, default='openai'),
    Column('model', String(100), nullable=False, default='gpt-4o'),
    Column('faq_count', Integer, nullable=False, default=5),
    Column('auto_generate', Boolean, nullable=False, default=False),
    Column('api_key', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), default=utc_now, nullable=False),
    Column('updated_at', DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False),
)
