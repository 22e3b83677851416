"""
Async SQLAlchemy plumbing shared by every service.

  - engine: one async engine per process, built from settings.DATABASE_URL
  - AsyncSessionLocal: session factory; sessions keep attributes after commit
  - Base: declarative base for the ORM models in bankcards.models
  - get_db(): per-request session dependency
  - use_immediate_transactions(): SQLite write-lock-at-BEGIN setup

A request owns exactly one session. get_db commits it once the handler
returns and rolls it back if anything raised, so a transfer's debit and
credit are persisted together or not at all.

SQLite locking:
  SQLite ignores SELECT ... FOR UPDATE, and the driver normally defers BEGIN
  until the first write. Two transfers on the same card would then both read
  the same balance, and the loser would fail on the card's version check.
  On SQLite engines every transaction therefore starts with BEGIN IMMEDIATE,
  which takes the database write lock up front: a second transfer waits for
  the first to commit and then reads the committed balance.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from bankcards.config import settings


def use_immediate_transactions(engine: AsyncEngine) -> AsyncEngine:
    """
    Make every transaction on a SQLite engine begin with BEGIN IMMEDIATE.

    Follows SQLAlchemy's recipe for the pysqlite/aiosqlite drivers: turn off
    the driver's own implicit BEGIN, then emit ours from the "begin" event.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


# DEBUG=true echoes every SQL statement.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)
if engine.dialect.name == "sqlite":
    use_immediate_transactions(engine)

# Without expire_on_commit=False, reading an attribute after commit would
# trigger a lazy load, and implicit IO is not allowed under asyncio.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


async def get_db():
    """Yield a session for one request; commit on success, roll back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
