from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from railfleet.core.config import get_settings
from railfleet.core.errors import RailfleetError, TransactionFailure


logger = logging.getLogger(__name__)

T = TypeVar("T")

settings = get_settings()
database_url = settings.resolved_database_url
_engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
# Configure bounded asyncpg pools for predictable latency under load.
if not database_url.startswith("sqlite"):
    _engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
    _engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
    _engine_kwargs["pool_timeout"] = settings.db_pool_timeout_s
    _engine_kwargs["pool_recycle"] = settings.db_pool_recycle_s
    connect_args: dict[str, Any] = {}
    if settings.db_ssl:
        connect_args["ssl"] = "require"
    if settings.db_statement_timeout_ms > 0:
        connect_args["server_settings"] = {"statement_timeout": str(int(settings.db_statement_timeout_ms))}
    if connect_args:
        _engine_kwargs["connect_args"] = connect_args
engine = create_async_engine(database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def run_in_transaction(fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
    # One pooled connection for the whole unit; commit on return, roll back on any error.
    async with SessionLocal() as session:
        async with session.begin():
            return await fn(session)


async def query(sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    # Single parameterized statement; no atomicity across separate calls.
    async with SessionLocal() as session:
        result = await session.execute(text(sql), params or {})
        rows = [dict(row) for row in result.mappings().all()] if result.returns_rows else []
        await session.commit()
        return rows


async def check_connection() -> bool:
    rows = await query("SELECT 1 AS ok")
    return bool(rows and rows[0].get("ok") == 1)


def pool_stats() -> dict[str, int | None]:
    # Expose DB pool counters for ops visibility without querying Postgres internals.
    pool = engine.sync_engine.pool
    checked_out_fn = getattr(pool, "checkedout", None)
    checked_in_fn = getattr(pool, "checkedin", None)
    overflow_fn = getattr(pool, "overflow", None)
    size_fn = getattr(pool, "size", None)
    return {
        "size": int(size_fn()) if callable(size_fn) else None,
        "checked_out": int(checked_out_fn()) if callable(checked_out_fn) else None,
        "checked_in": int(checked_in_fn()) if callable(checked_in_fn) else None,
        "overflow": int(overflow_fn()) if callable(overflow_fn) else None,
    }


@asynccontextmanager
async def atomic(session: AsyncSession, *, operation: str) -> AsyncIterator[AsyncSession]:
    """Commit everything staged in the block as one unit, or nothing.

    Domain errors roll back and propagate unchanged; store errors roll back and
    surface as TransactionFailure. The block may follow reads that already
    autobegan a transaction on the same session.
    """
    try:
        yield session
        await session.commit()
    except RailfleetError:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("transaction_failed operation=%s", operation, exc_info=exc)
        raise TransactionFailure(f"Failed to {operation}") from exc
    except BaseException:
        await session.rollback()
        raise
