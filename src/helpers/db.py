"""Database connection helpers."""

from functools import cache
import os

from collections.abc import Iterator, Sequence
from typing import Any, Literal, TypeVar

from sqlalchemy import inspect
from sqlalchemy.dialects.postgresql import Insert, insert as pg_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from dotenv import load_dotenv

from src.helpers.constants import POSTGRES_PARAM_LIMIT


# Load environment variables from .env file
load_dotenv()

Base = declarative_base()

ConflictMode = Literal["ignore", "update"]

DBModelType = TypeVar("DBModelType")


def get_database_url() -> str:
    """Get the database URL from environment variables.

    DATABASE_URL wins when set; otherwise the URL is built from the
    POSTGRES_* variables.

    Returns:
        str: PostgreSQL database URL using the psycopg async driver

    Raises:
        ValueError: If required environment variables are not set
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        # Force psycopg (version 3) as the async PostgreSQL driver
        for prefix in ("postgresql://", "postgres://"):
            if database_url.startswith(prefix):
                return "postgresql+psycopg://" + database_url.removeprefix(prefix)
        return database_url

    postgres_host = os.getenv("POSTGRES_HOST", "localhost")
    postgres_port = os.getenv("POSTGRES_PORT", "5432")

    postgres_user = os.getenv("POSTGRES_USER")
    if not postgres_user:
        msg = "POSTGRES_USER is not set"
        raise ValueError(msg)

    postgres_password = os.getenv("POSTGRES_PASSWORD")
    if not postgres_password:
        msg = "POSTGRES_PASSWORD is not set"
        raise ValueError(msg)

    postgres_db = os.getenv("POSTGRES_DB")
    if not postgres_db:
        msg = "POSTGRES_DB is not set"
        raise ValueError(msg)

    return (
        "postgresql+psycopg://"
        f"{postgres_user}:{postgres_password}"
        f"@{postgres_host}:{postgres_port}"
        f"/{postgres_db}"
    )


@cache
def get_engine() -> AsyncEngine:
    """Create the process wide async engine on first use."""
    return create_async_engine(get_database_url(), echo=False)


@cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process wide engine."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables and indexes if they don't exist."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close every pooled connection of the process wide engine."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()


def chunk_rows(
    rows: Sequence[dict[str, Any]],
    param_limit: int = POSTGRES_PARAM_LIMIT,
) -> Iterator[Sequence[dict[str, Any]]]:
    """Split rows so each multi-row INSERT stays under the bind parameter limit.

    Example:
        >>> rows = [{"a": 1, "b": 2}] * 5
        >>> [len(chunk) for chunk in chunk_rows(rows, param_limit=4)]
        [2, 2, 1]
    """
    if not rows:
        return
    per_chunk = max(1, param_limit // max(1, len(rows[0])))
    for i in range(0, len(rows), per_chunk):
        yield rows[i : i + per_chunk]


def build_upsert_statement(
    db_model_class: type[DBModelType],
    rows: Sequence[dict[str, Any]],
    on_conflict: ConflictMode = "update",
    conflict_columns: Sequence[str] | None = None,
) -> Insert:
    """Build a multi-row INSERT with an ON CONFLICT clause.

    Args:
        db_model_class: The SQLAlchemy model class (e.g., BlockDB, AccountDB)
        rows: Column dicts to insert
        on_conflict: 'ignore' for DO NOTHING, 'update' for DO UPDATE of every
            non key column
        conflict_columns: Conflict target, defaults to the primary key. With
            'ignore' and no explicit target any constraint violation is ignored.

    Raises:
        ValueError: If the database model class cannot be inspected
    """
    mapper = inspect(db_model_class)
    if not mapper:
        msg = f"Cannot inspect {db_model_class}"
        raise ValueError(msg)

    stmt = pg_insert(db_model_class).values(list(rows))

    if on_conflict == "ignore":
        if conflict_columns is None:
            return stmt.on_conflict_do_nothing()
        return stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))

    pk_columns = list(conflict_columns or [col.name for col in mapper.primary_key])
    update_dict = {
        col: stmt.excluded[col] for col in rows[0] if col not in pk_columns
    }
    return stmt.on_conflict_do_update(index_elements=pk_columns, set_=update_dict)


async def upsert_rows(
    db_model_class: type[DBModelType],
    rows: Sequence[dict[str, Any]],
    *,
    on_conflict: ConflictMode = "update",
    conflict_columns: Sequence[str] | None = None,
    session: AsyncSession | None = None,
) -> None:
    """Bulk insert rows with conflict handling, chunked by parameter limit.

    With a session the statements join the caller's transaction and nothing
    is committed here. Without one a session is opened from the process wide
    factory, committed, and rolled back on error.

    Examples:
        await upsert_rows(BlockDB, [block.model_dump()], on_conflict="ignore")
    """
    if not rows:
        return

    if session is not None:
        for chunk in chunk_rows(rows):
            await session.execute(
                build_upsert_statement(
                    db_model_class, chunk, on_conflict, conflict_columns
                )
            )
        return

    async with get_session_factory()() as own_session:
        try:
            for chunk in chunk_rows(rows):
                await own_session.execute(
                    build_upsert_statement(
                        db_model_class, chunk, on_conflict, conflict_columns
                    )
                )
            await own_session.commit()
        except Exception:
            await own_session.rollback()
            raise


__all__ = [
    "Base",
    "ConflictMode",
    "build_upsert_statement",
    "chunk_rows",
    "create_tables",
    "dispose_engine",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "upsert_rows",
]
