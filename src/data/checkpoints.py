"""Checkpoint stores recording the highest fully processed height."""

from pathlib import Path

from typing import Protocol

import asyncio

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.data.blocks.db import IngestionCheckpointDB
from src.helpers.config import get_checkpoint_backend, get_checkpoint_file
from src.helpers.db import get_session_factory
from src.helpers.logging import get_logger


logger = get_logger(__name__)

CHECKPOINT_ROW_ID = 1


class CheckpointStore(Protocol):
    """Durable single-value cursor."""

    async def read(self) -> int | None:
        """Return the checkpoint, or None when there is no prior progress."""
        ...

    async def write(self, block_number: int) -> None:
        """Persist a new checkpoint."""
        ...


class InMemoryCheckpointStore:
    """Checkpoint held in memory, for tests and dry runs."""

    def __init__(self, block_number: int | None = None) -> None:
        self.block_number = block_number
        self.history: list[int] = []

    async def read(self) -> int | None:
        return self.block_number

    async def write(self, block_number: int) -> None:
        self.block_number = block_number
        self.history.append(block_number)


class FileCheckpointStore:
    """Checkpoint kept in a text file holding a single integer."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read(self) -> int | None:
        if not self.path.exists():
            return None
        content = self.path.read_text(encoding="utf-8").strip()
        if not content:
            return None
        return int(content)

    def _write(self, block_number: int) -> None:
        # Write then rename so a crash never leaves a truncated file
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(str(block_number), encoding="utf-8")
        tmp_path.replace(self.path)

    async def read(self) -> int | None:
        """Read the checkpoint file.

        Raises:
            ValueError: If the file does not contain an integer
        """
        return await asyncio.to_thread(self._read)

    async def write(self, block_number: int) -> None:
        await asyncio.to_thread(self._write, block_number)


class DatabaseCheckpointStore:
    """Checkpoint kept in the single-row ingestion_checkpoint table."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] | None = None
    ) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def read(self) -> int | None:
        async with self.session_factory() as session:
            stmt = select(IngestionCheckpointDB.block_number).where(
                IngestionCheckpointDB.id == CHECKPOINT_ROW_ID
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def write(self, block_number: int) -> None:
        async with self.session_factory() as session:
            try:
                stmt = pg_insert(IngestionCheckpointDB).values(
                    id=CHECKPOINT_ROW_ID, block_number=block_number
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={"block_number": stmt.excluded.block_number},
                )
                await session.execute(stmt)
                await session.commit()
            except Exception:
                await session.rollback()
                raise


def create_checkpoint_store(backend: str | None = None) -> CheckpointStore:
    """Build the checkpoint store selected by CHECKPOINT_BACKEND."""
    backend = backend or get_checkpoint_backend()
    if backend == "database":
        logger.info("Using database checkpoint")
        return DatabaseCheckpointStore()
    path = get_checkpoint_file()
    logger.info("Using checkpoint file %s", path)
    return FileCheckpointStore(path)


__all__ = [
    "CheckpointStore",
    "DatabaseCheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "create_checkpoint_store",
]
