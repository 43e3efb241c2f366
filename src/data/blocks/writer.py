"""Idempotent persistence of decoded chain data."""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from typing import Any

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.data.blocks.db import (
    AccountDB,
    BlockDB,
    EventDB,
    FailedBlockDB,
    TransactionDB,
)
from src.data.blocks.models import Account, Block, DecodedBlock, Event, Transaction
from src.helpers.db import get_session_factory, upsert_rows
from src.helpers.logging import get_logger


logger = get_logger(__name__)


def naive_utc(value: datetime) -> datetime:
    """Convert to naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def block_rows(blocks: Sequence[Block]) -> list[dict[str, Any]]:
    """Column dicts for the blocks table."""
    rows = []
    for block in blocks:
        row = block.model_dump()
        row["timestamp"] = naive_utc(block.timestamp)
        rows.append(row)
    return rows


class PersistenceWriter:
    """Writes blocks, transactions, events and balances.

    Blocks, transactions and events use insert-or-ignore semantics so
    re-processing a height has no effect; balances are overwritten.

    Every method takes an optional session. Passing one joins the caller's
    transaction; otherwise the writer commits its own.
    """

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] | None = None
    ) -> None:
        """Initialize the writer.

        Args:
            session_factory: Session factory, defaults to the process wide one
        """
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Session factory used when no session is passed in."""
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @asynccontextmanager
    async def transaction(
        self, session: AsyncSession | None = None
    ) -> AsyncIterator[AsyncSession]:
        """Yield a session, committing and rolling back only sessions it owns."""
        if session is not None:
            yield session
            return

        async with self.session_factory() as own_session:
            try:
                yield own_session
                await own_session.commit()
            except Exception:
                await own_session.rollback()
                raise

    async def upsert_blocks(
        self, blocks: Sequence[Block], session: AsyncSession | None = None
    ) -> None:
        """Insert blocks, ignoring heights already stored."""
        if not blocks:
            return
        async with self.transaction(session) as active:
            await upsert_rows(
                BlockDB,
                block_rows(blocks),
                on_conflict="ignore",
                conflict_columns=["block_number"],
                session=active,
            )

    async def upsert_transactions(
        self, transactions: Sequence[Transaction], session: AsyncSession | None = None
    ) -> None:
        """Insert transactions, ignoring hashes already stored."""
        if not transactions:
            return
        async with self.transaction(session) as active:
            await upsert_rows(
                TransactionDB,
                [transaction.model_dump() for transaction in transactions],
                on_conflict="ignore",
                conflict_columns=["tx_hash"],
                session=active,
            )

    async def upsert_events(
        self, events: Sequence[Event], session: AsyncSession | None = None
    ) -> None:
        """Insert the events of one or more blocks.

        Event rows have a surrogate key, so the existing rows of the written
        block numbers are replaced inside the same transaction. A replay
        therefore leaves exactly one copy of each event.
        """
        if not events:
            return
        block_numbers = sorted({event.block_number for event in events})
        async with self.transaction(session) as active:
            await active.execute(
                delete(EventDB).where(EventDB.block_number.in_(block_numbers))
            )
            await upsert_rows(
                EventDB,
                [event.model_dump() for event in events],
                on_conflict="ignore",
                session=active,
            )

    async def upsert_account_balance(
        self, address: str, balance: str, session: AsyncSession | None = None
    ) -> None:
        """Insert an account or overwrite its balance."""
        await self.upsert_accounts([Account(address=address, balance=balance)], session)

    async def upsert_accounts(
        self, accounts: Sequence[Account], session: AsyncSession | None = None
    ) -> None:
        """Bulk insert accounts, overwriting balances of existing addresses."""
        if not accounts:
            return
        # One row per address, otherwise ON CONFLICT DO UPDATE hits the same row twice
        rows = {account.address: account.model_dump() for account in accounts}
        async with self.transaction(session) as active:
            await upsert_rows(
                AccountDB,
                list(rows.values()),
                on_conflict="update",
                conflict_columns=["address"],
                session=active,
            )

    async def persist(self, decoded: DecodedBlock) -> None:
        """Write the block, its transactions and its events in one transaction."""
        async with self.transaction() as session:
            await self.upsert_blocks([decoded.block], session)
            await self.upsert_transactions(decoded.transactions, session)
            await self.upsert_events(decoded.events, session)

        logger.debug(
            "Stored block #%s (%s transactions, %s events)",
            decoded.block.block_number,
            len(decoded.transactions),
            len(decoded.events),
        )

    async def record_failure(self, block_number: int, attempts: int, error: str) -> None:
        """Record a height abandoned after exhausting its retries."""
        async with self.transaction() as session:
            await upsert_rows(
                FailedBlockDB,
                [
                    {
                        "block_number": block_number,
                        "attempts": attempts,
                        "last_error": error,
                        "failed_at": naive_utc(datetime.now(UTC)),
                    }
                ],
                on_conflict="update",
                session=session,
            )

    async def clear_failure(self, block_number: int) -> None:
        """Remove the dead-letter record of a height that has now succeeded."""
        async with self.transaction() as session:
            await session.execute(
                delete(FailedBlockDB).where(FailedBlockDB.block_number == block_number)
            )


__all__ = ["PersistenceWriter", "block_rows", "naive_utc"]
