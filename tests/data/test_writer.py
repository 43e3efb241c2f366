"""Tests for the persistence writer against a mocked session."""

from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from typing import Any

from sqlalchemy.dialects import postgresql

from src.data.blocks.decoder import decode_block
from src.data.blocks.models import Account, Block
from src.data.blocks.writer import PersistenceWriter, block_rows, naive_utc
from tests.fakes import ALICE, BOB, transfer_block


class MockSessionContext:
    def __init__(self, session: AsyncMock) -> None:
        self.session = session

    async def __aenter__(self) -> Any:
        return self.session

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        return None


@pytest.fixture
def session() -> AsyncMock:
    """Mocked AsyncSession."""
    return AsyncMock()


@pytest.fixture
def mock_writer(session: AsyncMock) -> PersistenceWriter:
    """Writer whose session factory always yields the mocked session."""
    factory = MagicMock(side_effect=lambda: MockSessionContext(session))
    return PersistenceWriter(session_factory=factory)


def executed_sql(session: AsyncMock) -> list[str]:
    return [
        str(call.args[0].compile(dialect=postgresql.dialect()))
        for call in session.execute.await_args_list
    ]


class TestNaiveUtc:
    """Tests for timestamp conversion."""

    def test_converts_offset_to_naive_utc(self) -> None:
        """Test aware datetimes are shifted to UTC and made naive."""
        value = datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        assert naive_utc(value) == datetime(2024, 1, 1, 12, 0)

    def test_naive_passthrough(self) -> None:
        """Test naive datetimes are unchanged."""
        value = datetime(2024, 1, 1, 12, 0)

        assert naive_utc(value) is value

    def test_block_rows_use_naive_timestamps(self) -> None:
        """Test block rows carry naive UTC timestamps."""
        block = Block(
            block_number=1,
            block_hash="0x01",
            parent_hash="0x00",
            state_root="0x02",
            extrinsics_root="0x03",
            timestamp=datetime(2024, 1, 1, tzinfo=UTC),
        )

        assert block_rows([block])[0]["timestamp"].tzinfo is None


class TestPersist:
    """Tests for PersistenceWriter.persist."""

    @pytest.mark.asyncio
    async def test_single_transaction_for_block(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test block, transactions and events are written in one commit."""
        decoded = decode_block(*transfer_block(4))

        await mock_writer.persist(decoded)

        sql = executed_sql(session)
        assert sql[0].startswith("INSERT INTO blocks")
        assert "ON CONFLICT (block_number) DO NOTHING" in sql[0]
        assert sql[1].startswith("INSERT INTO transactions")
        assert "ON CONFLICT (tx_hash) DO NOTHING" in sql[1]
        assert sql[2].startswith("DELETE FROM events")
        assert sql[3].startswith("INSERT INTO events")
        session.commit.assert_awaited_once()
        session.rollback.assert_not_called()

    @pytest.mark.asyncio
    async def test_rollback_on_error(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test a failing statement rolls the whole block back."""
        session.execute.side_effect = [None, RuntimeError("deadlock detected")]

        with pytest.raises(RuntimeError, match="deadlock detected"):
            await mock_writer.persist(decode_block(*transfer_block(4)))

        session.rollback.assert_awaited_once()
        session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_block_without_transfers_skips_transactions(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test empty transaction and event lists issue no statements."""
        block, _ = transfer_block(4)
        decoded = decode_block(block.model_copy(update={"extrinsics": block.extrinsics[:1]}), [])

        await mock_writer.persist(decoded)

        sql = executed_sql(session)
        assert len(sql) == 1
        assert sql[0].startswith("INSERT INTO blocks")


class TestAccountsAndFailures:
    """Tests for balance upserts and the failed_blocks table."""

    @pytest.mark.asyncio
    async def test_upsert_accounts_overwrites_balance(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test account upserts update the balance on conflict."""
        await mock_writer.upsert_accounts([Account(address=ALICE, balance="10")])

        sql = executed_sql(session)
        assert "ON CONFLICT (address) DO UPDATE SET balance = excluded.balance" in sql[0]
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upsert_accounts_deduplicates(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test the last balance per address wins inside one statement."""
        await mock_writer.upsert_accounts(
            [
                Account(address=ALICE, balance="1"),
                Account(address=BOB, balance="2"),
                Account(address=ALICE, balance="3"),
            ]
        )

        stmt = session.execute.await_args.args[0]
        params = stmt.compile(dialect=postgresql.dialect()).params
        assert sorted(v for k, v in params.items() if k.startswith("balance")) == ["2", "3"]

    @pytest.mark.asyncio
    async def test_upsert_accounts_empty_is_noop(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test no session is used for an empty account list."""
        await mock_writer.upsert_accounts([])

        session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_upsert_account_balance_joins_session(
        self, mock_writer: PersistenceWriter
    ) -> None:
        """Test a passed session is used without committing."""
        outer = AsyncMock()

        await mock_writer.upsert_account_balance(ALICE, "42", session=outer)

        outer.execute.assert_awaited_once()
        outer.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_failure(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test exhausted heights are upserted into failed_blocks."""
        await mock_writer.record_failure(17, 5, "ConnectionError('timeout')")

        sql = executed_sql(session)
        assert sql[0].startswith("INSERT INTO failed_blocks")
        assert "ON CONFLICT (block_number) DO UPDATE" in sql[0]
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_clear_failure(
        self, mock_writer: PersistenceWriter, session: AsyncMock
    ) -> None:
        """Test a recovered height is removed from failed_blocks."""
        await mock_writer.clear_failure(17)

        assert executed_sql(session)[0].startswith("DELETE FROM failed_blocks")
