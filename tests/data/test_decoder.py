"""Tests for block decoding."""

from datetime import UTC, datetime, timedelta

import pytest

import logging

from src.data.blocks.decoder import (
    decode_block,
    decode_transaction,
    find_timestamp,
    is_transfer,
)
from src.helpers.rpc_models import RawCall, RawExtrinsic
from tests.fakes import (
    ALICE,
    BLOCK_TIME,
    BOB,
    apply_event,
    finalization_event,
    raw_block,
    timestamp_extrinsic,
    transfer_block,
    transfer_extrinsic,
)


class TestIsTransfer:
    """Tests for the transfer filter."""

    @pytest.mark.parametrize("method", ["transfer", "transfer_keep_alive"])
    def test_signed_transfer_methods(self, method: str) -> None:
        """Test both transfer calls qualify when signed."""
        assert is_transfer(transfer_extrinsic(1, method=method))

    def test_unsigned_is_rejected(self) -> None:
        """Test unsigned balances calls are skipped."""
        extrinsic = transfer_extrinsic(1).model_copy(update={"signer": None})
        assert not is_transfer(extrinsic)

    @pytest.mark.parametrize("method", ["transfer_all", "force_transfer"])
    def test_other_balances_calls_rejected(self, method: str) -> None:
        """Test only the transfer family qualifies."""
        assert not is_transfer(transfer_extrinsic(1, method=method))

    def test_other_sections_rejected(self) -> None:
        """Test signed calls outside balances are skipped."""
        extrinsic = RawExtrinsic(
            index=1,
            hash="0x01",
            signer=ALICE,
            call=RawCall(section="system", method="remark", args={"remark": "0x00"}),
        )
        assert not is_transfer(extrinsic)


class TestDecodeTransaction:
    """Tests for decode_transaction function."""

    def test_transfer_fields(self) -> None:
        """Test tip, amount, fee and event attachment of a transfer."""
        block, events = transfer_block(3)

        tx = decode_transaction(block.extrinsics[1], 3, events)

        assert tx.block_number == 3
        assert tx.from_address == ALICE
        assert tx.to_address == BOB
        assert tx.amount == "100"
        assert tx.fee == "5"
        assert tx.gas_fee == "2"
        assert tx.gas_value == "0"
        assert tx.method == "balances.transfer"
        assert [(e.section, e.method) for e in tx.events] == [
            ("balances", "Withdraw"),
            ("balances", "Transfer"),
        ]

    def test_events_of_other_extrinsics_ignored(self) -> None:
        """Test events emitted for another index are not attached."""
        extrinsic = transfer_extrinsic(2)
        events = [
            apply_event(1, "balances", "Withdraw", ALICE, "9"),
            apply_event(1, "balances", "Transfer", ALICE, BOB, "100"),
            finalization_event("balances", "Withdraw", ALICE, "7"),
        ]

        tx = decode_transaction(extrinsic, 1, events)

        assert tx.gas_fee == "0"
        assert tx.events == []

    def test_missing_tip_defaults_to_zero(self) -> None:
        """Test fee is '0' when the extrinsic has no tip."""
        tx = decode_transaction(transfer_extrinsic(1, tip=None), 1, [])

        assert tx.fee == "0"

    def test_large_amount_kept_exact(self) -> None:
        """Test amounts beyond 64 bits are not rounded."""
        tx = decode_transaction(transfer_extrinsic(1, value=10**30), 1, [])

        assert tx.amount == str(10**30)


class TestFindTimestamp:
    """Tests for find_timestamp function."""

    def test_reads_timestamp_inherent(self) -> None:
        """Test the timestamp.set argument becomes the block time."""
        assert find_timestamp(raw_block(1, [timestamp_extrinsic(0)])) == BLOCK_TIME

    def test_none_without_inherent(self) -> None:
        """Test None is returned when no timestamp.set is present."""
        assert find_timestamp(raw_block(1, [transfer_extrinsic(0)])) is None


class TestDecodeBlock:
    """Tests for decode_block function."""

    def test_decodes_header_transactions_and_events(self) -> None:
        """Test a full block decodes to one block, one transfer and every event."""
        block, events = transfer_block(5)

        decoded = decode_block(block, events)

        assert decoded.block.block_number == 5
        assert decoded.block.block_hash == block.header.hash
        assert decoded.block.parent_hash == block.header.parent_hash
        assert decoded.block.timestamp == BLOCK_TIME
        assert len(decoded.transactions) == 1
        assert len(decoded.events) == len(events)
        assert all(event.block_number == 5 for event in decoded.events)
        assert decoded.touched_addresses() == [ALICE, BOB]

    def test_inherents_are_not_transactions(self) -> None:
        """Test blocks with only inherents have no transactions."""
        decoded = decode_block(raw_block(1, [timestamp_extrinsic(0)]), [])

        assert decoded.transactions == []
        assert decoded.events == []

    def test_timestamp_fallback_uses_clock(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a block without timestamp inherent gets the decode time."""
        fixed = datetime(2025, 1, 1, tzinfo=UTC)

        with caplog.at_level(logging.WARNING):
            decoded = decode_block(raw_block(9), [], now=lambda: fixed)

        assert decoded.block.timestamp == fixed
        assert "No timestamp found for block 9" in caplog.text

    def test_timestamp_fallback_defaults_to_now(self) -> None:
        """Test the default clock is close to wall-clock time."""
        before = datetime.now(UTC)

        decoded = decode_block(raw_block(9), [])

        assert before <= decoded.block.timestamp <= datetime.now(UTC) + timedelta(seconds=1)
