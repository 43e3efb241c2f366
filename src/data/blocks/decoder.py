"""Decode raw blocks and their events into indexed records."""

from collections.abc import Callable
from datetime import UTC, datetime

from src.data.blocks.models import (
    Block,
    DecodedBlock,
    Event,
    Transaction,
    TransactionEvent,
)
from src.helpers.constants import (
    TIMESTAMP_METHOD,
    TIMESTAMP_SECTION,
    TRANSACTION_EVENTS,
    TRANSFER_METHODS,
    TRANSFER_SECTION,
)
from src.helpers.logging import get_logger
from src.helpers.parsers import parse_millis_timestamp, to_amount_string
from src.helpers.rpc_models import EventRecord, RawBlock, RawExtrinsic


logger = get_logger(__name__)


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(UTC)


def find_timestamp(raw_block: RawBlock) -> datetime | None:
    """Return the argument of the block's timestamp.set inherent, if any."""
    for extrinsic in raw_block.extrinsics:
        call = extrinsic.call
        if call.section == TIMESTAMP_SECTION and call.method == TIMESTAMP_METHOD:
            now = call.args.get("now")
            if now is not None:
                return parse_millis_timestamp(now)
    return None


def is_transfer(extrinsic: RawExtrinsic) -> bool:
    """Whether an extrinsic is a signed balances transfer."""
    return (
        extrinsic.is_signed
        and extrinsic.hash is not None
        and extrinsic.call.section == TRANSFER_SECTION
        and extrinsic.call.method in TRANSFER_METHODS
    )


def decode_transaction(
    extrinsic: RawExtrinsic,
    block_number: int,
    event_records: list[EventRecord],
) -> Transaction:
    """Build the Transaction for a transfer extrinsic.

    gas_fee comes from the second field of the balances.Withdraw event emitted
    for this extrinsic. gas_value cannot be derived from chain data and is
    always "0".
    """
    extrinsic_events = [
        record.event
        for record in event_records
        if record.phase.applies_to(extrinsic.index)
    ]

    gas_fee = "0"
    for event in extrinsic_events:
        if (event.section, event.method) == ("balances", "Withdraw") and len(event.data) > 1:
            gas_fee = event.data[1]

    return Transaction(
        tx_hash=extrinsic.hash or "",
        block_number=block_number,
        from_address=extrinsic.signer or "",
        to_address=str(extrinsic.call.args.get("dest", "")),
        amount=to_amount_string(extrinsic.call.args.get("value")),
        fee=extrinsic.tip or "0",
        gas_fee=gas_fee,
        gas_value="0",
        method=f"{extrinsic.call.section}.{extrinsic.call.method}",
        events=[
            TransactionEvent(section=event.section, method=event.method, data=event.data)
            for event in extrinsic_events
            if (event.section, event.method) in TRANSACTION_EVENTS
        ],
    )


def decode_block(
    raw_block: RawBlock,
    event_records: list[EventRecord],
    now: Callable[[], datetime] = utc_now,
) -> DecodedBlock:
    """Decode one block and its events.

    Args:
        raw_block: Header and ordered extrinsics as returned by the node
        event_records: Full System.Events list of the block
        now: Clock used when the block carries no timestamp inherent

    Returns:
        DecodedBlock with one Block, the transfer Transactions and one Event
        per event record
    """
    header = raw_block.header

    timestamp = find_timestamp(raw_block)
    if timestamp is None:
        timestamp = now()
        logger.warning(
            "No timestamp found for block %s, using current time", header.number
        )

    block = Block(
        block_number=header.number,
        block_hash=header.hash,
        parent_hash=header.parent_hash,
        state_root=header.state_root,
        extrinsics_root=header.extrinsics_root,
        timestamp=timestamp,
    )

    transactions = [
        decode_transaction(extrinsic, header.number, event_records)
        for extrinsic in raw_block.extrinsics
        if is_transfer(extrinsic)
    ]

    events = [
        Event(
            block_number=header.number,
            section=record.event.section,
            method=record.event.method,
            data=record.event.data,
        )
        for record in event_records
    ]

    return DecodedBlock(block=block, transactions=transactions, events=events)


__all__ = [
    "decode_block",
    "decode_transaction",
    "find_timestamp",
    "is_transfer",
    "utc_now",
]
