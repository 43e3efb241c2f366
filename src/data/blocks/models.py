"""Pydantic models for indexed chain data.

Field names match the table columns so ``model_dump()`` feeds bulk inserts.
"""

# Pydantic needs this at runtime to validate the datetime field
from datetime import datetime

from pydantic import BaseModel, Field


class Block(BaseModel):
    """Indexed block header."""

    block_number: int = Field(..., ge=0)
    block_hash: str
    parent_hash: str
    state_root: str
    extrinsics_root: str
    timestamp: datetime


class TransactionEvent(BaseModel):
    """Event attached to a transaction."""

    section: str
    method: str
    data: list[str] = Field(default_factory=list)


class Transaction(BaseModel):
    """Balances transfer extrinsic."""

    tx_hash: str
    block_number: int
    from_address: str
    to_address: str
    amount: str  # planck as string
    fee: str  # tip
    gas_fee: str
    gas_value: str = "0"
    method: str
    events: list[TransactionEvent] = Field(default_factory=list)


class Event(BaseModel):
    """Chain event emitted in a block."""

    block_number: int
    section: str
    method: str
    data: list[str] = Field(default_factory=list)


class Account(BaseModel):
    """Account balance snapshot."""

    address: str
    balance: str


class DecodedBlock(BaseModel):
    """Records decoded from one height."""

    block: Block
    transactions: list[Transaction] = Field(default_factory=list)
    events: list[Event] = Field(default_factory=list)

    def touched_addresses(self) -> list[str]:
        """Sender and receiver addresses of all transactions, first seen order."""
        seen: dict[str, None] = {}
        for transaction in self.transactions:
            seen.setdefault(transaction.from_address)
            seen.setdefault(transaction.to_address)
        return list(seen)
