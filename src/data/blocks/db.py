"""Database models for indexed chain data."""

from datetime import datetime

from typing import Any

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.helpers.db import Base


class BlockDB(Base):
    """Block database model."""

    __tablename__ = "blocks"

    block_number: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    parent_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    state_root: Mapped[str] = mapped_column(String(66), nullable=False)
    extrinsics_root: Mapped[str] = mapped_column(String(66), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_blocks_hash", "block_hash"),)


class TransactionDB(Base):
    """Balances transfer database model."""

    __tablename__ = "transactions"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    block_number: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("blocks.block_number")
    )
    from_address: Mapped[str] = mapped_column(String(66), nullable=False)
    to_address: Mapped[str] = mapped_column(String(66), nullable=False)
    amount: Mapped[str] = mapped_column(String(255), nullable=False)
    fee: Mapped[str] = mapped_column(String(255), nullable=False)
    gas_fee: Mapped[str] = mapped_column(String(255), nullable=False)
    gas_value: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(255), nullable=False)
    events: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False)

    __table_args__ = (
        Index("idx_transactions_block_number", "block_number"),
        Index("idx_transactions_from_address", "from_address"),
        Index("idx_transactions_to_address", "to_address"),
    )


class EventDB(Base):
    """Chain event database model."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    block_number: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("blocks.block_number")
    )
    section: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[list[str]] = mapped_column(JSONB, nullable=False)

    __table_args__ = (
        Index("idx_events_block_number", "block_number"),
        Index("idx_events_section_method", "section", "method"),
    )


class AccountDB(Base):
    """Account balance database model."""

    __tablename__ = "accounts"

    address: Mapped[str] = mapped_column(String(66), primary_key=True)
    balance: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (Index("idx_accounts_balance", "balance"),)


class FailedBlockDB(Base):
    """Heights abandoned after exhausting their retries."""

    __tablename__ = "failed_blocks"

    block_number: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    last_error: Mapped[str] = mapped_column(Text, nullable=False)
    failed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class IngestionCheckpointDB(Base):
    """Single row holding the highest fully processed height."""

    __tablename__ = "ingestion_checkpoint"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
