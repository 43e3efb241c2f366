"""Fetch, decode and persist a single height with bounded retries."""

from collections.abc import Awaitable, Callable

import asyncio

from src.data.blocks.decoder import decode_block
from src.data.blocks.models import DecodedBlock
from src.data.blocks.writer import PersistenceWriter
from src.helpers.constants import RETRY_DELAY, RETRY_LIMIT
from src.helpers.logging import get_logger
from src.helpers.parsers import is_valid_account_id
from src.helpers.rpc import ChainClient


logger = get_logger(__name__)


class BlockProcessor:
    """Processes one height: fetch + decode + persist, then balance refresh.

    Attempts are sequential. A height that fails every attempt is recorded in
    the failed_blocks table and reported as failed; it never raises.
    """

    def __init__(
        self,
        chain: ChainClient,
        writer: PersistenceWriter,
        retry_limit: int = RETRY_LIMIT,
        retry_delay: float = RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the processor.

        Args:
            chain: Chain node client
            writer: Persistence writer
            retry_limit: Maximum number of attempts per height
            retry_delay: Seconds to wait between attempts
            sleep: Awaitable sleep, replaceable in tests
        """
        self.chain = chain
        self.writer = writer
        self.retry_limit = retry_limit
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def ingest(self, height: int) -> DecodedBlock:
        """Fetch, decode and persist one height without retrying."""
        raw_block = await self.chain.block_at(height)
        event_records = await self.chain.events_at(raw_block.header.hash)
        decoded = decode_block(raw_block, event_records)
        await self.writer.persist(decoded)
        return decoded

    async def process(self, height: int) -> bool:
        """Process a height with retries.

        Returns:
            True if the height was stored, False once every attempt failed
        """
        last_error: Exception | None = None

        for attempt in range(1, self.retry_limit + 1):
            try:
                logger.debug("Processing block %s", height)
                decoded = await self.ingest(height)
                await self.writer.clear_failure(height)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Error processing block %s (attempt %d/%d): %s",
                    height,
                    attempt,
                    self.retry_limit,
                    e,
                )
                # Don't sleep after the last attempt
                if attempt < self.retry_limit:
                    await self._sleep(self.retry_delay)
                continue

            await self.refresh_balances(decoded)
            logger.info(
                "Successfully processed block %s (%d transactions)",
                height,
                len(decoded.transactions),
            )
            return True

        logger.error(
            "Failed to process block %s after %d attempts: %s",
            height,
            self.retry_limit,
            last_error,
        )
        await self._record_failure(height, last_error)
        return False

    async def _record_failure(self, height: int, error: Exception | None) -> None:
        try:
            await self.writer.record_failure(height, self.retry_limit, repr(error))
        except Exception:
            logger.exception("Failed to record block %s as failed", height)

    async def refresh_balances(self, decoded: DecodedBlock) -> None:
        """Refresh the balances of every sender and receiver in the block.

        Balances are read at the current chain head, not at the block's height.
        """
        for address in decoded.touched_addresses():
            await self.update_account_balance(address)

    async def update_account_balance(self, address: str) -> bool:
        """Fetch and store one account balance.

        Returns:
            True if stored. Malformed addresses and fetch/store errors are
            logged and reported as False without failing the block.
        """
        if not is_valid_account_id(address):
            logger.warning(
                "Invalid AccountId %s provided, expected 32 bytes; skipping balance update",
                address,
            )
            return False

        try:
            balance = await self.chain.balance_of(address)
            await self.writer.upsert_account_balance(address, balance)
        except Exception:
            logger.exception("Error updating balance for account %s", address)
            return False
        return True


__all__ = ["BlockProcessor"]
