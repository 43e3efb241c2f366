"""Chain ingestion run.

One run reads the checkpoint and the chain head, ingests every new height in
concurrent batches, resyncs all account balances and ends. The process is
meant to be relaunched by an external supervisor; the run reports when it
wants to be restarted instead of restarting itself.

Processing flow:
1. Init: connect to the node, read head height and checkpoint
2. LagCheck: request a restart when the checkpoint trails the head too far
3. Ingesting: batches of heights through BlockProcessor
4. AccountResync: overwrite every account balance from chain state
5. Done: close connections, request a restart

Usage:
    python -m src.ingest [--batch-size N] [--loop] [--progress]
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
import argparse
import contextlib
import sys

import asyncio

from src.data.blocks.models import Account
from src.data.blocks.processor import BlockProcessor
from src.data.blocks.scheduler import BatchScheduler, BatchSummary
from src.data.blocks.writer import PersistenceWriter
from src.data.checkpoints import CheckpointStore, create_checkpoint_store
from src.helpers.config import (
    get_batch_size,
    get_chain_rpc_url,
    get_log_file,
    get_log_level,
    get_optional_env,
)
from src.helpers.constants import LAG_THRESHOLD, RESTART_DELAY
from src.helpers.db import create_tables, dispose_engine
from src.helpers.logging import get_logger, set_level
from src.helpers.monitoring import monitor_memory
from src.helpers.rpc import ChainClient, SubstrateChainClient


logger = get_logger(__name__)


class RunState(StrEnum):
    """States of a single ingestion run."""

    INIT = "init"
    LAG_CHECK = "lag_check"
    INGESTING = "ingesting"
    ACCOUNT_RESYNC = "account_resync"
    DONE = "done"
    FAILED = "failed"


class RestartReason(StrEnum):
    """Why the run asks the supervisor for a restart."""

    LAG = "lag"
    COMPLETED = "completed"


@dataclass(frozen=True)
class RestartSignal:
    """Request to relaunch the process after a delay."""

    reason: RestartReason
    delay: float = RESTART_DELAY


@dataclass(frozen=True)
class RunPlan:
    """Height range and lag decision derived from head and checkpoint."""

    start_height: int
    end_height: int
    lag: int
    lagging: bool

    @property
    def heights(self) -> range:
        return range(self.start_height, self.end_height + 1)


def plan_run(
    head_height: int, checkpoint: int | None, lag_threshold: int = LAG_THRESHOLD
) -> RunPlan:
    """Compute the heights to ingest and whether the run is lagging.

    Without a checkpoint ingestion starts at height 0 and lag is measured
    from 0. With one, ingestion resumes at the next height.

    Example:
        >>> plan_run(20, 10)
        RunPlan(start_height=11, end_height=20, lag=10, lagging=True)
    """
    base = checkpoint if checkpoint is not None else 0
    start_height = checkpoint + 1 if checkpoint is not None else 0
    lag = head_height - base
    return RunPlan(
        start_height=start_height,
        end_height=head_height,
        lag=lag,
        lagging=lag > lag_threshold,
    )


@dataclass
class RunResult:
    """Observable outcome of one run."""

    state: RunState
    head_height: int | None = None
    checkpoint_before: int | None = None
    plan: RunPlan | None = None
    summary: BatchSummary | None = None
    accounts_synced: int = 0
    restart_signals: list[RestartSignal] = field(default_factory=list)
    error: str | None = None

    @property
    def restart_signal(self) -> RestartSignal | None:
        """The restart to honour, preferring the end-of-run signal."""
        return self.restart_signals[-1] if self.restart_signals else None


class RunCoordinator:
    """Drives one ingestion run through its states."""

    def __init__(
        self,
        chain: ChainClient,
        writer: PersistenceWriter,
        checkpoint_store: CheckpointStore,
        batch_size: int,
        *,
        processor: BlockProcessor | None = None,
        close_store: Callable[[], Awaitable[None]] | None = None,
        lag_threshold: int = LAG_THRESHOLD,
        restart_delay: float = RESTART_DELAY,
        show_progress: bool = False,
    ) -> None:
        """Initialize the coordinator.

        Args:
            chain: Chain node client
            writer: Persistence writer
            checkpoint_store: Store holding the last processed height
            batch_size: Heights processed concurrently per batch
            processor: Height processor, built from chain and writer if omitted
            close_store: Coroutine closing the database connections
            lag_threshold: Lag above which a restart is requested
            restart_delay: Delay attached to restart signals
            show_progress: Whether to render a progress bar
        """
        self.chain = chain
        self.writer = writer
        self.checkpoint_store = checkpoint_store
        self.batch_size = batch_size
        self.processor = processor or BlockProcessor(chain, writer)
        self.close_store = close_store
        self.lag_threshold = lag_threshold
        self.restart_delay = restart_delay
        self.show_progress = show_progress
        self.state = RunState.INIT

    def _transition(self, state: RunState) -> None:
        logger.debug("Run state %s -> %s", self.state, state)
        self.state = state

    async def _close(self) -> None:
        try:
            await self.chain.close()
        finally:
            if self.close_store is not None:
                await self.close_store()

    async def resync_accounts(self) -> int:
        """Overwrite the balance of every account known to the chain.

        Returns:
            Number of accounts written, 0 if the resync failed
        """
        try:
            logger.info("Fetching and storing all accounts...")
            accounts = await self.chain.accounts()
            logger.info("Fetched %d accounts", len(accounts))
            await self.writer.upsert_accounts(
                [Account(address=address, balance=balance) for address, balance in accounts]
            )
        except Exception:
            logger.exception("Error fetching and storing accounts")
            return 0
        logger.info("Successfully fetched and stored all accounts")
        return len(accounts)

    async def run(self) -> RunResult:
        """Run once from the checkpoint to the current head.

        Returns:
            RunResult in state DONE or FAILED. Errors raised while ingesting
            outside the per-height retry guard propagate to the caller.
        """
        self._transition(RunState.INIT)
        result = RunResult(state=RunState.INIT)

        try:
            await self.chain.connect()
            head_height = await self.chain.head_height()
            checkpoint = await self.checkpoint_store.read()
        except Exception as e:
            logger.exception("Error initializing chain client")
            self._transition(RunState.FAILED)
            result.state = RunState.FAILED
            result.error = str(e)
            await self._close()
            return result

        result.head_height = head_height
        result.checkpoint_before = checkpoint
        logger.info("Latest block number: %s", head_height)
        if checkpoint is not None:
            logger.info("Last processed block: %s", checkpoint)

        try:
            self._transition(RunState.LAG_CHECK)
            plan = plan_run(head_height, checkpoint, self.lag_threshold)
            result.plan = plan
            if plan.lagging:
                logger.warning(
                    "Block processing is lagging by %d blocks, restart requested", plan.lag
                )
                result.restart_signals.append(
                    RestartSignal(RestartReason.LAG, self.restart_delay)
                )

            self._transition(RunState.INGESTING)
            scheduler = BatchScheduler(
                self.processor.process,
                self.checkpoint_store,
                show_progress=self.show_progress,
            )
            result.summary = await scheduler.run_batches(
                plan.start_height, plan.end_height, self.batch_size
            )

            self._transition(RunState.ACCOUNT_RESYNC)
            result.accounts_synced = await self.resync_accounts()
        finally:
            await self._close()

        self._transition(RunState.DONE)
        result.state = RunState.DONE
        result.restart_signals.append(
            RestartSignal(RestartReason.COMPLETED, self.restart_delay)
        )
        logger.info("Main process completed")
        return result


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Ingest chain blocks into PostgreSQL")
    parser.add_argument(
        "--batch-size",
        "-b",
        type=int,
        default=None,
        help="Heights per batch (default: FETCHING_BATCH_SIZE or 10)",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Start the next run in-process instead of exiting on restart",
    )
    parser.add_argument(
        "--progress", action="store_true", help="Show a progress bar per run"
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before the first run",
    )
    return parser.parse_args(argv)


def build_coordinator(args: argparse.Namespace) -> RunCoordinator:
    """Wire the coordinator from environment configuration."""
    ss58_format = get_optional_env("SS58_FORMAT")
    batch_size = get_batch_size(args.batch_size)
    chain = SubstrateChainClient(
        get_chain_rpc_url(),
        ss58_format=int(ss58_format) if ss58_format else None,
        pool_size=batch_size,
    )
    return RunCoordinator(
        chain,
        PersistenceWriter(),
        create_checkpoint_store(),
        batch_size,
        close_store=dispose_engine,
        show_progress=args.progress,
    )


async def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Process exit status: 0 when the supervisor should relaunch, 1 on failure
    """
    args = parse_args(argv)
    level = get_log_level()
    set_level(level)

    log_file = get_log_file()
    if log_file:
        # Module loggers propagate to the package logger
        get_logger("src", log_handler="file", log_level=level, log_file=log_file)

    monitor = asyncio.create_task(monitor_memory())
    try:
        if args.create_tables:
            await create_tables()

        while True:
            result = await build_coordinator(args).run()
            if result.state is RunState.FAILED:
                return 1

            signal = result.restart_signal
            if signal is None:
                return 0

            logger.info(
                "Restart requested (%s), waiting %.1fs", signal.reason, signal.delay
            )
            await asyncio.sleep(signal.delay)
            if not args.loop:
                return 0
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting...")
        return 0
    except Exception:
        logger.exception("Fatal error")
        return 1
    finally:
        monitor.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await monitor


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
