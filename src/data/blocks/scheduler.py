"""Batched concurrent processing of a height range."""

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field

import asyncio

from rich.progress import Progress

from src.data.checkpoints import CheckpointStore
from src.helpers.logging import get_logger
from src.helpers.progress import create_standard_progress, track_batches


logger = get_logger(__name__)


def partition(start: int, end: int, batch_size: int) -> Iterator[range]:
    """Split [start, end] into contiguous ranges of at most batch_size heights.

    Example:
        >>> [list(r) for r in partition(0, 4, 2)]
        [[0, 1], [2, 3], [4]]
    """
    if batch_size < 1:
        msg = f"Batch size must be positive, got {batch_size}"
        raise ValueError(msg)
    for batch_start in range(start, end + 1, batch_size):
        yield range(batch_start, min(batch_start + batch_size - 1, end) + 1)


class ContiguousCheckpoint:
    """Advances the checkpoint to the highest contiguous successful height.

    Heights inside a batch finish out of order. A success above a gap is
    remembered but not written until every lower height has succeeded, so a
    failed height is never marked as processed.
    """

    def __init__(self, store: CheckpointStore, next_height: int) -> None:
        """Initialize the tracker.

        Args:
            store: Checkpoint store written on every advance
            next_height: Lowest height of the range being processed
        """
        self.store = store
        self.next_height = next_height
        self._pending: set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def watermark(self) -> int | None:
        """Highest height known processed together with all lower heights."""
        return self.next_height - 1 if self.next_height > 0 else None

    async def mark_done(self, height: int) -> None:
        """Record a successful height and write the checkpoint if it advanced."""
        async with self._lock:
            if height < self.next_height:
                return
            self._pending.add(height)

            advanced = False
            while self.next_height in self._pending:
                self._pending.discard(self.next_height)
                self.next_height += 1
                advanced = True

            if advanced:
                await self.store.write(self.next_height - 1)
                logger.debug("Checkpoint advanced to %s", self.next_height - 1)


@dataclass
class BatchSummary:
    """Outcome of a scheduler run."""

    succeeded: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    checkpoint: int | None = None

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed)


class BatchScheduler:
    """Runs a height processor over a range, one batch at a time.

    All heights of a batch run concurrently and the batch completes only when
    every height has settled; the next batch starts afterwards.
    """

    def __init__(
        self,
        process: Callable[[int], Awaitable[bool]],
        checkpoint_store: CheckpointStore,
        *,
        show_progress: bool = False,
    ) -> None:
        """Initialize the scheduler.

        Args:
            process: Coroutine function processing one height, returning success
            checkpoint_store: Store advanced after contiguous successes
            show_progress: Whether to render a rich progress bar
        """
        self.process = process
        self.checkpoint_store = checkpoint_store
        self.show_progress = show_progress

    async def _run_height(
        self, height: int, tracker: ContiguousCheckpoint, summary: BatchSummary
    ) -> None:
        if await self.process(height):
            summary.succeeded.append(height)
            await tracker.mark_done(height)
        else:
            summary.failed.append(height)

    async def run_batches(
        self, start_height: int, end_height: int, batch_size: int
    ) -> BatchSummary:
        """Process [start_height, end_height] in ascending batches.

        Returns:
            BatchSummary with succeeded and failed heights and the final
            checkpoint written by this run (None if it never advanced)
        """
        summary = BatchSummary()
        if end_height < start_height:
            logger.info("No new blocks to process")
            return summary

        tracker = ContiguousCheckpoint(self.checkpoint_store, start_height)
        batches = list(partition(start_height, end_height, batch_size))
        total_heights = end_height - start_height + 1

        progress: Progress | None = None
        if self.show_progress:
            progress = create_standard_progress()
            progress.start()
        task_id = (
            progress.add_task("Processing blocks", total=total_heights)
            if progress
            else None
        )

        try:
            for batch_num, batch in enumerate(batches, start=1):
                logger.info(
                    "Processing block batch from %s to %s", batch.start, batch[-1]
                )
                await asyncio.gather(
                    *(self._run_height(height, tracker, summary) for height in batch)
                )
                if progress is not None and task_id is not None:
                    track_batches(
                        progress,
                        task_id,
                        batch_num,
                        len(batches),
                        len(batch),
                        "Processing blocks",
                    )
        finally:
            if progress is not None:
                progress.stop()

        summary.succeeded.sort()
        summary.failed.sort()
        if tracker.next_height > start_height:
            summary.checkpoint = tracker.next_height - 1

        if summary.failed:
            logger.error(
                "%d blocks failed and were recorded in failed_blocks: %s",
                len(summary.failed),
                summary.failed,
            )
        return summary


__all__ = ["BatchScheduler", "BatchSummary", "ContiguousCheckpoint", "partition"]
