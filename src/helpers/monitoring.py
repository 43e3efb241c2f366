"""Process memory monitoring.

Logs resident and virtual memory of the indexer at a fixed interval so leaks
across long runs show up in the logs.
"""

from asyncio import sleep
from dataclasses import dataclass

import psutil

from src.helpers.constants import MEMORY_LOG_INTERVAL
from src.helpers.logging import get_logger


logger = get_logger(__name__)

MB = 1024 * 1024


@dataclass(frozen=True)
class MemorySnapshot:
    """Point-in-time memory measurement."""

    rss_mb: float
    vms_mb: float
    percent: float


def memory_snapshot(process: psutil.Process | None = None) -> MemorySnapshot:
    """Measure the memory of a process, the current one by default."""
    process = process or psutil.Process()
    info = process.memory_info()
    return MemorySnapshot(
        rss_mb=info.rss / MB,
        vms_mb=info.vms / MB,
        percent=process.memory_percent(),
    )


async def monitor_memory(
    interval: float = MEMORY_LOG_INTERVAL, process: psutil.Process | None = None
) -> None:
    """Log memory usage every interval seconds until cancelled."""
    process = process or psutil.Process()
    while True:
        snapshot = memory_snapshot(process)
        logger.info(
            "Memory usage: RSS %.1f MB, VMS %.1f MB (%.1f%% of system memory)",
            snapshot.rss_mb,
            snapshot.vms_mb,
            snapshot.percent,
        )
        await sleep(interval)


__all__ = ["MemorySnapshot", "memory_snapshot", "monitor_memory"]
