"""Create the indexer tables and indexes.

Usage:
    python -m src.init_db
"""

import sys

import asyncio

# Register every table on Base.metadata
from src.data.blocks import db as _blocks_db  # noqa: F401
from src.helpers.db import create_tables, dispose_engine
from src.helpers.logging import get_logger


logger = get_logger(__name__)


async def main() -> int:
    """Create missing tables, leaving existing ones untouched."""
    try:
        await create_tables()
        logger.info("Tables created successfully")
    except Exception:
        logger.exception("Error creating tables")
        return 1
    finally:
        await dispose_engine()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
