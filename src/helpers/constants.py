"""Common configuration constants used across the indexer."""

# Batch Size Constants
DEFAULT_BATCH_SIZE = 10
"""Default number of heights fetched concurrently per batch"""

# Retry Configuration
RETRY_LIMIT = 5
"""Number of attempts for processing a single height"""

RETRY_DELAY = 5.0
"""Fixed delay between attempts for the same height in seconds"""

# Run lifecycle
LAG_THRESHOLD = 5
"""Head height minus checkpoint above which a resync restart is requested"""

RESTART_DELAY = 3.0
"""Delay before the supervisor is asked to relaunch the process in seconds"""

DEFAULT_CHECKPOINT_FILE = "lastProcessedBlock.txt"
"""Default path of the file backed checkpoint"""

MEMORY_LOG_INTERVAL = 60.0
"""Seconds between process memory usage log lines"""

# Chain Constants
ACCOUNT_ID_LENGTH = 32
"""Byte length of a valid account public key"""

TRANSFER_SECTION = "balances"
"""Pallet whose calls produce Transaction records"""

TRANSFER_METHODS = frozenset({"transfer", "transfer_keep_alive"})
"""Balances calls treated as transfers"""

TRANSACTION_EVENTS = frozenset({("balances", "Transfer"), ("balances", "Withdraw")})
"""(section, method) pairs attached to a Transaction"""

TIMESTAMP_SECTION = "timestamp"
TIMESTAMP_METHOD = "set"

ACCOUNT_PAGE_SIZE = 1000
"""Storage keys fetched per page when enumerating accounts"""

# Database Limits
POSTGRES_PARAM_LIMIT = 65_535
"""PostgreSQL's parameter limit for prepared statements"""


__all__ = [
    "ACCOUNT_ID_LENGTH",
    "ACCOUNT_PAGE_SIZE",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CHECKPOINT_FILE",
    "LAG_THRESHOLD",
    "MEMORY_LOG_INTERVAL",
    "POSTGRES_PARAM_LIMIT",
    "RESTART_DELAY",
    "RETRY_DELAY",
    "RETRY_LIMIT",
    "TIMESTAMP_METHOD",
    "TIMESTAMP_SECTION",
    "TRANSACTION_EVENTS",
    "TRANSFER_METHODS",
    "TRANSFER_SECTION",
]
