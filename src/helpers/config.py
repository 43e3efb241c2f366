"""Configuration management and environment variable utilities."""

import os

from dotenv import load_dotenv

from src.helpers.constants import DEFAULT_BATCH_SIZE, DEFAULT_CHECKPOINT_FILE


# Load environment variables from .env file
load_dotenv()

CHECKPOINT_BACKENDS = ("file", "database")


def get_required_env(key: str) -> str:
    """Get a required environment variable.

    Args:
        key: Environment variable name

    Returns:
        Environment variable value

    Raises:
        ValueError: If the environment variable is not set

    Example:
        ```python
        from src.helpers.config import get_required_env

        password = get_required_env("POSTGRES_PASSWORD")
        ```
    """
    value = os.getenv(key)
    if not value:
        msg = f"{key} environment variable is not set"
        raise ValueError(msg)
    return value


def get_optional_env(key: str, default: str | None = None) -> str | None:
    """Get an optional environment variable with a default value.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value or default
    """
    return os.getenv(key, default)


def get_chain_rpc_url(rpc_url: str | None = None) -> str:
    """Get the chain node websocket URL from parameter or environment.

    Args:
        rpc_url: Optional RPC URL to use directly

    Returns:
        Node RPC URL

    Raises:
        ValueError: If RPC URL is not provided and ARGOCHAIN_RPC_URL env var is not set

    Example:
        ```python
        from src.helpers.config import get_chain_rpc_url

        rpc_url = get_chain_rpc_url()  # ws://127.0.0.1:9944
        ```
    """
    if rpc_url:
        return rpc_url

    env_rpc_url = os.getenv("ARGOCHAIN_RPC_URL")
    if not env_rpc_url:
        msg = "ARGOCHAIN_RPC_URL must be provided or set in environment variables"
        raise ValueError(msg)

    return env_rpc_url


def get_batch_size(batch_size: int | None = None) -> int:
    """Get the number of heights fetched concurrently per batch.

    Args:
        batch_size: Optional explicit batch size (e.g. from the command line)

    Returns:
        Positive batch size, FETCHING_BATCH_SIZE or the default of 10

    Raises:
        ValueError: If the configured value is not a positive integer
    """
    if batch_size is None:
        raw = os.getenv("FETCHING_BATCH_SIZE") or str(DEFAULT_BATCH_SIZE)
        try:
            batch_size = int(raw)
        except ValueError:
            msg = f"FETCHING_BATCH_SIZE must be an integer, got {raw!r}"
            raise ValueError(msg) from None

    if batch_size < 1:
        msg = f"Batch size must be positive, got {batch_size}"
        raise ValueError(msg)

    return batch_size


def get_checkpoint_backend() -> str:
    """Get the checkpoint backend name ('file' or 'database').

    Raises:
        ValueError: If CHECKPOINT_BACKEND names an unknown backend
    """
    backend = (os.getenv("CHECKPOINT_BACKEND") or "file").lower()
    if backend not in CHECKPOINT_BACKENDS:
        msg = f"Invalid CHECKPOINT_BACKEND: {backend}"
        raise ValueError(msg)
    return backend


def get_checkpoint_file() -> str:
    """Get the path of the checkpoint file used by the file backend."""
    return os.getenv("CHECKPOINT_FILE") or DEFAULT_CHECKPOINT_FILE


def get_log_level() -> str:
    """Get the configured log level name, upper-cased."""
    return (os.getenv("LOG_LEVEL") or "INFO").upper()


def get_log_file() -> str | None:
    """Get the optional log file path from LOG_FILE."""
    return os.getenv("LOG_FILE") or None


__all__ = [
    "CHECKPOINT_BACKENDS",
    "get_batch_size",
    "get_chain_rpc_url",
    "get_checkpoint_backend",
    "get_checkpoint_file",
    "get_log_file",
    "get_log_level",
    "get_optional_env",
    "get_required_env",
]
