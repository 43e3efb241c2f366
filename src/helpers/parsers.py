"""Parsing utilities for common data transformations."""

from datetime import UTC, datetime
import json

from typing import Any

from scalecodec.utils.ss58 import ss58_decode

from src.helpers.constants import ACCOUNT_ID_LENGTH


def parse_millis_timestamp(value: int | str) -> datetime:
    """Parse a Unix timestamp in milliseconds to a UTC datetime.

    Args:
        value: Milliseconds since epoch, as int or decimal string

    Returns:
        datetime: Timezone aware datetime

    Example:
        >>> parse_millis_timestamp(1700000000000)
        datetime.datetime(2023, 11, 14, 22, 13, 20, tzinfo=datetime.timezone.utc)
    """
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


def to_amount_string(value: Any, default: str = "0") -> str:
    """Render a chain amount as a decimal string.

    Balances exceed 64-bit range, so amounts are never converted to float.

    Example:
        >>> to_amount_string(10**30)
        '1000000000000000000000000000000'
        >>> to_amount_string(None)
        '0'
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    text = str(value).strip()
    if text.startswith("0x"):
        return str(int(text, 16))
    return text or default


def stringify(value: Any) -> str:
    """Render an event or call argument as a string.

    Scalars keep their natural string form; composite values are JSON encoded.

    Example:
        >>> stringify(5)
        '5'
        >>> stringify({"Id": "0x01"})
        '{"Id": "0x01"}'
    """
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, sort_keys=True)
    return str(value)


def normalize_section(module_name: str) -> str:
    """Convert a runtime module name to its lower-camel section name.

    Example:
        >>> normalize_section("Balances")
        'balances'
        >>> normalize_section("TransactionPayment")
        'transactionPayment'
    """
    if not module_name:
        return module_name
    return module_name[0].lower() + module_name[1:]


def account_public_key(address: str) -> bytes | None:
    """Decode an account address to its raw public key.

    Accepts SS58 addresses and 0x-prefixed hex.

    Returns:
        The decoded key bytes, or None if the address cannot be decoded
    """
    if not address:
        return None
    try:
        if address.startswith("0x"):
            return bytes.fromhex(address[2:])
        return bytes.fromhex(ss58_decode(address))
    except ValueError:
        return None


def is_valid_account_id(address: str) -> bool:
    """Check that an address decodes to a 32 byte account id.

    Example:
        >>> is_valid_account_id("0x" + "ab" * 32)
        True
        >>> is_valid_account_id("0xdeadbeef")
        False
    """
    public_key = account_public_key(address)
    return public_key is not None and len(public_key) == ACCOUNT_ID_LENGTH


__all__ = [
    "account_public_key",
    "is_valid_account_id",
    "normalize_section",
    "parse_millis_timestamp",
    "stringify",
    "to_amount_string",
]
