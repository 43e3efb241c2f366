"""Substrate node client utilities."""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, Protocol

import asyncio

from substrateinterface import SubstrateInterface

from src.helpers.constants import ACCOUNT_PAGE_SIZE
from src.helpers.logging import get_logger
from src.helpers.parsers import normalize_section, stringify, to_amount_string
from src.helpers.rpc_models import (
    EventPhase,
    EventRecord,
    RawBlock,
    RawCall,
    RawEvent,
    RawExtrinsic,
    RawHeader,
)


logger = get_logger(__name__)


class ChainClient(Protocol):
    """Operations the ingestion pipeline needs from a chain node."""

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def head_height(self) -> int: ...

    async def block_at(self, height: int) -> RawBlock: ...

    async def events_at(self, block_hash: str) -> list[EventRecord]: ...

    async def balance_of(self, address: str) -> str: ...

    async def accounts(self) -> list[tuple[str, str]]: ...


def unwrap_address(value: Any) -> str:
    """Extract an account address from a MultiAddress style value.

    Example:
        >>> unwrap_address({"Id": "5Grw..."})
        '5Grw...'
        >>> unwrap_address("5Grw...")
        '5Grw...'
    """
    if isinstance(value, dict):
        if "Id" in value:
            return str(value["Id"])
        if len(value) == 1:
            return str(next(iter(value.values())))
    return str(value)


def event_data(attributes: Any) -> list[str]:
    """Flatten event attributes into an ordered list of strings."""
    if attributes is None:
        return []
    if isinstance(attributes, dict):
        return [stringify(item) for item in attributes.values()]
    if isinstance(attributes, (list, tuple)):
        return [stringify(item) for item in attributes]
    return [stringify(attributes)]


def parse_phase(value: dict[str, Any]) -> EventPhase:
    """Parse the phase of an event record value.

    Handles both the flat form (``phase`` name plus ``extrinsic_idx``) and the
    enum form (``{"ApplyExtrinsic": 1}``).
    """
    phase = value.get("phase")
    if isinstance(phase, dict):
        kind, index = next(iter(phase.items()))
        return EventPhase(
            kind=kind, extrinsic_index=index if kind == "ApplyExtrinsic" else None
        )
    if phase == "ApplyExtrinsic":
        return EventPhase(kind="ApplyExtrinsic", extrinsic_index=value.get("extrinsic_idx"))
    return EventPhase(kind=phase or "Finalization")


def parse_extrinsic(index: int, value: dict[str, Any]) -> RawExtrinsic:
    """Convert a decoded extrinsic value to a RawExtrinsic."""
    call = value.get("call") or {}
    args = {
        arg["name"]: arg.get("value") for arg in call.get("call_args", []) if "name" in arg
    }
    if "dest" in args:
        args["dest"] = unwrap_address(args["dest"])

    signer = value.get("address")
    tip = value.get("tip")

    return RawExtrinsic(
        index=index,
        hash=value.get("extrinsic_hash"),
        signer=unwrap_address(signer) if signer is not None else None,
        tip=to_amount_string(tip) if tip is not None else None,
        call=RawCall(
            section=normalize_section(call.get("call_module", "")),
            method=call.get("call_function", ""),
            args=args,
        ),
    )


def parse_event_record(value: dict[str, Any]) -> EventRecord:
    """Convert a decoded System.Events entry to an EventRecord."""
    event = value.get("event") or value
    return EventRecord(
        phase=parse_phase(value),
        event=RawEvent(
            section=normalize_section(event.get("module_id", "")),
            method=event.get("event_id", ""),
            data=event_data(event.get("attributes")),
        ),
    )


class SubstrateChainClient:
    """Async facade over a pool of SubstrateInterface connections.

    Each SubstrateInterface owns one blocking websocket that cannot be shared
    between threads. The client opens ``pool_size`` of them and every call
    checks one out and runs in a worker thread, so up to ``pool_size`` calls
    are in flight at once.
    """

    def __init__(
        self,
        rpc_url: str,
        ss58_format: int | None = None,
        pool_size: int = 1,
        substrate_factory: Callable[..., SubstrateInterface] = SubstrateInterface,
    ) -> None:
        """Initialize the chain client.

        Args:
            rpc_url: Node websocket endpoint (e.g. ws://127.0.0.1:9944)
            ss58_format: Address format used when rendering account ids
            pool_size: Number of websocket connections, usually the batch size
            substrate_factory: Constructor for the underlying client

        Raises:
            ValueError: If rpc_url is empty or pool_size is below 1
        """
        if not rpc_url:
            msg = "RPC URL cannot be empty"
            raise ValueError(msg)
        if pool_size < 1:
            msg = f"Pool size must be positive, got {pool_size}"
            raise ValueError(msg)

        self.rpc_url = rpc_url
        self.ss58_format = ss58_format
        self.pool_size = pool_size
        self._substrate_factory = substrate_factory
        self._connections: list[SubstrateInterface] = []
        self._pool: asyncio.Queue[SubstrateInterface] | None = None

    @property
    def connections(self) -> list[SubstrateInterface]:
        """The open SubstrateInterface connections.

        Raises:
            RuntimeError: If connect() has not been awaited
        """
        if self._pool is None:
            msg = "Chain client is not connected"
            raise RuntimeError(msg)
        return list(self._connections)

    @asynccontextmanager
    async def _checkout(self) -> AsyncIterator[SubstrateInterface]:
        if self._pool is None:
            msg = "Chain client is not connected"
            raise RuntimeError(msg)
        pool = self._pool
        substrate = await pool.get()
        try:
            yield substrate
        finally:
            pool.put_nowait(substrate)

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        async with self._checkout() as substrate:
            return await asyncio.to_thread(getattr(substrate, method), *args, **kwargs)

    def _open(self) -> SubstrateInterface:
        return self._substrate_factory(url=self.rpc_url, ss58_format=self.ss58_format)

    async def connect(self) -> None:
        """Open the websocket connections and load runtime metadata."""
        if self._pool is not None:
            return
        logger.info("Connecting to %s (%d connections)", self.rpc_url, self.pool_size)
        connections = await asyncio.gather(
            *(asyncio.to_thread(self._open) for _ in range(self.pool_size))
        )

        pool: asyncio.Queue[SubstrateInterface] = asyncio.Queue()
        for substrate in connections:
            pool.put_nowait(substrate)
        self._connections = list(connections)
        self._pool = pool

    async def close(self) -> None:
        """Close every websocket connection if open."""
        if self._pool is None:
            return
        connections, self._connections, self._pool = self._connections, [], None
        for substrate in connections:
            await asyncio.to_thread(substrate.close)

    async def head_height(self) -> int:
        """Get the height of the current chain head."""
        result = await self._call("get_block_header")
        return int(result["header"]["number"])

    async def block_at(self, height: int) -> RawBlock:
        """Fetch the block at a height with its decoded extrinsics.

        Raises:
            ValueError: If the node has no block at this height
        """
        block_hash = await self._call("get_block_hash", height)
        if not block_hash:
            msg = f"Block {height} not found"
            raise ValueError(msg)

        result = await self._call("get_block", block_hash=block_hash)
        header = result["header"]

        return RawBlock(
            header=RawHeader(
                number=int(header["number"]),
                hash=header.get("hash") or block_hash,
                parent_hash=header["parentHash"],
                state_root=header["stateRoot"],
                extrinsics_root=header["extrinsicsRoot"],
            ),
            extrinsics=[
                parse_extrinsic(index, extrinsic.value)
                for index, extrinsic in enumerate(result.get("extrinsics") or [])
            ],
        )

    async def events_at(self, block_hash: str) -> list[EventRecord]:
        """Fetch the System.Events of a block."""
        records = await self._call("get_events", block_hash)
        return [parse_event_record(record.value) for record in records]

    async def balance_of(self, address: str) -> str:
        """Get the free balance of an account at the current chain head."""
        result = await self._call("query", "System", "Account", [address])
        return to_amount_string(result.value["data"]["free"])

    @staticmethod
    def _collect_accounts(substrate: SubstrateInterface) -> list[tuple[str, str]]:
        accounts = substrate.query_map("System", "Account", page_size=ACCOUNT_PAGE_SIZE)
        return [
            (str(key.value), to_amount_string(account.value["data"]["free"]))
            for key, account in accounts
        ]

    async def accounts(self) -> list[tuple[str, str]]:
        """Enumerate every account in chain state with its free balance."""
        async with self._checkout() as substrate:
            return await asyncio.to_thread(self._collect_accounts, substrate)


__all__ = [
    "ChainClient",
    "SubstrateChainClient",
    "event_data",
    "parse_event_record",
    "parse_extrinsic",
    "parse_phase",
    "unwrap_address",
]
