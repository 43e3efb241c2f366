"""Pydantic models for raw chain data returned by the node client."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class RawHeader(BaseModel):
    """Block header fields copied verbatim into the Block record."""

    number: int = Field(..., ge=0, description="Block height")
    hash: str = Field(..., description="Block hash")
    parent_hash: str = Field(..., description="Parent block hash")
    state_root: str = Field(..., description="State trie root")
    extrinsics_root: str = Field(..., description="Extrinsics trie root")


class RawCall(BaseModel):
    """Call carried by an extrinsic."""

    section: str = Field(..., description="Pallet name, lower camel case")
    method: str = Field(..., description="Call name as in runtime metadata")
    args: dict[str, Any] = Field(default_factory=dict, description="Named arguments")


class RawExtrinsic(BaseModel):
    """Single extrinsic (operation) of a block."""

    index: int = Field(..., ge=0, description="Position inside the block")
    hash: str | None = Field(default=None, description="Extrinsic hash")
    signer: str | None = Field(default=None, description="Signer address, None if unsigned")
    tip: str | None = Field(default=None, description="Tip as decimal string")
    call: RawCall

    @property
    def is_signed(self) -> bool:
        """Whether the extrinsic carries a signature."""
        return self.signer is not None


class RawBlock(BaseModel):
    """Block as fetched from the node: header plus ordered extrinsics."""

    header: RawHeader
    extrinsics: list[RawExtrinsic] = Field(default_factory=list)


class EventPhase(BaseModel):
    """Phase during which an event was emitted."""

    kind: Literal["ApplyExtrinsic", "Initialization", "Finalization"]
    extrinsic_index: int | None = None

    def applies_to(self, extrinsic_index: int) -> bool:
        """Whether the event was emitted while applying the given extrinsic."""
        return (
            self.kind == "ApplyExtrinsic" and self.extrinsic_index == extrinsic_index
        )


class RawEvent(BaseModel):
    """Chain event payload."""

    section: str
    method: str
    data: list[str] = Field(default_factory=list)


class EventRecord(BaseModel):
    """Event together with its emission phase."""

    phase: EventPhase
    event: RawEvent


__all__ = [
    "EventPhase",
    "EventRecord",
    "RawBlock",
    "RawCall",
    "RawEvent",
    "RawExtrinsic",
    "RawHeader",
]
