"""Tests for raw chain data models."""

import pytest
from pydantic import ValidationError

from src.helpers.rpc_models import (
    EventPhase,
    RawCall,
    RawExtrinsic,
    RawHeader,
)


class TestRawHeader:
    """Tests for RawHeader model."""

    def test_negative_number_rejected(self) -> None:
        """Test that heights are non negative."""
        with pytest.raises(ValidationError):
            RawHeader(
                number=-1,
                hash="0x01",
                parent_hash="0x00",
                state_root="0x02",
                extrinsics_root="0x03",
            )


class TestRawExtrinsic:
    """Tests for RawExtrinsic model."""

    def test_unsigned_by_default(self) -> None:
        """Test that an extrinsic without signer is unsigned."""
        extrinsic = RawExtrinsic(index=0, call=RawCall(section="timestamp", method="set"))

        assert not extrinsic.is_signed
        assert extrinsic.call.args == {}

    def test_signed_with_signer(self) -> None:
        """Test that a signer marks the extrinsic as signed."""
        extrinsic = RawExtrinsic(
            index=1,
            signer="0x" + "d4" * 32,
            call=RawCall(section="balances", method="transfer"),
        )

        assert extrinsic.is_signed


class TestEventPhase:
    """Tests for EventPhase model."""

    def test_applies_to_matching_extrinsic(self) -> None:
        """Test ApplyExtrinsic phases match only their index."""
        phase = EventPhase(kind="ApplyExtrinsic", extrinsic_index=2)

        assert phase.applies_to(2)
        assert not phase.applies_to(1)

    def test_finalization_applies_to_nothing(self) -> None:
        """Test non extrinsic phases never match."""
        phase = EventPhase(kind="Finalization")

        assert not phase.applies_to(0)

    def test_unknown_kind_rejected(self) -> None:
        """Test phase kinds are validated."""
        with pytest.raises(ValidationError):
            EventPhase(kind="Unknown")  # type: ignore[arg-type]
