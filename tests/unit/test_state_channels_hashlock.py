"""
Unit tests for the hash-locked swap app data and transition rules.
"""

import hashlib

import pytest

from chainswap.errors import ValidationError
from chainswap.state_channels.channel import (
    Allocation,
    Outcome,
    VariablePart,
    convert_address_to_bytes32,
)
from chainswap.state_channels.hashlock import (
    UNLOCK_TURN,
    HashLockCodec,
    HashLockedSwapApp,
    HashLockedSwapData,
)

ASSET_HOLDER = "0x" + "11" * 20
ALICE = "0x" + "aa" * 20
BOB = "0x" + "bb" * 20
APP = "0x" + "cc" * 20
SECRET = bytes.fromhex("deadbeef")


def outcome(first: int, second: int, a: str = ALICE, b: str = BOB) -> Outcome:
    return Outcome.single(
        ASSET_HOLDER,
        [
            Allocation(convert_address_to_bytes32(a), first),
            Allocation(convert_address_to_bytes32(b), second),
        ],
    )


def part(out: Outcome, data: HashLockedSwapData) -> VariablePart:
    return VariablePart(outcome=out, app_data=HashLockCodec.encode(data))


class TestHashLockedSwapData:
    """Test the hash lock app data record."""

    def test_commit_hashes_secret_with_sha256(self):
        """Test commitment is the SHA-256 of the secret."""
        data = HashLockedSwapData.commit(SECRET)
        assert data.h == hashlib.sha256(SECRET).digest()
        assert data.pre_image == b""
        assert data.is_locked

    def test_reveal_keeps_commitment(self):
        """Test revealing a pre-image keeps the commitment."""
        locked = HashLockedSwapData.commit(SECRET)
        revealed = locked.reveal(SECRET)
        assert revealed.h == locked.h
        assert not revealed.is_locked
        assert revealed.unlocks(locked.h)

    def test_wrong_pre_image_does_not_unlock(self):
        """Test a wrong pre-image does not unlock."""
        locked = HashLockedSwapData.commit(SECRET)
        assert not locked.reveal(b"\x00").unlocks(locked.h)

    def test_commitment_must_be_32_bytes(self):
        """Test short commitments are rejected."""
        with pytest.raises(ValidationError):
            HashLockedSwapData(h=b"\x01" * 31)


class TestHashLockCodec:
    """Test the ABI codec of hash lock app data."""

    def test_encode_decode(self):
        """Test decoding what was encoded."""
        data = HashLockedSwapData.commit(SECRET).reveal(SECRET)
        assert HashLockCodec.decode(HashLockCodec.encode(data)) == data

    def test_encoding_is_abi_tuple(self):
        """Test the encoding is a dynamic (bytes32, bytes) tuple."""
        encoded = HashLockCodec.encode(HashLockedSwapData.commit(SECRET))
        # tuple offset, h, bytes offset, bytes length
        assert len(encoded) == 4 * 32
        assert int.from_bytes(encoded[:32], "big") == 32

    def test_decode_malformed(self):
        """Test malformed app data raises ValidationError."""
        with pytest.raises(ValidationError):
            HashLockCodec.decode(b"\x01\x02")


class TestHashLockedSwapApp:
    """Test the hash lock transition rules."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = HashLockedSwapApp(APP)
        self.locked = HashLockedSwapData.commit(SECRET)
        self.a = part(outcome(2, 0), self.locked)

    def test_valid_unlock(self):
        """Test a correct unlock is accepted."""
        b = part(outcome(0, 2), self.locked.reveal(SECRET))
        assert self.app.check_transition(self.a, b, UNLOCK_TURN, 2) is None

    def test_wrong_turn(self):
        """Test unlocks outside turn 4 are rejected."""
        b = part(outcome(0, 2), self.locked.reveal(SECRET))
        assert "turn" in self.app.check_transition(self.a, b, 5, 2)

    def test_wrong_participant_count(self):
        """Test the app only supports two participants."""
        b = part(outcome(0, 2), self.locked.reveal(SECRET))
        assert "participants" in self.app.check_transition(self.a, b, UNLOCK_TURN, 3)

    def test_incorrect_pre_image(self):
        """Test a wrong pre-image is rejected."""
        b = part(outcome(0, 2), self.locked.reveal(b"wrong"))
        assert self.app.check_transition(self.a, b, UNLOCK_TURN, 2) == "incorrect pre-image"

    def test_empty_pre_image_with_same_commitment(self):
        """Test an unlock that keeps h but reveals nothing is rejected."""
        b = part(outcome(0, 2), self.locked)
        assert self.app.check_transition(self.a, b, UNLOCK_TURN, 2) == "incorrect pre-image"

    def test_commitment_changed(self):
        """Test swapping in a commitment matching another secret is rejected."""
        other = HashLockedSwapData.commit(b"other").reveal(b"other")
        b = part(outcome(0, 2), other)
        assert self.app.check_transition(self.a, b, UNLOCK_TURN, 2) == "commitment hash changed"

    def test_amounts_not_swapped(self):
        """Test the outcome must be swapped."""
        b = part(outcome(2, 0), self.locked.reveal(SECRET))
        assert self.app.check_transition(self.a, b, UNLOCK_TURN, 2) == "amounts not swapped"

    def test_destination_changed(self):
        """Test destinations must not change."""
        b = part(outcome(0, 2, b=APP), self.locked.reveal(SECRET))
        assert "destination" in self.app.check_transition(self.a, b, UNLOCK_TURN, 2)

    def test_malformed_app_data(self):
        """Test undecodable app data is rejected."""
        b = VariablePart(outcome=outcome(0, 2), app_data=b"junk")
        assert self.app.check_transition(self.a, b, UNLOCK_TURN, 2) == "malformed app data"

    @pytest.mark.asyncio
    async def test_valid_transition_returns_bool(self):
        """Test valid_transition maps reasons to booleans."""
        good = part(outcome(0, 2), self.locked.reveal(SECRET))
        bad = part(outcome(0, 2), self.locked.reveal(b"wrong"))
        assert await self.app.valid_transition(self.a, good, UNLOCK_TURN, 2) is True
        assert await self.app.valid_transition(self.a, bad, UNLOCK_TURN, 2) is False

    def test_address_is_checksummed(self):
        """Test the app address is checksummed."""
        assert self.app.address == HashLockedSwapApp(APP.lower()).address
        assert self.app.address != APP
