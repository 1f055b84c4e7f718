"""
Unit tests for channels, outcomes and the state builder.
"""

import pytest
from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from chainswap.errors import ProtocolViolation, ValidationError
from chainswap.state_channels.channel import (
    Allocation,
    Channel,
    ChannelStateBuilder,
    Outcome,
    bytes32_to_address,
    convert_address_to_bytes32,
)

ALICE = to_checksum_address("0x" + "aa" * 20)
BOB = to_checksum_address("0x" + "bb" * 20)
ASSET_HOLDER = "0x" + "11" * 20
APP = "0x" + "cc" * 20


def make_state(amount: int = 2):
    channel = Channel(chain_id=66, nonce=0, participants=(ALICE, BOB))
    outcome = ChannelStateBuilder.create_funded_outcome(ASSET_HOLDER, ALICE, BOB, amount)
    return ChannelStateBuilder.create(channel, outcome, APP, b"\x01", 60)


class TestDestinations:
    """Test address and bytes32 destination conversion."""

    def test_left_pads_address(self):
        """Test an address is left-padded with zeros."""
        destination = convert_address_to_bytes32(ALICE)
        assert len(destination) == 66
        assert destination.startswith("0x" + "00" * 12)
        assert destination.endswith("aa" * 20)

    def test_inverse(self):
        """Test converting back recovers the checksummed address."""
        assert bytes32_to_address(convert_address_to_bytes32(BOB)) == BOB


class TestChannel:
    """Test the Channel record."""

    def test_channel_id_matches_abi_hash(self):
        """Test the channel id is keccak(abi.encode(chainId, participants, nonce))."""
        channel = Channel(chain_id=99, nonce=7, participants=(ALICE, BOB))
        expected = keccak(encode(["uint256", "address[]", "uint256"], [99, [ALICE, BOB], 7]))
        assert channel.channel_id == "0x" + expected.hex()

    def test_channel_id_depends_on_chain(self):
        """Test the same parties get different ids on different chains."""
        left = Channel(chain_id=66, nonce=0, participants=(ALICE, BOB))
        right = Channel(chain_id=99, nonce=0, participants=(ALICE, BOB))
        assert left.channel_id != right.channel_id

    def test_participant_order_matters(self):
        """Test reversing participants changes the id."""
        forward = Channel(chain_id=66, nonce=0, participants=(ALICE, BOB))
        reverse = Channel(chain_id=66, nonce=0, participants=(BOB, ALICE))
        assert forward.channel_id != reverse.channel_id
        assert reverse.proposer == BOB

    def test_requires_two_distinct_participants(self):
        """Test channel participant validation."""
        with pytest.raises(ValidationError):
            Channel(chain_id=66, nonce=0, participants=(ALICE,))
        with pytest.raises(ValidationError):
            Channel(chain_id=66, nonce=0, participants=(ALICE, ALICE.lower()))

    def test_negative_nonce(self):
        """Test nonces are non-negative."""
        with pytest.raises(ValidationError):
            Channel(chain_id=66, nonce=-1, participants=(ALICE, BOB))

    def test_index_of(self):
        """Test participant lookup."""
        channel = Channel(chain_id=66, nonce=0, participants=(ALICE, BOB))
        assert channel.index_of(BOB.lower()) == 1
        with pytest.raises(ValidationError):
            channel.index_of(APP)


class TestOutcome:
    """Test outcomes and allocations."""

    def test_negative_amount(self):
        """Test allocations cannot be negative."""
        with pytest.raises(ValidationError):
            Allocation(convert_address_to_bytes32(ALICE), -1)

    def test_destination_must_be_bytes32(self):
        """Test destinations must be 32 bytes."""
        with pytest.raises(ValidationError):
            Allocation(ALICE, 1)

    def test_funded_outcome(self):
        """Test the funded outcome puts everything in the proposer's slot."""
        outcome = ChannelStateBuilder.create_funded_outcome(ASSET_HOLDER, ALICE, BOB, 5)
        assert outcome.amount_at(0) == 5
        assert outcome.amount_at(1) == 0
        assert outcome.destination_at(1) == convert_address_to_bytes32(BOB)
        assert outcome.assets[0].total == 5

    def test_swapped(self):
        """Test swapping exchanges amounts and keeps destinations."""
        outcome = ChannelStateBuilder.create_funded_outcome(ASSET_HOLDER, ALICE, BOB, 5)
        swapped = outcome.swapped()
        assert swapped.amount_at(0) == 0
        assert swapped.amount_at(1) == 5
        assert swapped.destination_at(0) == outcome.destination_at(0)
        assert swapped.swapped() == outcome

    def test_swap_requires_two_slots(self):
        """Test only two-slot allocations can be swapped."""
        outcome = Outcome.single(ASSET_HOLDER, [Allocation(convert_address_to_bytes32(ALICE), 1)])
        with pytest.raises(ValidationError):
            outcome.swapped()


class TestChannelStateBuilder:
    """Test building and advancing channel states."""

    def test_create(self):
        """Test the initial state."""
        state = make_state()
        assert state.turn_num == 0
        assert not state.is_final
        assert state.app_definition == to_checksum_address(APP)

    def test_next_turn(self):
        """Test advancing one turn keeps everything else."""
        state = make_state()
        following = ChannelStateBuilder.next_turn(state)
        assert following.turn_num == 1
        assert following.channel == state.channel
        assert following.outcome == state.outcome
        assert following.app_data == state.app_data

    def test_next_turn_with_changes(self):
        """Test changing the outcome and app data on a new turn."""
        state = make_state()
        following = ChannelStateBuilder.next_turn(
            state, outcome=state.outcome.swapped(), app_data=b"\x02"
        )
        assert following.outcome == state.outcome.swapped()
        assert following.app_data == b"\x02"

    def test_frozen_fields(self):
        """Test fixed fields cannot change between turns."""
        state = make_state()
        with pytest.raises(ProtocolViolation):
            ChannelStateBuilder.next_turn(state, challenge_duration=10)
        with pytest.raises(ProtocolViolation):
            ChannelStateBuilder.next_turn(state, app_definition=ALICE)

    def test_turn_regression(self):
        """Test turn numbers cannot decrease."""
        state = ChannelStateBuilder.with_turn(make_state(), 3)
        with pytest.raises(ProtocolViolation) as exc_info:
            ChannelStateBuilder.with_turn(state, 2)
        assert exc_info.value.field == "turn_num"
        assert exc_info.value.turn_number == 2

    def test_final_state(self):
        """Test marking a state final."""
        final = ChannelStateBuilder.final_state(ChannelStateBuilder.with_turn(make_state(), 4))
        assert final.turn_num == 5
        assert final.is_final

    def test_nothing_follows_final(self):
        """Test no state can follow a final state."""
        final = ChannelStateBuilder.final_state(make_state())
        with pytest.raises(ProtocolViolation):
            ChannelStateBuilder.next_turn(final)

    def test_invalid_state_fields(self):
        """Test state construction validation."""
        channel = Channel(chain_id=66, nonce=0, participants=(ALICE, BOB))
        outcome = ChannelStateBuilder.create_funded_outcome(ASSET_HOLDER, ALICE, BOB, 1)
        with pytest.raises(ValidationError):
            ChannelStateBuilder.create(channel, outcome, APP, b"", 0)

    def test_to_dict(self):
        """Test dictionary form of a state."""
        data = make_state().to_dict()
        assert data["turn_num"] == 0
        assert data["app_data"] == "0x01"
        assert data["outcome"]["assets"][0]["allocations"][0]["amount"] == 2
