"""
Property-based tests for swap states, the hash lock and support proofs.

This module uses Hypothesis to check the invariants of the swap protocol
across randomly generated amounts, secrets and turn numbers.
"""

import hashlib

import pytest
from hypothesis import assume, given, settings, strategies as st

from chainswap.errors import ProtocolViolation, ValidationError
from chainswap.state_channels import (
    Allocation,
    Channel,
    ChannelStateBuilder,
    HashLockCodec,
    HashLockedSwapApp,
    HashLockedSwapData,
    Outcome,
    VariablePart,
    WalletActor,
    acceptable_who_signed_what,
    convert_address_to_bytes32,
)

PROPOSER = "0x" + "aa" * 20
JOINER = "0x" + "bb" * 20
ASSET_HOLDER = "0x" + "cc" * 20
APP = "0x" + "dd" * 20

amounts = st.integers(min_value=0, max_value=2**128)
secrets = st.binary(min_size=1, max_size=64)


def make_state(amount, secret=b"\x01", turn_num=0):
    channel = Channel(chain_id=66, nonce=0, participants=(PROPOSER, JOINER))
    outcome = ChannelStateBuilder.create_funded_outcome(ASSET_HOLDER, PROPOSER, JOINER, amount)
    app_data = HashLockCodec.encode(HashLockedSwapData.commit(secret))
    state = ChannelStateBuilder.create(channel, outcome, APP, app_data, 60)
    return ChannelStateBuilder.with_turn(state, turn_num) if turn_num else state


class TestOutcomeProperties:
    """Property-based tests for outcomes."""

    @given(first=amounts, second=amounts)
    @settings(max_examples=50)
    def test_swap_is_an_involution(self, first, second):
        """Test swapping twice restores the outcome and keeps the total."""
        outcome = Outcome.single(
            ASSET_HOLDER,
            [
                Allocation(convert_address_to_bytes32(PROPOSER), first),
                Allocation(convert_address_to_bytes32(JOINER), second),
            ],
        )
        swapped = outcome.swapped()
        assert swapped.swapped() == outcome
        assert swapped.assets[0].total == outcome.assets[0].total
        assert swapped.amount_at(0) == second
        assert swapped.destination_at(0) == outcome.destination_at(0)


class TestHashLockProperties:
    """Property-based tests for the hash-locked swap app."""

    @given(secret=secrets)
    @settings(max_examples=50)
    def test_codec_preserves_revealed_data(self, secret):
        """Test a revealed commitment decodes to the same hash and pre-image."""
        data = HashLockedSwapData.commit(secret).reveal(secret)
        decoded = HashLockCodec.decode(HashLockCodec.encode(data))
        assert decoded == data
        assert decoded.h == hashlib.sha256(secret).digest()
        assert not decoded.is_locked

    @given(amount=amounts, secret=secrets)
    @settings(max_examples=50)
    def test_right_secret_unlocks(self, amount, secret):
        """Test the committed secret with a swapped outcome is always valid."""
        state = make_state(amount, secret)
        data = HashLockCodec.decode(state.app_data).reveal(secret)
        unlock = VariablePart(state.outcome.swapped(), HashLockCodec.encode(data))
        assert HashLockedSwapApp(APP).check_transition(state.variable_part, unlock, 4, 2) is None

    @given(amount=amounts, secret=secrets, guess=secrets)
    @settings(max_examples=50)
    def test_wrong_secret_never_unlocks(self, amount, secret, guess):
        """Test any other pre-image is rejected."""
        assume(hashlib.sha256(guess).digest() != hashlib.sha256(secret).digest())
        state = make_state(amount, secret)
        data = HashLockCodec.decode(state.app_data).reveal(guess)
        unlock = VariablePart(state.outcome.swapped(), HashLockCodec.encode(data))
        reason = HashLockedSwapApp(APP).check_transition(state.variable_part, unlock, 4, 2)
        assert reason == "incorrect pre-image"

    @given(turn=st.integers(min_value=0, max_value=1000).filter(lambda t: t != 4), secret=secrets)
    @settings(max_examples=30)
    def test_unlock_only_at_turn_four(self, turn, secret):
        """Test the app accepts an unlock only at turn 4."""
        state = make_state(2, secret)
        data = HashLockCodec.decode(state.app_data).reveal(secret)
        unlock = VariablePart(state.outcome.swapped(), HashLockCodec.encode(data))
        assert HashLockedSwapApp(APP).check_transition(state.variable_part, unlock, turn, 2)

    @given(secret=secrets, words=st.integers(min_value=0, max_value=3))
    @settings(max_examples=30)
    def test_truncated_app_data(self, secret, words):
        """Test app data cut short is reported as a validation error."""
        encoded = HashLockCodec.encode(HashLockedSwapData.commit(secret))
        with pytest.raises(ValidationError):
            HashLockCodec.decode(encoded[: 32 * words])


class TestTurnProperties:
    """Property-based tests for turn progression."""

    @given(start=st.integers(min_value=0, max_value=100), steps=st.integers(min_value=1, max_value=10))
    @settings(max_examples=30)
    def test_next_turn_increments(self, start, steps):
        """Test each step advances the turn by exactly one."""
        state = make_state(2, turn_num=start)
        for expected in range(start + 1, start + steps + 1):
            state = ChannelStateBuilder.next_turn(state)
            assert state.turn_num == expected
            assert state.channel_id == make_state(2).channel_id

    @given(start=st.integers(min_value=1, max_value=100), back=st.integers(min_value=1, max_value=100))
    @settings(max_examples=30)
    def test_regression_rejected(self, start, back):
        """Test a turn number can never decrease."""
        state = make_state(2, turn_num=start)
        with pytest.raises(ProtocolViolation):
            ChannelStateBuilder.with_turn(state, max(0, start - back))


class TestSupportProofProperties:
    """Property-based tests for the round-robin signing rule."""

    @given(
        n=st.integers(min_value=2, max_value=6),
        largest=st.integers(min_value=6, max_value=500),
    )
    @settings(max_examples=50)
    def test_latest_moves_are_acceptable(self, n, largest):
        """Test signing exactly one's latest move is acceptable, anything older is not."""
        who = [n - 1 - (n + largest - i) % n for i in range(n)]
        assert acceptable_who_signed_what(who, largest, n, n)

        for i in range(n):
            if who[i] > 0:
                older = list(who)
                older[i] -= 1
                assert not acceptable_who_signed_what(older, largest, n, n)

    @given(n=st.integers(min_value=2, max_value=6), largest=st.integers(min_value=0, max_value=500))
    @settings(max_examples=30)
    def test_single_state_proof(self, n, largest):
        """Test a single state signed by everyone is always acceptable."""
        assert acceptable_who_signed_what([0] * n, largest, n, 1)
        assert not acceptable_who_signed_what([0] * (n - 1), largest, n, 1)


class TestSignatureProperties:
    """Property-based tests for state signatures."""

    def setup_method(self):
        """Set up test fixtures."""
        self.actor = WalletActor.create("signer")

    @given(amount=amounts, turn=st.integers(min_value=0, max_value=50))
    @settings(max_examples=20, deadline=None)
    def test_signer_recovered(self, amount, turn):
        """Test every signed state recovers to its signer."""
        signed = self.actor.sign(make_state(amount, turn_num=turn))
        assert signed.recover_signer() == self.actor.address
