"""
Adversarial tests for the swap protocol.

A dishonest participant or an outsider tries to take funds it is not owed:
forged signatures, stale challenges, changed commitments and replays.
"""

import hashlib

import pytest

from chainswap.config import SwapParameters
from chainswap.errors import InvalidTransition, LedgerSubmissionFailure
from chainswap.state_channels import (
    ChannelStateBuilder,
    DisputeResolver,
    HashLockCodec,
    HashLockedSwapData,
    LegPhase,
    SwapProtocolEngine,
    WalletActor,
)

SECRET = bytes.fromhex("deadbeef")
H = HashLockedSwapData.commit(SECRET).h


async def funded_leg(leg, proposer, joiner):
    engine = SwapProtocolEngine(
        leg,
        proposer=proposer,
        joiner=joiner,
        amount=2,
        parameters=SwapParameters(funding_timeout=1.0, conclude_timeout=1.0),
    )
    await engine.fund_channel(H)
    return engine


async def countersigned_unlock(leg, proposer, joiner):
    engine = await funded_leg(leg, proposer, joiner)
    engine.unlock(joiner, SECRET)
    engine.receive(proposer.sign(engine.unlock_state), proposer.address)
    return engine


async def challenge_funding(resolver, engine, proposer, joiner):
    """Challenge with turns 2 and 3 although a later state is supported."""
    turn_two = engine.signatures.state_at(engine.channel_id, 2)
    turn_three = engine.signatures.state_at(engine.channel_id, 3)
    return await resolver.challenge_channel(
        proposer,
        [turn_two, turn_three],
        [
            engine.signatures.signature_of(turn_two, proposer.address),
            engine.signatures.signature_of(turn_three, joiner.address),
        ],
        [0, 1],
    )


class TestForgedSignatures:
    """Test states the counterparty never signed."""

    def setup_method(self):
        """Set up test fixtures."""
        self.mallory = WalletActor.create("mallory")

    @pytest.mark.asyncio
    async def test_conclude_with_forged_countersignature(self, left_leg, executor, responder):
        """Test the joiner cannot conclude a swapped outcome the proposer never signed."""
        engine = await funded_leg(left_leg, executor, responder)
        stolen = ChannelStateBuilder.final_state(
            ChannelStateBuilder.next_turn(
                engine.latest_state, outcome=engine.latest_state.outcome.swapped()
            )
        )
        signatures = [self.mallory.sign(stolen).signature, responder.sign(stolen).signature]

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await left_leg.adjudicator.conclude_push_outcome_and_transfer_all(
                responder.address, stolen, signatures
            )
        assert exc_info.value.revert_reason == "Invalid signature"
        assert await left_leg.adjudicator.holdings(engine.channel_id) == 2

    @pytest.mark.asyncio
    async def test_outsider_cannot_challenge(self, left_leg, executor, responder):
        """Test a valid proof submitted by a non-participant is rejected."""
        engine = await funded_leg(left_leg, executor, responder)
        evidence = engine.challenge_evidence()
        resolver = DisputeResolver.for_leg(engine)

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await resolver.challenge_channel(
                self.mallory, evidence.states, evidence.signatures, evidence.who_signed_what
            )
        assert exc_info.value.revert_reason == "Challenger is not a participant"

    @pytest.mark.asyncio
    async def test_self_signed_unlock_is_not_evidence(self, left_leg, executor, responder):
        """Test the joiner's own unlock does not support a challenge."""
        engine = await funded_leg(left_leg, executor, responder)
        engine.unlock(responder, SECRET)
        unlock = engine.unlock_state
        resolver = DisputeResolver.for_leg(engine)

        with pytest.raises(LedgerSubmissionFailure):
            await resolver.challenge_channel(
                responder,
                [unlock],
                [responder.sign(unlock).signature, responder.sign(unlock).signature],
                [0, 0],
                precheck=False,
            )


class TestStaleChallenges:
    """Test challenges with outdated states."""

    @pytest.mark.asyncio
    async def test_same_turn_cannot_rechallenge(self, left_leg, executor, responder):
        """Test a registered challenge is only replaced by a later turn."""
        engine = await funded_leg(left_leg, executor, responder)
        resolver = DisputeResolver.for_leg(engine)
        await resolver.challenge_leg(engine, executor)
        evidence = engine.challenge_evidence()

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await resolver.challenge_channel(
                responder, evidence.states, evidence.signatures, evidence.who_signed_what
            )
        assert exc_info.value.revert_reason == "turnNumRecord not increased"

    @pytest.mark.asyncio
    async def test_newer_state_overrides_refund(self, left_leg, left_ledger, executor, responder):
        """Test the joiner answers a stale refund challenge with the countersigned unlock."""
        engine = await countersigned_unlock(left_leg, executor, responder)
        resolver = DisputeResolver.for_leg(engine)
        stale = await challenge_funding(resolver, engine, executor, responder)
        assert stale.state.turn_num == 3

        await left_ledger.advance_time(30)
        answer = await resolver.challenge_leg(engine, responder)
        assert answer.state.turn_num == 4
        assert answer.finalizes_at > stale.finalizes_at

        await resolver.wait_for_finalization(answer)
        await resolver.push_outcome_and_transfer_all(answer, responder)
        assert await responder.balance_on(left_ledger, left_leg.token) == 2
        assert await executor.balance_on(left_ledger, left_leg.token) == 98

    @pytest.mark.asyncio
    async def test_no_challenge_after_finalization(self, left_leg, executor, responder):
        """Test a finalized channel cannot be challenged again."""
        engine = await countersigned_unlock(left_leg, executor, responder)
        resolver = DisputeResolver.for_leg(engine)
        stale = await challenge_funding(resolver, engine, executor, responder)
        await resolver.wait_for_finalization(stale)

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await resolver.challenge_leg(engine, responder)
        assert exc_info.value.revert_reason == "Channel finalized"


class TestCommitmentTampering:
    """Test unlocks that do not open the agreed lock."""

    @pytest.mark.asyncio
    async def test_changed_commitment(self, left_leg, executor, responder):
        """Test an unlock carrying another commitment is rejected."""
        engine = await funded_leg(left_leg, executor, responder)
        other = b"not the swap secret"
        engine.unlock(responder, other, h=hashlib.sha256(other).digest())

        reason = left_leg.app.check_transition(
            engine.initial_state.variable_part, engine.unlock_state.variable_part, 4, 2
        )
        assert reason == "commitment hash changed"
        with pytest.raises(InvalidTransition):
            await engine.defund()
        assert engine.phase == LegPhase.ABORTED

    @pytest.mark.asyncio
    async def test_unswapped_outcome(self, left_leg, executor, responder):
        """Test a correct pre-image with an unchanged outcome is rejected."""
        engine = await funded_leg(left_leg, executor, responder)
        locked = engine.initial_state
        data = HashLockCodec.decode(locked.app_data).reveal(SECRET)
        revealed = ChannelStateBuilder.with_turn(locked, 4, app_data=HashLockCodec.encode(data))

        reason = left_leg.app.check_transition(locked.variable_part, revealed.variable_part, 4, 2)
        assert reason == "amounts not swapped"


class TestReplays:
    """Test transactions repeated after the channel is settled."""

    @pytest.mark.asyncio
    async def test_conclude_after_conclusion(self, left_leg, executor, responder):
        """Test a concluded channel cannot be concluded again."""
        engine = await funded_leg(left_leg, executor, responder)
        engine.unlock(responder, SECRET)
        await engine.defund()
        final = engine.final_state

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await left_leg.adjudicator.conclude_push_outcome_and_transfer_all(
                responder.address, final, engine.signatures.signatures_for(final)
            )
        assert exc_info.value.revert_reason == "Channel finalized"

    @pytest.mark.asyncio
    async def test_deposit_replay(self, left_leg, left_ledger, executor, responder):
        """Test a repeated deposit with a stale expectedHeld reverts."""
        engine = await funded_leg(left_leg, executor, responder)
        await left_ledger.increase_allowance(
            left_leg.token, executor.address, left_leg.adjudicator.asset_holder_address, 2
        )
        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await left_leg.adjudicator.deposit(executor.address, engine.channel_id, 0, 2)
        assert exc_info.value.revert_reason == "holdings already sufficient"
        assert await executor.balance_on(left_ledger, left_leg.token) == 98
