"""
Unit tests for single-channel adjudicators and legs funded through them.
"""

import pytest
from eth_utils import keccak

from chainswap.config import LegConfig, SwapParameters
from chainswap.crypto import get_create2_address
from chainswap.errors import ConfigurationError, LedgerSubmissionFailure
from chainswap.ledger import SimulatedLedger, SimulatedNinjaAdjudicator, SimulatedRevert
from chainswap.state_channels import (
    DisputeResolver,
    HashLockedSwapApp,
    HashLockedSwapData,
    LegPhase,
    LoggingObserver,
    NinjaFunding,
    NitroFunding,
    SwapProtocolEngine,
    WalletActor,
    funding_for,
)
from chainswap.state_channels.channel import Channel, ChannelStateBuilder
from chainswap.state_channels.vector import get_minimal_proxy_init_code

START_TIME = 1_700_000_000
TOKEN_SUPPLY = 100
SECRET = bytes.fromhex("deadbeef")
H = HashLockedSwapData.commit(SECRET).h


class FlakyNinjaAdjudicator(SimulatedNinjaAdjudicator):
    """Factory whose first payout runs out of gas."""

    failed = False

    async def create_and_payout(self, sender, state, signatures):
        if not self.failed:
            self.failed = True

            async def out_of_gas():
                raise SimulatedRevert("out of gas")

            return await self.ledger.execute(sender, self.address, "createAndPayout", out_of_gas)
        return await super().create_and_payout(sender, state, signatures)


def ninja_leg(ledger, holder, adjudicator_class=SimulatedNinjaAdjudicator):
    token = ledger.deploy_token(holder.address, TOKEN_SUPPLY, "NinjaToken")
    return LegConfig(
        name="left",
        ledger=ledger,
        adjudicator=adjudicator_class(ledger, token),
        app=HashLockedSwapApp(ledger.new_address("HashLockedSwap")),
        token=token,
        challenge_duration=60,
    )


def make_engine(leg, executor, responder):
    return SwapProtocolEngine(
        leg,
        proposer=executor,
        joiner=responder,
        amount=2,
        parameters=SwapParameters(funding_timeout=1.0, conclude_timeout=1.0),
        observer=LoggingObserver(),
    )


class TestSimulatedNinjaAdjudicator:
    """Test the simulated adjudicator factory."""

    def setup_method(self):
        """Set up test fixtures."""
        self.ledger = SimulatedLedger(66, start_time=START_TIME)
        self.alice = WalletActor.create("alice")
        self.bob = WalletActor.create("bob")
        self.token = self.ledger.deploy_token(self.alice.address, TOKEN_SUPPLY)
        self.adjudicator = SimulatedNinjaAdjudicator(self.ledger, self.token)
        channel = Channel(chain_id=66, nonce=0, participants=(self.alice.address, self.bob.address))
        self.channel_id = channel.channel_id
        self.channel_address = self.adjudicator.get_channel_address(self.channel_id)
        outcome = ChannelStateBuilder.create_funded_outcome(
            self.adjudicator.asset_holder_address, self.alice.address, self.bob.address, 2
        )
        self.state = ChannelStateBuilder.create(channel, outcome, "0x" + "cc" * 20, b"", 60)
        self.final = ChannelStateBuilder.final_state(
            ChannelStateBuilder.with_turn(self.state, 4, outcome=self.state.outcome.swapped())
        )

    def sign_all(self, state):
        return [self.alice.sign(state).signature, self.bob.sign(state).signature]

    async def fund(self, amount=2):
        return await self.ledger.transfer(self.token, self.alice.address, self.channel_address, amount)

    def test_channel_address(self):
        """Test the channel address is the CREATE2 address of a mastercopy proxy."""
        expected = get_create2_address(
            self.adjudicator.address,
            bytes.fromhex(self.channel_id[2:]),
            keccak(get_minimal_proxy_init_code(self.adjudicator.mastercopy_address)),
        )
        assert self.channel_address == expected
        other = Channel(chain_id=66, nonce=1, participants=(self.alice.address, self.bob.address))
        assert self.adjudicator.get_channel_address(other.channel_id) != expected
        assert self.adjudicator.asset_holder_address == self.token

    @pytest.mark.asyncio
    async def test_funding_is_a_transfer(self):
        """Test a plain transfer funds the channel and matches the funded filter."""
        subscription = self.ledger.subscribe(self.adjudicator.funded_filter(self.channel_id))
        receipt = await self.fund()
        event = await subscription.wait(1.0)
        assert event.args["value"] == 2
        assert event.tx_hash == receipt.tx_hash
        assert await self.adjudicator.holdings(self.channel_id) == 2
        assert receipt.gas_used == 51_000

    @pytest.mark.asyncio
    async def test_create_and_payout(self):
        """Test a double-signed final state deploys the adjudicator and pays out."""
        await self.fund()
        subscription = self.ledger.subscribe(self.adjudicator.concluded_filter(self.channel_id))
        receipt = await self.adjudicator.create_and_payout(
            self.bob.address, self.final, self.sign_all(self.final)
        )
        await subscription.wait(1.0)
        assert receipt.events_named("Concluded")
        assert receipt.gas_used == 161_000
        assert await self.bob.balance_on(self.ledger, self.token) == 2
        assert await self.adjudicator.holdings(self.channel_id) == 0
        assert self.adjudicator.is_deployed(self.channel_id)

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.adjudicator.create_and_payout(
                self.bob.address, self.final, self.sign_all(self.final)
            )
        assert exc_info.value.revert_reason == "Channel already deployed"

    @pytest.mark.asyncio
    async def test_payout_is_capped_by_balance(self):
        """Test allocations are paid in order from what the channel holds."""
        await self.fund(amount=1)
        await self.adjudicator.create_and_payout(
            self.bob.address, self.final, self.sign_all(self.final)
        )
        assert await self.bob.balance_on(self.ledger, self.token) == 1
        assert await self.adjudicator.holdings(self.channel_id) == 0

    @pytest.mark.asyncio
    async def test_rejects_non_final_and_bad_signatures(self):
        """Test payout checks finality and signatures before deploying."""
        await self.fund()
        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.adjudicator.create_and_payout(
                self.bob.address, self.state, self.sign_all(self.state)
            )
        assert exc_info.value.revert_reason == "State must be final"

        forged = [self.alice.sign(self.final).signature, self.alice.sign(self.final).signature]
        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.adjudicator.create_and_payout(self.bob.address, self.final, forged)
        assert exc_info.value.revert_reason == "Invalid signature"

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.adjudicator.create_and_payout(
                self.bob.address, self.final, self.sign_all(self.final)[:1]
            )
        assert exc_info.value.revert_reason == "Insufficient or excess signatures"
        assert await self.adjudicator.holdings(self.channel_id) == 2
        assert not self.adjudicator.is_deployed(self.channel_id)


class TestNinjaLeg:
    """Test a swap leg funded through a single-channel adjudicator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.ledger = SimulatedLedger(66, start_time=START_TIME)
        self.executor = WalletActor.create("executor")
        self.responder = WalletActor.create("responder")

    def test_funding_strategy(self):
        """Test the funding strategy follows the adjudicator type."""
        leg = ninja_leg(self.ledger, self.executor)
        assert isinstance(funding_for(leg), NinjaFunding)
        assert not isinstance(funding_for(leg), NitroFunding)
        leg.adjudicator = object()
        with pytest.raises(ConfigurationError):
            funding_for(leg)

    @pytest.mark.asyncio
    async def test_fund_unlock_defund(self):
        """Test the full leg lifecycle with a transfer deposit and createAndPayout."""
        leg = ninja_leg(self.ledger, self.executor)
        engine = make_engine(leg, self.executor, self.responder)
        await engine.fund_channel(H)
        assert engine.phase == LegPhase.FUNDED_OBSERVED
        assert engine.initial_state.outcome.assets[0].asset_holder == leg.token
        assert set(engine.receipts) == {"transferring tokens to the channel"}
        assert await leg.adjudicator.holdings(engine.channel_id) == 2

        engine.unlock(self.responder, SECRET)
        receipt = await engine.defund()
        assert receipt.events_named("Concluded")
        assert "calling createAndPayout" in engine.receipts
        assert engine.phase == LegPhase.CONCLUDED
        assert await self.responder.balance_on(self.ledger, leg.token) == 2
        assert await self.executor.balance_on(self.ledger, leg.token) == TOKEN_SUPPLY - 2
        assert engine.observer.gas_by_actor[self.responder.name] == 161_000

    @pytest.mark.asyncio
    async def test_failed_payout_settles_with_final_state(self):
        """Test a reverted payout can be retried from the double-signed final state."""
        leg = ninja_leg(self.ledger, self.executor, FlakyNinjaAdjudicator)
        engine = make_engine(leg, self.executor, self.responder)
        await engine.fund_channel(H)
        engine.unlock(self.responder, SECRET)
        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await engine.defund()
        assert exc_info.value.revert_reason == "out of gas"
        assert engine.phase == LegPhase.ABORTED

        resolver = DisputeResolver.for_leg(engine)
        receipt = await resolver.settle(engine, self.responder)
        assert receipt.events_named("Concluded")
        assert engine.phase == LegPhase.CONCLUDED
        assert await self.responder.balance_on(self.ledger, leg.token) == 2

    @pytest.mark.asyncio
    async def test_challenges_need_nitro(self):
        """Test a non-final Ninja leg cannot be challenged."""
        leg = ninja_leg(self.ledger, self.executor)
        engine = make_engine(leg, self.executor, self.responder)
        await engine.fund_channel(H)
        with pytest.raises(ConfigurationError) as exc_info:
            await DisputeResolver.for_leg(engine).challenge_leg(engine, self.executor)
        assert exc_info.value.config_key == "adjudicator"
        assert engine.phase == LegPhase.FUNDED_OBSERVED
