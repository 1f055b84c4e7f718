"""
Unit tests for Vector channels and hashlock transfers.
"""

import pytest

from chainswap.errors import InvalidTransition, LedgerSubmissionFailure, ValidationError
from chainswap.ledger import SimulatedLedger, SimulatedVectorContracts
from chainswap.state_channels import (
    DisputeResolver,
    HashlockTransferState,
    VectorBalance,
    VectorChannelClient,
    WalletActor,
    get_channel_address,
)
from chainswap.state_channels.vector import (
    ZERO_BYTES32,
    create_lock_hash,
    merkle_proof_for,
    resolve_hashlock,
)

START_TIME = 1_700_000_000
SECRET = bytes.fromhex("deadbeef") + bytes(28)


class TestHashlock:
    """Test the hashlock transfer rules."""

    def setup_method(self):
        """Set up test fixtures."""
        self.balance = VectorBalance(amount=(3, 0), to=("0x" + "11" * 20, "0x" + "22" * 20))
        self.state = HashlockTransferState(lock_hash=create_lock_hash(SECRET), expiry=0)

    def test_resolve_pays_responder(self):
        """Test the right pre-image moves the amount to the responder."""
        resolved = resolve_hashlock(self.balance, self.state, SECRET, START_TIME)
        assert resolved.amount == (0, 3)
        assert resolved.to == self.balance.to

    def test_zero_pre_image_cancels(self):
        """Test an all-zero pre-image returns the balance to the initiator."""
        assert resolve_hashlock(self.balance, self.state, ZERO_BYTES32, START_TIME) == self.balance

    def test_wrong_pre_image(self):
        """Test a wrong pre-image is rejected."""
        with pytest.raises(InvalidTransition) as exc_info:
            resolve_hashlock(self.balance, self.state, b"\x01" * 32, START_TIME)
        assert exc_info.value.field == "pre_image"

    def test_expired(self):
        """Test an expired lock cannot be resolved."""
        state = HashlockTransferState(lock_hash=self.state.lock_hash, expiry=START_TIME)
        with pytest.raises(InvalidTransition) as exc_info:
            resolve_hashlock(self.balance, state, SECRET, START_TIME)
        assert exc_info.value.field == "expiry"

    def test_balance_has_two_entries(self):
        """Test balances are two-party."""
        with pytest.raises(ValidationError):
            VectorBalance(amount=(1, 2, 3), to=("0x" + "11" * 20, "0x" + "22" * 20))


class TestVectorChannelClient:
    """Test funding, transfers and withdrawals."""

    def setup_method(self):
        """Set up test fixtures."""
        self.ledger = SimulatedLedger(66, start_time=START_TIME)
        self.alice = WalletActor.create("alice")
        self.bob = WalletActor.create("bob")
        self.token = self.ledger.deploy_token(self.alice.address, 100)
        self.contracts = SimulatedVectorContracts(self.ledger)
        self.client = VectorChannelClient(self.contracts)

    def test_channel_address(self):
        """Test the channel address is deterministic and order dependent."""
        address = self.client.channel_address(self.alice.address, self.bob.address)
        assert address == get_channel_address(
            self.contracts.factory_address,
            self.contracts.mastercopy_address,
            self.alice.address,
            self.bob.address,
            66,
        )
        assert address != self.client.channel_address(self.bob.address, self.alice.address)

    @pytest.mark.asyncio
    async def test_create_and_fund(self):
        """Test alice deploys and deposits in one transaction."""
        channel = await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        assert channel.is_double_signed
        assert channel.core.balances[0].amount == (10, 0)
        assert channel.core.nonce == 1
        assert await self.contracts.total_deposits_alice(channel.channel_address, self.token) == 10
        assert await self.ledger.token_balance(self.token, channel.channel_address) == 10
        assert self.client.channels[channel.channel_address] is channel

    @pytest.mark.asyncio
    async def test_create_twice(self):
        """Test a channel is deployed once."""
        await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        assert exc_info.value.revert_reason == "Channel already deployed"

    @pytest.mark.asyncio
    async def test_transfer_and_resolve(self):
        """Test locking and unlocking a hashlock transfer."""
        channel = await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        transfer = self.client.create_hashlock_transfer(
            channel, self.alice, self.bob, 3, create_lock_hash(SECRET), self.alice, self.bob
        )
        assert channel.core.balances[0].amount == (7, 0)
        assert channel.core.nonce == 2
        assert channel.core.merkle_root != ZERO_BYTES32
        assert channel.transfer(transfer.transfer_id) is transfer

        await self.client.resolve_transfer(channel, transfer.transfer_id, SECRET, self.alice, self.bob)
        assert channel.core.balances[0].amount == (7, 3)
        assert channel.core.nonce == 3
        assert channel.active_transfers == []
        with pytest.raises(ValidationError):
            channel.transfer(transfer.transfer_id)

    @pytest.mark.asyncio
    async def test_transfer_too_large(self):
        """Test a transfer cannot lock more than the initiator holds."""
        channel = await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        with pytest.raises(ValidationError):
            self.client.create_hashlock_transfer(
                channel, self.alice, self.bob, 11, create_lock_hash(SECRET), self.alice, self.bob
            )

    @pytest.mark.asyncio
    async def test_resolve_wrong_pre_image(self):
        """Test a wrong pre-image leaves the transfer active."""
        channel = await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        transfer = self.client.create_hashlock_transfer(
            channel, self.alice, self.bob, 3, create_lock_hash(SECRET), self.alice, self.bob
        )
        with pytest.raises(InvalidTransition):
            await self.client.resolve_transfer(
                channel, transfer.transfer_id, b"\x02" * 32, self.alice, self.bob
            )
        assert len(channel.active_transfers) == 1

    @pytest.mark.asyncio
    async def test_withdraw(self):
        """Test a double-signed withdrawal pays out once."""
        channel = await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        receipt = await self.client.withdraw(
            channel, self.alice, self.bob, self.bob.address, 3, gas_payer=self.bob
        )
        assert receipt.events_named("Withdrawn")
        assert await self.ledger.token_balance(self.token, self.bob.address) == 3

        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.client.withdraw(
                channel, self.alice, self.bob, self.bob.address, 3, gas_payer=self.bob
            )
        assert exc_info.value.revert_reason == "Withdrawal already executed"

    @pytest.mark.asyncio
    async def test_fund_undeployed_then_withdraw(self):
        """Test funding by transfer to the counterfactual address."""
        channel = await self.client.fund_channel(self.alice, self.bob, self.token, 4)
        assert channel.core.alice == self.bob.address
        assert channel.core.balances[0].amount == (0, 4)
        assert await self.contracts.total_deposits_bob(channel.channel_address, self.token) == 4

        await self.client.withdraw(
            channel, self.bob, self.alice, self.alice.address, 4, gas_payer=self.alice, deploy=True
        )
        assert await self.ledger.token_balance(self.token, self.alice.address) == 100
        assert await self.ledger.token_balance(self.token, channel.channel_address) == 0


class TestVectorDispute:
    """Test disputing a channel and defunding a transfer on-chain."""

    def setup_method(self):
        """Set up test fixtures."""
        self.ledger = SimulatedLedger(99, start_time=START_TIME)
        self.alice = WalletActor.create("alice")
        self.bob = WalletActor.create("bob")
        self.token = self.ledger.deploy_token(self.alice.address, 100)
        self.contracts = SimulatedVectorContracts(self.ledger)
        self.client = VectorChannelClient(self.contracts)
        self.resolver = DisputeResolver(self.ledger, vector_contracts=self.contracts)

    async def open_transfer(self):
        channel = await self.client.create_and_fund_channel(self.alice, self.bob, self.token, 10)
        transfer = self.client.create_hashlock_transfer(
            channel, self.alice, self.bob, 3, create_lock_hash(SECRET), self.alice, self.bob
        )
        return channel, transfer

    @pytest.mark.asyncio
    async def test_defund_and_exit(self):
        """Test the responder claims a disputed transfer with the pre-image."""
        channel, transfer = await self.open_transfer()

        receipt = await self.resolver.dispute_vector_channel(channel, self.bob)
        (event,) = receipt.events_named("ChannelDisputed")
        assert event.args["consensusExpiry"] == START_TIME + channel.core.timeout

        await self.resolver.dispute_transfer(channel, transfer.transfer_id, self.bob)
        assert await self.ledger.block_timestamp() == START_TIME + channel.core.timeout

        defunded, exited = await self.resolver.defund_transfer(
            channel, transfer.transfer_id, SECRET, responder=self.bob, sender=self.bob
        )
        assert defunded.events_named("TransferDefunded")[0].args["amounts"] == [0, 3]
        assert exited.events_named("Exited")[0].args["amount"] == 3
        assert await self.ledger.token_balance(self.token, self.bob.address) == 3

    @pytest.mark.asyncio
    async def test_stale_nonce(self):
        """Test a dispute cannot be replaced by an older state."""
        channel, _ = await self.open_transfer()
        await self.resolver.dispute_vector_channel(channel, self.bob)
        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.resolver.dispute_vector_channel(channel, self.alice)
        assert exc_info.value.revert_reason == "Invalid nonce"

    @pytest.mark.asyncio
    async def test_transfer_dispute_needs_defund_phase(self):
        """Test transfers are disputed only after the consensus phase."""
        channel, transfer = await self.open_transfer()
        await self.resolver.dispute_vector_channel(channel, self.bob)
        proof = merkle_proof_for([t.core for t in channel.active_transfers], transfer.transfer_id)
        with pytest.raises(LedgerSubmissionFailure) as exc_info:
            await self.contracts.dispute_transfer(self.bob.address, transfer.core, proof)
        assert exc_info.value.revert_reason == "Not in defund phase"
