"""
Simulated Vector channel factory, channel mastercopy and hashlock transfer.
"""

from typing import Dict, List, Sequence, Set, Tuple

from eth_utils import keccak, to_checksum_address

from ..crypto import Hash, Signature, recover_digest_signer, verify_merkle_proof
from ..errors import InvalidTransition
from ..logging import LogContext, get_logger
from ..state_channels.vector import (
    CoreChannelState,
    CoreTransferState,
    WithdrawData,
    decode_hashlock_resolver,
    decode_hashlock_state,
    get_channel_address,
    hash_channel_commitment,
    hash_core_channel_state,
    hash_core_transfer_state,
    hash_withdraw_data,
    resolve_hashlock,
)
from .base import (
    LedgerEvent,
    TransactionReceipt,
    VectorChannelContracts,
    VectorChannelDispute,
    VectorTransferDispute,
)
from .simulated import SimulatedLedger, SimulatedRevert

logger = get_logger(__name__)


class SimulatedVectorContracts(VectorChannelContracts):
    """Vector deployment on a ``SimulatedLedger``."""

    def __init__(self, ledger: SimulatedLedger):
        self._ledger = ledger
        self._factory = ledger.new_address("ChannelFactory")
        self._mastercopy = ledger.new_address("ChannelMastercopy")
        self._hashlock = ledger.new_address("HashlockTransfer")
        self._deployed: Dict[str, Tuple[str, str]] = {}
        self._deposits_alice: Dict[Tuple[str, str], int] = {}
        self._withdrawn: Dict[Tuple[str, str], int] = {}
        self._executed_withdrawals: Set[bytes] = set()
        self._channel_disputes: Dict[str, VectorChannelDispute] = {}
        self._transfer_disputes: Dict[Tuple[str, bytes], VectorTransferDispute] = {}
        self._exitable: Dict[Tuple[str, str, str], int] = {}

    @property
    def ledger(self) -> SimulatedLedger:
        return self._ledger

    @property
    def factory_address(self) -> str:
        return self._factory

    @property
    def mastercopy_address(self) -> str:
        return self._mastercopy

    @property
    def hashlock_transfer_address(self) -> str:
        return self._hashlock

    def _channel_address(self, alice: str, bob: str) -> str:
        return get_channel_address(self._factory, self._mastercopy, alice, bob, self._ledger.chain_id)

    def _participants(self, channel_address: str) -> Tuple[str, str]:
        try:
            return self._deployed[to_checksum_address(channel_address)]
        except KeyError:
            raise SimulatedRevert("Channel not deployed")

    def _deploy(self, alice: str, bob: str) -> LedgerEvent:
        channel = self._channel_address(alice, bob)
        if channel in self._deployed:
            raise SimulatedRevert("Channel already deployed")
        self._deployed[channel] = (to_checksum_address(alice), to_checksum_address(bob))
        return LedgerEvent(name="ChannelCreation", address=self._factory, args={"channel": channel})

    async def create_channel(self, sender: str, alice: str, bob: str) -> TransactionReceipt:
        async def action() -> List[LedgerEvent]:
            return [self._deploy(alice, bob)]

        return await self._ledger.execute(sender, self._factory, "createChannel", action)

    async def create_channel_and_deposit_alice(
        self, sender: str, alice: str, bob: str, asset_id: str, amount: int
    ) -> TransactionReceipt:
        erc20 = self._ledger.token(asset_id)
        channel = self._channel_address(alice, bob)

        async def action() -> List[LedgerEvent]:
            if channel in self._deployed:
                raise SimulatedRevert("Channel already deployed")
            erc20.require_allowance(sender, self._factory, amount)
            erc20.require_balance(sender, amount)

            created = self._deploy(alice, bob)
            transfer = erc20.transfer_from(self._factory, sender, channel, amount)
            key = (channel, erc20.address)
            self._deposits_alice[key] = self._deposits_alice.get(key, 0) + amount
            deposited = LedgerEvent(
                name="AliceDeposited",
                address=channel,
                args={"assetId": erc20.address, "amount": amount},
            )
            return [created, transfer, deposited]

        return await self._ledger.execute(sender, self._factory, "createChannelAndDepositAlice", action)

    async def total_deposits_alice(self, channel_address: str, asset_id: str) -> int:
        return self._deposits_alice.get((to_checksum_address(channel_address), to_checksum_address(asset_id)), 0)

    async def total_deposits_bob(self, channel_address: str, asset_id: str) -> int:
        channel = to_checksum_address(channel_address)
        asset = to_checksum_address(asset_id)
        balance = self._ledger.token(asset).balance_of(channel)
        return balance + self._withdrawn.get((channel, asset), 0) - self._deposits_alice.get((channel, asset), 0)

    def _require_double_signed(
        self, channel: str, digest: bytes, alice_signature: Signature, bob_signature: Signature
    ) -> None:
        alice, bob = self._participants(channel)
        if recover_digest_signer(digest, alice_signature) != alice:
            raise SimulatedRevert("Invalid alice signature")
        if recover_digest_signer(digest, bob_signature) != bob:
            raise SimulatedRevert("Invalid bob signature")

    def _pay(self, channel: str, asset_id: str, recipient: str, amount: int) -> LedgerEvent:
        erc20 = self._ledger.token(asset_id)
        event = erc20.transfer(channel, recipient, amount)
        key = (channel, erc20.address)
        self._withdrawn[key] = self._withdrawn.get(key, 0) + amount
        return event

    async def withdraw(
        self,
        sender: str,
        data: WithdrawData,
        alice_signature: Signature,
        bob_signature: Signature,
    ) -> TransactionReceipt:
        channel = to_checksum_address(data.channel_address)

        async def action() -> List[LedgerEvent]:
            digest = hash_withdraw_data(data)
            self._require_double_signed(channel, digest, alice_signature, bob_signature)
            if digest in self._executed_withdrawals:
                raise SimulatedRevert("Withdrawal already executed")
            self._ledger.token(data.asset_id).require_balance(channel, data.amount)

            self._executed_withdrawals.add(digest)
            transfer = self._pay(channel, data.asset_id, data.recipient, data.amount)
            return [
                transfer,
                LedgerEvent(
                    name="Withdrawn",
                    address=channel,
                    args={"recipient": data.recipient, "assetId": data.asset_id, "amount": data.amount},
                ),
            ]

        return await self._ledger.execute(sender, channel, "withdraw", action)

    async def dispute_channel(
        self,
        sender: str,
        core: CoreChannelState,
        alice_signature: Signature,
        bob_signature: Signature,
    ) -> TransactionReceipt:
        channel = to_checksum_address(core.channel_address)

        async def action() -> List[LedgerEvent]:
            self._require_double_signed(channel, hash_channel_commitment(core), alice_signature, bob_signature)
            now = self._ledger.now
            dispute = self._channel_disputes.get(channel, VectorChannelDispute())
            if core.nonce <= dispute.nonce:
                raise SimulatedRevert("Invalid nonce")

            consensus_expiry, defund_expiry = dispute.consensus_expiry, dispute.defund_expiry
            if not dispute.in_consensus_phase(now):
                if dispute.in_defund_phase(now):
                    raise SimulatedRevert("Channel in defund phase")
                consensus_expiry = now + core.timeout
                defund_expiry = now + 2 * core.timeout

            self._channel_disputes[channel] = VectorChannelDispute(
                channel_state_hash=hash_core_channel_state(core),
                nonce=core.nonce,
                merkle_root=core.merkle_root,
                consensus_expiry=consensus_expiry,
                defund_expiry=defund_expiry,
            )
            logger.info(
                f"Channel disputed at nonce {core.nonce}, consensus until {consensus_expiry}",
                context=LogContext(ledger_id=self._ledger.chain_id, channel_id=channel),
            )
            return [
                LedgerEvent(
                    name="ChannelDisputed",
                    address=channel,
                    args={"disputer": sender, "nonce": core.nonce, "consensusExpiry": consensus_expiry},
                )
            ]

        return await self._ledger.execute(sender, channel, "disputeChannel", action)

    async def dispute_transfer(
        self, sender: str, transfer: CoreTransferState, merkle_proof: Sequence[bytes]
    ) -> TransactionReceipt:
        channel = to_checksum_address(transfer.channel_address)
        key = (channel, transfer.transfer_id)

        async def action() -> List[LedgerEvent]:
            now = self._ledger.now
            dispute = self._channel_disputes.get(channel)
            if dispute is None or not dispute.in_defund_phase(now):
                raise SimulatedRevert("Not in defund phase")
            leaf = Hash(hash_core_transfer_state(transfer))
            if not verify_merkle_proof(leaf, [Hash(p) for p in merkle_proof], Hash(dispute.merkle_root)):
                raise SimulatedRevert("Invalid merkle proof")
            if key in self._transfer_disputes:
                raise SimulatedRevert("Transfer already disputed")

            expiry = now + transfer.transfer_timeout
            self._transfer_disputes[key] = VectorTransferDispute(
                transfer_state_hash=leaf.value, transfer_dispute_expiry=expiry
            )
            return [
                LedgerEvent(
                    name="TransferDisputed",
                    address=channel,
                    args={"transferId": "0x" + transfer.transfer_id.hex(), "transferDisputeExpiry": expiry},
                )
            ]

        return await self._ledger.execute(sender, channel, "disputeTransfer", action)

    async def defund_transfer(
        self,
        sender: str,
        transfer: CoreTransferState,
        encoded_state: bytes,
        encoded_resolver: bytes,
        responder_signature: Signature,
    ) -> TransactionReceipt:
        channel = to_checksum_address(transfer.channel_address)
        key = (channel, transfer.transfer_id)

        async def action() -> List[LedgerEvent]:
            now = self._ledger.now
            dispute = self._transfer_disputes.get(key)
            if dispute is None:
                raise SimulatedRevert("Transfer not disputed")
            if hash_core_transfer_state(transfer) != dispute.transfer_state_hash:
                raise SimulatedRevert("Hash mismatch")
            if dispute.is_defunded:
                raise SimulatedRevert("Transfer already defunded")

            balance = transfer.balance
            if now < dispute.transfer_dispute_expiry:
                if keccak(encoded_state) != transfer.initial_state_hash:
                    raise SimulatedRevert("Hash mismatch")
                if to_checksum_address(sender) != transfer.responder:
                    signer = recover_digest_signer(transfer.initial_state_hash, responder_signature)
                    if signer != transfer.responder:
                        raise SimulatedRevert("Invalid signature")
                try:
                    balance = resolve_hashlock(
                        balance,
                        decode_hashlock_state(encoded_state),
                        decode_hashlock_resolver(encoded_resolver),
                        now,
                    )
                except InvalidTransition as e:
                    raise SimulatedRevert(e.message)

            dispute.is_defunded = True
            for owner, amount in zip(balance.to, balance.amount):
                exit_key = (channel, to_checksum_address(transfer.asset_id), owner)
                self._exitable[exit_key] = self._exitable.get(exit_key, 0) + amount
            return [
                LedgerEvent(
                    name="TransferDefunded",
                    address=channel,
                    args={
                        "transferId": "0x" + transfer.transfer_id.hex(),
                        "amounts": list(balance.amount),
                        "to": list(balance.to),
                    },
                )
            ]

        return await self._ledger.execute(sender, channel, "defundTransfer", action)

    async def exit(
        self, sender: str, channel_address: str, asset_id: str, owner: str, recipient: str
    ) -> TransactionReceipt:
        channel = to_checksum_address(channel_address)
        asset = to_checksum_address(asset_id)
        exit_key = (channel, asset, to_checksum_address(owner))

        async def action() -> List[LedgerEvent]:
            if to_checksum_address(sender) != exit_key[2] and exit_key[2] != to_checksum_address(recipient):
                raise SimulatedRevert("Owner must be sender or recipient")
            amount = self._exitable.get(exit_key, 0)
            if amount == 0:
                raise SimulatedRevert("Nothing to exit")
            self._ledger.token(asset).require_balance(channel, amount)

            self._exitable[exit_key] = 0
            transfer = self._pay(channel, asset, recipient, amount)
            return [
                transfer,
                LedgerEvent(
                    name="Exited",
                    address=channel,
                    args={"owner": exit_key[2], "recipient": to_checksum_address(recipient), "amount": amount},
                ),
            ]

        return await self._ledger.execute(sender, channel, "exit", action)

    async def channel_dispute(self, channel_address: str) -> VectorChannelDispute:
        dispute = self._channel_disputes.get(to_checksum_address(channel_address), VectorChannelDispute())
        return VectorChannelDispute(**vars(dispute))

    async def transfer_dispute(self, channel_address: str, transfer_id: bytes) -> VectorTransferDispute:
        dispute = self._transfer_disputes.get(
            (to_checksum_address(channel_address), transfer_id), VectorTransferDispute()
        )
        return VectorTransferDispute(**vars(dispute))

    async def exitable_amount(self, channel_address: str, asset_id: str, owner: str) -> int:
        return self._exitable.get(
            (to_checksum_address(channel_address), to_checksum_address(asset_id), to_checksum_address(owner)), 0
        )
