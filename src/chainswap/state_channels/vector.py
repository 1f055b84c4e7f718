"""
Vector-style channels.

A Vector channel is a counterfactual multisig deployed through CREATE2 by a
channel factory. Both parties sign ``CoreChannelState`` commitments; active
conditional transfers are committed to through the merkle root of their
``CoreTransferState`` hashes. This module holds those records, their ABI
encodings and hashes, the hashlock transfer rules and a client that drives
funding, transfers and withdrawal against ``VectorChannelContracts``.
"""

import hashlib
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from eth_abi import decode, encode
from eth_abi.packed import encode_packed
from eth_utils import keccak, to_checksum_address

from ..crypto import Hash, MerkleTree, Signature, get_create2_address
from ..errors import FundingTimeout, InvalidTransition, ValidationError
from ..logging import LogContext, get_logger
from .actors import Actor
from .observer import SwapObserver

if TYPE_CHECKING:
    from ..ledger.base import TransactionReceipt, VectorChannelContracts

logger = get_logger(__name__)

DEFAULT_CHANNEL_TIMEOUT = 60 * 60 * 24 * 2
ZERO_ADDRESS = "0x" + "00" * 20
ZERO_BYTES32 = b"\x00" * 32


class CommitmentType:
    CHANNEL_STATE = 0
    WITHDRAW_DATA = 1


_BALANCE_TYPE = "(uint256[2],address[2])"
CORE_CHANNEL_STATE_TYPE = (
    f"(address,address,address,address[],{_BALANCE_TYPE}[],"
    "uint256[],uint256[],uint256[],uint256,uint256,bytes32)"
)
CORE_TRANSFER_STATE_TYPE = (
    f"(address,bytes32,address,address,address,address,{_BALANCE_TYPE},uint256,bytes32)"
)
WITHDRAW_DATA_TYPE = "(address,address,address,uint256,uint256,address,bytes)"
HASHLOCK_STATE_TYPE = "(bytes32,uint256)"
HASHLOCK_RESOLVER_TYPE = "(bytes32)"

_PROXY_PREFIX = "3d602d80600a3d3981f3363d3d373d3d3d363d73"
_PROXY_SUFFIX = "5af43d82803e903d91602b57fd5bf3"


def get_minimal_proxy_init_code(mastercopy: str) -> bytes:
    """EIP-1167 init code of a proxy delegating to ``mastercopy``."""
    return bytes.fromhex(_PROXY_PREFIX + mastercopy.lower()[2:] + _PROXY_SUFFIX)


def get_channel_address(factory: str, mastercopy: str, alice: str, bob: str, chain_id: int) -> str:
    """Counterfactual address of the channel between ``alice`` and ``bob``."""
    salt = keccak(
        encode_packed(
            ["address", "address", "uint256"],
            [to_checksum_address(alice), to_checksum_address(bob), chain_id],
        )
    )
    return get_create2_address(factory, salt, keccak(get_minimal_proxy_init_code(mastercopy)))


@dataclass(frozen=True)
class VectorBalance:
    """Two amounts and the addresses they are owed to."""

    amount: Tuple[int, int]
    to: Tuple[str, str]

    def __post_init__(self) -> None:
        if len(self.amount) != 2 or len(self.to) != 2:
            raise ValidationError("A balance has exactly two entries", field="balance")
        object.__setattr__(self, "amount", tuple(self.amount))
        object.__setattr__(self, "to", tuple(to_checksum_address(a) for a in self.to))

    @property
    def total(self) -> int:
        return sum(self.amount)

    def to_abi(self) -> Tuple[List[int], List[str]]:
        return (list(self.amount), list(self.to))


@dataclass(frozen=True)
class CoreChannelState:
    """State both channel parties sign."""

    channel_address: str
    alice: str
    bob: str
    asset_ids: Tuple[str, ...]
    balances: Tuple[VectorBalance, ...]
    processed_deposits_a: Tuple[int, ...]
    processed_deposits_b: Tuple[int, ...]
    defund_nonces: Tuple[int, ...]
    timeout: int
    nonce: int
    merkle_root: bytes = ZERO_BYTES32

    def to_abi(self) -> tuple:
        return (
            self.channel_address,
            self.alice,
            self.bob,
            list(self.asset_ids),
            [b.to_abi() for b in self.balances],
            list(self.processed_deposits_a),
            list(self.processed_deposits_b),
            list(self.defund_nonces),
            self.timeout,
            self.nonce,
            self.merkle_root,
        )

    def asset_index(self, asset_id: str) -> int:
        try:
            return self.asset_ids.index(to_checksum_address(asset_id))
        except ValueError:
            raise ValidationError(
                f"Asset {asset_id} is not in channel {self.channel_address}",
                field="asset_ids",
            )


@dataclass(frozen=True)
class CoreTransferState:
    """Part of a conditional transfer that the channel commits to."""

    channel_address: str
    transfer_id: bytes
    transfer_definition: str
    initiator: str
    responder: str
    asset_id: str
    balance: VectorBalance
    transfer_timeout: int
    initial_state_hash: bytes

    def to_abi(self) -> tuple:
        return (
            self.channel_address,
            self.transfer_id,
            self.transfer_definition,
            self.initiator,
            self.responder,
            self.asset_id,
            self.balance.to_abi(),
            self.transfer_timeout,
            self.initial_state_hash,
        )


@dataclass(frozen=True)
class HashlockTransferState:
    lock_hash: bytes
    expiry: int = 0


@dataclass(frozen=True)
class FullTransferState:
    """Core transfer plus its hashlock state and, once known, resolver."""

    core: CoreTransferState
    state: HashlockTransferState
    pre_image: Optional[bytes] = None

    @property
    def transfer_id(self) -> bytes:
        return self.core.transfer_id


@dataclass(frozen=True)
class WithdrawData:
    """Withdrawal both parties sign to take funds out of the channel."""

    channel_address: str
    asset_id: str
    recipient: str
    amount: int
    nonce: int
    call_to: str = ZERO_ADDRESS
    call_data: bytes = b""

    def to_abi(self) -> tuple:
        return (
            self.channel_address,
            self.asset_id,
            self.recipient,
            self.amount,
            self.nonce,
            self.call_to,
            self.call_data,
        )


def hash_core_channel_state(core: CoreChannelState) -> bytes:
    return keccak(encode([CORE_CHANNEL_STATE_TYPE], [core.to_abi()]))


def hash_channel_commitment(core: CoreChannelState) -> bytes:
    """Digest both parties sign for a channel state."""
    return keccak(
        encode_packed(
            ["uint8", "bytes32"],
            [CommitmentType.CHANNEL_STATE, hash_core_channel_state(core)],
        )
    )


def hash_core_transfer_state(transfer: CoreTransferState) -> bytes:
    return keccak(encode([CORE_TRANSFER_STATE_TYPE], [transfer.to_abi()]))


def hash_withdraw_data(data: WithdrawData) -> bytes:
    """Digest both parties sign for a withdrawal."""
    return keccak(
        encode_packed(
            ["uint8", "bytes32"],
            [CommitmentType.WITHDRAW_DATA, keccak(encode([WITHDRAW_DATA_TYPE], [data.to_abi()]))],
        )
    )


def get_transfer_id(channel_address: str, channel_nonce: int, transfer_definition: str, transfer_timeout: int) -> bytes:
    return keccak(
        encode_packed(
            ["address", "uint256", "address", "uint256"],
            [channel_address, channel_nonce, transfer_definition, transfer_timeout],
        )
    )


def encode_hashlock_state(state: HashlockTransferState) -> bytes:
    return encode([HASHLOCK_STATE_TYPE], [(state.lock_hash, state.expiry)])


def decode_hashlock_state(data: bytes) -> HashlockTransferState:
    ((lock_hash, expiry),) = decode([HASHLOCK_STATE_TYPE], data)
    return HashlockTransferState(lock_hash=lock_hash, expiry=expiry)


def encode_hashlock_resolver(pre_image: bytes) -> bytes:
    return encode([HASHLOCK_RESOLVER_TYPE], [(pre_image,)])


def decode_hashlock_resolver(data: bytes) -> bytes:
    ((pre_image,),) = decode([HASHLOCK_RESOLVER_TYPE], data)
    return pre_image


def hash_transfer_state(state: HashlockTransferState) -> bytes:
    return keccak(encode_hashlock_state(state))


def create_lock_hash(pre_image: bytes) -> bytes:
    return hashlib.sha256(pre_image).digest()


def resolve_hashlock(
    balance: VectorBalance, state: HashlockTransferState, pre_image: bytes, now: int
) -> VectorBalance:
    """
    Apply the hashlock transfer rules.

    A zero pre-image cancels the transfer and returns the balance unchanged.
    Otherwise the pre-image must hash to the lock and the lock must not have
    expired; the locked amount then moves to the responder.

    Raises:
        InvalidTransition: if the pre-image is wrong or the lock expired
    """
    if pre_image == ZERO_BYTES32:
        return balance
    if create_lock_hash(pre_image) != state.lock_hash:
        raise InvalidTransition("Hashlock pre-image does not match lock hash", field="pre_image")
    if state.expiry != 0 and state.expiry <= now:
        raise InvalidTransition("Hashlock payment expired", field="expiry")
    return VectorBalance(amount=(0, balance.amount[0] + balance.amount[1]), to=balance.to)


def merkle_root_of(transfers: List[CoreTransferState]) -> bytes:
    tree = MerkleTree([Hash(hash_core_transfer_state(t)) for t in transfers])
    return tree.get_root().value


def merkle_proof_for(transfers: List[CoreTransferState], transfer_id: bytes) -> List[bytes]:
    """Sibling hashes proving ``transfer_id`` is in the set of active transfers."""
    leaves = [Hash(hash_core_transfer_state(t)) for t in transfers]
    target = next((t for t in transfers if t.transfer_id == transfer_id), None)
    if target is None:
        raise ValidationError("Transfer is not active", field="transfer_id")
    proof = MerkleTree(leaves).get_proof(Hash(hash_core_transfer_state(target)))
    return proof.to_bytes_list()


@dataclass
class VectorChannel:
    """Off-chain view of one Vector channel."""

    core: CoreChannelState
    alice_signature: Optional[Signature] = None
    bob_signature: Optional[Signature] = None
    active_transfers: List[FullTransferState] = field(default_factory=list)

    @property
    def channel_address(self) -> str:
        return self.core.channel_address

    @property
    def is_double_signed(self) -> bool:
        return self.alice_signature is not None and self.bob_signature is not None

    def transfer(self, transfer_id: bytes) -> FullTransferState:
        for t in self.active_transfers:
            if t.transfer_id == transfer_id:
                return t
        raise ValidationError("Unknown transfer", field="transfer_id")


class VectorChannelClient:
    """Drives a Vector channel between two actors on one ledger."""

    def __init__(
        self,
        contracts: "VectorChannelContracts",
        observer: Optional[SwapObserver] = None,
        funding_timeout: float = 30.0,
    ):
        self.contracts = contracts
        self.observer = observer or SwapObserver()
        self.funding_timeout = funding_timeout
        self.channels: Dict[str, VectorChannel] = {}

    @property
    def chain_id(self) -> int:
        return self.contracts.ledger.chain_id

    def channel_address(self, alice: str, bob: str) -> str:
        return get_channel_address(
            self.contracts.factory_address,
            self.contracts.mastercopy_address,
            alice,
            bob,
            self.chain_id,
        )

    def _initial_core(
        self, alice: Actor, bob: Actor, asset_id: str, amounts: Tuple[int, int], timeout: int
    ) -> CoreChannelState:
        return CoreChannelState(
            channel_address=self.channel_address(alice.address, bob.address),
            alice=alice.address,
            bob=bob.address,
            asset_ids=(to_checksum_address(asset_id),),
            balances=(VectorBalance(amount=amounts, to=(alice.address, bob.address)),),
            processed_deposits_a=(amounts[0],),
            processed_deposits_b=(amounts[1],),
            defund_nonces=(1,),
            timeout=timeout,
            nonce=1,
        )

    def _track(self, actor: Actor, description: str, receipt: "TransactionReceipt") -> None:
        self.observer.on_transaction(actor, self.chain_id, description, receipt)

    def sign(self, channel: VectorChannel, alice: Actor, bob: Actor) -> VectorChannel:
        """Have both parties sign the current channel commitment."""
        digest = hash_channel_commitment(channel.core)
        channel.alice_signature = alice.sign_digest(digest)
        channel.bob_signature = bob.sign_digest(digest)
        return channel

    async def fund_channel(
        self,
        funder: Actor,
        counterparty: Actor,
        asset_id: str,
        amount: int,
        timeout: int = DEFAULT_CHANNEL_TIMEOUT,
    ) -> VectorChannel:
        """
        Fund a not-yet-deployed channel by transferring tokens to its address.

        The funder takes the ``bob`` role; the counterparty is ``alice``, the
        party that will eventually deploy the channel.
        """
        core = self._initial_core(counterparty, funder, asset_id, (0, amount), timeout)
        receipt = await self.contracts.ledger.transfer(
            asset_id, funder.address, core.channel_address, amount
        )
        self._track(funder, "sending funds to the channel address", receipt)

        deposited = await self.contracts.total_deposits_bob(core.channel_address, asset_id)
        if deposited < amount:
            raise FundingTimeout(
                f"Channel holds {deposited} of {amount} expected from bob",
                channel_id=core.channel_address,
                field="processed_deposits_b",
            )
        channel = self.sign(VectorChannel(core=core), counterparty, funder)
        self.channels[core.channel_address] = channel
        logger.info(
            f"Funded vector channel with {amount}",
            context=LogContext(ledger_id=self.chain_id, channel_id=core.channel_address, actor=funder.name),
        )
        return channel

    async def create_and_fund_channel(
        self,
        funder: Actor,
        counterparty: Actor,
        asset_id: str,
        amount: int,
        timeout: int = DEFAULT_CHANNEL_TIMEOUT,
    ) -> VectorChannel:
        """Deploy the channel and deposit as ``alice`` in one transaction."""
        core = self._initial_core(funder, counterparty, asset_id, (amount, 0), timeout)
        ledger = self.contracts.ledger

        receipt = await ledger.increase_allowance(
            asset_id, funder.address, self.contracts.factory_address, amount
        )
        self._track(funder, "increasing allowance for the channel factory", receipt)

        receipt = await self.contracts.create_channel_and_deposit_alice(
            funder.address, funder.address, counterparty.address, asset_id, amount
        )
        self._track(funder, "calling createChannelAndDepositAlice", receipt)

        deposited = await self.contracts.total_deposits_alice(core.channel_address, asset_id)
        if deposited < amount:
            raise FundingTimeout(
                f"Channel holds {deposited} of {amount} expected from alice",
                channel_id=core.channel_address,
                field="processed_deposits_a",
            )
        channel = self.sign(VectorChannel(core=core), funder, counterparty)
        self.channels[core.channel_address] = channel
        return channel

    def create_hashlock_transfer(
        self,
        channel: VectorChannel,
        initiator: Actor,
        responder: Actor,
        amount: int,
        lock_hash: bytes,
        alice: Actor,
        bob: Actor,
        expiry: int = 0,
        transfer_timeout: Optional[int] = None,
    ) -> FullTransferState:
        """Lock ``amount`` of the initiator's balance behind ``lock_hash``."""
        core = channel.core
        initiator_slot = 0 if initiator.address == core.alice else 1
        balance = core.balances[0]
        if balance.amount[initiator_slot] < amount:
            raise ValidationError(
                "Initiator balance too low for transfer",
                field="balances",
                value=balance.amount[initiator_slot],
                expected=amount,
                channel_id=core.channel_address,
            )

        timeout = core.timeout if transfer_timeout is None else transfer_timeout
        state = HashlockTransferState(lock_hash=lock_hash, expiry=expiry)
        transfer = CoreTransferState(
            channel_address=core.channel_address,
            transfer_id=get_transfer_id(
                core.channel_address, core.nonce + 1, self.contracts.hashlock_transfer_address, timeout
            ),
            transfer_definition=self.contracts.hashlock_transfer_address,
            initiator=initiator.address,
            responder=responder.address,
            asset_id=core.asset_ids[0],
            balance=VectorBalance(amount=(amount, 0), to=(initiator.address, responder.address)),
            transfer_timeout=timeout,
            initial_state_hash=hash_transfer_state(state),
        )
        full = FullTransferState(core=transfer, state=state)

        amounts = list(balance.amount)
        amounts[initiator_slot] -= amount
        active = channel.active_transfers + [full]
        channel.core = replace(
            core,
            balances=(VectorBalance(amount=tuple(amounts), to=balance.to),),
            nonce=core.nonce + 1,
            merkle_root=merkle_root_of([t.core for t in active]),
        )
        channel.active_transfers = active
        self.sign(channel, alice, bob)
        logger.info(
            f"Created hashlock transfer of {amount}",
            context=LogContext(
                ledger_id=self.chain_id, channel_id=core.channel_address, actor=initiator.name
            ),
        )
        return full

    async def resolve_transfer(
        self,
        channel: VectorChannel,
        transfer_id: bytes,
        pre_image: bytes,
        alice: Actor,
        bob: Actor,
    ) -> VectorChannel:
        """Resolve a hashlock transfer off-chain and fold its balance back."""
        full = channel.transfer(transfer_id)
        now = await self.contracts.ledger.block_timestamp()
        resolved = resolve_hashlock(full.core.balance, full.state, pre_image, now)

        core = channel.core
        amounts = list(core.balances[0].amount)
        for address, value in zip(resolved.to, resolved.amount):
            slot = 0 if address == core.alice else 1
            amounts[slot] += value

        active = [t for t in channel.active_transfers if t.transfer_id != transfer_id]
        channel.core = replace(
            core,
            balances=(VectorBalance(amount=tuple(amounts), to=core.balances[0].to),),
            nonce=core.nonce + 1,
            merkle_root=merkle_root_of([t.core for t in active]),
        )
        channel.active_transfers = active
        return self.sign(channel, alice, bob)

    async def withdraw(
        self,
        channel: VectorChannel,
        alice: Actor,
        bob: Actor,
        recipient: str,
        amount: int,
        gas_payer: Actor,
        nonce: int = 1,
        deploy: bool = False,
    ) -> "TransactionReceipt":
        """
        Withdraw with a double-signed commitment, deploying the channel first
        when ``deploy`` is set.
        """
        if deploy:
            receipt = await self.contracts.create_channel(gas_payer.address, alice.address, bob.address)
            self._track(gas_payer, "calling ChannelFactory.createChannel", receipt)

        data = WithdrawData(
            channel_address=channel.channel_address,
            asset_id=channel.core.asset_ids[0],
            recipient=to_checksum_address(recipient),
            amount=amount,
            nonce=nonce,
        )
        digest = hash_withdraw_data(data)
        receipt = await self.contracts.withdraw(
            gas_payer.address, data, alice.sign_digest(digest), bob.sign_digest(digest)
        )
        self._track(gas_payer, "calling VectorChannel.withdraw", receipt)
        return receipt
