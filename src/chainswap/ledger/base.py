"""
Ledger collaborator interfaces.

The swap engines only talk to ledgers through these interfaces: submit a
transaction and get a receipt, subscribe to contract events before
triggering them, read the clock, and call the channel contracts. The
simulated ledger and the web3 adapters both implement them.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from ..crypto import Signature

if TYPE_CHECKING:
    from ..state_channels.channel import ChannelState
    from ..state_channels.vector import CoreChannelState, CoreTransferState, WithdrawData


@dataclass
class LedgerEvent:
    """Contract event emitted by a transaction."""

    name: str
    address: str
    args: Dict[str, Any]
    block_number: int = 0
    tx_hash: Optional[str] = None


@dataclass
class TransactionReceipt:
    """Result of a mined transaction."""

    tx_hash: str
    sender: str
    gas_used: int
    block_number: int
    status: bool = True
    events: List[LedgerEvent] = field(default_factory=list)

    def events_named(self, name: str) -> List[LedgerEvent]:
        return [e for e in self.events if e.name == name]


@dataclass(frozen=True)
class EventFilter:
    """Contract address + event name + optional predicate on the event."""

    address: str
    name: str
    predicate: Optional[Callable[[LedgerEvent], bool]] = None

    def matches(self, event: LedgerEvent) -> bool:
        if event.name != self.name or event.address.lower() != self.address.lower():
            return False
        return self.predicate is None or bool(self.predicate(event))


class EventSubscription(ABC):
    """Pending observation of one event matching a filter."""

    def __init__(self, event_filter: EventFilter):
        self.event_filter = event_filter

    @abstractmethod
    async def wait(self, timeout: Optional[float] = None) -> LedgerEvent:
        """
        Wait for the first matching event.

        Raises:
            asyncio.TimeoutError: if no event arrives within ``timeout`` seconds
        """

    @abstractmethod
    def cancel(self) -> None:
        """Stop listening."""


@dataclass
class ChannelStorage:
    """On-chain record of a channel's challenge or conclusion."""

    turn_num_record: int = 0
    finalizes_at: int = 0
    state_hash: Optional[bytes] = None
    challenger: Optional[str] = None
    outcome_hash: Optional[bytes] = None

    @property
    def is_open(self) -> bool:
        return self.finalizes_at == 0

    def is_finalized(self, now: int) -> bool:
        return self.finalizes_at != 0 and self.finalizes_at <= now


class Ledger(ABC):
    """One chain as seen by the swap."""

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """Chain id used in channel ids."""

    @abstractmethod
    async def block_timestamp(self) -> int:
        """Timestamp of the latest block."""

    @abstractmethod
    async def block_number(self) -> int:
        """Number of the latest block."""

    @abstractmethod
    async def advance_time(self, seconds: int) -> None:
        """Advance the chain clock and mine a block. Test chains only."""

    @abstractmethod
    def subscribe(self, event_filter: EventFilter) -> EventSubscription:
        """
        Start listening for an event.

        Must be called from a coroutine, before the transaction that emits the
        event is submitted.
        """

    @abstractmethod
    async def token_balance(self, token: str, owner: str) -> int:
        """ERC20 balance of ``owner``."""

    @abstractmethod
    async def increase_allowance(
        self, token: str, owner: str, spender: str, amount: int
    ) -> TransactionReceipt:
        """Let ``spender`` pull ``amount`` more tokens from ``owner``."""

    @abstractmethod
    async def transfer(self, token: str, sender: str, to: str, amount: int) -> TransactionReceipt:
        """ERC20 transfer from ``sender``."""

    async def wait_for_time(self, timestamp: int, advance_clock: bool, poll_interval: float = 1.0) -> None:
        """Return once the chain clock has reached ``timestamp``."""
        now = await self.block_timestamp()
        if now >= timestamp:
            return
        if advance_clock:
            await self.advance_time(timestamp - now)
            return
        while now < timestamp:
            await asyncio.sleep(min(poll_interval, timestamp - now))
            now = await self.block_timestamp()


class NitroAdjudicator(ABC):
    """Adjudicator plus asset holder of a Nitro-style deployment."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Adjudicator contract address."""

    @property
    @abstractmethod
    def asset_holder_address(self) -> str:
        """Asset holder that custodies channel funds."""

    @property
    @abstractmethod
    def ledger(self) -> Ledger:
        """Ledger the contracts live on."""

    @abstractmethod
    async def deposit(
        self, sender: str, channel_id: str, expected_held: int, amount: int
    ) -> TransactionReceipt:
        """Deposit tokens into a channel. Emits ``Deposited``."""

    @abstractmethod
    async def holdings(self, channel_id: str) -> int:
        """Tokens held for a channel."""

    @abstractmethod
    async def conclude_push_outcome_and_transfer_all(
        self, sender: str, state: "ChannelState", signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        """Conclude with a final state signed by all participants. Emits ``Concluded``."""

    @abstractmethod
    async def challenge(
        self,
        sender: str,
        states: Sequence["ChannelState"],
        signatures: Sequence[Signature],
        who_signed_what: Sequence[int],
        challenger_signature: Signature,
    ) -> TransactionReceipt:
        """Open a challenge on the last of ``states``. Emits ``ChallengeRegistered``."""

    @abstractmethod
    async def push_outcome_and_transfer_all(
        self, sender: str, state: "ChannelState", storage: ChannelStorage
    ) -> TransactionReceipt:
        """Push the finalized outcome of a challenged channel and pay it out."""

    @abstractmethod
    async def channel_storage(self, channel_id: str) -> ChannelStorage:
        """Challenge or conclusion record of a channel."""

    def deposited_filter(self, channel_id: str) -> EventFilter:
        """Deposits into ``channel_id`` that leave non-zero holdings."""
        return EventFilter(
            address=self.asset_holder_address,
            name="Deposited",
            predicate=lambda e: e.args["destination"].lower() == channel_id.lower()
            and e.args["destinationHoldings"] > 0,
        )

    def concluded_filter(self, channel_id: str) -> EventFilter:
        return EventFilter(
            address=self.address,
            name="Concluded",
            predicate=lambda e: e.args["channelId"].lower() == channel_id.lower(),
        )


class NinjaAdjudicator(ABC):
    """
    Factory of single-channel adjudicators.

    Each channel gets its own adjudicator, a proxy of the mastercopy that the
    factory deploys at a CREATE2 address salted with the channel id. Tokens
    are sent to that address before anything is deployed there, and
    ``createAndPayout`` deploys the proxy and pays out a final outcome in one
    transaction.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Adjudicator factory address."""

    @property
    @abstractmethod
    def mastercopy_address(self) -> str:
        """Single-channel adjudicator the proxies delegate to."""

    @property
    @abstractmethod
    def token(self) -> str:
        """Token the channels are funded with."""

    @property
    @abstractmethod
    def ledger(self) -> Ledger:
        """Ledger the contracts live on."""

    @property
    def asset_holder_address(self) -> str:
        """Asset named in channel outcomes; the token itself."""
        return self.token

    @abstractmethod
    def get_channel_address(self, channel_id: str) -> str:
        """Counterfactual address of the adjudicator of ``channel_id``."""

    @abstractmethod
    async def create_and_payout(
        self, sender: str, state: "ChannelState", signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        """Deploy the channel's adjudicator and pay out a final state signed by all."""

    async def holdings(self, channel_id: str) -> int:
        """Tokens sitting at the channel address."""
        return await self.ledger.token_balance(self.token, self.get_channel_address(channel_id))

    def funded_filter(self, channel_id: str) -> EventFilter:
        """Non-zero token transfers to the channel address."""
        channel_address = self.get_channel_address(channel_id).lower()
        return EventFilter(
            address=self.token,
            name="Transfer",
            predicate=lambda e: e.args["to"].lower() == channel_address and e.args["value"] > 0,
        )

    def concluded_filter(self, channel_id: str) -> EventFilter:
        return EventFilter(
            address=self.get_channel_address(channel_id),
            name="Concluded",
            predicate=lambda e: e.args["channelId"].lower() == channel_id.lower(),
        )


@dataclass
class VectorChannelDispute:
    """On-chain dispute record of a Vector channel."""

    channel_state_hash: Optional[bytes] = None
    nonce: int = 0
    merkle_root: Optional[bytes] = None
    consensus_expiry: int = 0
    defund_expiry: int = 0

    def in_consensus_phase(self, now: int) -> bool:
        return now < self.consensus_expiry

    def in_defund_phase(self, now: int) -> bool:
        return self.consensus_expiry <= now < self.defund_expiry


@dataclass
class VectorTransferDispute:
    """On-chain dispute record of one transfer."""

    transfer_state_hash: Optional[bytes] = None
    transfer_dispute_expiry: int = 0
    is_defunded: bool = False


class VectorChannelContracts(ABC):
    """Channel factory, mastercopy and hashlock transfer of one deployment."""

    @property
    @abstractmethod
    def ledger(self) -> Ledger:
        """Ledger the contracts live on."""

    @property
    @abstractmethod
    def factory_address(self) -> str:
        """Channel factory address."""

    @property
    @abstractmethod
    def mastercopy_address(self) -> str:
        """Channel mastercopy that every channel proxy delegates to."""

    @property
    @abstractmethod
    def hashlock_transfer_address(self) -> str:
        """Hashlock transfer definition address."""

    @abstractmethod
    async def create_channel(self, sender: str, alice: str, bob: str) -> TransactionReceipt:
        """Deploy the channel proxy for ``alice`` and ``bob``."""

    @abstractmethod
    async def create_channel_and_deposit_alice(
        self, sender: str, alice: str, bob: str, asset_id: str, amount: int
    ) -> TransactionReceipt:
        """Deploy the channel and pull ``amount`` from alice into it."""

    @abstractmethod
    async def total_deposits_alice(self, channel_address: str, asset_id: str) -> int:
        """Cumulative deposits made by alice."""

    @abstractmethod
    async def total_deposits_bob(self, channel_address: str, asset_id: str) -> int:
        """Cumulative deposits made by bob (plain transfers to the channel)."""

    @abstractmethod
    async def withdraw(
        self,
        sender: str,
        data: "WithdrawData",
        alice_signature: Signature,
        bob_signature: Signature,
    ) -> TransactionReceipt:
        """Execute a double-signed withdrawal."""

    @abstractmethod
    async def dispute_channel(
        self,
        sender: str,
        core: "CoreChannelState",
        alice_signature: Signature,
        bob_signature: Signature,
    ) -> TransactionReceipt:
        """Start or refresh a channel dispute with a double-signed state."""

    @abstractmethod
    async def dispute_transfer(
        self, sender: str, transfer: "CoreTransferState", merkle_proof: Sequence[bytes]
    ) -> TransactionReceipt:
        """Dispute one transfer committed to by the disputed merkle root."""

    @abstractmethod
    async def defund_transfer(
        self,
        sender: str,
        transfer: "CoreTransferState",
        encoded_state: bytes,
        encoded_resolver: bytes,
        responder_signature: Signature,
    ) -> TransactionReceipt:
        """Resolve a disputed transfer on-chain and make its balance exitable."""

    @abstractmethod
    async def exit(
        self, sender: str, channel_address: str, asset_id: str, owner: str, recipient: str
    ) -> TransactionReceipt:
        """Pay out the exitable amount of ``owner`` to ``recipient``."""

    @abstractmethod
    async def channel_dispute(self, channel_address: str) -> VectorChannelDispute:
        """Dispute record of a channel."""

    @abstractmethod
    async def transfer_dispute(
        self, channel_address: str, transfer_id: bytes
    ) -> VectorTransferDispute:
        """Dispute record of a transfer."""

    @abstractmethod
    async def exitable_amount(self, channel_address: str, asset_id: str, owner: str) -> int:
        """Amount ``owner`` can currently exit with."""
