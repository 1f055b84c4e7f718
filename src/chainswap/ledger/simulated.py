"""
Deterministic in-process ledger.

``SimulatedLedger`` stands in for a development chain: it keeps a block
clock that only moves when told to, ERC20-style token balances and
allowances, and an event bus that resolves subscriptions as transactions
are mined. Every transaction is charged gas from a fixed schedule so gas
accounting can be exercised without a node.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from eth_utils import keccak, to_checksum_address

from ..errors import LedgerSubmissionFailure
from ..logging import LogContext, get_logger
from .base import (
    EventFilter,
    EventSubscription,
    Ledger,
    LedgerEvent,
    TransactionReceipt,
)

logger = get_logger(__name__)

DEFAULT_GAS_SCHEDULE: Dict[str, int] = {
    "transfer": 51_000,
    "increaseAllowance": 29_000,
    "deposit": 71_000,
    "concludePushOutcomeAndTransferAll": 124_000,
    "createAndPayout": 161_000,
    "challenge": 96_000,
    "pushOutcomeAndTransferAll": 83_000,
    "createChannel": 183_000,
    "createChannelAndDepositAlice": 236_000,
    "withdraw": 92_000,
    "disputeChannel": 113_000,
    "disputeTransfer": 101_000,
    "defundTransfer": 87_000,
    "exit": 46_000,
}
DEFAULT_GAS = 50_000


class SimulatedRevert(Exception):
    """Raised by simulated contracts to revert a transaction."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class SimulatedToken:
    """ERC20 token balances and allowances."""

    address: str
    name: str
    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[Tuple[str, str], int] = field(default_factory=dict)

    def balance_of(self, owner: str) -> int:
        return self.balances.get(to_checksum_address(owner), 0)

    def require_balance(self, owner: str, amount: int) -> None:
        if self.balance_of(owner) < amount:
            raise SimulatedRevert("ERC20: transfer amount exceeds balance")

    def transfer(self, sender: str, to: str, amount: int) -> LedgerEvent:
        if amount < 0:
            raise SimulatedRevert("ERC20: negative amount")
        sender = to_checksum_address(sender)
        to = to_checksum_address(to)
        self.require_balance(sender, amount)
        self.balances[sender] = self.balance_of(sender) - amount
        self.balances[to] = self.balance_of(to) + amount
        return LedgerEvent(
            name="Transfer",
            address=self.address,
            args={"from": sender, "to": to, "value": amount},
        )

    def require_allowance(self, owner: str, spender: str, amount: int) -> None:
        key = (to_checksum_address(owner), to_checksum_address(spender))
        if self.allowances.get(key, 0) < amount:
            raise SimulatedRevert("ERC20: transfer amount exceeds allowance")

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> LedgerEvent:
        self.require_allowance(owner, spender, amount)
        self.require_balance(owner, amount)
        key = (to_checksum_address(owner), to_checksum_address(spender))
        self.allowances[key] -= amount
        return self.transfer(owner, to, amount)

    def increase_allowance(self, owner: str, spender: str, amount: int) -> LedgerEvent:
        key = (to_checksum_address(owner), to_checksum_address(spender))
        self.allowances[key] = self.allowances.get(key, 0) + amount
        return LedgerEvent(
            name="Approval",
            address=self.address,
            args={"owner": key[0], "spender": key[1], "value": self.allowances[key]},
        )


class SimulatedSubscription(EventSubscription):
    """Subscription resolved by the simulated event bus."""

    def __init__(self, ledger: "SimulatedLedger", event_filter: EventFilter):
        super().__init__(event_filter)
        self._ledger = ledger
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    def deliver(self, event: LedgerEvent) -> bool:
        if self._future.done() or not self.event_filter.matches(event):
            return False
        self._future.set_result(event)
        return True

    async def wait(self, timeout: Optional[float] = None) -> LedgerEvent:
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        finally:
            if self._future.done():
                self._ledger.unsubscribe(self)

    def cancel(self) -> None:
        if not self._future.done():
            self._future.cancel()
        self._ledger.unsubscribe(self)


class SimulatedLedger(Ledger):
    """In-process chain with a manually advanced clock."""

    def __init__(
        self,
        chain_id: int,
        start_time: Optional[int] = None,
        gas_schedule: Optional[Dict[str, int]] = None,
    ):
        self._chain_id = chain_id
        self._timestamp = int(time.time()) if start_time is None else start_time
        self._block_number = 0
        self.gas_schedule = dict(DEFAULT_GAS_SCHEDULE if gas_schedule is None else gas_schedule)
        self.tokens: Dict[str, SimulatedToken] = {}
        self.receipts: List[TransactionReceipt] = []
        self._subscriptions: List[SimulatedSubscription] = []
        self._address_counter = itertools.count(1)
        self._tx_counter = itertools.count(1)
        self._lock = asyncio.Lock()

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def now(self) -> int:
        """Current block timestamp, for contracts running inside a transaction."""
        return self._timestamp

    def new_address(self, label: str) -> str:
        """Deterministic address for a contract deployed on this ledger."""
        seed = f"{self._chain_id}:{label}:{next(self._address_counter)}".encode()
        return to_checksum_address(keccak(seed)[12:])

    def deploy_token(self, holder: str, supply: int, name: str = "TestToken") -> str:
        """Deploy a token minting ``supply`` to ``holder``. Returns its address."""
        token = SimulatedToken(address=self.new_address(name), name=name)
        token.balances[to_checksum_address(holder)] = supply
        self.tokens[token.address] = token
        logger.debug(f"Deployed {name} at {token.address}", context=LogContext(ledger_id=self._chain_id))
        return token.address

    def token(self, address: str) -> SimulatedToken:
        try:
            return self.tokens[to_checksum_address(address)]
        except KeyError:
            raise LedgerSubmissionFailure(
                f"No token deployed at {address}", contract=address, ledger_id=self._chain_id
            )

    async def block_timestamp(self) -> int:
        return self._timestamp

    async def block_number(self) -> int:
        return self._block_number

    async def advance_time(self, seconds: int) -> None:
        """Advance the clock and mine an empty block."""
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        self._timestamp += seconds
        self._block_number += 1
        logger.debug(
            f"Advanced clock by {seconds}s to {self._timestamp}",
            context=LogContext(ledger_id=self._chain_id),
        )

    def subscribe(self, event_filter: EventFilter) -> EventSubscription:
        subscription = SimulatedSubscription(self, event_filter)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: SimulatedSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def execute(
        self,
        sender: str,
        contract: str,
        function: str,
        action: Callable[[], Awaitable[List[LedgerEvent]]],
    ) -> TransactionReceipt:
        """
        Run a contract call as a transaction.

        Args:
            sender: Transaction sender
            contract: Contract address (for error reporting)
            function: Function name, also the gas schedule key
            action: Coroutine function that validates, mutates state and
                returns the emitted events; raises ``SimulatedRevert`` to revert

        Returns:
            Receipt of the mined transaction

        Raises:
            LedgerSubmissionFailure: if the call reverts
        """
        async with self._lock:
            tx_hash = "0x" + keccak(
                f"{self._chain_id}:{next(self._tx_counter)}:{sender}:{function}".encode()
            ).hex()
            try:
                events = await action()
            except SimulatedRevert as e:
                logger.warning(
                    f"{function} reverted: {e.reason}",
                    context=LogContext(ledger_id=self._chain_id, operation=function),
                )
                raise LedgerSubmissionFailure(
                    f"{function} reverted: {e.reason}",
                    tx_hash=tx_hash,
                    contract=contract,
                    function=function,
                    revert_reason=e.reason,
                    ledger_id=self._chain_id,
                    cause=e,
                ) from e

            self._block_number += 1
            for event in events:
                event.block_number = self._block_number
                event.tx_hash = tx_hash

            receipt = TransactionReceipt(
                tx_hash=tx_hash,
                sender=to_checksum_address(sender),
                gas_used=self.gas_schedule.get(function, DEFAULT_GAS),
                block_number=self._block_number,
                status=True,
                events=list(events),
            )
            self.receipts.append(receipt)

        for event in events:
            for subscription in list(self._subscriptions):
                subscription.deliver(event)
        await asyncio.sleep(0)
        return receipt

    async def token_balance(self, token: str, owner: str) -> int:
        return self.token(token).balance_of(owner)

    async def increase_allowance(
        self, token: str, owner: str, spender: str, amount: int
    ) -> TransactionReceipt:
        erc20 = self.token(token)

        async def action() -> List[LedgerEvent]:
            return [erc20.increase_allowance(owner, spender, amount)]

        return await self.execute(owner, erc20.address, "increaseAllowance", action)

    async def transfer(self, token: str, sender: str, to: str, amount: int) -> TransactionReceipt:
        erc20 = self.token(token)

        async def action() -> List[LedgerEvent]:
            return [erc20.transfer(sender, to, amount)]

        return await self.execute(sender, erc20.address, "transfer", action)
