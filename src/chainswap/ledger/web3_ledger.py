"""
Web3 adapters for deployed contracts.

This module backs the ledger interfaces with a JSON-RPC node:
- ``Web3Ledger``: signing and submitting transactions, block clock, ERC20
  calls and log-polling event subscriptions
- ``Web3NitroAdjudicator``: adjudicator and ERC20 asset holder
- ``Web3HashLockedSwapApp``: the conditional-logic app's ``validTransition``
- ``Web3VectorChannelContracts``: channel factory and channel proxies

Clock advance uses ``evm_increaseTime`` / ``evm_mine`` and only works on
development chains.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from ..crypto import Signature
from ..errors import ConfigurationError, LedgerSubmissionFailure
from ..logging import LogContext, get_logger
from ..state_channels.channel import ChannelState, VariablePart
from ..state_channels.encoding import (
    encode_outcome,
    fixed_part,
    hash_app_part,
    hash_outcome,
    hash_state,
    variable_part_abi,
)
from ..state_channels.hashlock import ConditionalApp
from ..state_channels.vector import (
    CoreChannelState,
    CoreTransferState,
    WithdrawData,
    get_channel_address,
)
from .abi import (
    ADJUDICATOR_ABI,
    ASSET_HOLDER_ABI,
    CHANNEL_FACTORY_ABI,
    CHANNEL_MASTERCOPY_ABI,
    ERC20_ABI,
    HASH_LOCKED_SWAP_ABI,
)
from .base import (
    ChannelStorage,
    EventFilter,
    EventSubscription,
    Ledger,
    LedgerEvent,
    NitroAdjudicator,
    TransactionReceipt,
    VectorChannelContracts,
    VectorChannelDispute,
    VectorTransferDispute,
)

logger = get_logger(__name__)

UINT48_MASK = (1 << 48) - 1


def _normalize(value: Any) -> Any:
    """Turn web3 log values into the plain types the simulated ledger emits."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def _to_event(data: Any) -> LedgerEvent:
    tx_hash = data["transactionHash"]
    return LedgerEvent(
        name=data["event"],
        address=to_checksum_address(data["address"]),
        args={k: _normalize(v) for k, v in dict(data["args"]).items()},
        block_number=data["blockNumber"],
        tx_hash=tx_hash.to_0x_hex() if hasattr(tx_hash, "to_0x_hex") else _normalize(tx_hash),
    )


def _bytes32(channel_id: str) -> bytes:
    return bytes.fromhex(channel_id[2:] if channel_id.startswith("0x") else channel_id)


class Web3Subscription(EventSubscription):
    """Polls ``eth_getLogs`` from the block the subscription was opened at."""

    def __init__(self, ledger: "Web3Ledger", event_filter: EventFilter, abi: List[Dict[str, Any]]):
        super().__init__(event_filter)
        self._ledger = ledger
        self._contract = ledger.contract(event_filter.address, abi)
        self._from_block = ledger.head
        self._cancelled = False

    async def _poll(self) -> LedgerEvent:
        event_type = getattr(self._contract.events, self.event_filter.name)
        while not self._cancelled:
            latest = await self._ledger.block_number()
            if latest >= self._from_block:
                logs = await event_type().get_logs(from_block=self._from_block, to_block=latest)
                for log in logs:
                    event = _to_event(log)
                    if self.event_filter.matches(event):
                        return event
                self._from_block = latest + 1
            await asyncio.sleep(self._ledger.poll_interval)
        raise asyncio.TimeoutError("Subscription cancelled")

    async def wait(self, timeout: Optional[float] = None) -> LedgerEvent:
        return await asyncio.wait_for(self._poll(), timeout)

    def cancel(self) -> None:
        self._cancelled = True


class Web3Ledger(Ledger):
    """A chain reached over JSON-RPC."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
        accounts: Optional[Sequence[LocalAccount]] = None,
        poll_interval: float = 0.5,
        receipt_timeout: float = 120.0,
    ):
        if w3 is None and rpc_url is None:
            raise ConfigurationError("Web3Ledger needs an rpc_url or a w3 instance", config_key="rpc_url")
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.poll_interval = poll_interval
        self.receipt_timeout = receipt_timeout
        self.head = 0
        self._chain_id: Optional[int] = None
        self._accounts: Dict[str, LocalAccount] = {}
        self._contracts: Dict[tuple, Any] = {}
        self._abis: Dict[str, List[Dict[str, Any]]] = {}
        self._send_lock = asyncio.Lock()
        for account in accounts or []:
            self.add_account(account)

    async def connect(self) -> "Web3Ledger":
        """Read the chain id and current head. Must be awaited before use."""
        self._chain_id = await self.w3.eth.chain_id
        self.head = await self.w3.eth.block_number
        logger.info(
            f"Connected to chain {self._chain_id} at block {self.head}",
            context=LogContext(ledger_id=self._chain_id, component="web3"),
        )
        return self

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            raise ConfigurationError("Web3Ledger is not connected", config_key="rpc_url")
        return self._chain_id

    def add_account(self, account: LocalAccount) -> None:
        """Key used to sign transactions sent from ``account.address``."""
        self._accounts[to_checksum_address(account.address)] = account

    def contract(self, address: str, abi: List[Dict[str, Any]]) -> Any:
        """Contract object at ``address``; its events are decoded from receipts."""
        address = to_checksum_address(address)
        key = (address, id(abi))
        if key not in self._contracts:
            self._contracts[key] = self.w3.eth.contract(address=address, abi=abi)
            self._abis.setdefault(address, abi)
        return self._contracts[key]

    async def block_timestamp(self) -> int:
        block = await self.w3.eth.get_block("latest")
        self.head = max(self.head, block["number"])
        return block["timestamp"]

    async def block_number(self) -> int:
        number = await self.w3.eth.block_number
        self.head = max(self.head, number)
        return number

    async def advance_time(self, seconds: int) -> None:
        await self.w3.provider.make_request("evm_increaseTime", [seconds])
        await self.w3.provider.make_request("evm_mine", [])
        logger.debug(
            f"Advanced chain clock by {seconds}s",
            context=LogContext(ledger_id=self.chain_id, component="web3"),
        )

    def subscribe(self, event_filter: EventFilter) -> EventSubscription:
        abi = self._abis.get(to_checksum_address(event_filter.address))
        if abi is None:
            raise ConfigurationError(
                f"No contract registered at {event_filter.address}", config_key="address"
            )
        return Web3Subscription(self, event_filter, abi)

    def _decode_events(self, receipt: Any) -> List[LedgerEvent]:
        events = []
        seen = set()
        for (address, _), contract in self._contracts.items():
            for entry in contract.abi:
                if entry["type"] != "event":
                    continue
                event_type = getattr(contract.events, entry["name"])
                for data in event_type().process_receipt(receipt, errors=DISCARD):
                    key = (data["logIndex"], data["event"])
                    if to_checksum_address(data["address"]) != address or key in seen:
                        continue
                    seen.add(key)
                    events.append((data["logIndex"], _to_event(data)))
        return [event for _, event in sorted(events, key=lambda item: item[0])]

    async def send(self, sender: str, contract: Any, function: str, *args: Any) -> TransactionReceipt:
        """
        Sign, submit and mine a contract call.

        Raises:
            ConfigurationError: if no key is registered for ``sender``
            LedgerSubmissionFailure: if the call reverts or no receipt
                arrives within ``receipt_timeout``
        """
        sender = to_checksum_address(sender)
        context = LogContext(ledger_id=self.chain_id, actor=sender, operation=function)
        account = self._accounts.get(sender)
        if account is None:
            raise ConfigurationError(f"No key for sender {sender}", config_key="accounts")

        def failure(message: str, tx_hash: Optional[str] = None, reason: Optional[str] = None, cause=None):
            error = LedgerSubmissionFailure(
                message,
                tx_hash=tx_hash,
                contract=contract.address,
                function=function,
                revert_reason=reason,
                ledger_id=self.chain_id,
                cause=cause,
            )
            logger.error(error.message, context=context, extra={"revert_reason": reason})
            return error

        call = getattr(contract.functions, function)(*args)
        async with self._send_lock:
            try:
                tx = await call.build_transaction(
                    {
                        "from": sender,
                        "chainId": self.chain_id,
                        "nonce": await self.w3.eth.get_transaction_count(sender, "pending"),
                    }
                )
            except ContractLogicError as e:
                raise failure(f"{function} reverted: {e.message}", reason=e.message, cause=e)
            signed = account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        tx_hex = tx_hash.to_0x_hex()
        try:
            raw = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise failure(f"No receipt for {function} within {self.receipt_timeout}s", tx_hex, cause=e)
        except Web3Exception as e:
            raise failure(f"{function} failed: {e}", tx_hex, cause=e)
        if raw["status"] != 1:
            raise failure(f"{function} reverted", tx_hex)

        self.head = max(self.head, raw["blockNumber"])
        receipt = TransactionReceipt(
            tx_hash=tx_hex,
            sender=sender,
            gas_used=raw["gasUsed"],
            block_number=raw["blockNumber"],
            events=self._decode_events(raw),
        )
        logger.debug(
            f"{function} mined in block {receipt.block_number}",
            context=context,
            extra={"tx_hash": tx_hex, "gas_used": receipt.gas_used},
        )
        return receipt

    def _erc20(self, token: str) -> Any:
        return self.contract(token, ERC20_ABI)

    async def token_balance(self, token: str, owner: str) -> int:
        return await self._erc20(token).functions.balanceOf(to_checksum_address(owner)).call()

    async def increase_allowance(
        self, token: str, owner: str, spender: str, amount: int
    ) -> TransactionReceipt:
        return await self.send(
            owner, self._erc20(token), "increaseAllowance", to_checksum_address(spender), amount
        )

    async def transfer(self, token: str, sender: str, to: str, amount: int) -> TransactionReceipt:
        return await self.send(sender, self._erc20(token), "transfer", to_checksum_address(to), amount)


class Web3NitroAdjudicator(NitroAdjudicator):
    """Deployed adjudicator and ERC20 asset holder."""

    def __init__(self, ledger: Web3Ledger, address: str, asset_holder_address: str):
        self._ledger = ledger
        self._adjudicator = ledger.contract(address, ADJUDICATOR_ABI)
        self._asset_holder = ledger.contract(asset_holder_address, ASSET_HOLDER_ABI)
        # Challenge details the packed storage slot only fingerprints.
        self._challenges: Dict[str, ChannelStorage] = {}

    @property
    def address(self) -> str:
        return self._adjudicator.address

    @property
    def asset_holder_address(self) -> str:
        return self._asset_holder.address

    @property
    def ledger(self) -> Web3Ledger:
        return self._ledger

    async def deposit(
        self, sender: str, channel_id: str, expected_held: int, amount: int
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender, self._asset_holder, "deposit", _bytes32(channel_id), expected_held, amount
        )

    async def holdings(self, channel_id: str) -> int:
        return await self._asset_holder.functions.holdings(_bytes32(channel_id)).call()

    async def conclude_push_outcome_and_transfer_all(
        self, sender: str, state: ChannelState, signatures: Sequence[Signature]
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender,
            self._adjudicator,
            "concludePushOutcomeAndTransferAll",
            state.turn_num,
            fixed_part(state),
            hash_app_part(state),
            encode_outcome(state.outcome),
            1,
            [0] * len(signatures),
            [s.to_tuple() for s in signatures],
        )

    async def challenge(
        self,
        sender: str,
        states: Sequence[ChannelState],
        signatures: Sequence[Signature],
        who_signed_what: Sequence[int],
        challenger_signature: Signature,
    ) -> TransactionReceipt:
        last = states[-1]
        receipt = await self._ledger.send(
            sender,
            self._adjudicator,
            "challenge",
            fixed_part(last),
            last.turn_num,
            [variable_part_abi(s.variable_part) for s in states],
            sum(1 for s in states if s.is_final),
            [s.to_tuple() for s in signatures],
            list(who_signed_what),
            challenger_signature.to_tuple(),
        )
        registered = receipt.events_named("ChallengeRegistered")
        finalizes_at = registered[0].args["finalizesAt"] if registered else 0
        self._challenges[last.channel_id.lower()] = ChannelStorage(
            turn_num_record=last.turn_num,
            finalizes_at=finalizes_at,
            state_hash=hash_state(last),
            challenger=to_checksum_address(sender),
            outcome_hash=hash_outcome(last.outcome),
        )
        return receipt

    async def push_outcome_and_transfer_all(
        self, sender: str, state: ChannelState, storage: ChannelStorage
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender,
            self._adjudicator,
            "pushOutcomeAndTransferAll",
            storage.turn_num_record,
            storage.finalizes_at,
            storage.state_hash or hash_state(state),
            storage.challenger,
            encode_outcome(state.outcome),
        )

    async def channel_storage(self, channel_id: str) -> ChannelStorage:
        """
        Unpack ``channelStorageHashes``.

        The slot holds ``turnNumRecord`` and ``finalizesAt`` followed by a
        fingerprint; the challenged state itself is known only for challenges
        sent through this adapter.
        """
        packed = await self._adjudicator.functions.channelStorageHashes(_bytes32(channel_id)).call()
        word = int.from_bytes(packed, "big")
        storage = ChannelStorage(
            turn_num_record=(word >> 208) & UINT48_MASK,
            finalizes_at=(word >> 160) & UINT48_MASK,
        )
        known = self._challenges.get(channel_id.lower())
        if known is not None and known.turn_num_record == storage.turn_num_record:
            storage.state_hash = known.state_hash
            storage.challenger = known.challenger
            storage.outcome_hash = known.outcome_hash
        return storage


class Web3HashLockedSwapApp(ConditionalApp):
    """Deployed hash-locked swap app; reverts count as invalid transitions."""

    def __init__(self, ledger: Web3Ledger, address: str):
        self._contract = ledger.contract(address, HASH_LOCKED_SWAP_ABI)

    @property
    def address(self) -> str:
        return self._contract.address

    async def valid_transition(
        self, a: VariablePart, b: VariablePart, turn_num_b: int, n_participants: int
    ) -> bool:
        try:
            return await self._contract.functions.validTransition(
                variable_part_abi(a), variable_part_abi(b), turn_num_b, n_participants
            ).call()
        except ContractLogicError as e:
            logger.debug(f"validTransition reverted: {e.message}")
            return False


class Web3VectorChannelContracts(VectorChannelContracts):
    """Deployed channel factory, mastercopy and hashlock transfer definition."""

    def __init__(
        self,
        ledger: Web3Ledger,
        factory_address: str,
        mastercopy_address: str,
        hashlock_transfer_address: str,
    ):
        self._ledger = ledger
        self._factory = ledger.contract(factory_address, CHANNEL_FACTORY_ABI)
        self._mastercopy = to_checksum_address(mastercopy_address)
        self._hashlock = to_checksum_address(hashlock_transfer_address)

    @property
    def ledger(self) -> Web3Ledger:
        return self._ledger

    @property
    def factory_address(self) -> str:
        return self._factory.address

    @property
    def mastercopy_address(self) -> str:
        return self._mastercopy

    @property
    def hashlock_transfer_address(self) -> str:
        return self._hashlock

    def _channel(self, channel_address: str) -> Any:
        return self._ledger.contract(channel_address, CHANNEL_MASTERCOPY_ABI)

    async def create_channel(self, sender: str, alice: str, bob: str) -> TransactionReceipt:
        receipt = await self._ledger.send(
            sender, self._factory, "createChannel", to_checksum_address(alice), to_checksum_address(bob)
        )
        self._channel(
            get_channel_address(
                self.factory_address, self._mastercopy, alice, bob, self._ledger.chain_id
            )
        )
        return receipt

    async def create_channel_and_deposit_alice(
        self, sender: str, alice: str, bob: str, asset_id: str, amount: int
    ) -> TransactionReceipt:
        self._channel(
            get_channel_address(
                self.factory_address, self._mastercopy, alice, bob, self._ledger.chain_id
            )
        )
        return await self._ledger.send(
            sender,
            self._factory,
            "createChannelAndDepositAlice",
            to_checksum_address(alice),
            to_checksum_address(bob),
            to_checksum_address(asset_id),
            amount,
        )

    async def total_deposits_alice(self, channel_address: str, asset_id: str) -> int:
        return await self._channel(channel_address).functions.getTotalDepositsAlice(
            to_checksum_address(asset_id)
        ).call()

    async def total_deposits_bob(self, channel_address: str, asset_id: str) -> int:
        return await self._channel(channel_address).functions.getTotalDepositsBob(
            to_checksum_address(asset_id)
        ).call()

    async def withdraw(
        self,
        sender: str,
        data: WithdrawData,
        alice_signature: Signature,
        bob_signature: Signature,
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender,
            self._channel(data.channel_address),
            "withdraw",
            data.to_abi(),
            alice_signature.to_bytes(),
            bob_signature.to_bytes(),
        )

    async def dispute_channel(
        self,
        sender: str,
        core: CoreChannelState,
        alice_signature: Signature,
        bob_signature: Signature,
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender,
            self._channel(core.channel_address),
            "disputeChannel",
            core.to_abi(),
            alice_signature.to_bytes(),
            bob_signature.to_bytes(),
        )

    async def dispute_transfer(
        self, sender: str, transfer: CoreTransferState, merkle_proof: Sequence[bytes]
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender,
            self._channel(transfer.channel_address),
            "disputeTransfer",
            transfer.to_abi(),
            list(merkle_proof),
        )

    async def defund_transfer(
        self,
        sender: str,
        transfer: CoreTransferState,
        encoded_state: bytes,
        encoded_resolver: bytes,
        responder_signature: Signature,
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender,
            self._channel(transfer.channel_address),
            "defundTransfer",
            transfer.to_abi(),
            encoded_state,
            encoded_resolver,
            responder_signature.to_bytes(),
        )

    async def exit(
        self, sender: str, channel_address: str, asset_id: str, owner: str, recipient: str
    ) -> TransactionReceipt:
        return await self._ledger.send(
            sender,
            self._channel(channel_address),
            "exit",
            to_checksum_address(asset_id),
            to_checksum_address(owner),
            to_checksum_address(recipient),
        )

    async def channel_dispute(self, channel_address: str) -> VectorChannelDispute:
        state_hash, nonce, root, consensus_expiry, defund_expiry = (
            await self._channel(channel_address).functions.getChannelDispute().call()
        )
        return VectorChannelDispute(
            channel_state_hash=state_hash,
            nonce=nonce,
            merkle_root=root,
            consensus_expiry=consensus_expiry,
            defund_expiry=defund_expiry,
        )

    async def transfer_dispute(
        self, channel_address: str, transfer_id: bytes
    ) -> VectorTransferDispute:
        state_hash, expiry, is_defunded = (
            await self._channel(channel_address).functions.getTransferDispute(transfer_id).call()
        )
        return VectorTransferDispute(
            transfer_state_hash=state_hash,
            transfer_dispute_expiry=expiry,
            is_defunded=is_defunded,
        )

    async def exitable_amount(self, channel_address: str, asset_id: str, owner: str) -> int:
        return await self._channel(channel_address).functions.getExitableAmount(
            to_checksum_address(asset_id), to_checksum_address(owner)
        ).call()
