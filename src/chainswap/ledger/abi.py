"""
Contract ABIs used by the web3 adapters.

Only the functions and events the swap calls or observes are listed.
Struct parameters are declared as tuples with named components so web3
can encode the tuples built by ``chainswap.state_channels.encoding``.
"""

from typing import Any, Dict, List, Optional, Sequence

AbiEntry = Dict[str, Any]


def _param(type_: str, name: str = "", components: Optional[List[AbiEntry]] = None) -> AbiEntry:
    param: AbiEntry = {"type": type_, "name": name}
    if components is not None:
        param["components"] = components
    return param


def _function(
    name: str,
    inputs: Sequence[AbiEntry],
    outputs: Sequence[AbiEntry] = (),
    mutability: str = "nonpayable",
) -> AbiEntry:
    return {
        "type": "function",
        "name": name,
        "inputs": list(inputs),
        "outputs": list(outputs),
        "stateMutability": mutability,
    }


def _event(name: str, inputs: Sequence[AbiEntry]) -> AbiEntry:
    return {"type": "event", "name": name, "inputs": list(inputs), "anonymous": False}


def _indexed(type_: str, name: str) -> AbiEntry:
    return {"type": type_, "name": name, "indexed": True}


def _plain(type_: str, name: str) -> AbiEntry:
    return {"type": type_, "name": name, "indexed": False}


SIGNATURE_COMPONENTS = [_param("uint8", "v"), _param("bytes32", "r"), _param("bytes32", "s")]

FIXED_PART_COMPONENTS = [
    _param("uint256", "chainId"),
    _param("address[]", "participants"),
    _param("uint256", "channelNonce"),
    _param("address", "appDefinition"),
    _param("uint48", "challengeDuration"),
]

VARIABLE_PART_COMPONENTS = [_param("bytes", "outcome"), _param("bytes", "appData")]

ERC20_ABI: List[AbiEntry] = [
    _function("balanceOf", [_param("address", "account")], [_param("uint256")], "view"),
    _function(
        "allowance",
        [_param("address", "owner"), _param("address", "spender")],
        [_param("uint256")],
        "view",
    ),
    _function(
        "increaseAllowance",
        [_param("address", "spender"), _param("uint256", "addedValue")],
        [_param("bool")],
    ),
    _function(
        "transfer", [_param("address", "to"), _param("uint256", "amount")], [_param("bool")]
    ),
    _event(
        "Transfer",
        [_indexed("address", "from"), _indexed("address", "to"), _plain("uint256", "value")],
    ),
    _event(
        "Approval",
        [
            _indexed("address", "owner"),
            _indexed("address", "spender"),
            _plain("uint256", "value"),
        ],
    ),
]

ASSET_HOLDER_ABI: List[AbiEntry] = [
    _function(
        "deposit",
        [
            _param("bytes32", "destination"),
            _param("uint256", "expectedHeld"),
            _param("uint256", "amount"),
        ],
        mutability="payable",
    ),
    _function("holdings", [_param("bytes32", "destination")], [_param("uint256")], "view"),
    _event(
        "Deposited",
        [
            _indexed("bytes32", "destination"),
            _plain("uint256", "amountDeposited"),
            _plain("uint256", "destinationHoldings"),
        ],
    ),
    _event(
        "AssetTransferred",
        [
            _indexed("bytes32", "channelId"),
            _indexed("bytes32", "destination"),
            _plain("uint256", "amount"),
        ],
    ),
]

ADJUDICATOR_ABI: List[AbiEntry] = [
    _function(
        "concludePushOutcomeAndTransferAll",
        [
            _param("uint48", "largestTurnNum"),
            _param("tuple", "fixedPart", FIXED_PART_COMPONENTS),
            _param("bytes32", "appPartHash"),
            _param("bytes", "outcomeBytes"),
            _param("uint8", "numStates"),
            _param("uint8[]", "whoSignedWhat"),
            _param("tuple[]", "sigs", SIGNATURE_COMPONENTS),
        ],
    ),
    _function(
        "challenge",
        [
            _param("tuple", "fixedPart", FIXED_PART_COMPONENTS),
            _param("uint48", "largestTurnNum"),
            _param("tuple[]", "variableParts", VARIABLE_PART_COMPONENTS),
            _param("uint8", "isFinalCount"),
            _param("tuple[]", "sigs", SIGNATURE_COMPONENTS),
            _param("uint8[]", "whoSignedWhat"),
            _param("tuple", "challengerSig", SIGNATURE_COMPONENTS),
        ],
    ),
    _function(
        "pushOutcomeAndTransferAll",
        [
            _param("uint48", "turnNumRecord"),
            _param("uint48", "finalizesAt"),
            _param("bytes32", "stateHash"),
            _param("address", "challengerAddress"),
            _param("bytes", "outcomeBytes"),
        ],
    ),
    _function(
        "channelStorageHashes", [_param("bytes32", "channelId")], [_param("bytes32")], "view"
    ),
    _event(
        "ChallengeRegistered",
        [
            _indexed("bytes32", "channelId"),
            _plain("uint48", "turnNumRecord"),
            _plain("uint48", "finalizesAt"),
            _plain("address", "challenger"),
            _plain("bool", "isFinal"),
        ],
    ),
    _event("Concluded", [_indexed("bytes32", "channelId"), _plain("uint48", "finalizesAt")]),
    _event("OutcomePushed", [_indexed("bytes32", "channelId")]),
]

HASH_LOCKED_SWAP_ABI: List[AbiEntry] = [
    _function(
        "validTransition",
        [
            _param("tuple", "a", VARIABLE_PART_COMPONENTS),
            _param("tuple", "b", VARIABLE_PART_COMPONENTS),
            _param("uint48", "turnNumB"),
            _param("uint256", "nParticipants"),
        ],
        [_param("bool")],
        "pure",
    ),
]

BALANCE_COMPONENTS = [_param("uint256[2]", "amount"), _param("address[2]", "to")]

CORE_CHANNEL_STATE_COMPONENTS = [
    _param("address", "channelAddress"),
    _param("address", "alice"),
    _param("address", "bob"),
    _param("address[]", "assetIds"),
    _param("tuple[]", "balances", BALANCE_COMPONENTS),
    _param("uint256[]", "processedDepositsA"),
    _param("uint256[]", "processedDepositsB"),
    _param("uint256[]", "defundNonces"),
    _param("uint256", "timeout"),
    _param("uint256", "nonce"),
    _param("bytes32", "merkleRoot"),
]

CORE_TRANSFER_STATE_COMPONENTS = [
    _param("address", "channelAddress"),
    _param("bytes32", "transferId"),
    _param("address", "transferDefinition"),
    _param("address", "initiator"),
    _param("address", "responder"),
    _param("address", "assetId"),
    _param("tuple", "balance", BALANCE_COMPONENTS),
    _param("uint256", "transferTimeout"),
    _param("bytes32", "initialStateHash"),
]

WITHDRAW_DATA_COMPONENTS = [
    _param("address", "channelAddress"),
    _param("address", "assetId"),
    _param("address", "recipient"),
    _param("uint256", "amount"),
    _param("uint256", "nonce"),
    _param("address", "callTo"),
    _param("bytes", "callData"),
]

CHANNEL_FACTORY_ABI: List[AbiEntry] = [
    _function(
        "createChannel",
        [_param("address", "alice"), _param("address", "bob")],
        [_param("address")],
    ),
    _function(
        "createChannelAndDepositAlice",
        [
            _param("address", "alice"),
            _param("address", "bob"),
            _param("address", "assetId"),
            _param("uint256", "amount"),
        ],
        [_param("address")],
        "payable",
    ),
    _event("ChannelCreation", [_plain("address", "channel")]),
]

CHANNEL_MASTERCOPY_ABI: List[AbiEntry] = [
    _function(
        "getTotalDepositsAlice", [_param("address", "assetId")], [_param("uint256")], "view"
    ),
    _function(
        "getTotalDepositsBob", [_param("address", "assetId")], [_param("uint256")], "view"
    ),
    _function(
        "withdraw",
        [
            _param("tuple", "wd", WITHDRAW_DATA_COMPONENTS),
            _param("bytes", "aliceSignature"),
            _param("bytes", "bobSignature"),
        ],
    ),
    _function(
        "disputeChannel",
        [
            _param("tuple", "ccs", CORE_CHANNEL_STATE_COMPONENTS),
            _param("bytes", "aliceSignature"),
            _param("bytes", "bobSignature"),
        ],
    ),
    _function(
        "disputeTransfer",
        [
            _param("tuple", "cts", CORE_TRANSFER_STATE_COMPONENTS),
            _param("bytes32[]", "merkleProofData"),
        ],
    ),
    _function(
        "defundTransfer",
        [
            _param("tuple", "cts", CORE_TRANSFER_STATE_COMPONENTS),
            _param("bytes", "encodedInitialTransferState"),
            _param("bytes", "encodedTransferResolver"),
            _param("bytes", "responderSignature"),
        ],
    ),
    _function(
        "exit",
        [
            _param("address", "assetId"),
            _param("address", "owner"),
            _param("address", "recipient"),
        ],
    ),
    _function(
        "getChannelDispute",
        [],
        [
            _param(
                "tuple",
                "",
                [
                    _param("bytes32", "channelStateHash"),
                    _param("uint256", "nonce"),
                    _param("bytes32", "merkleRoot"),
                    _param("uint256", "consensusExpiry"),
                    _param("uint256", "defundExpiry"),
                ],
            )
        ],
        "view",
    ),
    _function(
        "getTransferDispute",
        [_param("bytes32", "transferId")],
        [
            _param(
                "tuple",
                "",
                [
                    _param("bytes32", "transferStateHash"),
                    _param("uint256", "transferDisputeExpiry"),
                    _param("bool", "isDefunded"),
                ],
            )
        ],
        "view",
    ),
    _function(
        "getExitableAmount",
        [_param("address", "assetId"), _param("address", "owner")],
        [_param("uint256")],
        "view",
    ),
    _event(
        "AliceDeposited",
        [_plain("address", "assetId"), _plain("uint256", "amount")],
    ),
]
