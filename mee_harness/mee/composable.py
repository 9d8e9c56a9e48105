"""Composable instructions with runtime-resolved arguments.

A composable call is a contract call whose arguments are not all
known when we build it. Each argument becomes an input parameter
with a fetcher type:

- ``RAW_BYTES``: the ABI encoded value, fixed at build time

- ``BALANCE``: ERC-20 balance of an address, read on-chain by the
  composability module at execution time

The smart account concatenates the function selector and the fetched
arguments into the final calldata when the call executes.

Example::

    data = ComposableCallData(
        abi=ERC20_ABI,
        chain_id=1,
        function_name="approve",
        args=[pool, runtime_erc20_balance_of(target_address=nexus, token_address=usdc)],
        to=usdc,
    )
    call = build_composable_call(data)
    assert call.input_params[1].fetcher_type == InputParamFetcherType.BALANCE
"""

import enum
import re
from dataclasses import dataclass, field
from typing import Any

from eth_abi import encode
from eth_abi.grammar import parse as parse_abi_type
from eth_abi.packed import encode_packed
from eth_typing import HexAddress
from eth_utils import function_signature_to_4byte_selector
from web3 import Web3

#: Minimal ERC-20 ABI for the calls the harness makes
ERC20_ABI: list[dict] = [
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "recipient", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "transferFrom",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "sender", "type": "address"},
            {"name": "recipient", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

_FUNCTION_SIGNATURE = re.compile(
    r"^\s*function\s+(?P<name>\w+)\s*\((?P<inputs>[^)]*)\)\s*(?P<modifiers>[\w\s]*?)\s*(returns\s*\((?P<outputs>[^)]*)\))?\s*$"
)


def _parse_params(params: str) -> list[dict]:
    result = []
    for part in filter(None, (p.strip() for p in params.split(","))):
        tokens = part.split()
        result.append({"name": tokens[-1] if len(tokens) > 1 else "", "type": tokens[0]})
    return result


def parse_function_signature(signature: str) -> dict:
    """Turn a human-readable Solidity function signature into a JSON ABI entry.

    Tuple arguments are not supported.

    Example::

        parse_function_signature("function deposit(address asset,uint256 amount,address onBehalfOf,uint16 referralCode)")
    """
    match = _FUNCTION_SIGNATURE.match(signature)
    if match is None:
        raise ValueError(f"Cannot parse function signature: {signature}")

    modifiers = match.group("modifiers").split()
    if "view" in modifiers:
        mutability = "view"
    elif "pure" in modifiers:
        mutability = "pure"
    elif "payable" in modifiers:
        mutability = "payable"
    else:
        mutability = "nonpayable"

    return {
        "name": match.group("name"),
        "type": "function",
        "stateMutability": mutability,
        "inputs": _parse_params(match.group("inputs")),
        "outputs": _parse_params(match.group("outputs") or ""),
    }


def parse_abi(signatures: list[str]) -> list[dict]:
    return [parse_function_signature(s) for s in signatures]


class InputParamFetcherType(enum.IntEnum):
    """How the composability module obtains an argument."""

    RAW_BYTES = 0
    STATIC_CALL = 1
    BALANCE = 2


@dataclass(slots=True, frozen=True)
class RuntimeErc20Balance:
    """Placeholder for "balance of ``token_address`` held by ``target_address``".

    Resolved on-chain when the instruction executes,
    never by this code.
    """

    target_address: HexAddress

    token_address: HexAddress


def runtime_erc20_balance_of(target_address: HexAddress | str, token_address: HexAddress | str) -> RuntimeErc20Balance:
    """Create a runtime ERC-20 balance argument."""
    return RuntimeErc20Balance(target_address=target_address, token_address=token_address)


@dataclass(slots=True, frozen=True)
class InputParam:
    """One argument of a composable call."""

    fetcher_type: InputParamFetcherType

    #: Raw ABI encoded value, or fetcher specific data
    param_data: bytes

    def to_json(self) -> dict:
        return {
            "fetcherType": int(self.fetcher_type),
            "paramData": "0x" + self.param_data.hex(),
            "constraints": [],
        }


@dataclass(slots=True, frozen=True)
class ComposableCall:
    """Contract call with its arguments as input parameters."""

    to: HexAddress

    #: 4 byte function selector
    function_sig: bytes

    input_params: tuple[InputParam, ...]

    #: ETH value in wei
    value: int = 0

    def to_json(self) -> dict:
        return {
            "to": self.to,
            "value": str(self.value),
            "functionSig": "0x" + self.function_sig.hex(),
            "inputParams": [p.to_json() for p in self.input_params],
            "outputParams": [],
        }


@dataclass(slots=True, frozen=True)
class Instruction:
    """Batch of calls executed by the smart account on one chain."""

    chain_id: int

    calls: tuple[ComposableCall, ...]

    is_composable: bool = True

    def to_json(self) -> dict:
        return {
            "chainId": self.chain_id,
            "calls": [c.to_json() for c in self.calls],
            "isComposable": self.is_composable,
        }


@dataclass(slots=True)
class ComposableCallData:
    """What to call, as passed to :py:meth:`mee_harness.mee.account.MultichainNexusAccount.build_composable`."""

    #: JSON ABI containing the function
    abi: list[dict]

    chain_id: int

    function_name: str

    #: Positional arguments, static values or runtime placeholders
    args: list[Any]

    #: Target contract
    to: HexAddress

    #: ETH value in wei
    value: int = 0


def _find_function(abi: list[dict], name: str) -> dict:
    candidates = [entry for entry in abi if entry.get("type") == "function" and entry.get("name") == name]
    if not candidates:
        raise ValueError(f"Function {name} not found in ABI")
    if len(candidates) > 1:
        raise ValueError(f"Function {name} is overloaded in ABI, cannot pick one")
    return candidates[0]


def encode_input_param(abi_type: str, value: Any) -> InputParam:
    """Encode a single argument.

    :raise ValueError:
        Dynamic ABI types cannot be composed
    """
    if isinstance(value, RuntimeErc20Balance):
        if abi_type != "uint256":
            raise ValueError(f"Runtime balance can only fill an uint256 argument, got {abi_type}")
        data = encode_packed(
            ["address", "address"],
            [Web3.to_checksum_address(value.token_address), Web3.to_checksum_address(value.target_address)],
        )
        return InputParam(fetcher_type=InputParamFetcherType.BALANCE, param_data=data)

    if parse_abi_type(abi_type).is_dynamic:
        raise ValueError(f"Dynamic ABI type {abi_type} is not supported in composable calls")

    if abi_type == "address":
        value = Web3.to_checksum_address(value)

    return InputParam(fetcher_type=InputParamFetcherType.RAW_BYTES, param_data=encode([abi_type], [value]))


def build_composable_call(data: ComposableCallData) -> ComposableCall:
    """Encode a call into a composable call.

    :raise ValueError:
        Unknown function, wrong number of arguments or unsupported argument types
    """
    func = _find_function(data.abi, data.function_name)
    types = [i["type"] for i in func["inputs"]]

    if len(types) != len(data.args):
        raise ValueError(f"{data.function_name} takes {len(types)} arguments, got {len(data.args)}")

    selector = function_signature_to_4byte_selector(f"{data.function_name}({','.join(types)})")
    params = tuple(encode_input_param(t, a) for t, a in zip(types, data.args))

    return ComposableCall(
        to=Web3.to_checksum_address(data.to),
        function_sig=selector,
        input_params=params,
        value=data.value,
    )
