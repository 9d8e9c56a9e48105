"""Composable call encoding.

Pure logic, no RPC needed.
"""

import pytest
from eth_abi import encode

from mee_harness.config.addresses import ADDRESSES
from mee_harness.mee.composable import (
    ERC20_ABI,
    ComposableCallData,
    Instruction,
    InputParamFetcherType,
    build_composable_call,
    parse_abi,
    parse_function_signature,
    runtime_erc20_balance_of,
)

ADDRS = ADDRESSES[1]

NEXUS_ADDRESS = "0x" + "11" * 20

RECIPIENT = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"

DEPOSIT_SIGNATURE = "function deposit(address asset,uint256 amount,address onBehalfOf,uint16 referralCode)"


def test_parse_function_signature_deposit():
    entry = parse_function_signature(DEPOSIT_SIGNATURE)
    assert entry["name"] == "deposit"
    assert entry["stateMutability"] == "nonpayable"
    assert [i["type"] for i in entry["inputs"]] == ["address", "uint256", "address", "uint16"]
    assert [i["name"] for i in entry["inputs"]] == ["asset", "amount", "onBehalfOf", "referralCode"]
    assert entry["outputs"] == []


def test_parse_function_signature_view_with_returns():
    entry = parse_function_signature("function balanceOf(address account) view returns (uint256)")
    assert entry["stateMutability"] == "view"
    assert entry["outputs"] == [{"name": "", "type": "uint256"}]


def test_parse_function_signature_garbage():
    with pytest.raises(ValueError):
        parse_function_signature("event Transfer(address from, address to, uint256 value)")


def test_approve_with_runtime_balance():
    """Static spender is raw bytes, amount is a balance fetcher."""
    call = build_composable_call(
        ComposableCallData(
            abi=ERC20_ABI,
            chain_id=1,
            function_name="approve",
            args=[ADDRS.pool, runtime_erc20_balance_of(target_address=NEXUS_ADDRESS, token_address=ADDRS.usdc)],
            to=ADDRS.usdc,
        )
    )

    assert call.function_sig.hex() == "095ea7b3"
    assert call.to == "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
    assert call.value == 0

    spender, amount = call.input_params
    assert spender.fetcher_type == InputParamFetcherType.RAW_BYTES
    assert spender.param_data == encode(["address"], ["0x7d2768dE32b0b80b7a3454c06BdAc94A69DDc7A9"])

    assert amount.fetcher_type == InputParamFetcherType.BALANCE
    # Token first, then the holder, 20 bytes each
    assert amount.param_data == bytes.fromhex(ADDRS.usdc[2:]) + bytes.fromhex(NEXUS_ADDRESS[2:])


def test_deposit_encoding():
    call = build_composable_call(
        ComposableCallData(
            abi=parse_abi([DEPOSIT_SIGNATURE]),
            chain_id=1,
            function_name="deposit",
            args=[ADDRS.usdc, runtime_erc20_balance_of(NEXUS_ADDRESS, ADDRS.usdc), RECIPIENT, 0],
            to=ADDRS.pool,
        )
    )
    assert call.function_sig.hex() == "e8eda9df"
    fetchers = [p.fetcher_type for p in call.input_params]
    assert fetchers == [
        InputParamFetcherType.RAW_BYTES,
        InputParamFetcherType.BALANCE,
        InputParamFetcherType.RAW_BYTES,
        InputParamFetcherType.RAW_BYTES,
    ]
    assert call.input_params[3].param_data == encode(["uint16"], [0])


def test_wrong_arity():
    with pytest.raises(ValueError, match="takes 2 arguments, got 1"):
        build_composable_call(ComposableCallData(abi=ERC20_ABI, chain_id=1, function_name="approve", args=[ADDRS.pool], to=ADDRS.usdc))


def test_unknown_function():
    with pytest.raises(ValueError, match="not found"):
        build_composable_call(ComposableCallData(abi=ERC20_ABI, chain_id=1, function_name="mint", args=[], to=ADDRS.usdc))


def test_dynamic_type_rejected():
    abi = parse_abi(["function setName(string name)"])
    with pytest.raises(ValueError, match="Dynamic ABI type"):
        build_composable_call(ComposableCallData(abi=abi, chain_id=1, function_name="setName", args=["x"], to=ADDRS.usdc))


def test_runtime_balance_only_fills_uint256():
    with pytest.raises(ValueError, match="uint256"):
        build_composable_call(
            ComposableCallData(
                abi=ERC20_ABI,
                chain_id=1,
                function_name="approve",
                args=[runtime_erc20_balance_of(NEXUS_ADDRESS, ADDRS.usdc), 1],
                to=ADDRS.usdc,
            )
        )


def test_instruction_json():
    call = build_composable_call(
        ComposableCallData(abi=ERC20_ABI, chain_id=1, function_name="transfer", args=[RECIPIENT, 5], to=ADDRS.usdc)
    )
    data = Instruction(chain_id=1, calls=(call,)).to_json()
    assert data["chainId"] == 1
    assert data["isComposable"] is True
    (call_json,) = data["calls"]
    assert call_json["functionSig"] == "0xa9059cbb"
    assert call_json["value"] == "0"
    assert [p["fetcherType"] for p in call_json["inputParams"]] == [0, 0]
    assert call_json["inputParams"][1]["paramData"] == "0x" + encode(["uint256"], [5]).hex()
