"""Demo flow with funding, balances and the MEE node mocked out."""

import logging
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest
from eth_account import Account
from rich.console import Console

from mee_harness.config.addresses import ADDRESSES
from mee_harness.config.chains import MAINNET
from mee_harness.core.sdk import MeeSdk
from mee_harness.demo.demo import Balances, format_amount, log_balances, run_demo
from mee_harness.demo.fund_account import TransactionFailed
from mee_harness.instructions.aave_deposit import NexusAddressUnavailable
from mee_harness.mee.client import ExecuteResult, FeeToken, SupertransactionReceipt, Trigger

NEXUS_ADDRESS = "0x" + "22" * 20


@pytest.fixture()
def sdk() -> MeeSdk:
    nexus = MagicMock()
    nexus.address_on.return_value = NEXUS_ADDRESS
    nexus.build_composable.return_value = [MagicMock()]
    mee = MagicMock()
    mee.get_fusion_quote.return_value.quote.payment_info.token_amount = "0.42"
    mee.execute_fusion_quote.return_value = ExecuteResult(hash="0xsupertx")
    mee.wait_for_supertransaction_receipt.return_value = SupertransactionReceipt(
        hash="0xsupertx",
        transaction_status="MINED_SUCCESS",
        user_ops=[],
        raw={},
    )
    return MeeSdk(web3=MagicMock(), mee=mee, nexus=nexus, addresses=ADDRESSES[1], chain=MAINNET)


@pytest.fixture()
def account():
    return Account.create()


@pytest.fixture()
def patched_io():
    with (
        patch("mee_harness.demo.demo.fund_account_with_eth") as fund_eth,
        patch("mee_harness.demo.demo.fund_account_with_usdc") as fund_usdc,
        patch("mee_harness.demo.demo.fetch_balances", return_value=Balances(1000 * 10**6, 0, 0, 0)) as balances,
    ):
        yield fund_eth, fund_usdc, balances


def test_format_amount():
    assert format_amount(1_000_000_000) == "1,000.0"
    assert format_amount(420_000) == "0.42"


def test_run_demo(sdk, account, patched_io):
    fund_eth, fund_usdc, balances = patched_io
    output = StringIO()

    receipt = run_demo(sdk, account, usdc_amount=1000, console=Console(file=output))

    assert receipt.transaction_status == "MINED_SUCCESS"
    fund_eth.assert_called_once_with(sdk.web3, account.address, 10**18)
    fund_usdc.assert_called_once_with(sdk.web3, account.address, 1_000_000_000)

    quote_kwargs = sdk.mee.get_fusion_quote.call_args.kwargs
    assert quote_kwargs["trigger"] == Trigger(chain_id=1, token_address=ADDRESSES[1].usdc, amount=1_000_000_000, include_fee=True)
    assert quote_kwargs["fee_token"] == FeeToken(address=ADDRESSES[1].usdc, chain_id=1)
    assert len(quote_kwargs["instructions"]) == 2

    sdk.mee.execute_fusion_quote.assert_called_once_with(sdk.mee.get_fusion_quote.return_value)
    sdk.mee.wait_for_supertransaction_receipt.assert_called_once_with("0xsupertx", confirmations=1)
    assert "0xsupertx" in output.getvalue()
    # Before and after
    assert balances.call_count == 2


def test_run_demo_failed_supertransaction(sdk, account, patched_io):
    sdk.mee.wait_for_supertransaction_receipt.return_value = SupertransactionReceipt(
        hash="0xsupertx",
        transaction_status="MINED_FAIL",
        user_ops=[],
        raw={"transactionStatus": "MINED_FAIL"},
    )
    with pytest.raises(TransactionFailed, match="MINED_FAIL"):
        run_demo(sdk, account, console=Console(file=StringIO()))


def test_run_demo_without_nexus_address(sdk, account, patched_io):
    sdk.nexus.address_on.return_value = None
    with pytest.raises(NexusAddressUnavailable):
        run_demo(sdk, account, console=Console(file=StringIO()))
    sdk.mee.get_fusion_quote.assert_not_called()


def test_log_balances(sdk, account, patched_io, caplog):
    with caplog.at_level(logging.INFO):
        balances = log_balances(sdk, account.address, "before quote")
    assert balances.eoa_usdc == 1000 * 10**6
    assert "balances (before quote)" in caplog.text
    assert "aUSDC" in caplog.text


def test_log_balances_without_nexus_address(sdk, account, patched_io, caplog):
    sdk.nexus.address_on.return_value = ""
    with caplog.at_level(logging.INFO):
        assert log_balances(sdk, account.address) is None
    assert "Nexus address not available" in caplog.text
    patched_io[2].assert_not_called()
