"""End-to-end Aave deposit through a fusion quote.

1. Fund a fresh EOA with ETH and USDC on the fork

2. Build approve + deposit instructions for its nexus account

3. Quote, execute and wait for the supertransaction

4. Show USDC and aUSDC balances before and after
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from rich.console import Console
from tabulate import tabulate
from web3 import Web3

from mee_harness.core.sdk import MeeSdk
from mee_harness.demo.fund_account import USDC_DECIMALS, TransactionFailed, fund_account_with_eth, fund_account_with_usdc
from mee_harness.instructions.aave_deposit import NexusAddressUnavailable, build_aave_deposit
from mee_harness.mee.client import MINED_SUCCESS, FeeToken, SupertransactionReceipt, Trigger
from mee_harness.mee.composable import ERC20_ABI

logger = logging.getLogger(__name__)

#: Default USDC deposit
DEFAULT_USDC_AMOUNT = 1000

#: Gas money for the EOA, 1 ETH
EOA_ETH_FUNDING = 10**18


@dataclass(slots=True)
class Balances:
    """Raw USDC and aUSDC balances of the EOA and its nexus account."""

    eoa_usdc: int
    nexus_usdc: int
    eoa_ausdc: int
    nexus_ausdc: int


def format_amount(x: int, decimals: int = USDC_DECIMALS) -> str:
    return f"{x / 10**decimals:,}"


def _balance_of(web3: Web3, token: HexAddress, holder: HexAddress) -> int:
    contract = web3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
    return contract.functions.balanceOf(Web3.to_checksum_address(holder)).call()


def fetch_balances(sdk: MeeSdk, eoa_address: HexAddress, nexus_address: HexAddress) -> Balances:
    """Read the four balances in parallel."""
    reads = [
        (sdk.addresses.usdc, eoa_address),
        (sdk.addresses.usdc, nexus_address),
        (sdk.addresses.ausdc, eoa_address),
        (sdk.addresses.ausdc, nexus_address),
    ]
    with ThreadPoolExecutor(max_workers=len(reads)) as executor:
        futures = [executor.submit(_balance_of, sdk.web3, token, holder) for token, holder in reads]
        eoa_usdc, nexus_usdc, eoa_ausdc, nexus_ausdc = [f.result() for f in futures]
    return Balances(eoa_usdc=eoa_usdc, nexus_usdc=nexus_usdc, eoa_ausdc=eoa_ausdc, nexus_ausdc=nexus_ausdc)


def log_balances(sdk: MeeSdk, eoa_address: HexAddress, tag: str = "") -> Balances | None:
    """Log a balance table.

    :return:
        Balances, or ``None`` if the nexus address is not resolved
    """
    nexus_address = sdk.nexus.address_on(sdk.chain.id)

    if not nexus_address:
        logger.info("Nexus address not available")
        return None

    balances = fetch_balances(sdk, eoa_address, nexus_address)
    rows = [
        ["EOA", format_amount(balances.eoa_usdc), format_amount(balances.eoa_ausdc)],
        ["NEXUS", format_amount(balances.nexus_usdc), format_amount(balances.nexus_ausdc)],
    ]
    title = f"=== balances ({tag}) ===" if tag else "=== balances ==="
    logger.info("\n%s\n%s", title, tabulate(rows, headers=["", "USDC", "aUSDC"], tablefmt="simple"))
    return balances


def run_demo(
    sdk: MeeSdk,
    account: LocalAccount,
    usdc_amount: int = DEFAULT_USDC_AMOUNT,
    console: Console | None = None,
) -> SupertransactionReceipt:
    """Fund, quote, execute and wait.

    :param account:
        EOA owning the nexus account, funded here

    :param usdc_amount:
        Whole USDC to deposit

    :raise TransactionFailed:
        Supertransaction did not end in ``MINED_SUCCESS``
    """
    console = console or Console()
    amount_to_fund = usdc_amount * 10**USDC_DECIMALS

    fund_account_with_eth(sdk.web3, account.address, EOA_ETH_FUNDING)
    fund_account_with_usdc(sdk.web3, account.address, amount_to_fund)

    trigger_amount = amount_to_fund
    nexus_address = sdk.nexus.address_on(sdk.chain.id)

    if not nexus_address:
        raise NexusAddressUnavailable("Nexus address not available")

    instructions = build_aave_deposit(sdk, recipient=account.address)

    log_balances(sdk, account.address, "before quote")

    fusion_quote = sdk.mee.get_fusion_quote(
        trigger=Trigger(
            chain_id=sdk.chain.id,
            token_address=sdk.addresses.usdc,
            amount=trigger_amount,
            include_fee=True,
        ),
        instructions=instructions,
        fee_token=FeeToken(address=sdk.addresses.usdc, chain_id=sdk.chain.id),
    )

    logger.info("≈ fee in USDC: %s", fusion_quote.quote.payment_info.token_amount)

    result = sdk.mee.execute_fusion_quote(fusion_quote)
    console.print(f"⛓  Fusion hash: [bold magenta]{result.hash}[/bold magenta]")

    receipt = sdk.mee.wait_for_supertransaction_receipt(result.hash, confirmations=1)
    if receipt.transaction_status != MINED_SUCCESS:
        logger.error("Supertransaction failed: %s", receipt.raw)
        raise TransactionFailed(f"Transaction failed: {receipt.transaction_status}")

    logger.info("Transaction complete 🚀, status: %s", receipt.transaction_status)

    log_balances(sdk, account.address, "after execution")
    return receipt
