"""Fund test accounts on the Anvil fork.

Impersonates well-known mainnet holders and sends their funds to
the test account. Only works against an Anvil fork of Ethereum mainnet.

Example::

    web3 = Web3(Web3.HTTPProvider("http://127.0.0.1:8545"))
    fund_account_with_eth(web3, account.address, Web3.to_wei(1, "ether"))
    fund_account_with_usdc(web3, account.address, 1000 * 10**6)
"""

import logging

from eth_typing import HexAddress, HexStr
from web3 import Web3

from mee_harness.config.addresses import ADDRESSES
from mee_harness.config.chains import MAINNET
from mee_harness.mee.composable import ERC20_ABI
from mee_harness.stack.anvil import impersonate

logger = logging.getLogger(__name__)

#: Large USDC holder on Ethereum mainnet
USDC_WHALE = HexAddress(HexStr("0x47ac0Fb4F2D84898e4D9E7b4DaB3C24507a6D503"))

#: Large ETH holder on Ethereum mainnet
ETH_OWNER_ADDRESS = HexAddress(HexStr("0x742d35Cc6634C0532925a3b844Bc454e4438f44e"))

USDC_ADDRESS = ADDRESSES[MAINNET.id].usdc

USDC_DECIMALS = 6

#: Default ETH top up, 5 ETH
DEFAULT_ETH_AMOUNT = 5 * 10**18


class TransactionFailed(Exception):
    """Transaction was mined but reverted, or never succeeded."""


def _assert_success(web3: Web3, tx_hash, description: str):
    receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] != 1:
        raise TransactionFailed(f"{description} failed, tx {tx_hash.hex()}")


def fund_account_with_usdc(web3: Web3, recipient: HexAddress | str, amount: int) -> int:
    """Send USDC from the whale.

    :param amount:
        Raw USDC amount, 6 decimals

    :return:
        Recipient USDC balance after the transfer
    """
    usdc = web3.eth.contract(address=Web3.to_checksum_address(USDC_ADDRESS), abi=ERC20_ABI)
    recipient = Web3.to_checksum_address(recipient)

    logger.info("Funding %s with %s USDC", recipient, amount / 10**USDC_DECIMALS)

    with impersonate(web3, USDC_WHALE):
        tx_hash = usdc.functions.transfer(recipient, amount).transact({"from": USDC_WHALE})
        _assert_success(web3, tx_hash, "USDC transfer")

    balance = usdc.functions.balanceOf(recipient).call()
    logger.info("USDC Balance: %s USDC", balance / 10**USDC_DECIMALS)
    return balance


def fund_account_with_eth(web3: Web3, recipient: HexAddress | str, amount: int = DEFAULT_ETH_AMOUNT) -> int:
    """Send ETH from a rich account.

    :param amount:
        Amount in wei

    :return:
        Recipient ETH balance in wei after the transfer
    """
    recipient = Web3.to_checksum_address(recipient)

    logger.info("Funding %s with %s ETH", recipient, Web3.from_wei(amount, "ether"))

    with impersonate(web3, ETH_OWNER_ADDRESS):
        tx_hash = web3.eth.send_transaction(
            {
                "from": ETH_OWNER_ADDRESS,
                "to": recipient,
                "value": amount,
            }
        )
        _assert_success(web3, tx_hash, "ETH transfer")

    balance = web3.eth.get_balance(recipient)
    logger.info("ETH Balance: %s ETH", Web3.from_wei(balance, "ether"))
    return balance
