"""Aave deposit instructions.

Two instruction batches, executed in order by the nexus account:

1. ``approve`` the pool to spend the account's USDC

2. ``deposit`` the USDC into the pool on behalf of the recipient

Both amounts are the account's USDC balance at execution time,
so whatever the trigger moved into the account minus the fee
gets deposited.
"""

import logging

from eth_typing import HexAddress

from mee_harness.core.sdk import MeeSdk
from mee_harness.mee.composable import ERC20_ABI, ComposableCallData, Instruction, parse_abi, runtime_erc20_balance_of

logger = logging.getLogger(__name__)

#: Aave lending pool deposit
AAVE_DEPOSIT_SIGNATURE = "function deposit(address asset,uint256 amount,address onBehalfOf,uint16 referralCode)"

#: No referral
AAVE_REFERRAL_CODE = 0


class NexusAddressUnavailable(Exception):
    """Nexus account address could not be resolved for the chain."""


def build_aave_deposit(sdk: MeeSdk, recipient: HexAddress | str) -> list[list[Instruction]]:
    """Build approve + deposit instructions.

    :param recipient:
        Receives the aTokens

    :return:
        ``[approve, deposit]`` instruction batches

    :raise NexusAddressUnavailable:
        Before any instruction is built
    """
    nexus_address = sdk.nexus.address_on(sdk.chain.id)

    if not nexus_address:
        raise NexusAddressUnavailable("Nexus address not available")

    approve_usdc = sdk.nexus.build_composable(
        type="default",
        data=ComposableCallData(
            abi=ERC20_ABI,
            chain_id=sdk.chain.id,
            function_name="approve",
            args=[
                sdk.addresses.pool,
                runtime_erc20_balance_of(
                    target_address=nexus_address,
                    token_address=sdk.addresses.usdc,
                ),
            ],
            to=sdk.addresses.usdc,
        ),
    )

    aave_deposit = sdk.nexus.build_composable(
        type="default",
        data=ComposableCallData(
            abi=parse_abi([AAVE_DEPOSIT_SIGNATURE]),
            chain_id=sdk.chain.id,
            function_name="deposit",
            args=[
                sdk.addresses.usdc,
                runtime_erc20_balance_of(
                    target_address=nexus_address,
                    token_address=sdk.addresses.usdc,
                ),
                recipient,
                AAVE_REFERRAL_CODE,
            ],
            to=sdk.addresses.pool,
        ),
    )

    logger.info("Built Aave deposit instructions for %s on chain %d", recipient, sdk.chain.id)
    return [approve_usdc, aave_deposit]
