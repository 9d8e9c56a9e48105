"""MEE node client and nexus smart account.

- :class:`MultichainNexusAccount`: nexus account of an EOA signer on several chains
- :func:`to_multichain_nexus_account`: resolve account addresses and create the wrapper
- :class:`MeeClient`: fusion quote, execute and receipt polling against a MEE node
- :func:`runtime_erc20_balance_of`: argument resolved to a token balance at execution time
"""

from mee_harness.mee.account import MultichainNexusAccount, to_multichain_nexus_account
from mee_harness.mee.client import FeeToken, FusionQuote, MeeApiError, MeeClient, SupertransactionReceipt, Trigger, create_mee_client
from mee_harness.mee.composable import ERC20_ABI, ComposableCallData, Instruction, RuntimeErc20Balance, parse_abi, runtime_erc20_balance_of

__all__ = [
    "ComposableCallData",
    "ERC20_ABI",
    "FeeToken",
    "FusionQuote",
    "Instruction",
    "MeeApiError",
    "MeeClient",
    "MultichainNexusAccount",
    "RuntimeErc20Balance",
    "SupertransactionReceipt",
    "Trigger",
    "create_mee_client",
    "parse_abi",
    "runtime_erc20_balance_of",
    "to_multichain_nexus_account",
]
