"""SDK handle: read client, MEE client, nexus account and addresses for one chain.

Built once per run and passed around.

Example::

    from eth_account import Account
    from mee_harness.core.sdk import init_sdk

    sdk = init_sdk(chain_id=1, account=Account.create())
    print(sdk.nexus.address_on(sdk.chain.id))
"""

import logging
from dataclasses import dataclass

from eth_account.signers.local import LocalAccount
from web3 import Web3

from mee_harness.config.addresses import ADDRESSES, MULTICHAIN_USDC, ChainAddresses
from mee_harness.config.chains import ChainInfo, get_chain
from mee_harness.env_config import EnvConfig
from mee_harness.mee.account import MultichainNexusAccount, to_multichain_nexus_account
from mee_harness.mee.client import MeeClient, create_mee_client

logger = logging.getLogger(__name__)

#: Public demo API key of the MEE node
MEE_DEMO_API_KEY = "mee_3ZKgcUzCdVGgCaDVeTfnF5gt"

#: API version path of the node
MEE_API_VERSION_PATH = "/v3"


class UnsupportedChain(Exception):
    """No address table for the chain."""


@dataclass(slots=True)
class MeeSdk:
    """Everything the demo needs for one chain."""

    #: Plain read client against the fork RPC
    web3: Web3

    #: MEE node client
    mee: MeeClient

    #: Multichain nexus account (signer wrapper)
    nexus: MultichainNexusAccount

    #: Token and pool addresses
    addresses: ChainAddresses

    #: Chain metadata
    chain: ChainInfo


def create_mee_account(signer: LocalAccount, chain: ChainInfo, config: EnvConfig) -> MultichainNexusAccount:
    logger.info("Creating multichain account")
    return to_multichain_nexus_account(
        signer=signer,
        chains=[chain],
        rpc_url=config.rpc_url,
    )


def create_mee_sdk_client(nexus: MultichainNexusAccount, config: EnvConfig) -> MeeClient:
    logger.info("Instantiating MeeClient")
    return create_mee_client(
        account=nexus,
        url=f"{config.mee_url}{MEE_API_VERSION_PATH}",
        api_key=MEE_DEMO_API_KEY,
    )


def init_sdk(chain_id: int, account: LocalAccount, config: EnvConfig | None = None) -> MeeSdk:
    """Build the SDK handle.

    :param account:
        EOA signer owning the nexus account

    :param config:
        Defaults to the process environment

    :raise UnsupportedChain:
        Chain has no address table
    """
    wanted_chain = get_chain(chain_id)
    if wanted_chain is None or chain_id not in ADDRESSES:
        raise UnsupportedChain(f"Chain {chain_id} not found")

    if config is None:
        config = EnvConfig.from_environ()

    nexus = create_mee_account(account, wanted_chain, config)
    mee = create_mee_sdk_client(nexus, config)
    web3 = Web3(Web3.HTTPProvider(config.rpc_url))

    static = ADDRESSES[chain_id]
    sdk = MeeSdk(
        web3=web3,
        mee=mee,
        nexus=nexus,
        chain=wanted_chain,
        addresses=ChainAddresses(
            usdc=MULTICHAIN_USDC.address_on(chain_id),
            ausdc=static.ausdc,
            pool=static.pool,
        ),
    )

    logger.info("SDK ready")
    return sdk
