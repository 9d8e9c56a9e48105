"""Multichain nexus smart account.

A nexus account is a smart account owned by an EOA signer. Its address
is counterfactual: the same on every chain, computed by the K1 validator
factory before the account is deployed. The MEE node deploys the account
with the first supertransaction.

We only resolve the address and build instructions here. Execution goes
through :py:class:`mee_harness.mee.client.MeeClient`.
"""

import logging
from dataclasses import dataclass

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from web3 import Web3

from mee_harness.config.chains import ChainInfo
from mee_harness.mee.composable import ComposableCallData, Instruction, build_composable_call

logger = logging.getLogger(__name__)

#: Nexus K1 validator factory, same address on all chains
NEXUS_K1_VALIDATOR_FACTORY_ADDRESS = "0x00000bb19a3579F4D779215dEf97AFbd0e30DB55"

#: Module registry attesters trusted by new accounts
NEXUS_ATTESTERS = [
    "0x000000333034E9f539ce08819E12c1b8Cb29084d",
    "0xDE8FD2dBcC0CA847d11599AF5964fe2AEa153699",
]

NEXUS_ATTESTER_THRESHOLD = 1

NEXUS_FACTORY_ABI = [
    {
        "name": "computeAccountAddress",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "eoaOwner", "type": "address"},
            {"name": "index", "type": "uint256"},
            {"name": "attesters", "type": "address[]"},
            {"name": "threshold", "type": "uint8"},
        ],
        "outputs": [{"name": "expectedAddress", "type": "address"}],
    },
]

#: Composable instruction type we support
DEFAULT_COMPOSABLE_TYPE = "default"


@dataclass(slots=True)
class NexusDeployment:
    """Nexus account on one chain."""

    chain: ChainInfo

    #: Read client for the chain
    web3: Web3

    #: Counterfactual account address
    address: HexAddress | None


def resolve_nexus_address(
    web3: Web3,
    owner: HexAddress | str,
    index: int = 0,
    factory_address: str = NEXUS_K1_VALIDATOR_FACTORY_ADDRESS,
) -> HexAddress:
    """Ask the factory for the counterfactual account address of an owner."""
    factory = web3.eth.contract(address=Web3.to_checksum_address(factory_address), abi=NEXUS_FACTORY_ABI)
    address = factory.functions.computeAccountAddress(
        Web3.to_checksum_address(owner),
        index,
        NEXUS_ATTESTERS,
        NEXUS_ATTESTER_THRESHOLD,
    ).call()
    return HexAddress(address)


class MultichainNexusAccount:
    """Nexus smart account wrapper around one EOA signer on several chains.

    Use :py:func:`to_multichain_nexus_account` to create.
    """

    def __init__(self, signer: LocalAccount, deployments: dict[int, NexusDeployment]):
        self.signer = signer
        self.deployments = deployments

    def __repr__(self) -> str:
        return f"<MultichainNexusAccount signer {self.signer.address} chains {list(self.deployments)}>"

    @property
    def signer_address(self) -> HexAddress:
        return self.signer.address

    def deployment_on(self, chain_id: int) -> NexusDeployment:
        try:
            return self.deployments[chain_id]
        except KeyError:
            raise ValueError(f"Account has no deployment on chain {chain_id}") from None

    def address_on(self, chain_id: int) -> HexAddress | None:
        """Account address on a chain.

        :return:
            ``None`` if the account is not set up for the chain
        """
        deployment = self.deployments.get(chain_id)
        if deployment is None:
            return None
        return deployment.address

    def build_composable(self, type: str, data: ComposableCallData) -> list[Instruction]:
        """Build an instruction batch from a single composable call.

        :param type:
            Only ``"default"`` is supported

        :return:
            Instruction batch, one instruction
        """
        if type != DEFAULT_COMPOSABLE_TYPE:
            raise ValueError(f"Unsupported composable type: {type}")

        self.deployment_on(data.chain_id)
        call = build_composable_call(data)
        logger.debug("Built composable %s on chain %d to %s", data.function_name, data.chain_id, call.to)
        return [Instruction(chain_id=data.chain_id, calls=(call,))]


def to_multichain_nexus_account(
    signer: LocalAccount,
    chains: list[ChainInfo],
    rpc_url: str,
    index: int = 0,
) -> MultichainNexusAccount:
    """Set up a nexus account for a signer on given chains.

    All chains are read through ``rpc_url``, the harness only
    runs one forked chain.

    :param index:
        Account index, lets one EOA own several accounts
    """
    assert chains, "Need at least one chain"
    deployments = {}
    for chain in chains:
        web3 = Web3(Web3.HTTPProvider(rpc_url))
        address = resolve_nexus_address(web3, signer.address, index=index)
        logger.info("Nexus account of %s on %s is %s", signer.address, chain.name, address)
        deployments[chain.id] = NexusDeployment(chain=chain, web3=web3, address=address)
    return MultichainNexusAccount(signer, deployments)
