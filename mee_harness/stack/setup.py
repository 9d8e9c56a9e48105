"""Bring up the local stack: Anvil fork plus MEE node.

The node signs with ``PRIVATE_KEY``, so that account gets ETH on the fork.
"""

import logging
from pathlib import Path

from eth_account import Account
from rich.console import Console
from web3 import Web3

from mee_harness.demo.fund_account import fund_account_with_eth
from mee_harness.env_config import SetupConfig
from mee_harness.stack.anvil import DEFAULT_ANVIL_PORT, launch_anvil
from mee_harness.stack.commands import kill_processes_matching
from mee_harness.stack.lifecycle import STRAY_PROCESS_PATTERN, StackSession
from mee_harness.stack.mee_node import MEE_NODE_PORT, MeeNodeDeployment
from mee_harness.stack.readiness import wait_for_mee_health, wait_for_url
from mee_harness.utils import strip_hex_prefix

logger = logging.getLogger(__name__)

#: ETH the node signer gets on the fork, 1 ETH
NODE_SIGNER_ETH_FUNDING = 10**18

#: Seconds we wait for the Anvil RPC
ANVIL_READY_TIMEOUT = 30.0

#: Seconds we wait for the MEE node to report healthy
MEE_READY_TIMEOUT = 120.0


def bring_up_stack(
    config: SetupConfig,
    directory: Path,
    session: StackSession | None = None,
    console: Console | None = None,
) -> StackSession:
    """Start Anvil and the MEE node and wait until both are ready.

    Leftovers of an earlier run are torn down first.

    :param directory:
        MEE node deployment checkout

    :param session:
        Session to attach the launched processes to,
        so an interrupted setup still cleans up

    :return:
        Session owning the running stack
    """
    console = console or Console()
    deployment = MeeNodeDeployment(directory, chain_id=config.chain_id)
    if session is None:
        session = StackSession(deployment)
    else:
        session.deployment = deployment

    kill_processes_matching(STRAY_PROCESS_PATTERN)
    deployment.down()
    deployment.prepare(config.private_key)

    session.anvil = launch_anvil(
        config.eth_rpc_url,
        port=DEFAULT_ANVIL_PORT,
        chain_id=config.chain_id,
    )

    deployment.up()

    console.print("⏳ Waiting for Anvil RPC...")
    wait_for_url(session.anvil.json_rpc_url, timeout=ANVIL_READY_TIMEOUT, json_rpc=True)
    console.print("✅ Anvil RPC ready")

    console.print("💰 Funding account with ETH...")
    signer = Account.from_key("0x" + strip_hex_prefix(config.private_key))
    web3 = Web3(Web3.HTTPProvider(session.anvil.json_rpc_url))
    fund_account_with_eth(web3, signer.address, NODE_SIGNER_ETH_FUNDING)
    console.print("✅ Account funded with ETH")

    wait_for_mee_health(f"http://localhost:{MEE_NODE_PORT}", config.chain_id, timeout=MEE_READY_TIMEOUT, console=console)

    session.anvil.stream_output()
    return session
