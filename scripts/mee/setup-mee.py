"""Bring up a local Anvil fork and MEE node for the demo.

- Forks the upstream chain with Anvil on port 8545
- Clones the MEE node deployment to ``mee-node/`` and starts it with Docker compose
- Funds the node signer with ETH on the fork
- Waits until both answer, then keeps running until interrupted

Ctrl+C tears everything down.

Environment variables
---------------------

``PRIVATE_KEY``
    Node signer key (required).

``ETH_RPC_URL``
    Upstream RPC Anvil forks from (required).

``CHAIN_ID``
    Chain to run on. Default ``1``.

``LOG_LEVEL``
    Logging level. Default ``info``.

Variables can also be put in a ``.env`` file.

Usage::

    PRIVATE_KEY=... ETH_RPC_URL=https://... python scripts/mee/setup-mee.py
"""

import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console

from mee_harness.env_config import ConfigurationError, EnvConfig, SetupConfig
from mee_harness.stack.lifecycle import StackSession
from mee_harness.stack.mee_node import MEE_NODE_PORT
from mee_harness.stack.setup import bring_up_stack
from mee_harness.utils import setup_console_logging

logger = logging.getLogger(__name__)

#: Where the MEE node deployment is cloned
MEE_NODE_DIR = Path(__file__).resolve().parents[2] / "mee-node"


def main():
    load_dotenv()
    console = Console()

    try:
        env_config = EnvConfig.from_environ()
        setup_config = SetupConfig.from_environ()
    except ConfigurationError as e:
        console.print(f"❌  {e}")
        sys.exit(1)

    setup_console_logging(env_config.python_log_level)

    session = StackSession()
    session.install_process_hooks()

    bring_up_stack(setup_config, MEE_NODE_DIR, session=session, console=console)

    console.print(f"🎉  Stack ready →  {session.anvil.json_rpc_url}  &  http://localhost:{MEE_NODE_PORT}")

    # Signal handlers close the session and exit
    while True:
        signal.pause()


if __name__ == "__main__":
    main()
