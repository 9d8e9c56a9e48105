"""Deposit USDC to Aave through a MEE fusion supertransaction.

Needs the stack from ``scripts/mee/setup-mee.py`` running.

- Creates a fresh EOA and funds it with ETH and USDC on the fork
- Quotes and executes approve + deposit through the EOA's nexus account
- Prints balances before and after

Environment variables
---------------------

``RPC_URL``
    Forked chain RPC. Default ``http://127.0.0.1:8545``.

``MEE_URL``
    MEE node. Default ``http://localhost:3000``.

``CHAIN_ID``
    Default ``1``.

``USDC_AMOUNT``
    Whole USDC to deposit. Default ``1000``.

``LOG_LEVEL``
    Logging level. Default ``info``.

Usage::

    python scripts/mee/demo.py
"""

import logging
import os
import sys

from eth_account import Account
from rich.console import Console

from mee_harness.core.sdk import init_sdk
from mee_harness.demo.demo import DEFAULT_USDC_AMOUNT, run_demo
from mee_harness.env_config import ConfigurationError, load_env_config
from mee_harness.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    console = Console()
    try:
        config = load_env_config()
    except ConfigurationError as e:
        console.print(f"❌  {e}")
        sys.exit(1)

    setup_console_logging(config.python_log_level)

    usdc_amount = int(os.environ.get("USDC_AMOUNT", str(DEFAULT_USDC_AMOUNT)))
    assert usdc_amount > 0, f"USDC_AMOUNT must be positive, got {usdc_amount}"

    account = Account.create()
    logger.info("Demo EOA is %s", account.address)

    sdk = init_sdk(chain_id=config.chain_id, account=account, config=config)
    run_demo(sdk, account, usdc_amount=usdc_amount, console=console)


if __name__ == "__main__":
    main()
