"""Anvil forked chain launcher and cheat code helpers.

- Launch ``anvil`` forking an upstream RPC on a fixed port

- Impersonate accounts to move funds on the fork

Example::

    from mee_harness.stack.anvil import launch_anvil

    launch = launch_anvil(os.environ["ETH_RPC_URL"])
    try:
        web3 = Web3(Web3.HTTPProvider(launch.json_rpc_url))
        ...
    finally:
        launch.close()
"""

import logging
import sys
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from shutil import which
from subprocess import DEVNULL, PIPE, STDOUT, TimeoutExpired
from typing import Any

import psutil
from eth_typing import HexAddress
from web3 import Web3

from mee_harness.utils import get_url_domain, is_port_listening

logger = logging.getLogger(__name__)

#: Port the MEE node chain config points to via ``host.docker.internal``
DEFAULT_ANVIL_PORT = 8545

#: Seconds we give Anvil to exit after SIGTERM before SIGKILL
DEFAULT_GRACE_PERIOD = 10.0

#: How many output lines we keep for error reporting
OUTPUT_BACKLOG = 200


class AnvilLaunchFailed(Exception):
    """Could not start Anvil."""


class AnvilRPCError(Exception):
    """Anvil cheat code JSON-RPC call returned an error."""


@dataclass
class AnvilLaunch:
    """Control a running Anvil process.

    Output is drained on a background thread from the start,
    so a chatty node never blocks on a full pipe. It is echoed to
    our stdout only after :py:meth:`stream_output`.
    """

    #: Anvil process
    process: psutil.Popen

    #: Which port Anvil listens on
    port: int

    #: Local JSON-RPC URL
    json_rpc_url: str

    #: Last output lines
    backlog: deque = field(default_factory=lambda: deque(maxlen=OUTPUT_BACKLOG))

    _streaming: threading.Event = field(default_factory=threading.Event)

    _reader: threading.Thread | None = None

    def start_reader(self):
        self._reader = threading.Thread(target=self._drain, name="anvil-output", daemon=True)
        self._reader.start()

    def _drain(self):
        for raw in iter(self.process.stdout.readline, b""):
            line = raw.decode("utf-8", errors="replace")
            self.backlog.append(line)
            if self._streaming.is_set():
                sys.stdout.write(line)
                sys.stdout.flush()

    def stream_output(self):
        """Echo Anvil output to our terminal from now on."""
        self._streaming.set()

    def is_running(self) -> bool:
        return self.process.poll() is None

    def close(self, grace_period: float = DEFAULT_GRACE_PERIOD) -> int | None:
        """Stop Anvil.

        Sends SIGTERM and waits for the exit, SIGKILL if the process
        does not go down within the grace period.

        :return:
            Exit code, or ``None`` if the process was already reaped
        """
        if not self.is_running():
            return self.process.returncode

        logger.info("Terminating Anvil, pid %d", self.process.pid)
        self.process.terminate()
        try:
            code = self.process.wait(grace_period)
        except (TimeoutExpired, psutil.TimeoutExpired):
            logger.warning("Anvil did not exit in %f seconds, killing", grace_period)
            self.process.kill()
            code = self.process.wait()

        if self._reader is not None:
            self._reader.join(timeout=1.0)
        return code


def launch_anvil(
    fork_url: str,
    port: int = DEFAULT_ANVIL_PORT,
    chain_id: int = 1,
    host: str = "0.0.0.0",
    cmd: str = "anvil",
) -> AnvilLaunch:
    """Start Anvil forking an upstream chain.

    Does not wait for the RPC to answer,
    use :py:func:`mee_harness.stack.readiness.wait_for_url`.

    :param fork_url:
        Upstream JSON-RPC URL

    :param host:
        Listen on all interfaces so Docker containers can reach the fork

    :raise AnvilLaunchFailed:
        ``anvil`` is not installed, or something already listens on the port
    """
    anvil = which(cmd)
    if anvil is None:
        raise AnvilLaunchFailed(f"{cmd} not found in PATH, install Foundry: https://getfoundry.sh")

    if is_port_listening(port):
        raise AnvilLaunchFailed(f"Port {port} is already in use, is another Anvil still running?")

    cmd_line = [
        anvil,
        "--fork-url",
        fork_url,
        "--port",
        str(port),
        "--chain-id",
        str(chain_id),
        "--host",
        host,
    ]

    logger.info("Launching Anvil fork of %s on port %d, chain id %d", get_url_domain(fork_url), port, chain_id)
    process = psutil.Popen(cmd_line, stdin=DEVNULL, stdout=PIPE, stderr=STDOUT)
    launch = AnvilLaunch(
        process=process,
        port=port,
        json_rpc_url=f"http://127.0.0.1:{port}",
    )
    launch.start_reader()
    return launch


def make_anvil_request(web3: Web3, method: str, params: list[Any]) -> Any:
    """Call an Anvil cheat code.

    :raise AnvilRPCError:
        The node replied with an error payload
    """
    response = web3.provider.make_request(method, params)
    if "error" in response:
        raise AnvilRPCError(f"{method}({params}) failed: {response['error']}")
    return response.get("result")


@contextmanager
def impersonate(web3: Web3, address: HexAddress | str):
    """Send transactions as any account on the fork.

    Example::

        with impersonate(web3, whale):
            usdc.functions.transfer(receiver, amount).transact({"from": whale})
    """
    make_anvil_request(web3, "anvil_impersonateAccount", [address])
    try:
        yield address
    finally:
        make_anvil_request(web3, "anvil_stopImpersonatingAccount", [address])
