"""Anvil launcher preconditions and cheat code helpers, no Anvil binary needed."""

import socket
from unittest.mock import MagicMock, call, patch

import pytest

from mee_harness.stack.anvil import AnvilLaunchFailed, AnvilRPCError, impersonate, launch_anvil, make_anvil_request

WHALE = "0x47ac0Fb4F2D84898e4D9E7b4DaB3C24507a6D503"


def test_launch_anvil_missing_binary():
    with patch("mee_harness.stack.anvil.which", return_value=None):
        with pytest.raises(AnvilLaunchFailed, match="getfoundry.sh"):
            launch_anvil("https://eth.example.com")


def test_launch_anvil_port_in_use():
    """A leftover process on the port fails the launch before spawning."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen()
        port = server.getsockname()[1]
        with (
            patch("mee_harness.stack.anvil.which", return_value="/usr/bin/anvil"),
            patch("mee_harness.stack.anvil.psutil.Popen") as popen,
        ):
            with pytest.raises(AnvilLaunchFailed, match=f"Port {port} is already in use"):
                launch_anvil("https://eth.example.com", port=port)
        popen.assert_not_called()


def test_make_anvil_request_error():
    web3 = MagicMock()
    web3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"}}
    with pytest.raises(AnvilRPCError, match="Method not found"):
        make_anvil_request(web3, "anvil_impersonateAccount", [WHALE])


def test_impersonate_stops_on_error():
    web3 = MagicMock()
    web3.provider.make_request.return_value = {"jsonrpc": "2.0", "id": 1, "result": None}
    with pytest.raises(RuntimeError):
        with impersonate(web3, WHALE):
            raise RuntimeError("transfer reverted")
    assert web3.provider.make_request.call_args_list == [
        call("anvil_impersonateAccount", [WHALE]),
        call("anvil_stopImpersonatingAccount", [WHALE]),
    ]
