"""Readiness polling with a fake clock."""

from io import StringIO
from unittest.mock import MagicMock

import pytest
import requests
from rich.console import Console

from mee_harness.stack.readiness import (
    ReadinessTimeout,
    get_chain_health_status,
    probe_http_ok,
    probe_json_rpc,
    probe_mee_health,
    wait_for,
    wait_for_mee_health,
    wait_for_url,
)


class FakeClock:
    """Monotonic clock advanced only by sleeping."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


def _response(json_data=None, ok=True, json_error: Exception | None = None):
    response = MagicMock()
    response.ok = ok
    if json_error:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_data
    return response


def _healthy_info(chain_id="1", status="healthy") -> dict:
    return {"supportedChains": [{"chainId": chain_id, "healthCheck": {"status": status}}]}


def test_wait_for_returns_on_first_success():
    clock = FakeClock()
    answers = iter([False, False, True])
    wait_for(lambda: next(answers), timeout=30, poll_interval=2, clock=clock, sleep=clock.sleep)
    assert clock.sleeps == [2, 2]


def test_wait_for_ready_immediately():
    clock = FakeClock()
    wait_for(lambda: True, timeout=30, clock=clock, sleep=clock.sleep)
    assert clock.sleeps == []


def test_wait_for_timeout():
    """Never gives up before the timeout has elapsed."""
    clock = FakeClock()
    with pytest.raises(ReadinessTimeout, match="Timeout waiting for anvil"):
        wait_for(lambda: False, timeout=10, poll_interval=2, description="anvil", clock=clock, sleep=clock.sleep)
    assert clock.now >= 10
    assert len(clock.sleeps) == 5


def test_probe_http_ok():
    session = MagicMock()
    session.get.return_value = _response(ok=True)
    assert probe_http_ok(session, "http://localhost:3000")

    session.get.return_value = _response(ok=False)
    assert not probe_http_ok(session, "http://localhost:3000")

    session.get.side_effect = requests.ConnectionError("refused")
    assert not probe_http_ok(session, "http://localhost:3000")


def test_probe_json_rpc():
    session = MagicMock()
    session.post.return_value = _response({"jsonrpc": "2.0", "id": 1, "result": "0x10"})
    assert probe_json_rpc(session, "http://127.0.0.1:8545")

    payload = session.post.call_args.kwargs["json"]
    assert payload["method"] == "eth_blockNumber"

    session.post.return_value = _response({"jsonrpc": "2.0", "id": 1, "error": {"code": -32000}})
    assert not probe_json_rpc(session, "http://127.0.0.1:8545")


def test_probe_json_rpc_malformed_reply():
    session = MagicMock()
    session.post.return_value = _response(json_error=ValueError("Expecting value"))
    assert not probe_json_rpc(session, "http://127.0.0.1:8545")

    session.post.return_value = _response(["not", "a", "dict"])
    assert not probe_json_rpc(session, "http://127.0.0.1:8545")


def test_get_chain_health_status():
    info = {
        "supportedChains": [
            {"chainId": "10", "healthCheck": {"status": "unhealthy"}},
            {"chainId": "1", "healthCheck": {"status": "healthy"}},
        ]
    }
    assert get_chain_health_status(info, 1) == "healthy"
    assert get_chain_health_status(info, 10) == "unhealthy"
    assert get_chain_health_status(info, 8453) is None
    assert get_chain_health_status({}, 1) is None
    assert get_chain_health_status({"supportedChains": [{"chainId": 1}]}, 1) is None


@pytest.mark.parametrize(
    "reply, expected",
    [
        (_response(_healthy_info()), True),
        (_response(_healthy_info(chain_id=1)), True),
        (_response(_healthy_info(status="unhealthy")), False),
        (_response(_healthy_info(chain_id="10")), False),
        (_response({"supportedChains": []}), False),
        (_response("healthy"), False),
        (_response(json_error=ValueError("bad json")), False),
    ],
)
def test_probe_mee_health(reply, expected):
    session = MagicMock()
    session.get.return_value = reply
    assert probe_mee_health(session, "http://localhost:3000/v3/info", 1) is expected


def test_probe_mee_health_network_error():
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("refused")
    assert not probe_mee_health(session, "http://localhost:3000/v3/info", 1)


def test_wait_for_url_json_rpc():
    session = MagicMock()
    session.post.side_effect = [
        requests.ConnectionError("refused"),
        _response({"result": "0x1"}),
    ]
    wait_for_url("http://127.0.0.1:8545", timeout=30, json_rpc=True, session=session, poll_interval=0.001)
    assert session.post.call_count == 2
    session.get.assert_not_called()


def test_wait_for_url_plain_get():
    session = MagicMock()
    session.get.return_value = _response(ok=True)
    wait_for_url("http://localhost:3000", session=session)
    session.post.assert_not_called()


def test_wait_for_mee_health():
    session = MagicMock()
    session.get.side_effect = [
        requests.ConnectionError("refused"),
        _response(json_error=ValueError("starting")),
        _response(_healthy_info(status="unhealthy")),
        _response(_healthy_info()),
    ]
    output = StringIO()
    wait_for_mee_health(
        "http://localhost:3000/",
        chain_id=1,
        timeout=30,
        session=session,
        poll_interval=0.001,
        console=Console(file=output),
    )
    assert session.get.call_count == 4
    assert session.get.call_args.args[0] == "http://localhost:3000/v3/info"
    assert "MEE Node healthy" in output.getvalue()


def test_wait_for_mee_health_timeout():
    session = MagicMock()
    session.get.return_value = _response(_healthy_info(status="unhealthy"))
    with pytest.raises(ReadinessTimeout, match="MEE Node never reached healthy status"):
        wait_for_mee_health(
            "http://localhost:3000",
            chain_id=1,
            timeout=0.05,
            session=session,
            poll_interval=0.01,
            console=Console(file=StringIO()),
        )
