"""Readiness polling for the Anvil fork and the MEE node.

Both services come up asynchronously. We probe them at a fixed interval
until they answer or a timeout elapses.

- Any probe failure, including network errors and malformed JSON,
  counts as "not ready yet". Only the timeout ends the wait.

- The MEE node reports health per chain in ``GET /v3/info``::

    {
        "supportedChains": [
            {"chainId": "1", "healthCheck": {"status": "healthy"}}
        ]
    }

Example::

    from mee_harness.stack.readiness import wait_for_url, wait_for_mee_health

    wait_for_url("http://127.0.0.1:8545", timeout=30, json_rpc=True)
    wait_for_mee_health("http://localhost:3000", chain_id=1)
"""

import logging
import time
from typing import Callable

import requests
from rich.console import Console

logger = logging.getLogger(__name__)

#: Seconds between probes
DEFAULT_POLL_INTERVAL = 2.0

#: Seconds a single probe HTTP request may take
PROBE_REQUEST_TIMEOUT = 5.0

#: Health status string the MEE node reports for a ready chain
HEALTHY_STATUS = "healthy"


class ReadinessTimeout(TimeoutError):
    """Service did not become ready before the timeout."""


def wait_for(
    predicate: Callable[[], bool],
    timeout: float,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    description: str = "condition",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
):
    """Poll ``predicate`` until it returns true.

    :param predicate:
        Probe returning ``True`` when the service is ready.
        Should not raise.

    :param timeout:
        Seconds until we give up

    :param poll_interval:
        Seconds between probes

    :param description:
        What we are waiting for, used in logs and the error message

    :param clock:
        Monotonic clock, for tests

    :param sleep:
        Sleep function, for tests

    :raise ReadinessTimeout:
        The predicate did not hold within ``timeout`` seconds
    """
    assert timeout > 0, f"Bad timeout: {timeout}"
    start = clock()
    attempt = 0
    while clock() - start < timeout:
        attempt += 1
        if predicate():
            logger.debug("%s ready after %d attempts", description, attempt)
            return
        sleep(poll_interval)

    raise ReadinessTimeout(f"Timeout waiting for {description}")


def probe_http_ok(session: requests.Session, url: str) -> bool:
    """Plain GET, ready on a 2xx response."""
    try:
        response = session.get(url, timeout=PROBE_REQUEST_TIMEOUT)
        return response.ok
    except requests.RequestException as e:
        logger.debug("Probe %s failed: %s", url, e)
        return False


def probe_json_rpc(session: requests.Session, url: str) -> bool:
    """JSON-RPC ``eth_blockNumber``, ready when the reply has a ``result``."""
    payload = {
        "jsonrpc": "2.0",
        "method": "eth_blockNumber",
        "params": [],
        "id": 1,
    }
    try:
        response = session.post(url, json=payload, timeout=PROBE_REQUEST_TIMEOUT)
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.debug("JSON-RPC probe %s failed: %s", url, e)
        return False
    return isinstance(data, dict) and "result" in data


def get_chain_health_status(info: dict, chain_id: int) -> str | None:
    """Extract the health status of one chain from a ``/v3/info`` payload.

    Chain ids are compared numerically, the node reports them as strings.

    :return:
        Status string, or ``None`` if the chain is not listed
    """
    for chain in info.get("supportedChains") or []:
        try:
            if int(chain.get("chainId")) != chain_id:
                continue
        except (TypeError, ValueError):
            continue
        return (chain.get("healthCheck") or {}).get("status")
    return None


def probe_mee_health(session: requests.Session, url: str, chain_id: int) -> bool:
    """MEE node ``/v3/info``, ready when our chain reports ``healthy``."""
    try:
        response = session.get(url, timeout=PROBE_REQUEST_TIMEOUT)
        info = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.debug("MEE health probe %s failed: %s", url, e)
        return False

    if not isinstance(info, dict):
        return False

    status = get_chain_health_status(info, chain_id)
    logger.debug("MEE node chain %d health: %s", chain_id, status)
    return status == HEALTHY_STATUS


def wait_for_url(
    url: str,
    timeout: float = 30.0,
    json_rpc: bool = False,
    session: requests.Session | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
):
    """Wait until a URL answers.

    :param json_rpc:
        Probe with a JSON-RPC ``eth_blockNumber`` POST instead of a GET

    :raise ReadinessTimeout:
        URL did not answer in time
    """
    session = session or requests.Session()
    if json_rpc:
        probe = lambda: probe_json_rpc(session, url)
    else:
        probe = lambda: probe_http_ok(session, url)
    wait_for(probe, timeout=timeout, poll_interval=poll_interval, description=url)


def wait_for_mee_health(
    mee_url: str,
    chain_id: int,
    timeout: float = 120.0,
    session: requests.Session | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    console: Console | None = None,
):
    """Wait until the MEE node reports our chain healthy.

    Shows a spinner on the console while waiting.

    :param mee_url:
        MEE node base URL, e.g. ``http://localhost:3000``

    :raise ReadinessTimeout:
        The chain never reached ``healthy``
    """
    session = session or requests.Session()
    console = console or Console()
    url = f"{mee_url.rstrip('/')}/v3/info"

    with console.status("Waiting for MEE Node health check..."):
        try:
            wait_for(
                lambda: probe_mee_health(session, url, chain_id),
                timeout=timeout,
                poll_interval=poll_interval,
                description=url,
            )
        except ReadinessTimeout:
            raise ReadinessTimeout("MEE Node never reached healthy status") from None

    console.print("✅ MEE Node healthy")
