"""Network, hex and console logging helpers shared by the stack and the scripts."""

import logging
import socket
from urllib.parse import urlparse

import coloredlogs

logger = logging.getLogger(__name__)


def is_port_listening(port: int, host: str = "127.0.0.1") -> bool:
    """Something accepts TCP connections on the port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        return sock.connect_ex((host, port)) == 0


def find_free_port(host: str = "127.0.0.1") -> int:
    """Let the kernel pick an unused port.

    The port is released before we return, so another process
    could grab it before Anvil binds.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def get_url_domain(url: str) -> str:
    """Host and port of a URL, for logs.

    RPC providers often carry the API key in the path.
    """
    parsed = urlparse(url)
    if parsed.port in (80, 443, None):
        return parsed.hostname
    else:
        return f"{parsed.hostname}:{parsed.port}"


def strip_hex_prefix(value: str) -> str:
    if value.startswith(("0x", "0X")):
        return value[2:]
    return value


def setup_console_logging(
    log_level: int = logging.INFO,
    simplified_logging=False,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in the scripts.
    - Tune down some noisy dependency library logging

    :param log_level:
        Python logging level, usually
        :py:attr:`mee_harness.env_config.EnvConfig.python_log_level`

    :param simplified_logging:
        Only print the message, no timestamps or logger names

    :return:
        Root logger
    """

    if simplified_logging:
        fmt = "%(message)s"
        date_fmt = "%H:%M:%S"
    else:
        fmt = "%(asctime)s %(name)-40s %(message)s"
        date_fmt = "%Y-%m-%d %H:%M:%S"

    coloredlogs.install(level=log_level, fmt=fmt, datefmt=date_fmt)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("web3.manager.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()
